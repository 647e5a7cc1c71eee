"""
Watermark Store module.

Durable mapping from domain key to the identifier of the last issuance
processed for that domain. The store is loaded once at start-up, mutated in
memory during a polling pass, and written back once with an atomic
write-to-temp-then-rename so that readers only ever see a complete file.
"""

import json
import os
import tempfile
from pathlib import Path
from typing import Optional, Union

from .exceptions import PersistenceError

PathLike = Union[str, Path]


class WatermarkStore:
    """
    In-memory watermark index with atomic JSON persistence.

    The file format is a flat JSON object: ``{"example-com": 12, ...}``.
    The store does not enforce monotonicity; the orchestrator only ever
    sets a value it has derived from the current one.
    """

    TEMP_PREFIX = ".positions."
    TEMP_SUFFIX = ".json"

    def __init__(self, entries: Optional[dict[str, int]] = None) -> None:
        self._entries: dict[str, int] = dict(entries or {})

    @classmethod
    def load(cls, path: PathLike) -> "WatermarkStore":
        """
        Load a store from disk.

        A missing or empty file yields an empty store.

        Raises:
            PersistenceError: If the file cannot be read or parsed
        """
        file_path = Path(path)
        try:
            with open(file_path, "r", encoding="utf-8") as f:
                raw = f.read()
        except FileNotFoundError:
            return cls()
        except OSError as e:
            raise PersistenceError(
                code="io_error",
                message=f"Failed to read position file: {e}",
                details={"file_path": str(file_path)},
            )

        if not raw.strip():
            return cls()

        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            raise PersistenceError(
                code="parse_error",
                message=f"Failed to parse position file: {e}",
                details={"file_path": str(file_path)},
            )

        if not isinstance(data, dict):
            raise PersistenceError(
                code="parse_error",
                message="Position file must contain a JSON object",
                details={"file_path": str(file_path)},
            )

        entries = {}
        for key, value in data.items():
            if isinstance(value, bool) or not isinstance(value, int) or value < 0:
                raise PersistenceError(
                    code="invalid_value",
                    message=f"Invalid position for {key!r}: {value!r}",
                    details={"file_path": str(file_path), "key": key},
                )
            entries[key] = value

        return cls(entries)

    def get(self, key: str) -> int:
        """Return the last seen issuance id for ``key``, 0 if unseen."""
        return self._entries.get(key, 0)

    def set(self, key: str, issuance_id: int) -> None:
        """Set the last seen issuance id for ``key`` (in memory only)."""
        self._entries[key] = issuance_id

    def entries(self) -> dict[str, int]:
        """Snapshot of all entries."""
        return dict(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def serialize(self) -> str:
        return json.dumps(self._entries, indent=2, sort_keys=True) + "\n"

    def persist(self, path: PathLike) -> bool:
        """
        Atomically write the store to ``path``.

        The temp file lives in the target's directory so that the final
        rename stays on one filesystem. A zero-byte temp file is discarded
        and the target left as is.

        Returns:
            True if the target was replaced, False if there was nothing to write

        Raises:
            PersistenceError: If writing or renaming fails; the previous
                file is left untouched
        """
        target = Path(path)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                prefix=self.TEMP_PREFIX,
                suffix=self.TEMP_SUFFIX,
                dir=target.parent,
            )
        except OSError as e:
            raise PersistenceError(
                code="io_error",
                message=f"Failed to create temporary position file: {e}",
                details={"file_path": str(target)},
            )

        tmp_path = Path(tmp_name)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(self.serialize())
                f.flush()
                os.fsync(f.fileno())

            if tmp_path.stat().st_size == 0:
                tmp_path.unlink()
                return False

            os.replace(tmp_path, target)
        except OSError as e:
            tmp_path.unlink(missing_ok=True)
            raise PersistenceError(
                code="io_error",
                message=f"Failed to write position file: {e}",
                details={"file_path": str(target), "temp_path": str(tmp_path)},
            )

        return True
