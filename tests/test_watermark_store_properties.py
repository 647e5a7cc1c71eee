"""
Property-based tests for the Watermark Store module.

Uses Hypothesis for property-based testing to verify round-tripping of
positions and the atomic persist behavior.
"""

import json
import os
import tempfile
from pathlib import Path
from unittest.mock import patch

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from ct_monitor.exceptions import PersistenceError
from ct_monitor.watermark_store import WatermarkStore


# Strategies for generating valid test data

key_strategy = st.text(
    alphabet=st.sampled_from("abcdefghijklmnopqrstuvwxyz0123456789-"),
    min_size=1,
    max_size=30,
)

position_strategy = st.integers(min_value=0, max_value=2 ** 63 - 1)


@st.composite
def entries_strategy(draw) -> dict[str, int]:
    """Generate watermark mappings."""
    return draw(st.dictionaries(key_strategy, position_strategy, max_size=10))


def _temp_leftovers(directory: Path) -> list[Path]:
    return [
        p for p in directory.iterdir()
        if p.name.startswith(WatermarkStore.TEMP_PREFIX)
    ]


class TestRoundTripProperty:
    """Positions written by persist are read back unchanged by load."""

    @given(entries=entries_strategy())
    @settings(max_examples=100)
    def test_persist_then_load_preserves_entries(self, entries: dict[str, int]) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "positions.json"
            store = WatermarkStore(entries)

            assert store.persist(path) is True

            loaded = WatermarkStore.load(path)
            assert loaded.entries() == entries
            assert _temp_leftovers(Path(tmpdir)) == []

    @given(entries=entries_strategy(), key=key_strategy)
    @settings(max_examples=100)
    def test_unseen_key_reads_as_zero(self, entries: dict[str, int], key: str) -> None:
        store = WatermarkStore(entries)
        expected = entries.get(key, 0)
        assert store.get(key) == expected
        assert (key in store) == (key in entries)

    def test_persist_creates_parent_directory(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "nested" / "dir" / "positions.json"
            store = WatermarkStore({"example-com": 12})

            assert store.persist(path) is True
            assert json.loads(path.read_text()) == {"example-com": 12}

    def test_persist_overwrites_previous_file(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "positions.json"
            WatermarkStore({"example-com": 1}).persist(path)

            store = WatermarkStore.load(path)
            store.set("example-com", 42)
            store.set("example-org", 7)
            store.persist(path)

            assert WatermarkStore.load(path).entries() == {
                "example-com": 42,
                "example-org": 7,
            }


class TestLoadEdgeCases:
    """Loading missing, empty and invalid position files."""

    def test_missing_file_is_empty_store(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            store = WatermarkStore.load(Path(tmpdir) / "absent.json")
            assert len(store) == 0

    def test_empty_file_is_empty_store(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "positions.json"
            path.write_text("  \n")
            assert len(WatermarkStore.load(path)) == 0

    def test_corrupt_file_raises(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "positions.json"
            path.write_text("{not json")
            with pytest.raises(PersistenceError) as exc_info:
                WatermarkStore.load(path)
            assert exc_info.value.code == "parse_error"

    def test_non_object_raises(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "positions.json"
            path.write_text("[1, 2, 3]")
            with pytest.raises(PersistenceError) as exc_info:
                WatermarkStore.load(path)
            assert exc_info.value.code == "parse_error"

    @pytest.mark.parametrize("value", ["12", -1, True, 1.5, None])
    def test_invalid_position_value_raises(self, value) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "positions.json"
            path.write_text(json.dumps({"example-com": value}))
            with pytest.raises(PersistenceError) as exc_info:
                WatermarkStore.load(path)
            assert exc_info.value.code == "invalid_value"


class TestAtomicPersistProperty:
    """
    A reader of the target path only ever sees the previous complete file
    or the new complete file.
    """

    @given(before=entries_strategy(), after=entries_strategy())
    @settings(max_examples=50)
    def test_failed_rename_leaves_previous_file(
        self, before: dict[str, int], after: dict[str, int]
    ) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "positions.json"
            WatermarkStore(before).persist(path)
            original = path.read_bytes()

            with patch("ct_monitor.watermark_store.os.replace", side_effect=OSError("disk full")):
                with pytest.raises(PersistenceError) as exc_info:
                    WatermarkStore(after).persist(path)

            assert exc_info.value.code == "io_error"
            assert path.read_bytes() == original
            assert _temp_leftovers(Path(tmpdir)) == []

    def test_crash_before_rename_leaves_target_intact(self) -> None:
        """
        Simulates a process killed between writing the temp file and the
        rename: the stray temp file does not affect the next load.
        """
        with tempfile.TemporaryDirectory() as tmpdir:
            directory = Path(tmpdir)
            path = directory / "positions.json"
            WatermarkStore({"example-com": 10}).persist(path)

            stray = directory / f"{WatermarkStore.TEMP_PREFIX}crash{WatermarkStore.TEMP_SUFFIX}"
            stray.write_text('{"example-com": 9')

            assert WatermarkStore.load(path).entries() == {"example-com": 10}

    def test_zero_byte_output_is_not_renamed(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "positions.json"
            WatermarkStore({"example-com": 10}).persist(path)
            original = path.read_bytes()

            with patch.object(WatermarkStore, "serialize", return_value=""):
                assert WatermarkStore({"example-com": 11}).persist(path) is False

            assert path.read_bytes() == original
            assert _temp_leftovers(Path(tmpdir)) == []

    def test_temp_file_is_created_next_to_target(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "positions.json"
            seen_dirs = []
            real_replace = os.replace

            def recording_replace(src, dst):
                seen_dirs.append(Path(src).parent)
                return real_replace(src, dst)

            with patch("ct_monitor.watermark_store.os.replace", side_effect=recording_replace):
                WatermarkStore({"example-com": 3}).persist(path)

            assert seen_dirs == [Path(tmpdir)]
