"""
Filter Chain Runner.

Pipes a batch of issuances through the configured filter plugins in order.
The runner only needs the IssuanceFilter interface; how a filter is reached
(by default a PluginFilter spawning an executable) is decided by the factory.
"""

from dataclasses import dataclass
from typing import Callable, Optional, Sequence

from .audit_logger import AuditLogger
from .enums import LogLevel
from .exceptions import FilterChainError
from .filter_protocol import DEFAULT_START_TIMEOUT, IssuanceFilter, PluginFilter
from .models import Issuance

FilterFactory = Callable[[str], IssuanceFilter]


@dataclass
class FilterChainResult:
    """Result of running a filter chain."""

    issuances: list[Issuance]
    error: Optional[FilterChainError] = None
    completed: int = 0  # number of filters that ran successfully

    @property
    def ok(self) -> bool:
        return self.error is None


class FilterChainRunner:
    """
    Runs filter plugins strictly in configured order.

    On the first failure the chain stops and the last successfully
    produced batch is returned together with the error.
    """

    def __init__(
        self,
        factory: Optional[FilterFactory] = None,
        start_timeout: float = DEFAULT_START_TIMEOUT,
        call_timeout: Optional[float] = None,
        logger: Optional[AuditLogger] = None,
    ) -> None:
        if factory is None:
            def factory(path: str) -> IssuanceFilter:
                return PluginFilter(path, start_timeout=start_timeout, call_timeout=call_timeout)
        self._factory = factory
        self._logger = logger

    async def apply(
        self, chain: Sequence[str], issuances: Sequence[Issuance]
    ) -> FilterChainResult:
        """
        Apply ``chain`` to ``issuances``.

        An empty chain returns the input unchanged.
        """
        current = list(issuances)

        for step, path in enumerate(chain):
            try:
                issuance_filter = self._factory(path)
                filtered = await issuance_filter.filter(current)
            except FilterChainError as e:
                e.step = step
                e.filter_path = e.filter_path or path
                e.details["step"] = step
                e.details["filter_path"] = e.filter_path
                self._log_step_failed(step, path, e)
                return FilterChainResult(issuances=current, error=e, completed=step)
            except Exception as e:
                error = FilterChainError(
                    code="filter_failed",
                    message=f"Filter {path} failed: {e}",
                    filter_path=path,
                    step=step,
                    details={"error_type": type(e).__name__},
                )
                self._log_step_failed(step, path, error)
                return FilterChainResult(issuances=current, error=error, completed=step)

            self._log_debug(
                f"Filter {path} kept {len(filtered)} of {len(current)} issuances",
                {"step": step, "filter": path},
            )
            current = list(filtered)

        return FilterChainResult(issuances=current, error=None, completed=len(chain))

    def _log_step_failed(self, step: int, path: str, error: FilterChainError) -> None:
        if self._logger:
            self._logger.log_error(
                "FilterChainRunner",
                f"Filter chain stopped at step {step}",
                error=error,
                additional_data={"filter": path, "step": step},
            )

    def _log_debug(self, message: str, data: dict) -> None:
        if self._logger:
            self._logger.log(LogLevel.DEBUG, "FilterChainRunner", message, data)
