"""
Property-based tests for the Filter Chain Runner.

Filters are in-process test doubles behind the IssuanceFilter interface.
"""

import asyncio
from io import StringIO
from typing import Callable

from hypothesis import given, settings
from hypothesis import strategies as st

from ct_monitor.audit_logger import AuditLogger
from ct_monitor.enums import LogLevel
from ct_monitor.exceptions import FilterChainError
from ct_monitor.filter_chain import FilterChainRunner
from ct_monitor.models import Issuance


# Test doubles


class FunctionFilter:
    """Filter applying a plain function."""

    def __init__(self, func: Callable[[list[Issuance]], list[Issuance]]) -> None:
        self._func = func
        self.calls: list[list[Issuance]] = []

    async def filter(self, issuances: list[Issuance]) -> list[Issuance]:
        self.calls.append(list(issuances))
        return self._func(issuances)


class FailingFilter:
    """Filter that always fails like an unreachable plugin."""

    def __init__(self, path: str) -> None:
        self._path = path

    async def filter(self, issuances: list[Issuance]) -> list[Issuance]:
        raise FilterChainError(
            code="spawn_failed",
            message=f"Failed to start filter plugin: {self._path}",
            filter_path=self._path,
        )


def _factory(filters: dict) -> Callable[[str], object]:
    def build(path: str):
        if path in filters:
            return filters[path]
        return FailingFilter(path)
    return build


@st.composite
def issuance_batch_strategy(draw) -> list[Issuance]:
    """Generate batches of issuances with ascending ids."""
    ids = draw(st.lists(
        st.integers(min_value=1, max_value=10 ** 12),
        min_size=0,
        max_size=10,
        unique=True,
    ))
    return [Issuance(id=i, dns_names=(f"host{i}.example.com",)) for i in sorted(ids)]


class TestChainOrderProperty:
    """Filters run in configured order, each seeing the previous output."""

    @given(batch=issuance_batch_strategy())
    @settings(max_examples=100)
    def test_empty_chain_is_identity(self, batch: list[Issuance]) -> None:
        runner = FilterChainRunner(factory=_factory({}))
        result = asyncio.run(runner.apply([], batch))

        assert result.ok
        assert result.issuances == batch
        assert result.completed == 0

    @given(batch=issuance_batch_strategy())
    @settings(max_examples=100)
    def test_filters_compose_in_order(self, batch: list[Issuance]) -> None:
        evens = FunctionFilter(lambda xs: [x for x in xs if x.id % 2 == 0])
        first = FunctionFilter(lambda xs: xs[:1])
        runner = FilterChainRunner(factory=_factory({"evens": evens, "first": first}))

        result = asyncio.run(runner.apply(["evens", "first"], batch))

        expected = [x for x in batch if x.id % 2 == 0][:1]
        assert result.ok
        assert result.issuances == expected
        assert result.completed == 2
        assert first.calls == [[x for x in batch if x.id % 2 == 0]]


class TestChainFailureProperty:
    """The first failing filter stops the chain with the last good batch."""

    def test_missing_second_filter_returns_first_output(self) -> None:
        batch = [Issuance(id=i) for i in (10, 11, 12)]
        keep_first = FunctionFilter(lambda xs: xs[:1] if len(xs) > 1 else xs)
        runner = FilterChainRunner(factory=_factory({"keep-first": keep_first}))

        result = asyncio.run(runner.apply(["keep-first", "/nonexistent"], batch))

        assert not result.ok
        assert [i.id for i in result.issuances] == [10]
        assert result.completed == 1
        assert result.error.step == 1
        assert result.error.filter_path == "/nonexistent"
        assert result.error.details["step"] == 1

    @given(batch=issuance_batch_strategy(), position=st.integers(min_value=0, max_value=3))
    @settings(max_examples=50)
    def test_later_filters_do_not_run(self, batch: list[Issuance], position: int) -> None:
        tail = FunctionFilter(lambda xs: [])
        chain = ["identity"] * position + ["broken", "tail"]
        identity = FunctionFilter(lambda xs: xs)
        runner = FilterChainRunner(factory=_factory({"identity": identity, "tail": tail}))

        result = asyncio.run(runner.apply(chain, batch))

        assert result.error is not None
        assert result.error.step == position
        assert result.issuances == batch
        assert tail.calls == []

    def test_failure_is_logged(self) -> None:
        stream = StringIO()
        logger = AuditLogger(output_format="json", output_stream=stream)
        runner = FilterChainRunner(factory=_factory({}), logger=logger)

        asyncio.run(runner.apply(["/nonexistent"], [Issuance(id=1)]))

        errors = [e for e in logger.entries if e.level == LogLevel.ERROR]
        assert len(errors) == 1
        assert errors[0].data["filter"] == "/nonexistent"
        assert errors[0].data["error_code"] == "spawn_failed"

    def test_unexpected_exception_becomes_chain_error(self) -> None:
        batch = [Issuance(id=i) for i in (10, 11, 12)]

        def broken(xs):
            raise TypeError("'<=' not supported between instances of 'str' and 'int'")

        identity = FunctionFilter(lambda xs: xs)
        runner = FilterChainRunner(
            factory=_factory({"identity": identity, "broken": FunctionFilter(broken)})
        )

        result = asyncio.run(runner.apply(["identity", "broken"], batch))

        assert not result.ok
        assert isinstance(result.error, FilterChainError)
        assert result.error.code == "filter_failed"
        assert result.error.step == 1
        assert result.error.filter_path == "broken"
        assert result.error.details["error_type"] == "TypeError"
        assert result.issuances == batch
        assert result.completed == 1
