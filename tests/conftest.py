"""Shared fixtures: a scripted in-memory Runner and RunResult factory."""

import pytest

from rampbench.models import RunResult


def make_result(rate, total=1000, errors=0, rate_limited=0, p99=100.0, actual_rate=None):
    return RunResult(
        rate=rate,
        total_requests=total,
        successful=total - errors - rate_limited,
        errors=errors,
        rate_limited=rate_limited,
        p50_ms=p99 / 4,
        p90_ms=p99 / 2,
        p99_ms=p99,
        elapsed_seconds=10.0,
        actual_rate=float(rate) if actual_rate is None else actual_rate,
    )


class ScriptedRunner:
    """Runner whose outcomes come from a function of the offered rate.

    ``outcome(rate, call_index)`` returns a RunResult or an exception
    instance to raise. Every executed RunConfig is kept in ``calls``.
    """

    def __init__(self, outcome):
        self.outcome = outcome
        self.calls = []

    def execute(self, config):
        index = len(self.calls)
        self.calls.append(config)
        value = self.outcome(config.rate, index)
        if isinstance(value, BaseException):
            raise value
        return value

    @property
    def rates(self):
        return [c.rate for c in self.calls]


def breaks_at(limit, **broken_kwargs):
    """Outcome function: healthy below ``limit``, 5% errors at or above it."""
    broken_kwargs.setdefault("errors", 50)

    def outcome(rate, _index):
        if rate >= limit:
            return make_result(rate, **broken_kwargs)
        return make_result(rate)

    return outcome


@pytest.fixture
def result_factory():
    return make_result


@pytest.fixture
def scripted_runner():
    return ScriptedRunner


@pytest.fixture
def breaking_target():
    return breaks_at
