"""Property tests for ramp controller invariants."""

from hypothesis import given, settings
from hypothesis import strategies as st

from rampbench.controller import RampController
from rampbench.models import CampaignStatus, Phase, RampMode, RampSettings, Thresholds

from conftest import ScriptedRunner, breaks_at

THRESHOLDS = Thresholds(max_error_rate=0.01, max_p99_ms=300, max_rate_limited_fraction=0.01)


@st.composite
def campaigns(draw):
    start = draw(st.integers(min_value=1, max_value=500))
    max_rate = draw(st.integers(min_value=start, max_value=5000))
    ramp = RampSettings(
        url="http://localhost:8001/api/demo",
        start_rate=start,
        step=draw(st.integers(min_value=1, max_value=1000)),
        max_rate=max_rate,
        mode=draw(st.sampled_from(list(RampMode))),
        duration_seconds=5,
        concurrency=10,
        refine=draw(st.booleans()),
        resolution=draw(st.integers(min_value=1, max_value=100)),
        max_refinement_iterations=draw(st.integers(min_value=1, max_value=10)),
    )
    limit = draw(st.integers(min_value=1, max_value=6000))
    return ramp, limit


def _run(ramp, limit):
    runner = ScriptedRunner(breaks_at(limit))
    return RampController(runner, ramp, THRESHOLDS).run()


@settings(max_examples=200, deadline=None)
@given(campaigns())
def test_ramping_stays_in_bounds_and_never_decreases(case):
    ramp, limit = case
    campaign = _run(ramp, limit)
    ramp_rates = [s.rate for s in campaign.steps if s.phase is Phase.RAMPING]
    assert ramp_rates
    assert all(ramp.start_rate <= r <= ramp.max_rate for r in ramp_rates)
    assert ramp_rates == sorted(ramp_rates)


@settings(max_examples=200, deadline=None)
@given(campaigns())
def test_refinement_stays_inside_interval_and_budget(case):
    ramp, limit = case
    campaign = _run(ramp, limit)
    probes = [s.rate for s in campaign.steps if s.phase is Phase.REFINING]
    assert len(probes) <= ramp.max_refinement_iterations
    if not probes:
        return
    assert ramp.refine
    ramp_steps = [s for s in campaign.steps if s.phase is Phase.RAMPING]
    last_healthy = max(s.rate for s in ramp_steps if s.verdict.is_healthy)
    first_broken = ramp_steps[-1].rate
    assert all(last_healthy < p < first_broken for p in probes)


@settings(max_examples=200, deadline=None)
@given(campaigns())
def test_breaking_point_brackets_the_real_limit(case):
    ramp, limit = case
    campaign = _run(ramp, limit)
    assert campaign.status is CampaignStatus.DONE
    if campaign.breaking_point is None:
        assert campaign.last_healthy < limit
        return
    assert campaign.breaking_point >= limit
    if campaign.last_healthy is not None:
        assert campaign.last_healthy < limit
        assert campaign.last_healthy < campaign.breaking_point


@settings(max_examples=50, deadline=None)
@given(campaigns())
def test_same_outcomes_same_campaign(case):
    ramp, limit = case
    first = _run(ramp, limit)
    second = _run(ramp, limit)
    assert first.rates == second.rates
    assert first.breaking_point == second.breaking_point
    assert first.last_healthy == second.last_healthy
