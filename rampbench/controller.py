"""Ramp controller: decides which rate to run next and when to stop.

The controller is a small state machine. Each state is a frozen dataclass
carrying only what that phase needs, and ``advance`` maps (state, latest
verdict) to the next state without side effects:

    Ramping  --healthy, next <= max-->  Ramping
    Ramping  --healthy, next >  max-->  Done (no breaking point)
    Ramping  --not healthy--------->  Refining | Done
    Refining --interval <= resolution or budget spent-->  Done
    any      --engine error or cancellation-->  Incomplete

``RampController`` drives the machine against a Runner and records every
step in a Campaign.
"""

import logging
import time
from dataclasses import dataclass
from typing import Callable, List, Optional, Union

from rampbench.classifier import classify
from rampbench.errors import EngineError
from rampbench.models import (
    Campaign,
    CampaignStatus,
    CampaignStep,
    Phase,
    RampMode,
    RampSettings,
    RunConfig,
    Thresholds,
    Verdict,
)
from rampbench.runner import Runner

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Ramping:
    rate: int
    last_healthy: Optional[int] = None


@dataclass(frozen=True)
class Refining:
    low: int  # highest rate known healthy
    high: int  # lowest rate known not healthy
    iterations: int = 0


@dataclass(frozen=True)
class Done:
    breaking_point: Optional[int]
    last_healthy: Optional[int]


@dataclass(frozen=True)
class Incomplete:
    reason: str


State = Union[Ramping, Refining, Done, Incomplete]


def initial_state(settings: RampSettings) -> Ramping:
    return Ramping(rate=settings.start_rate)


def next_rate(state: State) -> Optional[int]:
    """Rate to run next in ``state``, or None once the campaign has ended."""
    if isinstance(state, Ramping):
        return state.rate
    if isinstance(state, Refining):
        return (state.low + state.high) // 2
    return None


def advance(state: State, settings: RampSettings, rate: int, verdict: Verdict) -> State:
    """Apply the verdict of a run at ``rate`` and return the next state."""
    if isinstance(state, Ramping):
        return _advance_ramping(state, settings, rate, verdict)
    if isinstance(state, Refining):
        return _advance_refining(state, settings, rate, verdict)
    return state


def step_rate(rate: int, settings: RampSettings) -> int:
    if settings.mode is RampMode.EXPONENTIAL:
        return rate * 2
    return rate + settings.step


def planned_rates(settings: RampSettings) -> List[int]:
    """The ramp sequence that would run if every step stays healthy."""
    rates = []
    current = settings.start_rate
    while current <= settings.max_rate:
        rates.append(current)
        current = step_rate(current, settings)
    return rates


class RampController:
    """Run a campaign against a Runner, one blocking run at a time.

    Args:
        runner: Executes a single RunConfig.
        settings: Ramp and refinement parameters.
        thresholds: Limits used to classify each run.
        should_cancel: Polled between runs; returning True ends the
            campaign as Incomplete.
        on_step: Called with each recorded CampaignStep.
        sleep: Used for the cooldown between steps.
    """

    def __init__(
        self,
        runner: Runner,
        settings: RampSettings,
        thresholds: Thresholds,
        should_cancel: Optional[Callable[[], bool]] = None,
        on_step: Optional[Callable[[CampaignStep], None]] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.runner = runner
        self.settings = settings
        self.thresholds = thresholds
        self.should_cancel = should_cancel or (lambda: False)
        self.on_step = on_step
        self.sleep = sleep

    def run(self) -> Campaign:
        """Execute the campaign until it is Done or Incomplete.

        Engine errors, cancellation and an interrupt during a run never
        discard data: the campaign is returned with every step recorded
        so far.
        """
        campaign = Campaign(url=self.settings.url)
        state: State = initial_state(self.settings)

        if self.settings.warmup_seconds > 0:
            state = self._warmup(state)

        while True:
            rate = next_rate(state)
            if rate is None:
                break

            if campaign.steps and self.settings.cooldown_seconds > 0:
                self.sleep(self.settings.cooldown_seconds)
            if self.should_cancel():
                logger.warning("campaign cancelled before run at %d req/s", rate)
                state = Incomplete("cancelled by user")
                break

            phase = Phase.REFINING if isinstance(state, Refining) else Phase.RAMPING
            config = self._run_config(rate)
            try:
                result = self.runner.execute(config)
            except EngineError as exc:
                logger.error("run at %d req/s failed: %s", rate, exc)
                state = Incomplete(f"run at {rate} req/s failed: {exc}")
                break
            except KeyboardInterrupt:
                logger.warning("campaign aborted during run at %d req/s", rate)
                state = Incomplete(f"aborted by user during run at {rate} req/s")
                break

            verdict = classify(result, self.thresholds)
            step = CampaignStep(config=config, result=result, verdict=verdict, phase=phase)
            campaign.steps.append(step)
            self._record(campaign, state, rate, verdict)
            logger.info(
                "%s %d req/s: %s (%s)",
                phase.value, rate, verdict.health.value, verdict.reason.value,
            )
            if self.on_step is not None:
                self.on_step(step)

            state = advance(state, self.settings, rate, verdict)

        return _finalize(campaign, state)

    def _run_config(self, rate: int, duration: Optional[int] = None) -> RunConfig:
        return RunConfig(
            url=self.settings.url,
            duration_seconds=duration or self.settings.duration_seconds,
            concurrency=self.settings.concurrency,
            rate=rate,
        )

    def _warmup(self, state: State) -> State:
        config = self._run_config(self.settings.start_rate, self.settings.warmup_seconds)
        logger.info(
            "warming up for %ds at %d req/s", config.duration_seconds, config.rate
        )
        try:
            self.runner.execute(config)
        except EngineError as exc:
            logger.error("warmup failed: %s", exc)
            return Incomplete(f"warmup failed: {exc}")
        except KeyboardInterrupt:
            logger.warning("campaign aborted during warmup")
            return Incomplete("aborted by user during warmup")
        return state

    @staticmethod
    def _record(campaign: Campaign, state: State, rate: int, verdict: Verdict) -> None:
        if verdict.is_healthy:
            campaign.last_healthy = rate
            return
        if isinstance(state, Ramping):
            campaign.first_broken = rate
        campaign.break_verdict = verdict


# -- internal helpers ---------------------------------------------------------


def _advance_ramping(
    state: Ramping, settings: RampSettings, rate: int, verdict: Verdict
) -> State:
    if verdict.is_healthy:
        following = step_rate(rate, settings)
        if following > settings.max_rate:
            return Done(breaking_point=None, last_healthy=rate)
        return Ramping(rate=following, last_healthy=rate)

    low = state.last_healthy
    if settings.refine and low is not None and _needs_narrowing(settings, low, rate, 0):
        return Refining(low=low, high=rate)
    return Done(breaking_point=rate, last_healthy=low)


def _advance_refining(
    state: Refining, settings: RampSettings, rate: int, verdict: Verdict
) -> State:
    if verdict.is_healthy:
        low, high = rate, state.high
    else:
        low, high = state.low, rate
    iterations = state.iterations + 1
    if _needs_narrowing(settings, low, high, iterations):
        return Refining(low=low, high=high, iterations=iterations)
    return Done(breaking_point=high, last_healthy=low)


def _needs_narrowing(settings: RampSettings, low: int, high: int, iterations: int) -> bool:
    # An interval of width 1 has no integer rate strictly inside it.
    return (
        high - low > max(settings.resolution, 1)
        and iterations < settings.max_refinement_iterations
    )


def _finalize(campaign: Campaign, state: State) -> Campaign:
    if isinstance(state, Done):
        campaign.status = CampaignStatus.DONE
        campaign.breaking_point = state.breaking_point
        campaign.last_healthy = state.last_healthy
    else:
        campaign.status = CampaignStatus.INCOMPLETE
        campaign.failure = state.reason
    return campaign
