"""Classify a single run result against the campaign thresholds."""

from rampbench.models import Health, Reason, RunResult, Thresholds, Verdict

# Fractions of a threshold above which a healthy run is flagged as approaching it.
ERROR_WARNING_FRACTION = 0.5
LATENCY_WARNING_FRACTION = 0.7

# Status a WAF or security layer answers with when it starts rejecting traffic.
BLOCKED_STATUS = 403


def classify(result: RunResult, thresholds: Thresholds) -> Verdict:
    """Evaluate one RunResult and return its Verdict.

    Rules are checked in priority order and the first match wins: rate
    limiting, then errors, then p99 latency, then (when configured)
    throughput. A run that issued no requests at all is Broken with
    ``error-rate-exceeded``. An error-rate break where 403 is the most
    common error status is marked ``blocked``.

    Args:
        result: Normalized result of one engine run.
        thresholds: Limits the target must stay within.

    Returns:
        The Verdict for this run.
    """
    if result.total_requests == 0:
        return Verdict(
            health=Health.BROKEN,
            reason=Reason.ERROR_RATE,
            detail="no requests completed",
        )

    limited = result.rate_limited_rate
    if limited > thresholds.max_rate_limited_fraction:
        return Verdict(
            health=Health.BROKEN,
            reason=Reason.RATE_LIMITED,
            detail=(
                f"rate limited by server ({limited * 100:.1f}% of requests, "
                f"threshold: {thresholds.max_rate_limited_fraction * 100:.1f}%)"
            ),
        )

    error_rate = result.error_rate
    if error_rate > thresholds.max_error_rate:
        blocked = _dominant_error_code(result) == BLOCKED_STATUS
        prefix = "blocked (403), " if blocked else ""
        return Verdict(
            health=Health.BROKEN,
            reason=Reason.ERROR_RATE,
            blocked=blocked,
            detail=(
                f"{prefix}error rate exceeded threshold ({error_rate * 100:.1f}%, "
                f"threshold: {thresholds.max_error_rate * 100:.1f}%)"
            ),
        )

    if result.p99_ms > thresholds.max_p99_ms:
        return Verdict(
            health=Health.DEGRADED,
            reason=Reason.LATENCY,
            detail=(
                f"p99 latency exceeded threshold ({result.p99_ms:.0f} ms, "
                f"threshold: {thresholds.max_p99_ms:.0f} ms)"
            ),
        )

    ratio = _throughput_ratio(result)
    if (
        thresholds.min_throughput_ratio is not None
        and ratio is not None
        and ratio < thresholds.min_throughput_ratio
    ):
        return Verdict(
            health=Health.DEGRADED,
            reason=Reason.THROUGHPUT,
            detail=f"throughput degradation ({ratio * 100:.1f}% of target)",
        )

    approaching = (
        error_rate > thresholds.max_error_rate * ERROR_WARNING_FRACTION
        or result.p99_ms > thresholds.max_p99_ms * LATENCY_WARNING_FRACTION
    )
    return Verdict(health=Health.HEALTHY, approaching=approaching)


def _throughput_ratio(result: RunResult):
    # Engines that do not report achieved throughput leave actual_rate at 0.
    if result.actual_rate <= 0 or result.rate <= 0:
        return None
    return result.actual_rate / result.rate


def _dominant_error_code(result: RunResult):
    if not result.error_status_codes:
        return None
    code, _count = max(result.error_status_codes, key=lambda item: item[1])
    return code
