"""Shape a finished campaign into a text report and a plottable series.

Nothing here touches the filesystem; see ``rampbench.output`` and
``rampbench.graph`` for writing the results out.
"""

from collections import Counter
from typing import List, Optional, Tuple

from rampbench.models import (
    BusinessEstimate,
    Campaign,
    CampaignConfig,
    CampaignStatus,
    CampaignStep,
    Health,
    Reason,
    Report,
    SeriesPoint,
    Verdict,
)

SEPARATOR = "=" * 79

_ROW = "{:>7} {:>9} {:>8} {:>8} {:>8} {:>8} {:>8} {:>9} {:>7} {:>9}"

_LEGEND = """\
Rate        - Offered rate in requests/second
Actual      - Achieved throughput (lower than offered = saturation)
p50/p90/p99 - Latency percentiles
Err Rate    - Non-2xx/3xx responses (except 429) + connection errors
Phase       - ramping (linear/exponential steps) or refining (bisection)

Status Codes:
  OK    = under every threshold     WARN  = approaching a threshold
  RATE  = rate limited (429)        BREAK = error rate exceeded
  SLOW  = p99 latency exceeded      THRU  = throughput degraded
  BLOCK = error rate exceeded, mostly 403 (WAF or security layer)

Recommended rate is 80% of the safe rate."""


def assemble(
    campaign: Campaign,
    estimate: Optional[BusinessEstimate],
    config: Optional[CampaignConfig] = None,
) -> Report:
    """Build the Report for a single finished campaign.

    Args:
        campaign: A campaign in the Done or Incomplete state.
        estimate: Business estimate, or None when it could not be computed.
        config: Optional configuration echoed in the report header.

    Returns:
        A Report with the text summary and the rate-ordered series.
    """
    return assemble_session([(campaign, estimate)], config)


def assemble_session(
    outcomes: List[Tuple[Campaign, Optional[BusinessEstimate]]],
    config: Optional[CampaignConfig] = None,
) -> Report:
    """Build one Report covering every campaign of a session.

    Each target gets its own step table, results and capacity section.
    Sessions with more than one target also end with a side-by-side
    summary.

    Args:
        outcomes: (campaign, estimate) pairs in the order they were run.
        config: Optional configuration echoed in the report header.
    """
    lines: List[str] = [SEPARATOR, "rampbench - Breaking Point Report", SEPARATOR, ""]
    urls = [campaign.url for campaign, _ in outcomes]
    if len(urls) == 1:
        lines.append(f"Target:       {urls[0]}")
    else:
        lines.append(f"Targets:      {len(urls)} URLs")
        lines.extend(f"              {i}. {url}" for i, url in enumerate(urls, 1))
    if config is not None:
        lines.extend(_config_lines(config))
    lines.append(SEPARATOR)

    for i, (campaign, estimate) in enumerate(outcomes, 1):
        lines.append("")
        if len(outcomes) > 1:
            lines.extend([SEPARATOR, f"[{i}/{len(outcomes)}] {campaign.url}", SEPARATOR, ""])
        lines.extend(table_header())
        lines.extend(step_row(step) for step in campaign.steps)
        lines.append("")
        lines.append("RESULTS:")
        lines.extend(_result_lines(campaign))
        lines.append("")
        lines.append("CAPACITY:")
        lines.extend(_estimate_lines(estimate))

    if len(outcomes) > 1:
        lines.append("")
        lines.append(SEPARATOR)
        lines.append("SUMMARY")
        lines.append(SEPARATOR)
        lines.extend(_summary_lines(outcomes))

    lines.append("")
    lines.append(SEPARATOR)
    lines.append("LEGEND")
    lines.append(SEPARATOR)
    lines.append(_LEGEND)
    lines.append(SEPARATOR)

    series_by_url = {campaign.url: build_series(campaign) for campaign, _ in outcomes}
    first = series_by_url[urls[0]] if urls else []
    return Report(text="\n".join(lines) + "\n", series=first, series_by_url=series_by_url)


def table_header() -> List[str]:
    return [
        _ROW.format(
            "Rate", "Actual", "p50", "p90", "p99", "Max", "Avg", "Err Rate", "Status", "Phase"
        ),
        _ROW.format(*("-" * w for w in (7, 9, 8, 8, 8, 8, 8, 9, 7, 9))),
    ]


def step_row(step: CampaignStep) -> str:
    r = step.result
    return _ROW.format(
        step.rate,
        f"{r.actual_rate:.1f}",
        format_latency(r.p50_ms),
        format_latency(r.p90_ms),
        format_latency(r.p99_ms),
        format_latency(r.max_ms),
        format_latency(r.avg_ms),
        f"{r.error_rate * 100:.2f}%",
        status_label(step.verdict),
        step.phase.value,
    )


def build_series(campaign: Campaign) -> List[SeriesPoint]:
    """(rate, error rate, p99) per step, sorted by rate.

    When a rate was probed more than once the later probe wins.
    """
    by_rate = {}
    for step in campaign.steps:
        by_rate[step.rate] = SeriesPoint(
            rate=step.rate,
            error_rate=step.result.error_rate,
            p99_ms=step.result.p99_ms,
        )
    return [by_rate[rate] for rate in sorted(by_rate)]


def status_label(verdict: Verdict) -> str:
    if verdict.health is Health.HEALTHY:
        return "WARN" if verdict.approaching else "OK"
    return {
        Reason.RATE_LIMITED: "RATE",
        Reason.ERROR_RATE: "BLOCK" if verdict.blocked else "BREAK",
        Reason.LATENCY: "SLOW",
        Reason.THROUGHPUT: "THRU",
    }.get(verdict.reason, "BREAK")


def aggregate_error_codes(campaign: Campaign) -> List[tuple]:
    """HTTP error status counts summed over every step, most common first."""
    counts: Counter = Counter()
    for step in campaign.steps:
        for code, count in step.result.error_status_codes:
            counts[code] += count
    return sorted(counts.items(), key=lambda item: (-item[1], item[0]))


def format_latency(ms: float) -> str:
    if ms == 0.0:
        return "-"
    if ms < 1.0:
        return f"{ms * 1000:.0f}us"
    if ms < 1000.0:
        return f"{ms:.0f}ms"
    return f"{ms / 1000:.1f}s"


def format_number(n: float) -> str:
    return f"{int(round(n)):,}"


def format_duration(seconds: float) -> str:
    seconds = int(round(seconds))
    if seconds < 60:
        return f"{seconds}s"
    if seconds < 3600:
        return f"{seconds // 60}m {seconds % 60}s"
    return f"{seconds // 3600}h {(seconds % 3600) // 60}m"


# -- internal helpers ---------------------------------------------------------


def _config_lines(config: CampaignConfig) -> List[str]:
    ramp = config.ramp
    t = config.thresholds
    refine = f"on (resolution {ramp.resolution} req/s)" if ramp.refine else "off"
    return [
        f"Method:       {config.request.method.upper()}",
        f"Mode:         {ramp.mode.value} ramping, refinement {refine}",
        f"Range:        {ramp.start_rate} -> {ramp.max_rate} req/s",
        f"Duration:     {ramp.duration_seconds}s per step, {ramp.concurrency} connections",
        (
            f"Break when:   error rate > {t.max_error_rate * 100:g}% OR "
            f"429s > {t.max_rate_limited_fraction * 100:g}% OR "
            f"p99 > {t.max_p99_ms:g}ms"
        ),
    ]


def _result_lines(campaign: Campaign) -> List[str]:
    lines = []
    status = campaign.status.value.upper() if campaign.status else "RUNNING"
    lines.append(f"  {'Campaign status:':<20} {status}")

    if campaign.status is CampaignStatus.INCOMPLETE:
        lines.append(f"  {'Stopped because:':<20} {campaign.failure}")

    if campaign.breaking_point is not None:
        reason = campaign.break_verdict.detail if campaign.break_verdict else ""
        lines.append(f"  {'Breaking point:':<20} {campaign.breaking_point} req/s ({reason})")
    elif campaign.status is CampaignStatus.DONE:
        lines.append(
            f"  {'Breaking point:':<20} Not reached (consider increasing max rate)"
        )
    else:
        lines.append(f"  {'Breaking point:':<20} Unknown (campaign did not finish)")

    if campaign.first_broken is not None and campaign.first_broken != campaign.breaking_point:
        lines.append(f"  {'First failing step:':<20} {campaign.first_broken} req/s")

    if campaign.last_healthy is not None:
        lines.append(f"  {'Last stable rate:':<20} {campaign.last_healthy} req/s")

    error_codes = aggregate_error_codes(campaign)
    if error_codes:
        codes = ", ".join(f"{code} ({format_number(count)})" for code, count in error_codes)
        lines.append(f"  {'HTTP errors:':<20} {codes}")

    lines.append(f"  {'Steps run:':<20} {len(campaign.steps)}")
    lines.append(f"  {'Total requests:':<20} ~{format_number(campaign.total_requests)}")
    lines.append(f"  {'Total duration:':<20} {format_duration(campaign.total_seconds)}")
    return lines


def _estimate_lines(estimate: Optional[BusinessEstimate]) -> List[str]:
    if estimate is None:
        return ["  Insufficient data: no healthy run to estimate capacity from."]
    return [
        f"  {'Safe rate:':<20} {estimate.safe_rate} req/s",
        f"  {'Recommended rate:':<20} {estimate.recommended_rate} req/s (80% of safe rate)",
        f"  {'Requests per day:':<20} ~{format_number(estimate.requests_per_day)}",
        f"  {'Estimated DAU:':<20} ~{format_number(estimate.daily_active_users)}",
        f"  {'Scale tier:':<20} {estimate.tier or 'unclassified'}",
    ]


_SUMMARY_ROW = "  {:<40} {:>10} {:>9} {:>9}  {}"


def _summary_lines(outcomes: List[Tuple[Campaign, Optional[BusinessEstimate]]]) -> List[str]:
    lines = [_SUMMARY_ROW.format("URL", "Status", "Breaks at", "Stable", "Tier")]
    for campaign, estimate in outcomes:
        status = campaign.status.value.upper() if campaign.status else "RUNNING"
        breaks = "-" if campaign.breaking_point is None else str(campaign.breaking_point)
        stable = "-" if campaign.last_healthy is None else str(campaign.last_healthy)
        tier = (estimate.tier or "unclassified") if estimate else "-"
        lines.append(_SUMMARY_ROW.format(_shorten(campaign.url, 40), status, breaks, stable, tier))
    return lines


def _shorten(url: str, width: int) -> str:
    if len(url) <= width:
        return url
    return url[: width - 3] + "..."
