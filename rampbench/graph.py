"""Render campaign series to PNG with matplotlib."""

from typing import Dict, List, Optional

import matplotlib

matplotlib.use("Agg")  # headless backend, no display needed

import matplotlib.pyplot as plt  # noqa: E402

from rampbench.models import SeriesPoint, Thresholds  # noqa: E402

ERROR_COLOR = "#ef4444"
P99_COLOR = "#3b82f6"

# One color per target when a session covers several URLs.
TARGET_COLORS = ["#ef4444", "#3b82f6", "#10b981", "#f59e0b", "#8b5cf6", "#ec4899"]

# Reference error-rate levels drawn behind the data (percent, label).
ERROR_REFERENCE_LINES = [
    (0.1, "0.1% (Payment)"),
    (0.5, "0.5% (Core)"),
    (1.0, "1% (APIs)"),
    (2.0, "2% (Non-critical)"),
]


def render_series(
    series: List[SeriesPoint],
    path: str,
    thresholds: Optional[Thresholds] = None,
    title: str = "Error rate and p99 latency by offered rate",
) -> str:
    """Draw error rate (left axis) and p99 latency (right axis) against rate.

    Args:
        series: Rate-ordered points from ``report.build_series``.
        path: Destination PNG path.
        thresholds: When given, the p99 and error-rate limits are drawn too.
        title: Figure title.

    Returns:
        The path written.
    """
    if not series:
        raise ValueError("cannot render an empty series")
    return _render({"": series}, path, thresholds, title)


def render_session(
    series_by_url: Dict[str, List[SeriesPoint]],
    path: str,
    thresholds: Optional[Thresholds] = None,
    title: str = "Error rate and p99 latency by offered rate",
) -> str:
    """Like ``render_series``, with one error line and one p99 line per URL.

    Targets without any recorded step are left out; ValueError is raised
    when none is left.
    """
    drawable = {url: series for url, series in series_by_url.items() if series}
    if not drawable:
        raise ValueError("cannot render an empty series")
    if len(drawable) == 1:
        (only,) = drawable.values()
        return render_series(only, path, thresholds, title)
    return _render(drawable, path, thresholds, title)


def _render(
    named: Dict[str, List[SeriesPoint]],
    path: str,
    thresholds: Optional[Thresholds],
    title: str,
) -> str:
    fig, ax_err = plt.subplots(figsize=(12, 6))
    try:
        ax_p99 = ax_err.twinx()
        first_rate = min(series[0].rate for series in named.values())

        for level, label in ERROR_REFERENCE_LINES:
            ax_err.axhline(level, color="#d1d5db", linestyle=":", linewidth=1)
            ax_err.annotate(label, xy=(first_rate, level), fontsize=7, color="#6b7280")

        for i, (url, series) in enumerate(named.items()):
            rates = [p.rate for p in series]
            if url:
                color = TARGET_COLORS[i % len(TARGET_COLORS)]
                err_color = p99_color = color
                err_label, p99_label = f"{url} error %", f"{url} p99"
            else:
                err_color, p99_color = ERROR_COLOR, P99_COLOR
                err_label, p99_label = "Error rate (%)", "p99 latency (ms)"
            ax_err.plot(
                rates, [p.error_rate * 100 for p in series],
                marker="o", color=err_color, label=err_label,
            )
            ax_p99.plot(
                rates, [p.p99_ms for p in series],
                marker="s", linestyle="--", color=p99_color, label=p99_label,
            )

        if thresholds is not None:
            ax_err.axhline(
                thresholds.max_error_rate * 100, color=ERROR_COLOR, linestyle="--",
                linewidth=1, label="Error limit",
            )
            ax_p99.axhline(
                thresholds.max_p99_ms, color=P99_COLOR, linestyle="-.",
                linewidth=1, label="p99 limit",
            )

        ax_err.set_xlabel("Offered rate (req/s)")
        ax_err.set_ylabel("Error rate (%)", color=ERROR_COLOR)
        ax_p99.set_ylabel("p99 latency (ms)", color=P99_COLOR)
        ax_err.set_ylim(bottom=0)
        ax_p99.set_ylim(bottom=0)
        ax_err.set_title(title)
        ax_err.grid(True, color="#e6e6e6")

        handles, labels = ax_err.get_legend_handles_labels()
        more_handles, more_labels = ax_p99.get_legend_handles_labels()
        ax_err.legend(
            handles + more_handles, labels + more_labels, loc="upper left", fontsize=8
        )

        fig.tight_layout()
        fig.savefig(path, dpi=150)
    finally:
        plt.close(fig)
    return path
