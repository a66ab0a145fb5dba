"""CLI entry point for rampbench."""

import logging
import signal
import sys

import click

from rampbench.classifier import classify
from rampbench.controller import RampController, planned_rates
from rampbench.errors import (
    EngineUnavailable,
    InsufficientData,
    InvalidConfiguration,
    MalformedOutput,
)
from rampbench.estimator import estimate
from rampbench.evidence import append_event, create_event
from rampbench.graph import render_session
from rampbench.loader import build_campaign_config, load_campaign_config, read_raw_config
from rampbench.models import Campaign, CampaignConfig, Thresholds
from rampbench.output import save_report, unique_report_paths
from rampbench.report import assemble_session, status_label, step_row, table_header
from rampbench.runner import OhaRunner, load_oha_output


class _CancelFlag:
    """Set by SIGINT; the controller polls it between runs."""

    def __init__(self):
        self.cancelled = False

    def __call__(self) -> bool:
        return self.cancelled

    def handle(self, signum, frame):
        if self.cancelled:
            raise KeyboardInterrupt
        self.cancelled = True
        click.echo(
            "\nCancelling after the current run finishes (Ctrl+C again to stop it now)...",
            err=True,
        )


@click.group()
@click.option("-v", "--verbose", is_flag=True, help="Log engine invocations and state changes.")
def main(verbose):
    """rampbench -- ramp request rate until an HTTP endpoint breaks."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@main.command()
@click.option("--config", "config_path", default=None, type=click.Path(exists=True),
              help="Campaign configuration file (YAML or JSON). Flags override it.")
@click.option("-u", "--url", "urls", multiple=True,
              help="Target URL, repeatable to test several targets in sequence.")
@click.option("-m", "--method", default=None, help="HTTP method (default GET).")
@click.option("-b", "--body", default=None, help="Request body (for POST, PUT, PATCH).")
@click.option("-H", "--header", "headers", multiple=True, help="Extra header, repeatable.")
@click.option("--user-agent", default=None, help="User-Agent header value.")
@click.option("--auth-type", default=None,
              type=click.Choice(["none", "basic", "bearer", "header"]))
@click.option("--auth-user", default=None, help="Username for basic auth.")
@click.option("--auth-pass", default=None, help="Password for basic auth.")
@click.option("--auth-token", default=None, help="Token for bearer auth.")
@click.option("--auth-header", default=None, help='Custom auth header, e.g. "X-API-Key: secret".')
@click.option("--mode", default=None, type=click.Choice(["linear", "exponential"]))
@click.option("--start-rate", default=None, type=int, help="First rate to run (req/s).")
@click.option("--max-rate", default=None, type=int, help="Highest rate to ramp to (req/s).")
@click.option("--step", default=None, type=int, help="Linear ramp increment (req/s).")
@click.option("-d", "--duration", default=None, type=int, help="Seconds per step.")
@click.option("-c", "--connections", default=None, type=int, help="Concurrent connections.")
@click.option("--max-error-rate", default=None, type=float,
              help="Error rate (%) above which a step is broken.")
@click.option("--max-p99", default=None, type=float,
              help="p99 latency (ms) above which a step is degraded.")
@click.option("--max-rate-limited", default=None, type=float,
              help="Share of 429 responses (%) above which a step is broken.")
@click.option("--min-throughput", default=None, type=float,
              help="Achieved/offered rate (%) below which a step is degraded.")
@click.option("--refine/--no-refine", default=None,
              help="Bisect between the last healthy and first failing rate.")
@click.option("--resolution", default=None, type=int, help="Refinement precision (req/s).")
@click.option("--max-refine-iterations", default=None, type=int)
@click.option("--requests-per-user", default=None, type=float,
              help="Average requests per user per day, for the DAU estimate.")
@click.option("--warmup", default=None, type=int, help="Warm-up seconds before the first step.")
@click.option("--cooldown", default=None, type=int, help="Seconds to pause between steps.")
@click.option("-o", "--output-dir", default=None, type=click.Path(),
              help="Directory for the text report and graph.")
@click.option("-n", "--name", default=None, help="Base file name for the report.")
@click.option("--log", "log_path", default=None, type=click.Path(),
              help="Append a campaign summary to this JSONL history log.")
@click.option("--engine", default="oha", show_default=True, help="Path to the oha binary.")
def run(config_path, log_path, engine, **flags):
    """Ramp the offered rate until each target breaks, then report capacity."""
    try:
        raw = read_raw_config(config_path) if config_path else {}
        _apply_flags(raw, flags)
        config = build_campaign_config(raw)
    except InvalidConfiguration as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(1)

    runner = OhaRunner(config.request, binary=engine)
    try:
        runner.check_installed()
    except EngineUnavailable as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(1)

    urls = config.targets
    ramp = config.ramp
    if len(urls) == 1:
        click.echo(f"Target:  {urls[0]}")
    else:
        click.echo(f"Targets: {', '.join(urls)}")
    click.echo(
        f"Range:   {ramp.start_rate} -> {ramp.max_rate} req/s "
        f"({ramp.mode.value}, {ramp.duration_seconds}s per step)"
    )

    outcomes = []
    cancel = _CancelFlag()
    previous_handler = signal.signal(signal.SIGINT, cancel.handle)
    try:
        for index, url in enumerate(urls, 1):
            click.echo("")
            if len(urls) > 1:
                click.echo(f"[{index}/{len(urls)}] {url}")
            for line in table_header():
                click.echo(line)
            controller = RampController(
                runner,
                config.ramp_for(url),
                config.thresholds,
                should_cancel=cancel,
                on_step=lambda step: click.echo(step_row(step)),
            )
            campaign = controller.run()
            outcomes.append((campaign, _estimate_or_warn(campaign, config)))
            if cancel():
                break
    finally:
        signal.signal(signal.SIGINT, previous_handler)

    report = assemble_session(outcomes, config)
    click.echo("")
    click.echo(report.text, nl=False)

    if config.report_dir:
        txt_path, png_path = unique_report_paths(
            config.report_dir, config.report_name or "rampbench"
        )
        save_report(txt_path, report.text)
        click.echo(f"Report saved to: {txt_path}")
        if any(report.series_by_url.values()):
            try:
                render_session(report.series_by_url, png_path, thresholds=config.thresholds)
                click.echo(f"Graph saved to: {png_path}")
            except (OSError, ValueError) as exc:
                click.echo(f"Warning: failed to save graph: {exc}", err=True)

    if log_path:
        for campaign, business in outcomes:
            append_event(create_event(campaign, business), log_path)
        click.echo(f"Campaign logged to {log_path}")

    skipped = len(urls) - len(outcomes)
    if skipped:
        click.echo(f"Warning: {skipped} target(s) not run after cancellation", err=True)
    if skipped or any(campaign.is_incomplete for campaign, _ in outcomes):
        sys.exit(1)


@main.command("classify")
@click.option("--output", "output_path", required=True, type=click.Path(exists=True),
              help="Saved `oha --output-format json` output.")
@click.option("--rate", required=True, type=int, help="Rate the run was offered at (req/s).")
@click.option("--max-error-rate", default=5.0, show_default=True, type=float, help="Percent.")
@click.option("--max-p99", default=3000.0, show_default=True, type=float, help="Milliseconds.")
@click.option("--max-rate-limited", default=5.0, show_default=True, type=float, help="Percent.")
def classify_cmd(output_path, rate, max_error_rate, max_p99, max_rate_limited):
    """Classify a single saved engine run against thresholds."""
    try:
        result = load_oha_output(output_path, rate)
    except MalformedOutput as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(1)

    thresholds = Thresholds(
        max_error_rate=max_error_rate / 100,
        max_p99_ms=max_p99,
        max_rate_limited_fraction=max_rate_limited / 100,
    )
    verdict = classify(result, thresholds)
    click.echo(f"Status: {status_label(verdict)} ({verdict.health.value})")
    click.echo(f"Reason: {verdict.reason.value}")
    if verdict.detail:
        click.echo(verdict.detail)
    click.echo(
        f"Requests: {result.total_requests} total, {result.successful} ok, "
        f"{result.errors} errors, {result.rate_limited} rate limited"
    )


@main.command("check-config")
@click.option("--config", "config_path", required=True, type=click.Path(exists=True))
def check_config(config_path):
    """Validate a configuration file and show the planned ramp."""
    try:
        config = load_campaign_config(config_path)
    except InvalidConfiguration as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(1)

    rates = planned_rates(config.ramp)
    click.echo(f"Configuration OK: {', '.join(config.targets)}")
    click.echo(f"Planned rates ({len(rates)} steps): {', '.join(str(r) for r in rates)}")
    refine = "on" if config.ramp.refine else "off"
    click.echo(f"Refinement: {refine} (resolution {config.ramp.resolution} req/s)")


# -- internal helpers ---------------------------------------------------------


def _estimate_or_warn(campaign: Campaign, config: CampaignConfig):
    try:
        return estimate(campaign, config.estimator)
    except InsufficientData as exc:
        click.echo(f"Warning: {exc}", err=True)
        return None


_PERCENT_FLAGS = {
    "max_error_rate": ("thresholds", "max_error_rate"),
    "max_rate_limited": ("thresholds", "max_rate_limited_fraction"),
    "min_throughput": ("thresholds", "min_throughput_ratio"),
}

_FLAG_KEYS = {
    "method": ("target", "method"),
    "body": ("target", "body"),
    "user_agent": ("target", "user_agent"),
    "mode": ("ramp", "mode"),
    "start_rate": ("ramp", "start_rate"),
    "max_rate": ("ramp", "max_rate"),
    "step": ("ramp", "step"),
    "duration": ("ramp", "duration_seconds"),
    "connections": ("ramp", "concurrency"),
    "warmup": ("ramp", "warmup_seconds"),
    "cooldown": ("ramp", "cooldown_seconds"),
    "max_p99": ("thresholds", "max_p99_ms"),
    "refine": ("refinement", "enabled"),
    "resolution": ("refinement", "resolution"),
    "max_refine_iterations": ("refinement", "max_iterations"),
    "requests_per_user": ("business", "requests_per_user_per_day"),
    "output_dir": ("report", "dir"),
    "name": ("report", "name"),
}

_AUTH_FLAGS = {
    "auth_type": "type",
    "auth_user": "username",
    "auth_pass": "password",
    "auth_token": "token",
    "auth_header": "header",
}


def _section(raw: dict, key: str) -> dict:
    value = raw.get(key)
    if value is None:
        value = raw[key] = {}
    elif not isinstance(value, dict):
        # Left in place for build_campaign_config to reject.
        return {}
    return value


def _apply_flags(raw: dict, flags: dict) -> None:
    """Overlay explicitly given command-line flags onto a raw config dict."""
    if flags.get("urls"):
        target = _section(raw, "target")
        target.pop("url", None)
        target["urls"] = list(flags["urls"])
    for flag, (section, key) in _FLAG_KEYS.items():
        if flags.get(flag) is not None:
            _section(raw, section)[key] = flags[flag]
    for flag, (section, key) in _PERCENT_FLAGS.items():
        if flags.get(flag) is not None:
            _section(raw, section)[key] = flags[flag] / 100
    if flags.get("headers"):
        target = _section(raw, "target")
        target["headers"] = list(target.get("headers") or []) + list(flags["headers"])
    for flag, key in _AUTH_FLAGS.items():
        if flags.get(flag) is not None:
            _section(_section(raw, "target"), "auth")[key] = flags[flag]


if __name__ == "__main__":
    main()
