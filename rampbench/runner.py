"""Invoke the oha load engine and normalize its JSON output."""

import base64
import json
import logging
import os
import subprocess
import time
from typing import List, Optional, Protocol, Tuple

from rampbench.errors import EngineTimeout, EngineUnavailable, MalformedOutput
from rampbench.models import AuthConfig, AuthType, RequestOptions, RunConfig, RunResult

logger = logging.getLogger(__name__)

INSTALL_INSTRUCTIONS = """oha is not installed.

oha is an HTTP load generator with rate limiting support.

To install oha:

  # Using cargo
  cargo install oha

  # macOS with Homebrew
  brew install oha

  # Arch Linux
  sudo pacman -S oha

For more info, see: https://github.com/hatoo/oha"""


class Runner(Protocol):
    """Anything that can execute one load-test run."""

    def execute(self, config: RunConfig) -> RunResult:
        ...


class OhaRunner:
    """Runs oha as a subprocess, one blocking invocation per call."""

    def __init__(self, options: Optional[RequestOptions] = None, binary: str = "oha"):
        self.options = options or RequestOptions()
        self.binary = binary

    def check_installed(self) -> None:
        """Raise EngineUnavailable unless ``oha --version`` succeeds."""
        try:
            completed = subprocess.run(
                [self.binary, "--version"],
                capture_output=True,
                text=True,
                timeout=10,
                check=False,
            )
        except (OSError, subprocess.TimeoutExpired) as exc:
            raise EngineUnavailable(INSTALL_INSTRUCTIONS) from exc
        if completed.returncode != 0:
            raise EngineUnavailable(INSTALL_INSTRUCTIONS)
        logger.debug("found %s", completed.stdout.strip())

    def build_command(self, config: RunConfig) -> List[str]:
        """Assemble the oha command line for one run."""
        opts = self.options
        cmd = [
            self.binary,
            "-c", str(config.concurrency),
            "-z", f"{config.duration_seconds}s",
            "-q", str(config.rate),
            "--latency-correction",  # avoid coordinated omission
            "-w",  # wait for in-flight requests after the deadline
            "--no-tui",
            "--output-format", "json",
            "-m", opts.method.upper(),
        ]

        if opts.body is not None:
            cmd += ["-d", opts.body]
            if not any(h.lower().startswith("content-type:") for h in opts.headers):
                cmd += ["-H", "Content-Type: application/json"]

        cmd += ["-H", f"User-Agent: {opts.user_agent}"]

        auth_header = auth_header_for(opts.auth)
        if auth_header:
            cmd += ["-H", auth_header]

        for header in opts.headers:
            cmd += ["-H", header]

        cmd.append(config.url)
        return cmd

    def execute(self, config: RunConfig) -> RunResult:
        """Run oha once and parse the result.

        Args:
            config: What to run and for how long.

        Returns:
            The normalized RunResult.

        Raises:
            EngineUnavailable: If oha cannot be started.
            EngineTimeout: If oha does not finish within ``config.timeout_seconds``.
                The process is killed before this is raised.
            MalformedOutput: If oha's output is not the expected JSON.
        """
        cmd = self.build_command(config)
        logger.debug("running %s", " ".join(cmd))
        started = time.monotonic()
        try:
            completed = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                timeout=config.timeout_seconds,
                check=False,
                # keep terminal Ctrl+C away from oha; cancellation happens between runs
                start_new_session=True,
            )
        except subprocess.TimeoutExpired as exc:
            raise EngineTimeout(
                f"oha did not finish within {config.timeout_seconds:.0f}s "
                f"at {config.rate} req/s"
            ) from exc
        except OSError as exc:
            raise EngineUnavailable(f"failed to start {self.binary}: {exc}") from exc
        elapsed = time.monotonic() - started

        try:
            return parse_oha_json(completed.stdout, config.rate, elapsed)
        except MalformedOutput as exc:
            if completed.returncode != 0:
                stderr = completed.stderr.strip()[-500:]
                raise MalformedOutput(
                    f"oha exited with status {completed.returncode}: {stderr}"
                ) from exc
            raise


def auth_header_for(auth: AuthConfig) -> Optional[str]:
    """Return the header line carrying the configured credentials, if any."""
    if auth.auth_type is AuthType.BASIC:
        credentials = f"{auth.username or ''}:{auth.password or ''}"
        encoded = base64.b64encode(credentials.encode("utf-8")).decode("ascii")
        return f"Authorization: Basic {encoded}"
    if auth.auth_type is AuthType.BEARER:
        return f"Authorization: Bearer {auth.token or ''}"
    if auth.auth_type is AuthType.HEADER:
        return auth.custom_header
    return None


def parse_oha_json(output: str, rate: int, elapsed_seconds: float = 0.0) -> RunResult:
    """Parse oha's ``--output-format json`` document into a RunResult.

    Responses with a 2xx/3xx status are successful, 429 responses are
    rate limited, and every other status plus every connection-level error
    counts as an error. Connection-level errors never got a response, so
    they are also added to the request total.

    Args:
        output: Raw stdout of oha.
        rate: The offered rate the run was made at.
        elapsed_seconds: Measured wall-clock time, used when oha omits it.

    Raises:
        MalformedOutput: If the document is missing required sections.
    """
    try:
        raw = json.loads(output)
    except (json.JSONDecodeError, TypeError) as exc:
        raise MalformedOutput(f"engine output is not valid JSON: {exc}") from exc
    if not isinstance(raw, dict):
        raise MalformedOutput("engine output must be a JSON object")

    summary = _section(raw, "summary")
    percentiles = _section(raw, "latencyPercentiles")
    status_codes = _section(raw, "statusCodeDistribution", required=False)
    error_distribution = _section(raw, "errorDistribution", required=False)

    successful = rate_limited = errors = 0
    error_codes: List[Tuple[int, int]] = []
    for code_text, count in status_codes.items():
        code = _as_int(code_text, "status code")
        count = _as_int(count, f"count for status {code}")
        if 200 <= code < 400:
            successful += count
            continue
        if code == 429:
            rate_limited += count
        else:
            errors += count
        error_codes.append((code, count))

    for message, count in error_distribution.items():
        errors += _as_int(count, f"count for error {message!r}")

    error_codes.sort(key=lambda item: item[1], reverse=True)
    total = successful + rate_limited + errors

    total_seconds = summary.get("total")
    if isinstance(total_seconds, (int, float)) and total_seconds > 0:
        elapsed_seconds = float(total_seconds)

    return RunResult(
        rate=rate,
        total_requests=total,
        successful=successful,
        errors=errors,
        rate_limited=rate_limited,
        p50_ms=_seconds_to_ms(percentiles.get("p50")),
        p90_ms=_seconds_to_ms(percentiles.get("p90")),
        p99_ms=_seconds_to_ms(percentiles.get("p99")),
        elapsed_seconds=elapsed_seconds,
        avg_ms=_seconds_to_ms(summary.get("average")),
        max_ms=_seconds_to_ms(summary.get("slowest")),
        actual_rate=float(summary.get("requestsPerSec") or 0.0),
        error_status_codes=error_codes,
    )


def load_oha_output(path: str, rate: int) -> RunResult:
    """Parse a saved oha JSON file, as written by ``oha --output-format json``."""
    if not os.path.isfile(path):
        raise MalformedOutput(f"engine output file not found: {path}")
    try:
        with open(path, "r") as f:
            content = f.read()
    except OSError as exc:
        raise MalformedOutput(f"failed to read {path}: {exc}") from exc
    return parse_oha_json(content, rate)


# -- internal helpers ---------------------------------------------------------


def _section(raw: dict, key: str, required: bool = True) -> dict:
    value = raw.get(key)
    if value is None and not required:
        return {}
    if not isinstance(value, dict):
        raise MalformedOutput(f"engine output is missing the '{key}' object")
    return value


def _as_int(value, what: str) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError) as exc:
        raise MalformedOutput(f"non-numeric {what}: {value!r}") from exc
    if number < 0:
        raise MalformedOutput(f"negative {what}: {value!r}")
    return number


def _seconds_to_ms(value) -> float:
    # oha reports latencies in seconds and uses null when nothing completed.
    if value is None:
        return 0.0
    if not isinstance(value, (int, float)):
        raise MalformedOutput(f"non-numeric latency: {value!r}")
    return float(value) * 1000.0
