"""Load and validate campaign configuration files (YAML or JSON)."""

import json
import os
from typing import List, Optional

import yaml

from rampbench.errors import InvalidConfiguration
from rampbench.models import (
    AuthConfig,
    AuthType,
    CampaignConfig,
    DEFAULT_TIERS,
    EstimatorSettings,
    RampMode,
    RampSettings,
    RequestOptions,
    ScaleTier,
    Thresholds,
)

HTTP_METHODS = ("GET", "POST", "PUT", "PATCH", "DELETE", "HEAD")


def load_campaign_config(path: str) -> CampaignConfig:
    """Load a campaign configuration from a YAML or JSON file.

    Args:
        path: Path to the configuration file.

    Returns:
        A validated CampaignConfig instance.

    Raises:
        InvalidConfiguration: If the file is missing, unreadable, or invalid.
    """
    return build_campaign_config(read_raw_config(path))


def read_raw_config(path: str) -> dict:
    """Read a configuration file into a plain dict without validating it."""
    if not os.path.isfile(path):
        raise InvalidConfiguration(f"config file not found: {path}")

    ext = os.path.splitext(path)[1].lower()
    try:
        with open(path, "r") as f:
            if ext in (".yaml", ".yml"):
                raw = yaml.safe_load(f)
            elif ext == ".json":
                raw = json.load(f)
            else:
                raise InvalidConfiguration(
                    f"unsupported file extension: {ext} (expected .yaml, .yml, or .json)"
                )
    except (yaml.YAMLError, json.JSONDecodeError) as exc:
        raise InvalidConfiguration(f"failed to parse {path}: {exc}") from exc

    if not isinstance(raw, dict):
        raise InvalidConfiguration("config must be a mapping/object at the top level")

    return raw


def build_campaign_config(raw: dict) -> CampaignConfig:
    """Construct and validate a CampaignConfig from a raw dict.

    Every problem found is collected and reported in a single
    InvalidConfiguration, so nothing is run against a half-valid setup.
    """
    errors: List[str] = []

    target = _mapping(raw, "target", errors)
    urls = _parse_urls(target, errors)

    request = _parse_request(target, errors)
    ramp = _parse_ramp(urls[0] if urls else "", _mapping(raw, "ramp", errors), errors)
    _parse_refinement(ramp, _mapping(raw, "refinement", errors), errors)
    thresholds = _parse_thresholds(_mapping(raw, "thresholds", errors), errors)
    estimator = _parse_business(_mapping(raw, "business", errors), errors)
    report = _mapping(raw, "report", errors)
    report_dir = _optional_string(report, "dir", errors, "report")
    report_name = _optional_string(report, "name", errors, "report")

    if errors:
        raise InvalidConfiguration("config validation failed", errors)

    return CampaignConfig(
        ramp=ramp,
        urls=urls,
        thresholds=thresholds,
        estimator=estimator,
        request=request,
        report_dir=report_dir,
        report_name=report_name,
    )


# -- internal helpers ---------------------------------------------------------


def _parse_urls(raw: dict, errors: List[str]) -> List[str]:
    """Collect ``target.url`` and ``target.urls`` into one ordered list."""
    candidates = []
    url = raw.get("url")
    if url is not None:
        if not isinstance(url, str) or not url:
            errors.append("'target.url' must be a non-empty string")
        else:
            candidates.append(("target.url", url))

    listed = raw.get("urls")
    if listed is not None:
        if not isinstance(listed, list) or not listed:
            errors.append("'target.urls' must be a non-empty list of URLs")
        else:
            for i, item in enumerate(listed):
                if not isinstance(item, str) or not item:
                    errors.append(f"'target.urls[{i}]' must be a non-empty string")
                else:
                    candidates.append((f"target.urls[{i}]", item))

    if url is None and listed is None:
        errors.append("'target.url' (or 'target.urls') is required")
        return []

    urls: List[str] = []
    for where, candidate in candidates:
        if not candidate.startswith(("http://", "https://")):
            errors.append(f"'{where}' must start with http:// or https:// (got {candidate!r})")
        elif candidate not in urls:
            urls.append(candidate)
    return urls


def _optional_string(raw: dict, key: str, errors: List[str], where: str) -> Optional[str]:
    value = raw.get(key)
    if value is None:
        return None
    if not isinstance(value, str) or not value.strip():
        errors.append(f"'{where}.{key}' must be a non-empty string (got {value!r})")
        return None
    return value


def _mapping(raw: dict, key: str, errors: List[str]) -> dict:
    value = raw.get(key)
    if value is None:
        return {}
    if not isinstance(value, dict):
        errors.append(f"'{key}' must be a mapping")
        return {}
    return value


def _is_number(value) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _positive_int(raw: dict, key: str, default: int, errors: List[str], where: str) -> int:
    value = raw.get(key, default)
    if not isinstance(value, int) or isinstance(value, bool) or value <= 0:
        errors.append(f"'{where}.{key}' must be a positive integer (got {value!r})")
        return default
    return value


def _non_negative_int(raw: dict, key: str, errors: List[str], where: str) -> int:
    value = raw.get(key, 0)
    if not isinstance(value, int) or isinstance(value, bool) or value < 0:
        errors.append(f"'{where}.{key}' must be a non-negative integer (got {value!r})")
        return 0
    return value


def _fraction(raw: dict, key: str, default: Optional[float], errors: List[str]) -> Optional[float]:
    value = raw.get(key, default)
    if value is None:
        return None
    if not _is_number(value) or not 0 <= value <= 1:
        errors.append(f"'thresholds.{key}' must be a fraction between 0 and 1 (got {value!r})")
        return default
    return float(value)


def _parse_request(raw: dict, errors: List[str]) -> RequestOptions:
    defaults = RequestOptions()
    method = str(raw.get("method", defaults.method)).upper()
    if method not in HTTP_METHODS:
        errors.append(f"'target.method' must be one of {', '.join(HTTP_METHODS)}")

    headers = raw.get("headers", [])
    if not isinstance(headers, list) or not all(isinstance(h, str) for h in headers):
        errors.append("'target.headers' must be a list of 'Name: value' strings")
        headers = []
    for header in headers:
        if ":" not in header:
            errors.append(f"header {header!r} must look like 'Name: value'")

    body = raw.get("body")
    if body is not None and not isinstance(body, str):
        body = json.dumps(body)

    return RequestOptions(
        method=method,
        body=body,
        headers=headers,
        user_agent=str(raw.get("user_agent", defaults.user_agent)),
        auth=_parse_auth(raw.get("auth"), errors),
    )


def _parse_auth(raw, errors: List[str]) -> AuthConfig:
    if raw is None:
        return AuthConfig()
    if not isinstance(raw, dict):
        errors.append("'target.auth' must be a mapping")
        return AuthConfig()
    try:
        auth_type = AuthType(str(raw.get("type", "none")).lower())
    except ValueError:
        errors.append(
            "'target.auth.type' must be one of "
            + ", ".join(t.value for t in AuthType)
        )
        return AuthConfig()

    auth = AuthConfig(
        auth_type=auth_type,
        username=raw.get("username"),
        password=raw.get("password"),
        token=raw.get("token"),
        custom_header=raw.get("header"),
    )
    if auth_type is AuthType.BASIC and not auth.username:
        errors.append("'target.auth.username' is required for basic auth")
    if auth_type is AuthType.BEARER and not auth.token:
        errors.append("'target.auth.token' is required for bearer auth")
    if auth_type is AuthType.HEADER and (not auth.custom_header or ":" not in auth.custom_header):
        errors.append("'target.auth.header' must look like 'Name: value'")
    return auth


def _parse_ramp(url: str, raw: dict, errors: List[str]) -> RampSettings:
    defaults = RampSettings(url=url)
    mode_text = str(raw.get("mode", defaults.mode.value)).lower()
    try:
        mode = RampMode(mode_text)
    except ValueError:
        errors.append("'ramp.mode' must be 'linear' or 'exponential'")
        mode = defaults.mode

    start = _positive_int(raw, "start_rate", defaults.start_rate, errors, "ramp")
    max_rate = _positive_int(raw, "max_rate", defaults.max_rate, errors, "ramp")
    if start > max_rate:
        errors.append(f"'ramp.start_rate' ({start}) must not exceed 'ramp.max_rate' ({max_rate})")
    step = _positive_int(raw, "step", defaults.step, errors, "ramp")

    return RampSettings(
        url=url,
        start_rate=start,
        step=step,
        max_rate=max_rate,
        mode=mode,
        duration_seconds=_positive_int(
            raw, "duration_seconds", defaults.duration_seconds, errors, "ramp"
        ),
        concurrency=_positive_int(raw, "concurrency", defaults.concurrency, errors, "ramp"),
        warmup_seconds=_non_negative_int(raw, "warmup_seconds", errors, "ramp"),
        cooldown_seconds=_non_negative_int(raw, "cooldown_seconds", errors, "ramp"),
    )


def _parse_refinement(ramp: RampSettings, raw: dict, errors: List[str]) -> None:
    enabled = raw.get("enabled", ramp.refine)
    if not isinstance(enabled, bool):
        errors.append("'refinement.enabled' must be true or false")
        enabled = ramp.refine
    ramp.refine = enabled
    ramp.resolution = _positive_int(raw, "resolution", ramp.resolution, errors, "refinement")
    ramp.max_refinement_iterations = _positive_int(
        raw, "max_iterations", ramp.max_refinement_iterations, errors, "refinement"
    )


def _parse_thresholds(raw: dict, errors: List[str]) -> Thresholds:
    defaults = Thresholds()
    max_p99 = raw.get("max_p99_ms", defaults.max_p99_ms)
    if not _is_number(max_p99) or max_p99 <= 0:
        errors.append(f"'thresholds.max_p99_ms' must be a positive number (got {max_p99!r})")
        max_p99 = defaults.max_p99_ms
    return Thresholds(
        max_error_rate=_fraction(raw, "max_error_rate", defaults.max_error_rate, errors),
        max_p99_ms=float(max_p99),
        max_rate_limited_fraction=_fraction(
            raw, "max_rate_limited_fraction", defaults.max_rate_limited_fraction, errors
        ),
        min_throughput_ratio=_fraction(raw, "min_throughput_ratio", None, errors),
    )


def _parse_business(raw: dict, errors: List[str]) -> EstimatorSettings:
    per_user = raw.get("requests_per_user_per_day", EstimatorSettings().requests_per_user_per_day)
    if not _is_number(per_user) or per_user <= 0:
        errors.append(
            f"'business.requests_per_user_per_day' must be a positive number (got {per_user!r})"
        )
        per_user = EstimatorSettings().requests_per_user_per_day

    tiers_raw = raw.get("tiers")
    if tiers_raw is None:
        tiers = list(DEFAULT_TIERS)
    else:
        tiers = _parse_tiers(tiers_raw, errors)

    return EstimatorSettings(requests_per_user_per_day=float(per_user), tiers=tiers)


def _parse_tiers(raw, errors: List[str]) -> List[ScaleTier]:
    if not isinstance(raw, list) or not raw:
        errors.append("'business.tiers' must be a non-empty list")
        return list(DEFAULT_TIERS)
    tiers = []
    for i, entry in enumerate(raw):
        if not isinstance(entry, dict):
            errors.append(f"business.tiers[{i}] must be a mapping")
            continue
        bound = entry.get("min_dau")
        label = entry.get("label")
        if not _is_number(bound) or bound < 0:
            errors.append(f"business.tiers[{i}].min_dau must be a non-negative number")
            continue
        if not label or not isinstance(label, str):
            errors.append(f"business.tiers[{i}].label is required")
            continue
        tiers.append(ScaleTier(lower_bound=int(bound), label=label))

    bounds = [t.lower_bound for t in tiers]
    if len(set(bounds)) != len(bounds):
        errors.append("business.tiers must not repeat a min_dau value")
    return sorted(tiers, key=lambda t: t.lower_bound)
