"""Data models for ramp campaigns, run results, verdicts, and estimates."""

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Dict, List, Optional, Tuple

from rampbench.errors import InvalidConfiguration, MalformedOutput

# Grace period added to the step duration before an engine run counts as hung.
ENGINE_GRACE_SECONDS = 30.0


class Health(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    BROKEN = "broken"


class Reason(str, Enum):
    NONE = "none"
    RATE_LIMITED = "rate-limited-exceeded"
    ERROR_RATE = "error-rate-exceeded"
    LATENCY = "latency-exceeded"
    THROUGHPUT = "throughput-degraded"


class RampMode(str, Enum):
    LINEAR = "linear"
    EXPONENTIAL = "exponential"


class Phase(str, Enum):
    RAMPING = "ramping"
    REFINING = "refining"


class CampaignStatus(str, Enum):
    DONE = "done"
    INCOMPLETE = "incomplete"


class AuthType(str, Enum):
    NONE = "none"
    BASIC = "basic"
    BEARER = "bearer"
    HEADER = "header"


@dataclass(frozen=True)
class RunConfig:
    """Input for a single engine run.

    ``timeout_seconds`` defaults to the duration plus ``ENGINE_GRACE_SECONDS``.
    """

    url: str
    duration_seconds: int
    concurrency: int
    rate: int
    timeout_seconds: Optional[float] = None

    def __post_init__(self):
        problems = []
        if not self.url:
            problems.append("url must be non-empty")
        if self.rate <= 0:
            problems.append(f"rate must be positive (got {self.rate})")
        if self.duration_seconds <= 0:
            problems.append(f"duration must be positive (got {self.duration_seconds})")
        if self.concurrency <= 0:
            problems.append(f"concurrency must be positive (got {self.concurrency})")
        if problems:
            raise InvalidConfiguration("invalid run configuration", problems)
        if self.timeout_seconds is None:
            object.__setattr__(
                self, "timeout_seconds", self.duration_seconds + ENGINE_GRACE_SECONDS
            )


@dataclass
class RunResult:
    rate: int
    total_requests: int
    successful: int
    errors: int
    rate_limited: int
    p50_ms: float
    p90_ms: float
    p99_ms: float
    elapsed_seconds: float
    avg_ms: float = 0.0
    max_ms: float = 0.0
    actual_rate: float = 0.0
    # (status code, count), most common first
    error_status_codes: List[Tuple[int, int]] = field(default_factory=list)

    def __post_init__(self):
        counts = (self.total_requests, self.successful, self.errors, self.rate_limited)
        if any(c < 0 for c in counts):
            raise MalformedOutput(f"negative request count in result: {counts}")
        if self.successful + self.errors + self.rate_limited > self.total_requests:
            raise MalformedOutput(
                "successful + errors + rate-limited exceeds total requests "
                f"({self.successful} + {self.errors} + {self.rate_limited} > "
                f"{self.total_requests})"
            )

    @property
    def error_rate(self) -> float:
        """Fraction of requests that failed; an empty run counts as total failure."""
        if self.total_requests == 0:
            return 1.0
        return self.errors / self.total_requests

    @property
    def rate_limited_rate(self) -> float:
        if self.total_requests == 0:
            return 0.0
        return self.rate_limited / self.total_requests


@dataclass(frozen=True)
class Thresholds:
    max_error_rate: float = 0.05
    max_p99_ms: float = 3000.0
    max_rate_limited_fraction: float = 0.05
    min_throughput_ratio: Optional[float] = None


@dataclass(frozen=True)
class Verdict:
    health: Health
    reason: Reason = Reason.NONE
    detail: str = ""
    approaching: bool = False  # healthy, but close to a threshold
    blocked: bool = False  # error-rate break dominated by 403 responses

    @property
    def is_healthy(self) -> bool:
        return self.health is Health.HEALTHY


@dataclass(frozen=True)
class CampaignStep:
    config: RunConfig
    result: RunResult
    verdict: Verdict
    phase: Phase = Phase.RAMPING

    @property
    def rate(self) -> int:
        return self.config.rate


@dataclass
class Campaign:
    """Every step of one ramp session plus the conclusions drawn from them."""

    url: str
    steps: List[CampaignStep] = field(default_factory=list)
    status: Optional[CampaignStatus] = None
    breaking_point: Optional[int] = None
    last_healthy: Optional[int] = None
    first_broken: Optional[int] = None
    break_verdict: Optional[Verdict] = None
    failure: Optional[str] = None

    @property
    def rates(self) -> List[int]:
        return [s.rate for s in self.steps]

    @property
    def healthy_steps(self) -> List[CampaignStep]:
        return [s for s in self.steps if s.verdict.is_healthy]

    @property
    def total_requests(self) -> int:
        return sum(s.result.total_requests for s in self.steps)

    @property
    def total_seconds(self) -> float:
        return sum(s.result.elapsed_seconds for s in self.steps)

    @property
    def is_incomplete(self) -> bool:
        return self.status is CampaignStatus.INCOMPLETE


@dataclass
class AuthConfig:
    auth_type: AuthType = AuthType.NONE
    username: Optional[str] = None
    password: Optional[str] = None
    token: Optional[str] = None
    custom_header: Optional[str] = None


@dataclass
class RequestOptions:
    """How each request sent by the engine is shaped."""

    method: str = "GET"
    body: Optional[str] = None
    headers: List[str] = field(default_factory=list)
    user_agent: str = "rampbench/0.1.0"
    auth: AuthConfig = field(default_factory=AuthConfig)


@dataclass
class RampSettings:
    url: str
    start_rate: int = 50
    step: int = 50
    max_rate: int = 5000
    mode: RampMode = RampMode.LINEAR
    duration_seconds: int = 30
    concurrency: int = 100
    refine: bool = True
    resolution: int = 10
    max_refinement_iterations: int = 8
    warmup_seconds: int = 0
    cooldown_seconds: int = 0


@dataclass(frozen=True)
class ScaleTier:
    lower_bound: int  # daily active users
    label: str


DEFAULT_TIERS = [
    ScaleTier(0, "Internal"),
    ScaleTier(10_000, "Local"),
    ScaleTier(50_000, "Regional"),
    ScaleTier(250_000, "National"),
    ScaleTier(1_000_000, "Global"),
]


@dataclass
class EstimatorSettings:
    requests_per_user_per_day: float = 50.0
    tiers: List[ScaleTier] = field(default_factory=lambda: list(DEFAULT_TIERS))


@dataclass
class CampaignConfig:
    """Everything one session needs.

    ``ramp.url`` holds the first target; ``urls`` lists every target, in
    the order campaigns are run.
    """

    ramp: RampSettings
    urls: List[str] = field(default_factory=list)
    thresholds: Thresholds = field(default_factory=Thresholds)
    estimator: EstimatorSettings = field(default_factory=EstimatorSettings)
    request: RequestOptions = field(default_factory=RequestOptions)
    report_dir: Optional[str] = None
    report_name: Optional[str] = None

    @property
    def targets(self) -> List[str]:
        return list(self.urls) or [self.ramp.url]

    def ramp_for(self, url: str) -> RampSettings:
        return replace(self.ramp, url=url)


@dataclass
class BusinessEstimate:
    safe_rate: int
    requests_per_day: float
    daily_active_users: float
    tier: Optional[str]
    recommended_rate: int


@dataclass(frozen=True)
class SeriesPoint:
    rate: int
    error_rate: float
    p99_ms: float


@dataclass
class Report:
    text: str
    series: List[SeriesPoint] = field(default_factory=list)  # first target
    series_by_url: Dict[str, List[SeriesPoint]] = field(default_factory=dict)


@dataclass
class EvidenceEvent:
    ts: str
    url: str
    status: str
    breaking_point: Optional[int] = None
    last_healthy: Optional[int] = None
    steps: int = 0
    tier: Optional[str] = None
