from dataclasses import dataclass, field

from wasabi_workload.config import AgentSettings, agent_defaults
from wasabi_workload.constants import WorkloadKind


@dataclass(frozen=True, slots=True)
class FundingSpec:
    """How much the process account needs for one iteration.

    threshold: minimum balance to safely run one batch.
    top_up:    amount sent when the balance is below threshold; padded so that later
               iterations rarely need another top-up.
    """

    threshold: int
    top_up: int

    def __post_init__(self) -> None:
        if self.threshold < 0:
            raise ValueError(f"threshold must be non-negative, got {self.threshold}")
        if self.top_up < self.threshold:
            raise ValueError(f"top_up ({self.top_up}) must be >= threshold ({self.threshold})")


@dataclass(frozen=True, slots=True)
class WorkloadDescriptor:
    kind: WorkloadKind
    agent_count: int
    transfers_per_agent: int
    asset_ids: tuple[int, ...] = (0,)
    concurrency: int = 1
    params: AgentSettings = field(default_factory=agent_defaults)

    def __post_init__(self) -> None:
        if self.agent_count < 1:
            raise ValueError(f"agent_count must be positive, got {self.agent_count}")
        if self.transfers_per_agent < 1:
            raise ValueError(f"transfers_per_agent must be positive, got {self.transfers_per_agent}")
        if self.concurrency < 1:
            raise ValueError(f"concurrency must be positive, got {self.concurrency}")
        if not self.asset_ids:
            raise ValueError("at least one asset id is required")


@dataclass(slots=True)
class RunIteration:
    index: int
    started_at: float
    funding_spec: FundingSpec
    finished_at: float | None = None

    @property
    def elapsed(self) -> float | None:
        if self.finished_at is None:
            return None
        return self.finished_at - self.started_at
