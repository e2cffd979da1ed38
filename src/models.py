"""
Data models for the deploy handoff tool.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, FrozenSet, List, Optional, Tuple


class ReplicaPhase(Enum):
    """Lifecycle phase reported for a replica (pod)."""

    PENDING = "Pending"
    RUNNING = "Running"
    SUCCEEDED = "Succeeded"
    FAILED = "Failed"
    UNKNOWN = "Unknown"

    @classmethod
    def from_value(cls, value: Optional[str]) -> "ReplicaPhase":
        for phase in cls:
            if phase.value == value:
                return phase
        return cls.UNKNOWN


class RolloutVerdict(Enum):
    """Terminal outcome of rollout monitoring."""

    CONVERGED = "converged"
    FAILED = "failed"
    TIMED_OUT = "timed-out"


class BuildVerdict(Enum):
    """Terminal outcome of the CI job."""

    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass(frozen=True)
class ContainerStatus:
    """Status of one container inside a replica."""

    name: str
    ready: bool
    restart_count: int = 0
    last_restart_at: Optional[datetime] = None
    waiting_reason: Optional[str] = None
    waiting_message: Optional[str] = None
    terminated_reason: Optional[str] = None
    terminated_message: Optional[str] = None

    @property
    def is_waiting(self) -> bool:
        return self.waiting_reason is not None

    def state_summary(self) -> str:
        """Short description of the current waiting/terminated state."""
        if self.waiting_reason is not None:
            text = f"waiting: {self.waiting_reason}"
            if self.waiting_message:
                text += f" ({self.waiting_message})"
            return text
        if self.terminated_reason is not None:
            text = f"terminated: {self.terminated_reason}"
            if self.terminated_message:
                text += f" ({self.terminated_message})"
            return text
        return "running" if self.ready else "not ready"


@dataclass(frozen=True)
class Replica:
    """Immutable snapshot of one replica as observed on a single poll."""

    uid: str  # stable identity, unique per process instance
    name: str  # display name
    phase: ReplicaPhase
    ready_condition: Optional[bool] = None  # None when not reported
    containers: Tuple[ContainerStatus, ...] = ()
    message: Optional[str] = None


@dataclass(frozen=True)
class Workload:
    """The managed object (deployment) as read from the cluster."""

    name: str
    namespace: str
    desired_replicas: int
    unavailable_replicas: int = 0
    revision: Optional[str] = None
    match_labels: Dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class WorkloadState:
    """Desired count plus the live replica list at one poll."""

    desired_replicas: int
    unavailable_replicas: int
    replicas: Tuple[Replica, ...]


@dataclass(frozen=True)
class IdentitySnapshot:
    """Replica identities that pre-date the rollout, captured before the build."""

    revision: str
    identities: FrozenSet[str]
    captured_at: Optional[datetime] = None

    def is_preexisting(self, replica: Replica) -> bool:
        return replica.uid in self.identities

    def partition(self, replicas) -> Tuple[List[Replica], List[Replica]]:
        """Split replicas into (new, old) by identity membership."""
        new: List[Replica] = []
        old: List[Replica] = []
        for replica in replicas:
            if self.is_preexisting(replica):
                old.append(replica)
            else:
                new.append(replica)
        return new, old


@dataclass
class BuildHandle:
    """Reference to a triggered CI build."""

    job_name: str
    queue_id: int
    number: Optional[int] = None
    url: Optional[str] = None
    building: bool = True
    result: Optional[str] = None  # SUCCESS, FAILURE, UNSTABLE, ABORTED


@dataclass
class BuildResult:
    """Result of the CI job phase."""

    verdict: BuildVerdict
    job_name: str
    number: Optional[int] = None
    result_label: Optional[str] = None
    console_log: Optional[str] = None
    duration_seconds: Optional[float] = None

    @property
    def succeeded(self) -> bool:
        return self.verdict is BuildVerdict.SUCCEEDED


@dataclass
class ErroredReplica:
    """Diagnostic for a new replica that made the rollout fail."""

    name: str
    phase: str
    message: str


@dataclass
class RolloutResult:
    """Result of the rollout monitoring phase."""

    verdict: RolloutVerdict
    cycles: int
    ready_new: int = 0
    desired_replicas: int = 0
    old_remaining: int = 0
    errored: List[ErroredReplica] = field(default_factory=list)

    @property
    def converged(self) -> bool:
        return self.verdict is RolloutVerdict.CONVERGED


@dataclass
class DeployOutcome:
    """Final verdict of one deployment run."""

    project: str
    env: str
    stage: str = "target"  # last phase entered
    build: Optional[BuildResult] = None
    rollout: Optional[RolloutResult] = None
    build_only: bool = False
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        if self.error or self.build is None or not self.build.succeeded:
            return False
        if self.build_only:
            return True
        return self.rollout is not None and self.rollout.converged

    @property
    def exit_code(self) -> int:
        return 0 if self.succeeded else 1
