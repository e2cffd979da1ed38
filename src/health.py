"""
Replica health evaluation.

A replica is healthy only when it is running, passes its readiness gate,
every container is ready, no container is in a restart storm, and no
container is waiting. Errored replicas are a stricter subset used to fail a
rollout early instead of waiting for it to time out.
"""

from datetime import datetime, timezone
from typing import List, Optional, Tuple

from models import ContainerStatus, Replica, ReplicaPhase

RESTART_STORM_COUNT = 3
RESTART_STORM_WINDOW_SECONDS = 60

CRASH_LOOP_REASON = "CrashLoopBackOff"
ERRORED_PHASES = {ReplicaPhase.FAILED, ReplicaPhase.UNKNOWN}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_aware(ts: datetime) -> datetime:
    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts


def in_restart_storm(container: ContainerStatus, now: datetime) -> bool:
    """True if the container restarted often and recently."""
    if container.restart_count <= RESTART_STORM_COUNT:
        return False
    if container.last_restart_at is None:
        return False
    age = (_as_aware(now) - _as_aware(container.last_restart_at)).total_seconds()
    return age <= RESTART_STORM_WINDOW_SECONDS


def _with_stuck_container(reason: str, replica: Replica) -> str:
    """Append the first container that reports a waiting or terminated reason."""
    for container in replica.containers:
        if container.waiting_reason or container.terminated_reason:
            return f"{reason} (container {container.name} {container.state_summary()})"
    return reason


def evaluate_replica(
    replica: Replica, now: Optional[datetime] = None
) -> Tuple[bool, str]:
    """
    Decide whether a replica is ready and healthy.

    Args:
        replica: Replica observed on the current poll
        now: Reference time for the restart-storm window (defaults to UTC now)

    Returns:
        Tuple of (is_healthy, reason). The reason names the first failing rule.
    """
    now = now or _utcnow()

    if replica.phase is not ReplicaPhase.RUNNING:
        return False, _with_stuck_container(f"phase is {replica.phase.value}", replica)

    if replica.ready_condition is False:
        return False, _with_stuck_container("Ready condition is False", replica)

    for container in replica.containers:
        if not container.ready:
            return False, f"container {container.name} not ready ({container.state_summary()})"

    for container in replica.containers:
        if in_restart_storm(container, now):
            return False, (
                f"container {container.name} restarted {container.restart_count} times, "
                "last restart under a minute ago"
            )

    for container in replica.containers:
        if container.is_waiting:
            return False, f"container {container.name} {container.state_summary()}"

    return True, "healthy"


def is_errored(replica: Replica) -> bool:
    """True for failed/unknown replicas or any container in crash-loop backoff."""
    if replica.phase in ERRORED_PHASES:
        return True
    return any(c.waiting_reason == CRASH_LOOP_REASON for c in replica.containers)


def error_message(replica: Replica) -> str:
    """Best available explanation of why a replica is errored."""
    parts: List[str] = []
    if replica.message:
        parts.append(replica.message)
    for container in replica.containers:
        if container.waiting_reason or container.terminated_reason:
            parts.append(f"{container.name}: {container.state_summary()}")
    return "; ".join(parts) if parts else "no message reported"
