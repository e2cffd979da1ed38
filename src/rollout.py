"""
Rollout convergence monitor.

Polls the workload after a successful build and decides whether the new
replica generation converged, failed, or timed out. Replicas are classified
as new or old only by membership in the pre-build IdentitySnapshot.
"""

import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, List, Optional, Tuple

from config import MonitorSettings
from errors import ClusterQueryError
from health import error_message, evaluate_replica, is_errored
from models import (
    ErroredReplica,
    IdentitySnapshot,
    Replica,
    RolloutResult,
    RolloutVerdict,
    WorkloadState,
)

logger = logging.getLogger(__name__)


class MonitorState(Enum):
    WATCHING = "watching"
    STABILITY_HOLD = "stability-hold"
    CONVERGED = "converged"
    FAILED = "failed"
    TIMED_OUT = "timed-out"


TERMINAL_STATES = {
    MonitorState.CONVERGED: RolloutVerdict.CONVERGED,
    MonitorState.FAILED: RolloutVerdict.FAILED,
    MonitorState.TIMED_OUT: RolloutVerdict.TIMED_OUT,
}


@dataclass
class Observation:
    """One poll of the workload, classified against the snapshot."""

    workload: WorkloadState
    new: List[Replica]
    old: List[Replica]
    ready_new: int
    unhealthy_new: List[Tuple[Replica, str]]
    errored_new: List[Replica]

    @property
    def converged(self) -> bool:
        return self.ready_new == self.workload.desired_replicas and not self.old


class RolloutMonitor:
    """Watches a rolling update until the new generation is fully healthy."""

    def __init__(
        self,
        cluster,
        namespace: str,
        workload_name: str,
        snapshot: IdentitySnapshot,
        settings: MonitorSettings,
        sleep: Callable[[float], None] = time.sleep,
        now: Optional[Callable[[], datetime]] = None,
    ):
        """
        Set up the monitor.

        Args:
            cluster: Cluster client (get_workload, selector_for, list_replicas)
            namespace: Workload namespace
            workload_name: Workload (deployment) name
            snapshot: Identities captured before the build was triggered
            settings: Poll interval, grace cycles, retry budget, stability hold
            sleep: Blocking sleep used between polls
            now: Clock for health evaluation (UTC)
        """
        self.cluster = cluster
        self.namespace = namespace
        self.workload_name = workload_name
        self.snapshot = snapshot
        self.settings = settings
        self._sleep = sleep
        self._now = now or (lambda: datetime.now(timezone.utc))

        self.state = MonitorState.WATCHING
        self.cycles = 0
        self.consecutive_errors = 0
        self.last_observation: Optional[Observation] = None
        self.errored: List[ErroredReplica] = []

    @property
    def target(self) -> str:
        return f"{self.namespace}/{self.workload_name}"

    def observe(self) -> Observation:
        """Fetch the workload and its replicas and classify them."""
        workload = self.cluster.get_workload(self.namespace, self.workload_name)
        selector = self.cluster.selector_for(workload)
        replicas = self.cluster.list_replicas(self.namespace, selector)

        new, old = self.snapshot.partition(replicas)
        now = self._now()
        ready_new = 0
        unhealthy: List[Tuple[Replica, str]] = []
        for replica in new:
            healthy, reason = evaluate_replica(replica, now)
            if healthy:
                ready_new += 1
            else:
                unhealthy.append((replica, reason))

        return Observation(
            workload=WorkloadState(
                desired_replicas=workload.desired_replicas,
                unavailable_replicas=workload.unavailable_replicas,
                replicas=tuple(replicas),
            ),
            new=new,
            old=old,
            ready_new=ready_new,
            unhealthy_new=unhealthy,
            errored_new=[r for r in new if is_errored(r)],
        )

    def _observe_tolerant(self) -> Optional[Observation]:
        """Observe, tolerating up to max_poll_errors consecutive fetch failures."""
        try:
            observation = self.observe()
        except ClusterQueryError as e:
            self.consecutive_errors += 1
            if self.consecutive_errors > self.settings.max_poll_errors:
                logger.error(
                    f"Giving up on {self.target} after {self.consecutive_errors} failed polls"
                )
                raise
            logger.warning(
                f"Poll failed for {self.target} "
                f"({self.consecutive_errors}/{self.settings.max_poll_errors}): {e}"
            )
            return None

        self.consecutive_errors = 0
        self.last_observation = observation
        return observation

    def _log_progress(self, obs: Observation) -> None:
        logger.info(
            f"[{self.cycles}/{self.settings.max_retries}] {self.target}: "
            f"new ready {obs.ready_new}/{len(obs.new)} "
            f"(desired {obs.workload.desired_replicas}), "
            f"old remaining {len(obs.old)}"
        )
        for replica, reason in obs.unhealthy_new:
            logger.info(f"    {replica.name}: {reason}")

    def step(self) -> MonitorState:
        """Advance the state machine by one cycle."""
        if self.state in TERMINAL_STATES:
            return self.state

        if self.state is MonitorState.STABILITY_HOLD:
            self._sleep(self.settings.stability_hold)
            obs = self._observe_tolerant()
            if obs is not None and obs.converged:
                logger.info(f"✓ {self.target} still converged after stability hold")
                self.state = MonitorState.CONVERGED
            else:
                if obs is not None:
                    logger.warning(
                        f"{self.target} dipped during stability hold "
                        f"(new ready {obs.ready_new}/{obs.workload.desired_replicas}, "
                        f"old remaining {len(obs.old)}); continuing to watch"
                    )
                self.state = MonitorState.WATCHING
            return self.state

        if self.cycles >= self.settings.max_retries:
            logger.error(
                f"Timed out waiting for {self.target} after {self.cycles} polls"
            )
            self.state = MonitorState.TIMED_OUT
            return self.state

        self._sleep(self.settings.poll_interval)
        self.cycles += 1
        obs = self._observe_tolerant()
        if obs is None:
            return self.state

        self._log_progress(obs)

        if obs.converged:
            logger.info(
                f"{self.target} reached {obs.ready_new}/{obs.workload.desired_replicas} "
                f"ready with no old pods; holding {self.settings.stability_hold:.0f}s to confirm"
            )
            self.state = MonitorState.STABILITY_HOLD
            return self.state

        if (
            self.cycles > self.settings.grace_cycles
            and obs.workload.unavailable_replicas > 0
            and obs.errored_new
        ):
            self.errored = [
                ErroredReplica(
                    name=r.name, phase=r.phase.value, message=error_message(r)
                )
                for r in obs.errored_new
            ]
            for item in self.errored:
                logger.error(
                    f"Errored pod {item.name}: phase={item.phase}, {item.message}"
                )
            self.state = MonitorState.FAILED

        return self.state

    def run(self) -> RolloutResult:
        """
        Drive the state machine to a terminal verdict.

        Returns:
            RolloutResult

        Raises:
            ClusterQueryError: If polling fails more than max_poll_errors times in a row
        """
        logger.info(
            f"Watching rollout of {self.target} "
            f"(baseline revision {self.snapshot.revision}, "
            f"{len(self.snapshot.identities)} old pod(s))"
        )
        while self.state not in TERMINAL_STATES:
            self.step()
        return self.result()

    def result(self) -> RolloutResult:
        obs = self.last_observation
        return RolloutResult(
            verdict=TERMINAL_STATES[self.state],
            cycles=self.cycles,
            ready_new=obs.ready_new if obs else 0,
            desired_replicas=obs.workload.desired_replicas if obs else 0,
            old_remaining=len(obs.old) if obs else 0,
            errored=list(self.errored),
        )
