"""
Deployment orchestration: snapshot, build, then rollout monitoring.
"""

import json
import logging
import time
from datetime import datetime
from typing import Callable, Optional

from clients import JenkinsRestClient, KubeClusterClient
from config import DeployConfig, MonitorSettings, resolve_params
from errors import DeployError
from jobs import JobMonitor
from models import DeployOutcome, IdentitySnapshot
from rollout import RolloutMonitor
from snapshot import capture_snapshot
from vcs import current_branch_name

logger = logging.getLogger(__name__)


class DeploymentOrchestrator:
    """Runs one deployment attempt for a project environment."""

    def __init__(
        self,
        config: DeployConfig,
        project_name: str,
        env_name: str,
        settings: Optional[MonitorSettings] = None,
        ci=None,
        cluster=None,
        branch_resolver: Callable[[], str] = current_branch_name,
        sleep: Callable[[float], None] = time.sleep,
        job_monitor: Optional[JobMonitor] = None,
        report_file: Optional[str] = None,
    ):
        """
        Args:
            config: Loaded deploy configuration
            project_name: Project to deploy
            env_name: Environment of the project to deploy
            settings: Monitor settings (defaults to config.monitor)
            ci: CI client; built from config when omitted
            cluster: Cluster client; built from config when omitted
            branch_resolver: Returns the current branch for `$branch` params
            sleep: Blocking sleep shared by both monitors
            job_monitor: Pre-built JobMonitor (defaults to one over `ci`)
            report_file: Optional path for a JSON report
        """
        self.config = config
        self.project_name = project_name
        self.env_name = env_name
        self.settings = settings or config.monitor
        self._ci = ci
        self._cluster = cluster
        self.branch_resolver = branch_resolver
        self._sleep = sleep
        self._job_monitor = job_monitor
        self.report_file = report_file

        self.run_start_time: Optional[float] = None
        self.run_end_time: Optional[float] = None
        self.snapshot: Optional[IdentitySnapshot] = None

    @property
    def ci(self):
        if self._ci is None:
            self._ci = JenkinsRestClient(
                base_url=self.config.jenkins_url,
                username=self.config.username,
                api_token=self.config.api_token,
            )
        return self._ci

    @property
    def cluster(self):
        if self._cluster is None:
            self._cluster = KubeClusterClient(
                context=self.config.kube_context, in_cluster=self.config.in_cluster
            )
        return self._cluster

    def run(self) -> DeployOutcome:
        """
        Execute the deployment pipeline.

        Fatal errors from any phase are caught here, logged, and reflected
        in the returned outcome. Nothing is rolled back.

        Returns:
            DeployOutcome
        """
        self.run_start_time = time.time()
        outcome = DeployOutcome(project=self.project_name, env=self.env_name)

        logger.info("=" * 70)
        logger.info(f"Deploy: project={self.project_name} env={self.env_name}")
        logger.info(f"Start time: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
        logger.info("=" * 70)

        try:
            self._run_phases(outcome)
        except DeployError as e:
            outcome.error = str(e)
            logger.critical(f"FATAL during {outcome.stage}: {e}")

        self.run_end_time = time.time()
        self._print_report(outcome)
        if self.report_file:
            self._export_results_json(outcome)
        return outcome

    def _run_phases(self, outcome: DeployOutcome) -> None:
        env = self.config.find_env(self.project_name, self.env_name)
        outcome.build_only = env.build_only

        if env.build_only:
            logger.info(f"No deployment configured for {self.env_name}; build only")
        else:
            outcome.stage = "snapshot"
            self.snapshot = capture_snapshot(self.cluster, env.namespace, env.deployment)

        outcome.stage = "params"
        params = resolve_params(env.params, self.branch_resolver)

        outcome.stage = "build"
        job_monitor = self._job_monitor or JobMonitor(
            self.ci, self.settings, sleep=self._sleep
        )
        outcome.build = job_monitor.run(env.job_name, params)
        if not outcome.build.succeeded or env.build_only:
            return

        outcome.stage = "rollout"
        monitor = RolloutMonitor(
            self.cluster,
            env.namespace,
            env.deployment,
            self.snapshot,
            self.settings,
            sleep=self._sleep,
        )
        outcome.rollout = monitor.run()
        outcome.stage = "done"

    def _format_duration(self, seconds: float) -> str:
        """Render a duration as 12.3s, 2m 5s or 1h 2m 5s."""
        if seconds < 60:
            return f"{seconds:.1f}s"
        hours, rest = divmod(int(round(seconds)), 3600)
        mins, secs = divmod(rest, 60)
        clock = f"{mins}m {secs}s"
        return f"{hours}h {clock}" if hours else clock

    def _print_report(self, outcome: DeployOutcome) -> None:
        """Log the final verdict with timing and rollout diagnostics."""
        total_duration = self.run_end_time - self.run_start_time

        logger.info("")
        logger.info("=" * 70)
        logger.info("DEPLOY REPORT")
        logger.info("=" * 70)
        logger.info(f"Target:          {outcome.project} / {outcome.env}")
        logger.info(
            f"Start time:      {datetime.fromtimestamp(self.run_start_time).strftime('%Y-%m-%d %H:%M:%S')}"
        )
        logger.info(
            f"End time:        {datetime.fromtimestamp(self.run_end_time).strftime('%Y-%m-%d %H:%M:%S')}"
        )
        logger.info(f"Total duration:  {self._format_duration(total_duration)}")

        if outcome.build:
            build = outcome.build
            logger.info(
                f"Build:           {build.job_name} #{build.number} "
                f"{build.verdict.value} ({build.result_label or 'N/A'})"
            )
        if outcome.rollout:
            rollout = outcome.rollout
            logger.info(
                f"Rollout:         {rollout.verdict.value} after {rollout.cycles} poll(s), "
                f"new ready {rollout.ready_new}/{rollout.desired_replicas}, "
                f"old remaining {rollout.old_remaining}"
            )
            if rollout.errored:
                logger.info("")
                logger.info("ERRORED PODS")
                logger.info("-" * 40)
                logger.info(f"{'Pod':<40} {'Phase':<10} {'Message'}")
                logger.info("-" * 70)
                for r in rollout.errored:
                    logger.info(f"{r.name:<40} {r.phase:<10} {r.message}")
        elif outcome.build_only and outcome.build:
            logger.info("Rollout:         skipped (build-only target)")

        if outcome.error:
            logger.info(f"Error:           {outcome.error}")
        logger.info(f"Result:          {'SUCCESS' if outcome.succeeded else 'FAILURE'}")
        logger.info("=" * 70)

    def _export_results_json(self, outcome: DeployOutcome) -> None:
        """Export the outcome to a JSON file."""
        report = {
            "project": outcome.project,
            "env": outcome.env,
            "stage": outcome.stage,
            "succeeded": outcome.succeeded,
            "error": outcome.error,
            "start_time": datetime.fromtimestamp(self.run_start_time).isoformat(),
            "end_time": datetime.fromtimestamp(self.run_end_time).isoformat(),
            "total_duration_seconds": self.run_end_time - self.run_start_time,
            "snapshot": (
                {
                    "revision": self.snapshot.revision,
                    "pods": sorted(self.snapshot.identities),
                }
                if self.snapshot
                else None
            ),
            "build": (
                {
                    "job_name": outcome.build.job_name,
                    "number": outcome.build.number,
                    "verdict": outcome.build.verdict.value,
                    "result": outcome.build.result_label,
                    "duration_seconds": outcome.build.duration_seconds,
                }
                if outcome.build
                else None
            ),
            "rollout": (
                {
                    "verdict": outcome.rollout.verdict.value,
                    "cycles": outcome.rollout.cycles,
                    "ready_new": outcome.rollout.ready_new,
                    "desired_replicas": outcome.rollout.desired_replicas,
                    "old_remaining": outcome.rollout.old_remaining,
                    "errored": [
                        {"name": r.name, "phase": r.phase, "message": r.message}
                        for r in outcome.rollout.errored
                    ],
                }
                if outcome.rollout
                else None
            ),
        }

        with open(self.report_file, "w") as f:
            json.dump(report, f, indent=2)
        logger.info(f"Detailed report exported to: {self.report_file}")
