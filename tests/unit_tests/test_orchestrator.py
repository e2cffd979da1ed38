"""
Unit tests for DeploymentOrchestrator.
"""

import json
import os
import tempfile
import unittest
from unittest.mock import MagicMock

from config import DeployConfig, EnvConfig, MonitorSettings, ParamConfig, ProjectConfig
from errors import VcsError
from fakes import FakeCI, FakeCluster, crash_looping, healthy
from jobs import JobMonitor
from models import BuildVerdict, RolloutVerdict
from orchestrator import DeploymentOrchestrator

SETTINGS = MonitorSettings(
    poll_interval=1.0, grace_cycles=1, max_retries=6, stability_hold=2.0
)


def make_config(deployment="web"):
    return DeployConfig(
        jenkins_url="https://ci.example.com",
        username="deployer",
        api_token="token",
        projects=[
            ProjectConfig(
                name="shop",
                envs=[
                    EnvConfig(
                        name="staging",
                        job_name="shop/deploy",
                        params=[ParamConfig("branch", "$branch")],
                        namespace="staging",
                        deployment=deployment,
                    )
                ],
            )
        ],
    )


class TestDeploymentOrchestrator(unittest.TestCase):
    """Test phase sequencing and verdict propagation."""

    def make(self, ci, cluster, config=None, **kwargs):
        sleep = MagicMock()
        job_monitor = JobMonitor(
            ci, SETTINGS, sleep=sleep, clock=lambda: 0.0, write=MagicMock()
        )
        return DeploymentOrchestrator(
            config or make_config(),
            "shop",
            "staging",
            settings=SETTINGS,
            ci=ci,
            cluster=cluster,
            branch_resolver=kwargs.pop("branch_resolver", lambda: "feature-x"),
            sleep=sleep,
            job_monitor=job_monitor,
            **kwargs,
        )

    def test_build_then_rollout_converges(self):
        ci = FakeCI(result="SUCCESS")
        # first call is the snapshot, the rest are rollout polls
        cluster = FakeCluster(
            [
                [healthy("A"), healthy("B"), healthy("C")],
                [healthy("A"), healthy("B"), healthy("D")],
                [healthy("D"), healthy("E"), healthy("F")],
            ],
            desired=3,
        )

        outcome = self.make(ci, cluster).run()

        self.assertTrue(outcome.succeeded)
        self.assertEqual(outcome.exit_code, 0)
        self.assertEqual(outcome.stage, "done")
        self.assertEqual(outcome.build.verdict, BuildVerdict.SUCCEEDED)
        self.assertEqual(outcome.rollout.verdict, RolloutVerdict.CONVERGED)
        self.assertEqual(ci.triggered, [("shop/deploy", {"branch": "feature-x"})])

    def test_snapshot_taken_before_build(self):
        ci = FakeCI()
        cluster = FakeCluster([[healthy("A")], [healthy("D")]], desired=1)
        list_calls_at_trigger = []
        original_trigger = ci.trigger_build

        def trigger(job, params):
            list_calls_at_trigger.append(cluster.list_calls)
            return original_trigger(job, params)

        ci.trigger_build = trigger

        self.make(ci, cluster).run()

        self.assertEqual(list_calls_at_trigger, [1])

    def test_build_failure_skips_rollout(self):
        ci = FakeCI(result="FAILURE", console=["compile error\n"])
        cluster = FakeCluster([[healthy("A")]], desired=1)

        orchestrator = self.make(ci, cluster)
        outcome = orchestrator.run()

        self.assertFalse(outcome.succeeded)
        self.assertEqual(outcome.exit_code, 1)
        self.assertEqual(outcome.stage, "build")
        self.assertIsNone(outcome.rollout)
        self.assertEqual(outcome.build.console_log, "compile error\n")
        # only the snapshot listed replicas
        self.assertEqual(cluster.list_calls, 1)

    def test_rollout_failure(self):
        ci = FakeCI()
        cluster = FakeCluster(
            [[healthy("A")], [healthy("A"), crash_looping("D")]], desired=1, unavailable=1
        )

        outcome = self.make(ci, cluster).run()

        self.assertEqual(outcome.rollout.verdict, RolloutVerdict.FAILED)
        self.assertEqual(outcome.rollout.errored[0].name, "pod-D")
        self.assertEqual(outcome.exit_code, 1)

    def test_rollout_timeout(self):
        ci = FakeCI()
        cluster = FakeCluster([[healthy("A")]], desired=1)

        outcome = self.make(ci, cluster).run()

        self.assertEqual(outcome.rollout.verdict, RolloutVerdict.TIMED_OUT)
        self.assertEqual(outcome.rollout.cycles, SETTINGS.max_retries)
        self.assertEqual(outcome.exit_code, 1)

    def test_missing_revision_aborts_before_build(self):
        ci = FakeCI()
        cluster = FakeCluster([[healthy("A")]], revision=None)

        outcome = self.make(ci, cluster).run()

        self.assertEqual(outcome.stage, "snapshot")
        self.assertIn("revision", outcome.error)
        self.assertEqual(ci.triggered, [])
        self.assertEqual(outcome.exit_code, 1)

    def test_branch_error_aborts_before_build(self):
        ci = FakeCI()
        cluster = FakeCluster([[healthy("A")]])

        def broken():
            raise VcsError("not a git repository")

        outcome = self.make(ci, cluster, branch_resolver=broken).run()

        self.assertEqual(outcome.stage, "params")
        self.assertEqual(ci.triggered, [])
        self.assertFalse(outcome.succeeded)

    def test_cluster_errors_during_rollout_abort(self):
        ci = FakeCI()
        cluster = FakeCluster([[healthy("A")]], failures=[1, 2, 3, 4])

        outcome = self.make(ci, cluster).run()

        self.assertEqual(outcome.stage, "rollout")
        self.assertIsNone(outcome.rollout)
        self.assertIn("connection reset", outcome.error)

    def test_unknown_env(self):
        orchestrator = DeploymentOrchestrator(
            make_config(), "shop", "prod", settings=SETTINGS, ci=FakeCI(), cluster=FakeCluster([[]])
        )
        outcome = orchestrator.run()
        self.assertEqual(outcome.stage, "target")
        self.assertIn("prod", outcome.error)

    def test_build_only_target(self):
        ci = FakeCI()
        cluster = MagicMock()

        outcome = self.make(ci, cluster, config=make_config(deployment=None)).run()

        self.assertTrue(outcome.build_only)
        self.assertTrue(outcome.succeeded)
        self.assertIsNone(outcome.rollout)
        cluster.get_workload.assert_not_called()

    def test_report_file(self):
        handle, path = tempfile.mkstemp(suffix=".json")
        os.close(handle)
        self.addCleanup(os.remove, path)
        ci = FakeCI()
        cluster = FakeCluster([[healthy("A")], [healthy("D")]], desired=1)

        self.make(ci, cluster, report_file=path).run()

        with open(path) as f:
            report = json.load(f)
        self.assertTrue(report["succeeded"])
        self.assertEqual(report["snapshot"], {"revision": "7", "pods": ["A"]})
        self.assertEqual(report["build"]["number"], 42)
        self.assertEqual(report["rollout"]["verdict"], "converged")

    def test_format_duration(self):
        orchestrator = DeploymentOrchestrator(make_config(), "shop", "staging")
        self.assertEqual(orchestrator._format_duration(12.34), "12.3s")
        self.assertEqual(orchestrator._format_duration(125), "2m 5s")
        self.assertEqual(orchestrator._format_duration(3725), "1h 2m 5s")


if __name__ == "__main__":
    unittest.main()
