"""
Unit tests for data models.
"""

import unittest

from models import (
    BuildResult,
    BuildVerdict,
    ContainerStatus,
    DeployOutcome,
    ReplicaPhase,
    RolloutResult,
    RolloutVerdict,
)


class TestReplicaPhase(unittest.TestCase):
    """Test ReplicaPhase parsing."""

    def test_known_phases(self):
        self.assertEqual(ReplicaPhase.from_value("Running"), ReplicaPhase.RUNNING)
        self.assertEqual(ReplicaPhase.from_value("Failed"), ReplicaPhase.FAILED)

    def test_missing_phase_is_unknown(self):
        self.assertEqual(ReplicaPhase.from_value(None), ReplicaPhase.UNKNOWN)


class TestContainerStatus(unittest.TestCase):
    """Test ContainerStatus state summaries."""

    def test_waiting_summary(self):
        status = ContainerStatus(
            name="app", ready=False, waiting_reason="ErrImagePull", waiting_message="not found"
        )
        self.assertTrue(status.is_waiting)
        self.assertEqual(status.state_summary(), "waiting: ErrImagePull (not found)")

    def test_terminated_summary(self):
        status = ContainerStatus(name="app", ready=False, terminated_reason="OOMKilled")
        self.assertEqual(status.state_summary(), "terminated: OOMKilled")

    def test_running_summary(self):
        self.assertEqual(ContainerStatus(name="app", ready=True).state_summary(), "running")


class TestDeployOutcome(unittest.TestCase):
    """Test DeployOutcome verdict mapping."""

    def setUp(self):
        self.good_build = BuildResult(verdict=BuildVerdict.SUCCEEDED, job_name="deploy")

    def test_converged_rollout_succeeds(self):
        outcome = DeployOutcome(
            project="shop",
            env="prod",
            build=self.good_build,
            rollout=RolloutResult(verdict=RolloutVerdict.CONVERGED, cycles=4),
        )
        self.assertTrue(outcome.succeeded)
        self.assertEqual(outcome.exit_code, 0)

    def test_timed_out_rollout_fails(self):
        outcome = DeployOutcome(
            project="shop",
            env="prod",
            build=self.good_build,
            rollout=RolloutResult(verdict=RolloutVerdict.TIMED_OUT, cycles=120),
        )
        self.assertEqual(outcome.exit_code, 1)

    def test_build_only_success(self):
        outcome = DeployOutcome(
            project="shop", env="docs", build=self.good_build, build_only=True
        )
        self.assertTrue(outcome.succeeded)

    def test_failed_build(self):
        outcome = DeployOutcome(
            project="shop",
            env="prod",
            build=BuildResult(verdict=BuildVerdict.FAILED, job_name="deploy"),
            build_only=True,
        )
        self.assertFalse(outcome.succeeded)

    def test_error_is_never_success(self):
        outcome = DeployOutcome(
            project="shop", env="prod", build=self.good_build, build_only=True, error="boom"
        )
        self.assertEqual(outcome.exit_code, 1)


if __name__ == "__main__":
    unittest.main()
