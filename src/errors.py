"""
Exception types for the deploy handoff tool.
"""


class DeployError(RuntimeError):
    """Base class for errors that abort a deployment run."""


class ConfigurationError(DeployError):
    """Missing target, selector labels, revision marker or bad settings."""


class VcsError(ConfigurationError):
    """The local checkout's branch could not be determined."""


class CiClientError(DeployError):
    """A request to the CI server failed."""


class ClusterQueryError(DeployError):
    """A request to the cluster API failed."""
