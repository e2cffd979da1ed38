"""
Configuration management for the deploy handoff tool.
"""

import os
from dataclasses import dataclass, field, fields, replace
from typing import Any, Dict, List, Optional

import yaml

from errors import ConfigurationError

DEFAULT_CONFIG_PATH = os.path.join("~", "deploy_config.yaml")
BRANCH_PLACEHOLDER = "$branch"


@dataclass(frozen=True)
class MonitorSettings:
    """Timing knobs for the job and rollout monitors."""

    poll_interval: float = 5.0
    grace_cycles: int = 6
    max_retries: int = 120
    stability_hold: float = 15.0
    max_poll_errors: int = 3
    job_poll_interval: float = 0.3
    log_stream_after: float = 30.0

    def __post_init__(self):
        for f in fields(self):
            value = getattr(self, f.name)
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise ConfigurationError(
                    f"Monitor setting {f.name} must be a number, got {value!r}"
                )
        if self.poll_interval <= 0 or self.job_poll_interval <= 0:
            raise ConfigurationError("Poll intervals must be positive")
        if self.max_retries < 1:
            raise ConfigurationError("max_retries must be at least 1")
        if self.grace_cycles < 0 or self.max_poll_errors < 0:
            raise ConfigurationError("grace_cycles and max_poll_errors must not be negative")
        if self.stability_hold < 0 or self.log_stream_after < 0:
            raise ConfigurationError("Delays must not be negative")

    @classmethod
    def from_mapping(cls, data: Optional[Dict[str, Any]]) -> "MonitorSettings":
        """Build settings from the `monitor:` section of the config file."""
        if data is None:
            data = {}
        if not isinstance(data, dict):
            raise ConfigurationError(
                f"monitor section must be a mapping, got {type(data).__name__}"
            )
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise ConfigurationError(
                f"Unknown monitor setting(s): {', '.join(sorted(unknown))}"
            )
        return cls(**data)

    def with_overrides(self, **overrides) -> "MonitorSettings":
        """Return a copy with every non-None override applied."""
        values = {k: v for k, v in overrides.items() if v is not None}
        return replace(self, **values) if values else self


@dataclass
class ParamConfig:
    name: str
    value: str


@dataclass
class EnvConfig:
    """A deployment target: one CI job plus the workload it rolls out."""

    name: str
    job_name: str
    params: List[ParamConfig] = field(default_factory=list)
    namespace: str = "default"
    deployment: Optional[str] = None

    @property
    def build_only(self) -> bool:
        return not self.deployment


@dataclass
class ProjectConfig:
    name: str
    envs: List[EnvConfig] = field(default_factory=list)


@dataclass
class DeployConfig:
    """Configuration loaded from the deploy YAML file."""

    jenkins_url: str
    username: str
    api_token: str
    projects: List[ProjectConfig] = field(default_factory=list)
    kube_context: Optional[str] = None
    in_cluster: bool = False
    monitor: MonitorSettings = field(default_factory=MonitorSettings)

    @classmethod
    def load(cls, path: Optional[str] = None) -> "DeployConfig":
        """
        Load configuration from a YAML file.

        Args:
            path: Config file path (defaults to ~/deploy_config.yaml)

        Returns:
            DeployConfig instance

        Raises:
            ConfigurationError: If the file is missing or malformed
        """
        path = os.path.expanduser(path or DEFAULT_CONFIG_PATH)
        try:
            with open(path) as f:
                data = yaml.safe_load(f)
        except OSError as e:
            raise ConfigurationError(f"Cannot read config file {path}: {e}")
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in {path}: {e}")

        if not isinstance(data, dict):
            raise ConfigurationError(f"Config file {path} must contain a mapping")
        return cls.from_dict(data)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DeployConfig":
        missing = [k for k in ("jenkins_url", "username", "api_token") if not data.get(k)]
        if missing:
            raise ConfigurationError(f"Missing config key(s): {', '.join(missing)}")

        try:
            projects = [
                ProjectConfig(
                    name=p["name"],
                    envs=[
                        EnvConfig(
                            name=e["name"],
                            job_name=e["job_name"],
                            params=[
                                ParamConfig(name=pa["name"], value=str(pa.get("value", "")))
                                for pa in e.get("params") or []
                            ],
                            namespace=e.get("namespace") or "default",
                            deployment=e.get("deployment"),
                        )
                        for e in p.get("envs") or []
                    ],
                )
                for p in data.get("projects") or []
            ]
        except (KeyError, TypeError) as e:
            raise ConfigurationError(f"Malformed project entry in config: {e}")

        return cls(
            jenkins_url=data["jenkins_url"],
            username=data["username"],
            api_token=str(data["api_token"]),
            projects=projects,
            kube_context=data.get("kube_context"),
            in_cluster=bool(data.get("in_cluster", False)),
            monitor=MonitorSettings.from_mapping(data.get("monitor")),
        )

    def find_env(self, project_name: str, env_name: str) -> EnvConfig:
        """Resolve the deployment target, or raise ConfigurationError."""
        project = next((p for p in self.projects if p.name == project_name), None)
        if project is None:
            raise ConfigurationError(f"Project not found in config: {project_name}")
        env = next((e for e in project.envs if e.name == env_name), None)
        if env is None:
            raise ConfigurationError(
                f"Env not found in config: {env_name} (project {project_name})"
            )
        return env


def resolve_params(params: List[ParamConfig], branch_resolver) -> Dict[str, str]:
    """
    Build the CI parameter mapping, substituting the live branch placeholder.

    Args:
        params: Configured parameters in order
        branch_resolver: Callable returning the current branch name

    Returns:
        Mapping of parameter name to value
    """
    resolved: Dict[str, str] = {}
    branch: Optional[str] = None
    for param in params:
        if param.value == BRANCH_PLACEHOLDER:
            if branch is None:
                branch = branch_resolver()
            resolved[param.name] = branch
        else:
            resolved[param.name] = param.value
    return resolved
