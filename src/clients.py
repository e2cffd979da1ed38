"""
API clients for the CI server (Jenkins REST API) and the cluster (Kubernetes).
"""

import logging
import time
from dataclasses import replace
from typing import Dict, List, Optional

import requests
from kubernetes import client, config
from kubernetes.client.rest import ApiException
from urllib3.exceptions import HTTPError as TransportError

from errors import CiClientError, ClusterQueryError, ConfigurationError
from models import BuildHandle, ContainerStatus, Replica, ReplicaPhase, Workload

logger = logging.getLogger(__name__)

REVISION_ANNOTATION = "deployment.kubernetes.io/revision"


class JenkinsRestClient:
    """REST client for the Jenkins remote access API."""

    RETRYABLE_STATUS_CODES = {429, 500, 502, 503, 504}

    def __init__(
        self,
        base_url: str,
        username: str,
        api_token: str,
        timeout_s: int = 30,
        max_retries: int = 5,
        base_delay: float = 2.0,
        queue_poll_interval: float = 1.0,
        queue_timeout: float = 600.0,
    ):
        """
        Initialize the Jenkins REST client.

        Args:
            base_url: Jenkins root URL
            username: Jenkins user name
            api_token: API token for the user
            timeout_s: Request timeout in seconds
            max_retries: Maximum number of retries for transient errors
            base_delay: Base delay for exponential backoff
            queue_poll_interval: Interval between queue item polls (seconds)
            queue_timeout: Maximum time to wait for a queued build to start
        """
        self.base_url = base_url.rstrip("/")
        self.timeout_s = timeout_s
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.queue_poll_interval = queue_poll_interval
        self.queue_timeout = queue_timeout

        self.session = requests.Session()
        self.session.auth = (username, api_token)

    def _job_url(self, job_name: str) -> str:
        """Map 'folder/job' to the nested Jenkins job URL."""
        path = "/".join(f"job/{part}" for part in job_name.strip("/").split("/"))
        return f"{self.base_url}/{path}"

    def _request_with_retry(self, method: str, url: str, **kwargs) -> requests.Response:
        """
        Execute HTTP request with exponential backoff retry for transient errors.

        Raises:
            CiClientError: If max retries exceeded
        """
        last_error = None

        for attempt in range(self.max_retries + 1):
            try:
                resp = self.session.request(
                    method.upper(), url, timeout=self.timeout_s, **kwargs
                )
            except requests.RequestException as e:
                delay = self._calculate_delay(attempt)
                logger.warning(
                    f"Request error: {e}, attempt {attempt + 1}/{self.max_retries + 1}, waiting {delay:.1f}s..."
                )
                last_error = str(e)
                time.sleep(delay)
                continue

            if resp.status_code in self.RETRYABLE_STATUS_CODES:
                delay = self._calculate_delay(attempt, resp)
                logger.warning(
                    f"Retryable error {resp.status_code} from {url}, attempt {attempt + 1}/{self.max_retries + 1}, waiting {delay:.1f}s..."
                )
                last_error = f"HTTP {resp.status_code}: {resp.text[:200]}"
                time.sleep(delay)
                continue

            return resp

        raise CiClientError(f"Max retries exceeded. Last error: {last_error}")

    def _calculate_delay(self, attempt: int, resp=None) -> float:
        """Exponential backoff with jitter, honouring Retry-After."""
        if resp is not None and "Retry-After" in resp.headers:
            try:
                return float(resp.headers["Retry-After"])
            except ValueError:
                pass

        delay = self.base_delay * (2**attempt)
        jitter = delay * 0.2 * (0.5 - time.time() % 1)
        return min(delay + jitter, 60.0)

    def _get_json(self, url: str, what: str) -> Dict:
        resp = self._request_with_retry("GET", f"{url.rstrip('/')}/api/json")
        if resp.status_code != 200:
            raise CiClientError(f"{what} failed ({resp.status_code}): {resp.text[:200]}")
        try:
            return resp.json()
        except ValueError:
            # e.g. an SSO login page served with 200
            raise CiClientError(f"{what} returned non-JSON response: {resp.text[:200]}")

    def trigger_build(self, job_name: str, params: Dict[str, str]) -> BuildHandle:
        """
        Queue a build and wait until it leaves the queue.

        Args:
            job_name: Job name, folders separated by '/'
            params: Build parameters

        Returns:
            BuildHandle with number and url filled in

        Raises:
            CiClientError: If the job cannot be queued or the queue item is cancelled
        """
        endpoint = "buildWithParameters" if params else "build"
        url = f"{self._job_url(job_name)}/{endpoint}"
        resp = self._request_with_retry("POST", url, params=params or None)
        if resp.status_code not in (200, 201):
            raise CiClientError(
                f"Trigger build {job_name} failed ({resp.status_code}): {resp.text[:200]}"
            )

        location = resp.headers.get("Location", "")
        try:
            queue_id = int(location.rstrip("/").split("/")[-1])
        except ValueError:
            raise CiClientError(
                f"Trigger build {job_name} returned no queue item (Location={location!r})"
            )

        logger.info(f"Build queued for {job_name} (queue id {queue_id})")
        return self.get_build_from_queue(job_name, queue_id)

    def get_build_from_queue(self, job_name: str, queue_id: int) -> BuildHandle:
        """Poll the queue item until an executor picks it up."""
        url = f"{self.base_url}/queue/item/{queue_id}"
        start = time.time()
        while True:
            item = self._get_json(url, f"Get queue item {queue_id}")
            if item.get("cancelled"):
                raise CiClientError(f"Queue item {queue_id} for {job_name} was cancelled")

            executable = item.get("executable")
            if executable:
                return BuildHandle(
                    job_name=job_name,
                    queue_id=queue_id,
                    number=executable.get("number"),
                    url=executable.get("url"),
                )

            if time.time() - start > self.queue_timeout:
                raise CiClientError(
                    f"Queue item {queue_id} for {job_name} not started after {self.queue_timeout:.0f}s "
                    f"({item.get('why', 'no reason given')})"
                )
            logger.debug(f"Queue item {queue_id} waiting: {item.get('why')}")
            time.sleep(self.queue_poll_interval)

    def poll(self, build: BuildHandle) -> BuildHandle:
        """Return a refreshed copy of the build handle."""
        data = self._get_json(build.url, f"Poll build {build.job_name} #{build.number}")
        return replace(build, building=bool(data.get("building")), result=data.get("result"))

    def is_running(self, build: BuildHandle) -> bool:
        return build.building or build.result is None

    def is_successful(self, build: BuildHandle) -> bool:
        return build.result == "SUCCESS"

    def result(self, build: BuildHandle) -> Optional[str]:
        return build.result

    def console_output(self, build: BuildHandle) -> str:
        """Full console text of the build so far."""
        resp = self._request_with_retry("GET", f"{build.url.rstrip('/')}/consoleText")
        if resp.status_code != 200:
            raise CiClientError(
                f"Console output for {build.job_name} #{build.number} failed ({resp.status_code})"
            )
        return resp.text


def _container_status_from_k8s(status) -> ContainerStatus:
    waiting = status.state.waiting if status.state else None
    terminated = status.state.terminated if status.state else None
    last_terminated = status.last_state.terminated if status.last_state else None
    return ContainerStatus(
        name=status.name,
        ready=bool(status.ready),
        restart_count=status.restart_count or 0,
        last_restart_at=last_terminated.finished_at if last_terminated else None,
        waiting_reason=(waiting.reason or "Waiting") if waiting else None,
        waiting_message=waiting.message if waiting else None,
        terminated_reason=(terminated.reason or "Terminated") if terminated else None,
        terminated_message=terminated.message if terminated else None,
    )


def replica_from_pod(pod) -> Replica:
    """Convert a kubernetes V1Pod into an immutable Replica."""
    status = pod.status
    ready_condition = None
    for condition in (status.conditions or []) if status else []:
        if condition.type == "Ready":
            ready_condition = condition.status == "True"

    containers = tuple(
        _container_status_from_k8s(cs)
        for cs in ((status.container_statuses or []) if status else [])
    )
    return Replica(
        uid=pod.metadata.uid or pod.metadata.name,
        name=pod.metadata.name,
        phase=ReplicaPhase.from_value(status.phase if status else None),
        ready_condition=ready_condition,
        containers=containers,
        message=(status.message or status.reason) if status else None,
    )


class KubeClusterClient:
    """Read-only client for deployments and their pods."""

    def __init__(self, context: Optional[str] = None, in_cluster: bool = False):
        """
        Initialize Kubernetes client.

        Args:
            context: Kubernetes context name (optional)
            in_cluster: Whether running inside the cluster
        """
        try:
            if in_cluster:
                config.load_incluster_config()
            elif context:
                config.load_kube_config(context=context)
            else:
                config.load_kube_config()
        except config.ConfigException as e:
            raise ConfigurationError(f"Cannot load Kubernetes configuration: {e}")

        self.core_v1 = client.CoreV1Api()
        self.apps_v1 = client.AppsV1Api()

    def get_workload(self, namespace: str, name: str) -> Workload:
        """Read a deployment's desired count, availability and revision."""
        try:
            dep = self.apps_v1.read_namespaced_deployment(name=name, namespace=namespace)
        except ApiException as e:
            raise ClusterQueryError(
                f"Failed to get deployment {namespace}/{name}: {e.status} {e.reason}"
            )
        except TransportError as e:
            raise ClusterQueryError(f"Failed to get deployment {namespace}/{name}: {e}")

        annotations = dep.metadata.annotations or {}
        selector = dep.spec.selector
        return Workload(
            name=name,
            namespace=namespace,
            desired_replicas=dep.spec.replicas if dep.spec.replicas is not None else 1,
            unavailable_replicas=(dep.status.unavailable_replicas or 0) if dep.status else 0,
            revision=annotations.get(REVISION_ANNOTATION),
            match_labels=dict((selector.match_labels or {}) if selector else {}),
        )

    @staticmethod
    def selector_for(workload: Workload) -> str:
        """Label selector string derived from the workload's matchLabels."""
        if not workload.match_labels:
            raise ConfigurationError(
                f"Deployment {workload.namespace}/{workload.name} has no selector matchLabels"
            )
        return ",".join(f"{k}={v}" for k, v in sorted(workload.match_labels.items()))

    def list_replicas(self, namespace: str, selector: str) -> List[Replica]:
        """List pods matching the selector as Replica snapshots."""
        try:
            pods = self.core_v1.list_namespaced_pod(
                namespace=namespace, label_selector=selector
            )
        except ApiException as e:
            raise ClusterQueryError(
                f"Failed to list pods in {namespace} ({selector}): {e.status} {e.reason}"
            )
        except TransportError as e:
            raise ClusterQueryError(f"Failed to list pods in {namespace} ({selector}): {e}")
        return [replica_from_pod(pod) for pod in pods.items]
