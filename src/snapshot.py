"""
Pre-rollout identity snapshot.

The snapshot must be captured before the build is triggered so that every
replica created by the rollout is absent from it. It is never re-sampled.
"""

import logging
from datetime import datetime, timezone

from errors import ConfigurationError
from models import IdentitySnapshot

logger = logging.getLogger(__name__)


def capture_snapshot(cluster, namespace: str, workload_name: str) -> IdentitySnapshot:
    """
    Record the workload's revision and the identities of its current replicas.

    Args:
        cluster: Cluster client (get_workload, selector_for, list_replicas)
        namespace: Workload namespace
        workload_name: Workload (deployment) name

    Returns:
        IdentitySnapshot

    Raises:
        ConfigurationError: If the revision marker or selector is missing
        ClusterQueryError: If the workload or replicas cannot be read
    """
    workload = cluster.get_workload(namespace, workload_name)
    if not workload.revision:
        raise ConfigurationError(
            f"Deployment {namespace}/{workload_name} has no revision marker; "
            "cannot establish a rollout baseline"
        )

    selector = cluster.selector_for(workload)
    replicas = cluster.list_replicas(namespace, selector)
    snapshot = IdentitySnapshot(
        revision=workload.revision,
        identities=frozenset(r.uid for r in replicas),
        captured_at=datetime.now(timezone.utc),
    )

    logger.info(
        f"Snapshot of {namespace}/{workload_name}: revision {snapshot.revision}, "
        f"{len(snapshot.identities)} existing pod(s)"
    )
    for replica in replicas:
        logger.debug(f"  pre-existing: {replica.name} ({replica.uid})")
    return snapshot
