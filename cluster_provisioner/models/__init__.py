"""Data models for cluster topology, provisioning and plans."""

from cluster_provisioner.models.cluster import (
    ClusterPlanModel,
    ClusterTopology,
    PlanNode,
    ProvisionConfig,
    ProvisionedCluster,
)
from cluster_provisioner.models.node import (
    KeyHandle,
    NodeHandle,
    NodeRole,
    NodeSpec,
    NodeState,
    NodeStatus,
    ProvisionedNode,
)

__all__ = [
    "ClusterPlanModel",
    "ClusterTopology",
    "KeyHandle",
    "NodeHandle",
    "NodeRole",
    "NodeSpec",
    "NodeState",
    "NodeStatus",
    "PlanNode",
    "ProvisionConfig",
    "ProvisionedCluster",
    "ProvisionedNode",
]
