"""Resource-topology builder for the multi-tier deployment."""

from topology.alerting import create_alarm, create_notification_target
from topology.blueprint import DeploymentIntent, ServiceIntent, build_topology
from topology.datastore import generate_credential, provision_data_store
from topology.errors import (
    DanglingReferenceError,
    DuplicateResourceError,
    FirewallPolicyConflictError,
    SealedGraphError,
    TopologyError,
    TopologyValidationError,
)
from topology.graph import Edge, EdgeKind, ResourceGraph
from topology.network import build_network
from topology.security import (
    allow_database_ingress,
    allow_ingress,
    attach_firewall_policy,
    grant_image_pull,
)
from topology.workloads import (
    add_load_balanced_workload,
    add_standalone_workload,
    build_cluster,
    create_log_sink,
)

__all__ = [
    "DanglingReferenceError",
    "DeploymentIntent",
    "DuplicateResourceError",
    "Edge",
    "EdgeKind",
    "FirewallPolicyConflictError",
    "ResourceGraph",
    "SealedGraphError",
    "ServiceIntent",
    "TopologyError",
    "TopologyValidationError",
    "add_load_balanced_workload",
    "add_standalone_workload",
    "allow_database_ingress",
    "allow_ingress",
    "attach_firewall_policy",
    "build_cluster",
    "build_network",
    "build_topology",
    "create_alarm",
    "create_log_sink",
    "create_notification_target",
    "generate_credential",
    "grant_image_pull",
    "provision_data_store",
]
