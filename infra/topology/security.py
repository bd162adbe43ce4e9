"""Security policy: ingress rules, firewall policies and image-pull grants."""

from __future__ import annotations

import logging
from collections.abc import Sequence

from topology.errors import FirewallPolicyConflictError, TopologyValidationError
from topology.graph import ResourceGraph
from topology.nodes import (
    BASELINE_RULE_GROUP,
    AddressPeer,
    DataStore,
    EntryPoint,
    FirewallAction,
    FirewallPolicy,
    ManagedRuleGroup,
    PermissionGrant,
    Protocol,
    SecurityRule,
    Workload,
)

logger = logging.getLogger(__name__)

REGISTRY_READ_ONLY_POLICY = "AmazonEC2ContainerRegistryReadOnly"


def allow_ingress(
    graph: ResourceGraph,
    target: Workload | DataStore,
    source: Workload | AddressPeer,
    protocol: Protocol = Protocol.TCP,
    port: int | None = None,
    description: str = "",
) -> SecurityRule:
    """Permit traffic from ``source`` into ``target``.

    A data store only ever admits a specific workload; address ranges are
    rejected for it.
    """
    graph.require(target)
    port = port if port is not None else target.port
    if not 1 <= port <= 65535:
        raise TopologyValidationError(target.name, "valid-port", f"port {port} is out of range")

    depends_on: list[Workload | DataStore] = [target]
    if isinstance(source, Workload):
        graph.require(source, target.name)
        if source.name == target.name:
            raise TopologyValidationError(
                target.name, "ingress-from-other", "a workload cannot be its own ingress source"
            )
        depends_on.append(source)
        label = source.name
    elif isinstance(target, DataStore):
        raise TopologyValidationError(
            target.name,
            "data-store-ingress-from-workload",
            f"data store ingress must name a workload, not the address range {source.cidr}",
        )
    else:
        label = source.label

    name = f"{target.name}From{label}{protocol.value.capitalize()}{port}"
    if name in graph:
        raise TopologyValidationError(
            name, "unique-ingress-rule", f"{label} may already reach {target.name} on {port}"
        )

    rule = graph.add(
        SecurityRule(
            name=name,
            target=target.name,
            target_kind=target.kind,
            source_workload=source.name if isinstance(source, Workload) else None,
            source_peer=source if isinstance(source, AddressPeer) else None,
            protocol=protocol,
            port=port,
            description=description,
        ),
        depends_on=depends_on,
    )
    logger.info("Ingress %s -> %s on %s/%d", label, target.name, protocol.value, port)
    return rule


def allow_database_ingress(
    graph: ResourceGraph,
    data_store: DataStore,
    workload: Workload,
    description: str = "",
) -> SecurityRule:
    """Let exactly one workload reach ``data_store`` on its database port."""
    if not isinstance(workload, Workload):
        raise TopologyValidationError(
            data_store.name,
            "data-store-ingress-from-workload",
            f"database ingress accepts only a workload, got {type(workload).__name__}",
        )
    return allow_ingress(graph, data_store, workload, Protocol.TCP, data_store.port, description)


def attach_firewall_policy(
    graph: ResourceGraph,
    entry_point: EntryPoint,
    rule_groups: Sequence[ManagedRuleGroup],
    default_action: FirewallAction = FirewallAction.ALLOW,
    *,
    name: str | None = None,
    metric_name: str | None = None,
) -> FirewallPolicy:
    """Bind a web ACL made of ``rule_groups`` (in priority order) to ``entry_point``."""
    graph.require(entry_point)
    name = name or f"{entry_point.name}WafAcl"

    bound = [p.name for p in graph.nodes_of(FirewallPolicy) if p.entry_point == entry_point.name]
    if bound:
        raise FirewallPolicyConflictError(
            entry_point.name,
            "firewall-policy-per-entry-point",
            f"already bound to firewall policy {bound[0]!r}",
        )

    group_names = [group.name for group in rule_groups]
    if len(set(group_names)) != len(group_names):
        raise TopologyValidationError(
            name, "unique-rule-groups", f"rule groups repeat: {group_names}"
        )

    with graph.atomic():
        if default_action is FirewallAction.ALLOW and BASELINE_RULE_GROUP not in rule_groups:
            graph.warn(
                f"{name}: default action is allow but the baseline managed rule set "
                f"{BASELINE_RULE_GROUP.name} is missing"
            )
        policy = graph.add(
            FirewallPolicy(
                name=name,
                entry_point=entry_point.name,
                rule_groups=tuple(rule_groups),
                default_action=default_action,
                metric_name=metric_name or f"{name}Metrics",
            ),
            depends_on=[entry_point],
        )
    logger.info("Firewall policy %s bound to %s", name, entry_point.name)
    return policy


def grant_image_pull(graph: ResourceGraph, workload: Workload) -> None:
    """Let ``workload``'s execution identity pull images from the registry.

    Granting twice is a no-op.
    """
    graph.require(workload)
    identity = graph.get(workload.execution_identity)
    name = f"{identity.name}RegistryReadOnly"
    if name in graph:
        logger.debug("Image pull already granted to %s", identity.name)
        return
    graph.add(
        PermissionGrant(name=name, identity=identity.name, managed_policy=REGISTRY_READ_ONLY_POLICY),
        depends_on=[identity],
    )
    logger.info("Granted %s to %s", REGISTRY_READ_ONLY_POLICY, identity.name)
