"""Cluster, log sinks and the two kinds of containerized workload."""

from __future__ import annotations

import logging
from collections.abc import Mapping

from topology.errors import TopologyValidationError
from topology.graph import ResourceGraph
from topology.nodes import (
    Cluster,
    Credential,
    EntryPoint,
    ExecutionIdentity,
    ExposurePolicy,
    LogSink,
    Network,
    NodeKind,
    Placement,
    Ref,
    SecretBinding,
    SubdivisionKind,
    Workload,
    WorkloadMode,
)
from topology.security import allow_ingress

logger = logging.getLogger(__name__)

# Retention periods CloudWatch Logs accepts
LOG_RETENTION_DAYS = (1, 3, 5, 7, 14, 30, 60, 90, 120, 150, 180, 365)


def build_cluster(
    graph: ResourceGraph,
    network: Network,
    *,
    name: str = "AppCluster",
    container_insights: bool = False,
) -> Cluster:
    graph.require(network, name)
    return graph.add(
        Cluster(name=name, network=network.name, container_insights=container_insights),
        depends_on=[network],
    )


def create_log_sink(
    graph: ResourceGraph,
    name: str,
    *,
    group_name: str,
    stream_prefix: str,
    retention_days: int = 7,
) -> LogSink:
    if retention_days not in LOG_RETENTION_DAYS:
        raise TopologyValidationError(
            name,
            "log-retention",
            f"retention of {retention_days} days is not one of {LOG_RETENTION_DAYS}",
        )
    if not group_name.startswith("/"):
        raise TopologyValidationError(
            name, "log-group-name", f"log group name {group_name!r} must start with '/'"
        )
    return graph.add(
        LogSink(
            name=name,
            group_name=group_name,
            stream_prefix=stream_prefix,
            retention_days=retention_days,
        )
    )


def add_load_balanced_workload(
    graph: ResourceGraph,
    cluster: Cluster,
    *,
    name: str,
    image: str,
    port: int,
    log_sink: LogSink,
    cpu: int = 256,
    memory: int = 512,
    desired_count: int = 1,
    env: Mapping[str, str | Ref] | None = None,
    secrets: Mapping[str, SecretBinding] | None = None,
    listener_port: int = 80,
    public: bool = True,
    entry_point_name: str | None = None,
) -> tuple[Workload, EntryPoint]:
    """Define a workload and the load balancer in front of it.

    Tasks run in the private subdivisions; the entry point sits in the public
    subdivisions when ``public`` is set. The pair is added atomically: if
    anything fails neither node stays in the graph.
    """
    network = _network_of(graph, cluster)
    graph.require(log_sink, name)
    entry_point_name = entry_point_name or f"{name}LoadBalancer"
    _check_container(name, image, port, cpu, memory, desired_count)
    _check_port(entry_point_name, listener_port)
    env, refs = _resolve_env(graph, name, env or {}, secrets or {})
    front = network.subdivisions(SubdivisionKind.PUBLIC if public else SubdivisionKind.PRIVATE)

    with graph.atomic():
        identity = _execution_identity(graph, name)
        workload = graph.add(
            Workload(
                name=name,
                cluster=cluster.name,
                mode=WorkloadMode.LOAD_BALANCED,
                image=image,
                port=port,
                cpu=cpu,
                memory=memory,
                desired_count=desired_count,
                env=env,
                secrets=dict(secrets or {}),
                log_sink=log_sink.name,
                execution_identity=identity.name,
                subdivisions=network.private_subdivisions,
            ),
            depends_on=[cluster, log_sink, identity, *network.private_subdivisions],
            references=refs,
        )
        entry_point = graph.add(
            EntryPoint(
                name=entry_point_name,
                workload=name,
                network=network.name,
                subdivisions=front,
                public=public,
                listener_port=listener_port,
            ),
            depends_on=[workload, *front],
        )

    logger.info(
        "Load-balanced workload %s (%s) behind %s:%d",
        name,
        image,
        entry_point_name,
        listener_port,
    )
    return workload, entry_point


def add_standalone_workload(
    graph: ResourceGraph,
    cluster: Cluster,
    *,
    name: str,
    image: str,
    log_sink: LogSink,
    placement: Placement | None = None,
    exposure: ExposurePolicy | None = None,
    port: int = 80,
    cpu: int = 256,
    memory: int = 512,
    desired_count: int = 1,
    env: Mapping[str, str | Ref] | None = None,
    secrets: Mapping[str, SecretBinding] | None = None,
) -> Workload:
    """Define a workload with its own placement and exposure, no load balancer."""
    network = _network_of(graph, cluster)
    graph.require(log_sink, name)
    placement = placement or Placement.public()
    exposure = exposure or ExposurePolicy.public_http()
    _check_container(name, image, port, cpu, memory, desired_count)
    env, refs = _resolve_env(graph, name, env or {}, secrets or {})

    chosen = placement.resolve(network)
    if not chosen:
        raise TopologyValidationError(name, "placement-non-empty", "placement resolves to nothing")
    if exposure.assign_public_ip and any(s not in network.public_subdivisions for s in chosen):
        raise TopologyValidationError(
            name,
            "public-ip-in-public-subdivision",
            "a workload with a public IP must be placed in public subdivisions",
        )

    with graph.atomic():
        identity = _execution_identity(graph, name)
        workload = graph.add(
            Workload(
                name=name,
                cluster=cluster.name,
                mode=WorkloadMode.STANDALONE,
                image=image,
                port=port,
                cpu=cpu,
                memory=memory,
                desired_count=desired_count,
                env=env,
                secrets=dict(secrets or {}),
                log_sink=log_sink.name,
                execution_identity=identity.name,
                subdivisions=chosen,
                assign_public_ip=exposure.assign_public_ip,
                exposure=exposure,
            ),
            depends_on=[cluster, log_sink, identity, *chosen],
            references=refs,
        )
        for peer in exposure.ingress:
            allow_ingress(graph, workload, peer, exposure.protocol, port, exposure.description)

    logger.info("Standalone workload %s (%s) on %s", name, image, ", ".join(chosen))
    return workload


def _network_of(graph: ResourceGraph, cluster: Cluster) -> Network:
    graph.require(cluster)
    network = graph.get(cluster.network)
    if not isinstance(network, Network):
        raise TopologyValidationError(cluster.name, "cluster-network", "cluster has no network")
    return network


def _execution_identity(graph: ResourceGraph, workload_name: str) -> ExecutionIdentity:
    return graph.add(ExecutionIdentity(name=f"{workload_name}ExecutionRole"))


def _check_container(
    name: str, image: str, port: int, cpu: int, memory: int, desired_count: int
) -> None:
    if not image.strip():
        raise TopologyValidationError(name, "image-reference", "image reference is empty")
    _check_port(name, port)
    for field, value in (("cpu", cpu), ("memory", memory), ("desired count", desired_count)):
        if value <= 0:
            raise TopologyValidationError(
                name, "positive-sizing", f"{field} must be positive, got {value}"
            )


def _check_port(name: str, port: int) -> None:
    if not 1 <= port <= 65535:
        raise TopologyValidationError(name, "valid-port", f"port {port} is out of range")


def _resolve_env(
    graph: ResourceGraph,
    name: str,
    env: Mapping[str, str | Ref],
    secrets: Mapping[str, SecretBinding],
) -> tuple[dict[str, str | Ref], list[Ref]]:
    """Split env into literals and references, and bind secrets by reference.

    Credential fields never travel through plain env: a reference to a
    credential is rejected and must be a secret binding instead.
    """
    overlap = sorted(set(env) & set(secrets))
    if overlap:
        raise TopologyValidationError(
            name, "env-secret-disjoint", f"keys bound both as env and as secret: {overlap}"
        )

    refs: list[Ref] = []
    resolved: dict[str, str | Ref] = {}
    for key, value in env.items():
        if isinstance(value, Ref):
            if value.kind is NodeKind.CREDENTIAL:
                raise TopologyValidationError(
                    name,
                    "credential-by-reference",
                    f"env {key} refers to credential {value.node!r}; bind it as a secret",
                )
            refs.append(value)
            resolved[key] = value
        else:
            resolved[key] = str(value)

    for key, binding in secrets.items():
        credential = graph.get(binding.credential)
        if not isinstance(credential, Credential):
            raise TopologyValidationError(
                name, "secret-from-credential", f"secret {key} is not bound to a credential"
            )
        credential.bind(binding.field)
        refs.append(Ref(node=credential.name, kind=NodeKind.CREDENTIAL, attribute=binding.field))
    return resolved, refs
