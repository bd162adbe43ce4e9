"""Tests for clusters, log sinks and workloads."""

import pytest

from topology.errors import DuplicateResourceError, TopologyValidationError
from topology.graph import EdgeKind
from topology.nodes import (
    AddressPeer,
    ExposurePolicy,
    NodeKind,
    Placement,
    Ref,
    SecurityRule,
    WorkloadMode,
)
from topology.workloads import add_load_balanced_workload, add_standalone_workload, create_log_sink

REGISTRY = "123456789012.dkr.ecr.eu-central-1.amazonaws.com"


class TestLogSink:
    def test_retention_must_be_supported(self, graph) -> None:
        with pytest.raises(TopologyValidationError) as excinfo:
            create_log_sink(graph, "Logs", group_name="/ecs/x", stream_prefix="x", retention_days=8)

        assert excinfo.value.invariant == "log-retention"

    def test_group_name_is_a_path(self, graph) -> None:
        with pytest.raises(TopologyValidationError):
            create_log_sink(graph, "Logs", group_name="ecs/x", stream_prefix="x")


class TestLoadBalancedWorkload:
    def test_pair_is_created_together(self, graph, backend, network) -> None:
        workload, entry_point = backend

        assert workload.mode is WorkloadMode.LOAD_BALANCED
        assert workload.subdivisions == network.private_subdivisions
        assert entry_point.workload == workload.name
        assert entry_point.subdivisions == network.public_subdivisions
        assert workload.name in graph.dependencies(entry_point.name)
        assert graph.get(workload.execution_identity).kind is NodeKind.EXECUTION_IDENTITY

    def test_secrets_are_bound_by_reference(self, graph, backend, credential) -> None:
        workload, _ = backend

        assert workload.secrets["DB_PASSWORD"].field == "password"
        assert isinstance(workload.env["DB_HOST"], Ref)
        assert workload.env["DB_NAME"] == "appdb"
        secret_edges = [
            e for e in graph.edges_from(workload.name)
            if e.kind is EdgeKind.REFERENCES and e.target == credential.name
        ]
        assert {e.attribute for e in secret_edges} == {"username", "password"}

    def test_failure_leaves_neither_node(self, graph, cluster, log_sink) -> None:
        graph.add(log_sink.model_copy(update={"name": "ApiLoadBalancer"}))
        before = len(graph)

        with pytest.raises(DuplicateResourceError):
            add_load_balanced_workload(
                graph, cluster, name="Api", image=f"{REGISTRY}/api", port=8080, log_sink=log_sink
            )

        assert len(graph) == before
        assert "Api" not in graph
        assert "ApiExecutionRole" not in graph

    @pytest.mark.parametrize("field", ["cpu", "memory", "desired_count"])
    def test_sizing_must_be_positive(self, graph, cluster, log_sink, field) -> None:
        with pytest.raises(TopologyValidationError) as excinfo:
            add_load_balanced_workload(
                graph,
                cluster,
                name="Api",
                image=f"{REGISTRY}/api",
                port=8080,
                log_sink=log_sink,
                **{field: 0},
            )

        assert excinfo.value.invariant == "positive-sizing"

    def test_credential_in_plain_env_is_rejected(self, graph, cluster, log_sink, credential) -> None:
        with pytest.raises(TopologyValidationError) as excinfo:
            add_load_balanced_workload(
                graph,
                cluster,
                name="Api",
                image=f"{REGISTRY}/api",
                port=8080,
                log_sink=log_sink,
                env={"DB_SECRET": credential.ref("arn")},
            )

        assert excinfo.value.invariant == "credential-by-reference"
        assert "Api" not in graph

    def test_key_bound_twice_is_rejected(self, graph, cluster, log_sink, credential) -> None:
        with pytest.raises(TopologyValidationError) as excinfo:
            add_load_balanced_workload(
                graph,
                cluster,
                name="Api",
                image=f"{REGISTRY}/api",
                port=8080,
                log_sink=log_sink,
                env={"DB_USER": "postgres"},
                secrets={"DB_USER": credential.bind("username")},
            )

        assert excinfo.value.invariant == "env-secret-disjoint"

    def test_port_range(self, graph, cluster, log_sink) -> None:
        with pytest.raises(TopologyValidationError, match="out of range"):
            add_load_balanced_workload(
                graph, cluster, name="Api", image=f"{REGISTRY}/api", port=70000, log_sink=log_sink
            )


class TestStandaloneWorkload:
    def test_public_http_exposure(self, graph, cluster, log_sink, network) -> None:
        workload = add_standalone_workload(
            graph, cluster, name="FrontendService", image=f"{REGISTRY}/frontend", log_sink=log_sink
        )

        assert workload.mode is WorkloadMode.STANDALONE
        assert workload.assign_public_ip is True
        assert workload.subdivisions == network.public_subdivisions
        rules = graph.nodes_of(SecurityRule)
        assert len(rules) == 1
        assert rules[0].target == workload.name
        assert rules[0].source_peer == AddressPeer.any_ipv4()
        assert rules[0].port == 80

    def test_has_no_entry_point(self, graph, cluster, log_sink) -> None:
        add_standalone_workload(
            graph, cluster, name="FrontendService", image=f"{REGISTRY}/frontend", log_sink=log_sink
        )

        assert graph.nodes(NodeKind.ENTRY_POINT) == []
        graph.seal()

    def test_public_ip_needs_public_placement(self, graph, cluster, log_sink) -> None:
        with pytest.raises(TopologyValidationError) as excinfo:
            add_standalone_workload(
                graph,
                cluster,
                name="Worker",
                image=f"{REGISTRY}/worker",
                log_sink=log_sink,
                placement=Placement.private(),
            )

        assert excinfo.value.invariant == "public-ip-in-public-subdivision"

    def test_private_worker_without_ingress(self, graph, cluster, log_sink, network) -> None:
        workload = add_standalone_workload(
            graph,
            cluster,
            name="Worker",
            image=f"{REGISTRY}/worker",
            log_sink=log_sink,
            placement=Placement.private(),
            exposure=ExposurePolicy(),
        )

        assert workload.subdivisions == network.private_subdivisions
        assert graph.nodes_of(SecurityRule) == []
