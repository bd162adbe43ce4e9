"""Shared fixtures for topology tests."""

import pytest

from topology.blueprint import DeploymentIntent, ServiceIntent
from topology.datastore import generate_credential, provision_data_store
from topology.graph import ResourceGraph
from topology.network import build_network
from topology.workloads import add_load_balanced_workload, build_cluster, create_log_sink

REGISTRY = "123456789012.dkr.ecr.eu-central-1.amazonaws.com"


@pytest.fixture
def graph() -> ResourceGraph:
    return ResourceGraph("test")


@pytest.fixture
def network(graph):
    return build_network(graph, 2, 1)


@pytest.fixture
def credential(graph):
    return generate_credential(graph)


@pytest.fixture
def data_store(graph, network, credential):
    return provision_data_store(graph, network, credential)


@pytest.fixture
def cluster(graph, network):
    return build_cluster(graph, network)


@pytest.fixture
def log_sink(graph):
    return create_log_sink(graph, "BackendLogGroup", group_name="/ecs/backend", stream_prefix="backend")


@pytest.fixture
def backend(graph, cluster, log_sink, data_store, credential):
    """Load-balanced backend wired to the data store; returns (workload, entry point)."""
    return add_load_balanced_workload(
        graph,
        cluster,
        name="BackendService",
        image=f"{REGISTRY}/backend",
        port=3000,
        log_sink=log_sink,
        env={
            "DB_NAME": data_store.database_name,
            "DB_HOST": data_store.ref("endpoint_address"),
            "DB_PORT": data_store.ref("endpoint_port"),
        },
        secrets={
            "DB_USER": credential.bind("username"),
            "DB_PASSWORD": credential.bind("password"),
        },
    )


@pytest.fixture
def intent() -> DeploymentIntent:
    return DeploymentIntent(
        backend=ServiceIntent(image=f"{REGISTRY}/backend", port=3000),
        frontend=ServiceIntent(image=f"{REGISTRY}/frontend", port=80),
        alert_emails=("ops@example.com",),
    )
