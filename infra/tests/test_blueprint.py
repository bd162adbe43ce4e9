"""End-to-end tests for the deployment blueprint and its settings."""

import json

import pytest
from pydantic import ValidationError

from topology.blueprint import (
    AlarmIntent,
    DeploymentIntent,
    NetworkIntent,
    ServiceIntent,
    build_topology,
)
from topology.config import DeploySettings
from topology.errors import TopologyValidationError
from topology.nodes import (
    DataStore,
    EntryPoint,
    FirewallPolicy,
    NodeKind,
    SecurityRule,
    Subdivision,
    Workload,
    WorkloadMode,
)


@pytest.fixture
def topology(intent):
    return build_topology(intent)


class TestBuildTopology:
    def test_resource_counts(self, topology) -> None:
        summary = topology.summary()

        assert topology.sealed
        assert summary[NodeKind.SUBDIVISION] == 4
        assert summary[NodeKind.GATEWAY] == 1
        assert summary[NodeKind.DATA_STORE] == 1
        assert summary[NodeKind.WORKLOAD] == 2
        assert summary[NodeKind.ENTRY_POINT] == 1
        assert summary[NodeKind.FIREWALL_POLICY] == 1
        assert summary[NodeKind.NOTIFICATION_TARGET] == 1
        assert summary[NodeKind.ALARM] == 2
        assert summary[NodeKind.PERMISSION_GRANT] == 2

    def test_backend_is_fronted_and_frontend_is_not(self, topology) -> None:
        workloads = {w.name: w for w in topology.nodes_of(Workload)}
        entry_point = topology.nodes_of(EntryPoint)[0]

        assert workloads["BackendService"].mode is WorkloadMode.LOAD_BALANCED
        assert workloads["FrontendService"].mode is WorkloadMode.STANDALONE
        assert workloads["FrontendService"].assign_public_ip is True
        assert entry_point.workload == "BackendService"
        policy = topology.nodes_of(FirewallPolicy)[0]
        assert policy.entry_point == entry_point.name
        assert policy.metric_name == "BackendWafMetrics"

    def test_only_backend_reaches_database(self, topology) -> None:
        store = topology.nodes_of(DataStore)[0]
        rules = [r for r in topology.nodes_of(SecurityRule) if r.target == store.name]

        assert len(rules) == 1
        assert rules[0].source_workload == "BackendService"
        assert rules[0].port == 5432

    def test_database_stays_private(self, topology) -> None:
        store = topology.nodes_of(DataStore)[0]
        private = {
            s.name for s in topology.nodes_of(Subdivision) if s.subdivision_kind.value == "private"
        }

        assert store.publicly_accessible is False
        assert set(store.subdivisions) <= private

    def test_construction_order_respects_edges(self, topology) -> None:
        position = {node.name: i for i, node in enumerate(topology.topological_order())}

        for edge in topology.edges():
            assert position[edge.target] < position[edge.source]
        assert position["PostgresInstance"] < position["BackendService"]
        assert position["BackendService"] < position["BackendServiceLoadBalancer"]

    def test_no_secret_value_in_output(self, topology) -> None:
        rendered = json.dumps(topology.to_dict())

        backend = topology.get("BackendService")
        assert backend.secrets["DB_PASSWORD"].field == "password"
        assert "DB_PASSWORD" not in backend.env
        assert '"password":' not in rendered

    def test_default_firewall_raises_no_warnings(self, topology) -> None:
        assert topology.warnings == []

    def test_invalid_network_fails_without_graph(self, intent) -> None:
        broken = intent.model_copy(update={"network": NetworkIntent(az_count=2, nat_gateways=3)})

        with pytest.raises(TopologyValidationError) as excinfo:
            build_topology(broken)

        assert excinfo.value.invariant == "nat-gateway-count"


class TestDeploymentIntent:
    def test_for_registry(self) -> None:
        intent = DeploymentIntent.for_registry(
            "123.dkr.ecr.eu-west-1.amazonaws.com",
            region="eu-west-1",
            alert_emails=("ops@example.com",),
        )

        assert intent.backend.image == "123.dkr.ecr.eu-west-1.amazonaws.com/backend"
        assert intent.backend.port == 3000
        assert intent.frontend.image == "123.dkr.ecr.eu-west-1.amazonaws.com/frontend"
        assert intent.frontend.port == 80
        assert intent.region == "eu-west-1"
        assert intent.alert_emails == ("ops@example.com",)

    @pytest.mark.parametrize("alert_emails", [None, ()])
    def test_alert_emails_are_required(self, alert_emails) -> None:
        overrides = {} if alert_emails is None else {"alert_emails": alert_emails}

        with pytest.raises(ValidationError):
            DeploymentIntent.for_registry("123.dkr.ecr.eu-west-1.amazonaws.com", **overrides)

    @pytest.mark.parametrize(
        ("model", "fields"),
        [
            (NetworkIntent, {"az_count": 0}),
            (NetworkIntent, {"nat_gateways": -1}),
            (ServiceIntent, {"image": "web", "port": 0}),
            (ServiceIntent, {"image": "web", "port": 80, "cpu": 0}),
            (ServiceIntent, {"image": "web", "port": 80, "memory": -512}),
            (ServiceIntent, {"image": "web", "port": 80, "desired_count": 0}),
            (ServiceIntent, {"image": "", "port": 80}),
            (AlarmIntent, {"evaluation_periods": 0}),
            (AlarmIntent, {"datapoints_to_alarm": 0}),
            (AlarmIntent, {"threshold": float("inf")}),
        ],
    )
    def test_intent_field_constraints(self, model, fields) -> None:
        with pytest.raises(ValidationError):
            model(**fields)


class TestDeploySettings:
    def test_registry_from_environment(self, monkeypatch) -> None:
        monkeypatch.setenv("CDK_DEFAULT_ACCOUNT", "123456789012")
        monkeypatch.setenv("CDK_DEFAULT_REGION", "us-east-1")

        settings = DeploySettings(_env_file=None)

        assert settings.registry == "123456789012.dkr.ecr.us-east-1.amazonaws.com"

    def test_blank_region_falls_back(self, monkeypatch) -> None:
        monkeypatch.delenv("CDK_DEFAULT_ACCOUNT", raising=False)
        monkeypatch.setenv("CDK_DEFAULT_REGION", "")

        settings = DeploySettings(_env_file=None)

        assert settings.cdk_default_region == "eu-central-1"
        assert settings.registry is None

    def test_alert_emails_from_environment(self, monkeypatch) -> None:
        monkeypatch.setenv("ALERT_EMAIL", "ops@example.com, oncall@example.com,")

        settings = DeploySettings(_env_file=None)

        assert settings.alert_emails == ("ops@example.com", "oncall@example.com")

    def test_alert_emails_unset(self, monkeypatch) -> None:
        monkeypatch.setenv("ALERT_EMAIL", "")

        assert DeploySettings(_env_file=None).alert_emails == ()
