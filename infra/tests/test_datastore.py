"""Tests for credentials and the managed database."""

import pytest

from topology.datastore import generate_credential, provision_data_store
from topology.errors import TopologyValidationError
from topology.graph import EdgeKind
from topology.nodes import (
    CharacterClass,
    DataStoreEngine,
    DataStoreSizing,
    NodeKind,
    Placement,
    RetentionPolicy,
)


class TestGenerateCredential:
    def test_defaults(self, graph) -> None:
        credential = generate_credential(graph)

        assert credential.fixed_fields == {"username": "postgres"}
        assert credential.generated_field == "password"
        assert credential.field_names == ("username", "password")
        assert credential.excluded_character_classes == frozenset({CharacterClass.PUNCTUATION})

    def test_generated_field_may_not_shadow_fixed_field(self, graph) -> None:
        with pytest.raises(TopologyValidationError) as excinfo:
            generate_credential(graph, fixed_fields={"password": "x"})

        assert excinfo.value.invariant == "generated-field-distinct"
        assert len(graph) == 0

    def test_something_must_remain_generatable(self, graph) -> None:
        with pytest.raises(TopologyValidationError, match="every character class"):
            generate_credential(graph, excluded_character_classes=list(CharacterClass))

    def test_bind_unknown_field(self, credential) -> None:
        with pytest.raises(TopologyValidationError) as excinfo:
            credential.bind("token")

        assert excinfo.value.invariant == "secret-field-exists"


class TestProvisionDataStore:
    def test_private_and_bound_to_credential(self, graph, network, data_store, credential) -> None:
        assert data_store.publicly_accessible is False
        assert data_store.subdivisions == network.private_subdivisions
        assert data_store.port == 5432
        assert data_store.engine.major_version == "15"
        edges = graph.edges_from(data_store.name)
        assert any(
            e.kind is EdgeKind.REFERENCES and e.target == credential.name and e.attribute == "arn"
            for e in edges
        )

    def test_public_access_is_rejected(self, graph, network, credential) -> None:
        with pytest.raises(TopologyValidationError) as excinfo:
            provision_data_store(graph, network, credential, publicly_accessible=True)

        assert excinfo.value.invariant == "data-store-not-public"
        assert graph.nodes(NodeKind.DATA_STORE) == []

    def test_public_placement_fails_before_any_node(self, graph, network, credential) -> None:
        before = len(graph)

        with pytest.raises(TopologyValidationError) as excinfo:
            provision_data_store(graph, network, credential, placement=Placement.public())

        assert excinfo.value.invariant == "data-store-in-private-subdivision"
        assert len(graph) == before

    @pytest.mark.parametrize(
        ("fixed_fields", "generated_field"),
        [({"login": "admin"}, "token"), ({"username": "postgres"}, "token"), ({}, "password")],
    )
    def test_credential_needs_username_and_password(
        self, graph, network, fixed_fields, generated_field
    ) -> None:
        credential = generate_credential(
            graph, "AppSecret", fixed_fields=fixed_fields, generated_field=generated_field
        )

        with pytest.raises(TopologyValidationError) as excinfo:
            provision_data_store(graph, network, credential)

        assert excinfo.value.invariant == "credential-fields"
        assert graph.nodes(NodeKind.DATA_STORE) == []

    def test_named_private_placement(self, graph, network, credential) -> None:
        store = provision_data_store(
            graph, network, credential, placement=Placement.named("AppVpcPrivateSubnet2")
        )

        assert store.subdivisions == ("AppVpcPrivateSubnet2",)

    def test_mixed_placement_is_rejected(self, graph, network, credential) -> None:
        with pytest.raises(TopologyValidationError):
            provision_data_store(
                graph,
                network,
                credential,
                placement=Placement.named("AppVpcPrivateSubnet1", "AppVpcPublicSubnet1"),
            )

    @pytest.mark.parametrize(
        ("allocated", "maximum", "invariant"),
        [(0, 100, "storage-positive"), (50, 20, "storage-bounds")],
    )
    def test_storage_bounds(self, graph, network, credential, allocated, maximum, invariant) -> None:
        sizing = DataStoreSizing(allocated_storage=allocated, max_allocated_storage=maximum)

        with pytest.raises(TopologyValidationError) as excinfo:
            provision_data_store(graph, network, credential, sizing=sizing)

        assert excinfo.value.invariant == invariant

    def test_mysql_default_port(self, graph, network, credential) -> None:
        store = provision_data_store(
            graph, network, credential, engine=DataStoreEngine(name="mysql", version="8.0.35")
        )

        assert store.port == 3306
        assert store.engine.major_version == "8.0"

    def test_production_retention(self, graph, network, credential) -> None:
        store = provision_data_store(
            graph, network, credential, retention=RetentionPolicy.production()
        )

        assert store.retention.deletion_protection is True
        assert store.retention.backup_retention_days == 7
