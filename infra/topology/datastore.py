"""Generated credentials and the managed relational database."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping

from topology.errors import TopologyValidationError
from topology.graph import ResourceGraph
from topology.nodes import (
    CharacterClass,
    Credential,
    DataStore,
    DataStoreEngine,
    DataStoreSizing,
    Network,
    Placement,
    RetentionPolicy,
)

logger = logging.getLogger(__name__)

DEFAULT_PORTS = {"postgres": 5432, "mysql": 3306}


def generate_credential(
    graph: ResourceGraph,
    name: str = "DbCredentialsSecret",
    fixed_fields: Mapping[str, str] | None = None,
    generated_field: str = "password",
    excluded_character_classes: Iterable[CharacterClass] = (CharacterClass.PUNCTUATION,),
) -> Credential:
    """Define a secret whose ``generated_field`` is generated at deploy time.

    Only the layout of the secret enters the graph; its generated value never
    does. Consumers bind to fields through :meth:`Credential.bind`.
    """
    fixed = dict(fixed_fields if fixed_fields is not None else {"username": "postgres"})
    excluded = frozenset(excluded_character_classes)

    if not generated_field:
        raise TopologyValidationError(name, "generated-field", "generated field name is empty")
    if generated_field in fixed:
        raise TopologyValidationError(
            name,
            "generated-field-distinct",
            f"generated field {generated_field!r} collides with a fixed field",
        )
    if excluded >= set(CharacterClass):
        raise TopologyValidationError(
            name, "generatable-secret", "every character class is excluded"
        )

    return graph.add(
        Credential(
            name=name,
            fixed_fields=fixed,
            generated_field=generated_field,
            excluded_character_classes=excluded,
        )
    )


def provision_data_store(
    graph: ResourceGraph,
    network: Network,
    credential: Credential,
    *,
    name: str = "PostgresInstance",
    placement: Placement | None = None,
    sizing: DataStoreSizing | None = None,
    retention: RetentionPolicy | None = None,
    engine: DataStoreEngine | None = None,
    database_name: str = "appdb",
    port: int | None = None,
    publicly_accessible: bool = False,
) -> DataStore:
    """Define a database instance reachable only inside the private subdivisions.

    Every invariant is checked before the node is added: public
    reachability, placement outside the private subdivisions and impossible
    storage bounds all fail without touching the graph.
    """
    graph.require(network, name)
    graph.require(credential, name)
    placement = placement or Placement.private()
    sizing = sizing or DataStoreSizing()
    retention = retention or RetentionPolicy()
    engine = engine or DataStoreEngine()
    port = port if port is not None else DEFAULT_PORTS[engine.name]

    if publicly_accessible:
        raise TopologyValidationError(
            name, "data-store-not-public", "a data store may never be publicly reachable"
        )
    # The engine reads the master login from these two keys of the secret
    if "username" not in credential.fixed_fields or credential.generated_field != "password":
        raise TopologyValidationError(
            name,
            "credential-fields",
            f"credential {credential.name!r} must hold a fixed 'username' and a generated "
            f"'password', got {list(credential.field_names)}",
        )

    chosen = placement.resolve(network)
    outside = [subnet for subnet in chosen if subnet not in network.private_subdivisions]
    if not chosen or outside:
        raise TopologyValidationError(
            name,
            "data-store-in-private-subdivision",
            f"placement must resolve inside the private subdivisions of {network.name}, "
            f"got {list(chosen)}",
        )
    if sizing.allocated_storage <= 0:
        raise TopologyValidationError(
            name, "storage-positive", f"allocated storage must be positive, got {sizing.allocated_storage}"
        )
    if sizing.max_allocated_storage < sizing.allocated_storage:
        raise TopologyValidationError(
            name,
            "storage-bounds",
            f"max storage {sizing.max_allocated_storage} is below initial "
            f"storage {sizing.allocated_storage}",
        )
    if not 1 <= port <= 65535:
        raise TopologyValidationError(name, "valid-port", f"port {port} is out of range")

    store = graph.add(
        DataStore(
            name=name,
            network=network.name,
            credential=credential.name,
            subdivisions=chosen,
            engine=engine,
            sizing=sizing,
            retention=retention,
            database_name=database_name,
            port=port,
        ),
        depends_on=[network, *chosen],
        references=[credential.ref("arn")],
    )
    logger.info(
        "Data store %s: %s %s on %s, port %d",
        name,
        engine.name,
        engine.version,
        sizing.instance_class,
        port,
    )
    return store
