"""The resource graph: named nodes joined by depends-on and reference edges."""

from __future__ import annotations

import logging
from collections import Counter
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from enum import Enum
from typing import Any, TypeVar

from pydantic import BaseModel, ConfigDict

from topology.errors import (
    DanglingReferenceError,
    DuplicateResourceError,
    SealedGraphError,
    TopologyValidationError,
)
from topology.nodes import (
    DataStore,
    EntryPoint,
    FirewallPolicy,
    Node,
    NodeKind,
    Ref,
    SecurityRule,
    Workload,
    WorkloadMode,
)

logger = logging.getLogger(__name__)

N = TypeVar("N", bound=Node)


class EdgeKind(str, Enum):
    # Target must exist before the source is constructed
    DEPENDS_ON = "depends_on"
    # Source looks up an attribute of the target at deploy time
    REFERENCES = "references"


class Edge(BaseModel):
    model_config = ConfigDict(frozen=True)

    source: str
    target: str
    kind: EdgeKind
    attribute: str | None = None


class ResourceGraph:
    """Directed acyclic graph of resource nodes.

    Edges may only point at nodes that are already in the graph, so the
    insertion order is always a valid construction order and the graph can
    never contain a cycle.
    """

    def __init__(self, name: str = "deployment") -> None:
        self.name = name
        self.warnings: list[str] = []
        self._nodes: dict[str, Node] = {}
        self._edges: list[Edge] = []
        self._edge_keys: set[tuple[str, str, EdgeKind, str | None]] = set()
        self._sealed = False

    # -- mutation ---------------------------------------------------------

    def add(
        self,
        node: N,
        depends_on: Iterable[Node | str] = (),
        references: Iterable[Ref] = (),
    ) -> N:
        """Add ``node`` with edges to nodes already in the graph."""
        self._ensure_open()
        if node.name in self._nodes:
            raise DuplicateResourceError(node.name)

        targets = [dep if isinstance(dep, str) else dep.name for dep in depends_on]
        refs = list(references)
        for target in [*targets, *(ref.node for ref in refs)]:
            if target not in self._nodes:
                raise DanglingReferenceError(node.name, target)
        for ref in refs:
            if self._nodes[ref.node].kind is not ref.kind:
                raise TopologyValidationError(
                    node.name,
                    "reference-kind",
                    f"{ref.node!r} is a {self._nodes[ref.node].kind.value}, "
                    f"not a {ref.kind.value}",
                )

        self._nodes[node.name] = node
        for target in targets:
            self._link(node.name, target, EdgeKind.DEPENDS_ON)
        for ref in refs:
            self._link(node.name, ref.node, EdgeKind.REFERENCES, ref.attribute)
        logger.debug("Added %s %s", node.kind.value, node.name)
        return node

    def warn(self, message: str) -> None:
        self.warnings.append(message)
        logger.warning(message)

    @contextmanager
    def atomic(self) -> Iterator[ResourceGraph]:
        """Roll back every node and edge added inside the block if it raises."""
        nodes = list(self._nodes)
        edge_count = len(self._edges)
        warning_count = len(self.warnings)
        try:
            yield self
        except BaseException:
            for name in list(self._nodes):
                if name not in nodes:
                    del self._nodes[name]
            for edge in self._edges[edge_count:]:
                self._edge_keys.discard(_edge_key(edge))
            del self._edges[edge_count:]
            del self.warnings[warning_count:]
            raise

    def seal(self) -> ResourceGraph:
        """Check graph-wide invariants and freeze the graph."""
        self.validate()
        self._sealed = True
        logger.info("Sealed graph %s with %d resources", self.name, len(self))
        return self

    @property
    def sealed(self) -> bool:
        return self._sealed

    # -- lookup -----------------------------------------------------------

    def __contains__(self, item: object) -> bool:
        if isinstance(item, Node):
            return self._nodes.get(item.name) == item
        return item in self._nodes

    def __len__(self) -> int:
        return len(self._nodes)

    def __iter__(self) -> Iterator[Node]:
        return iter(self.topological_order())

    def get(self, name: str) -> Node:
        try:
            return self._nodes[name]
        except KeyError:
            raise DanglingReferenceError(self.name, name) from None

    def require(self, node: N, entity: str | None = None) -> N:
        """Return ``node`` if this exact node is in the graph."""
        if self._nodes.get(node.name) != node:
            raise DanglingReferenceError(entity or self.name, node.name)
        return node

    def nodes(self, kind: NodeKind | None = None) -> list[Node]:
        return [node for node in self._nodes.values() if kind is None or node.kind is kind]

    def nodes_of(self, node_type: type[N]) -> list[N]:
        return [node for node in self._nodes.values() if isinstance(node, node_type)]

    def edges(self, kind: EdgeKind | None = None) -> list[Edge]:
        return [edge for edge in self._edges if kind is None or edge.kind is kind]

    def edges_from(self, name: str) -> list[Edge]:
        return [edge for edge in self._edges if edge.source == name]

    def edges_to(self, name: str) -> list[Edge]:
        return [edge for edge in self._edges if edge.target == name]

    def dependencies(self, name: str) -> list[str]:
        return list(dict.fromkeys(edge.target for edge in self.edges_from(name)))

    def dependents(self, name: str) -> list[str]:
        return list(dict.fromkeys(edge.source for edge in self.edges_to(name)))

    def depends_on_closure(self, name: str) -> set[str]:
        """Every node ``name`` transitively needs, excluding itself."""
        seen: set[str] = set()
        stack = self.dependencies(name)
        while stack:
            current = stack.pop()
            if current not in seen:
                seen.add(current)
                stack.extend(self.dependencies(current))
        return seen

    def independent(self, first: str, second: str) -> bool:
        """True when the executor may provision both nodes in parallel."""
        if first == second:
            return False
        return (
            second not in self.depends_on_closure(first)
            and first not in self.depends_on_closure(second)
        )

    def topological_order(self) -> list[Node]:
        return list(self._nodes.values())

    def teardown_order(self) -> list[Node]:
        return list(reversed(self._nodes.values()))

    def summary(self) -> Counter[NodeKind]:
        return Counter(node.kind for node in self._nodes.values())

    # -- validation -------------------------------------------------------

    def validate(self) -> None:
        """Check invariants that span several nodes."""
        entry_points = self.nodes_of(EntryPoint)
        for workload in self.nodes_of(Workload):
            fronts = [e for e in entry_points if e.workload == workload.name]
            expected = 1 if workload.mode is WorkloadMode.LOAD_BALANCED else 0
            if len(fronts) != expected:
                raise TopologyValidationError(
                    workload.name,
                    "entry-point-per-workload",
                    f"expected {expected} entry point(s), found {len(fronts)}",
                )

        bound = Counter(policy.entry_point for policy in self.nodes_of(FirewallPolicy))
        for entry_point, count in bound.items():
            if count > 1:
                raise TopologyValidationError(
                    entry_point, "firewall-policy-per-entry-point", f"{count} policies bound"
                )

        for store in self.nodes_of(DataStore):
            if store.publicly_accessible:
                raise TopologyValidationError(
                    store.name, "data-store-not-public", "data store is publicly reachable"
                )

        for rule in self.nodes_of(SecurityRule):
            if rule.target_kind is NodeKind.DATA_STORE and rule.source_workload is None:
                raise TopologyValidationError(
                    rule.name,
                    "data-store-ingress-from-workload",
                    "data store ingress must name a workload as source",
                )

        for edge in self.edges(EdgeKind.REFERENCES):
            target = self._nodes[edge.target]
            source = self._nodes[edge.source]
            if target.kind is NodeKind.CREDENTIAL and not _binds_secret(source, edge):
                raise TopologyValidationError(
                    source.name,
                    "credential-by-reference",
                    f"credential {target.name!r} may only be bound as a secret",
                )

    # -- output -----------------------------------------------------------

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "nodes": [
                {"kind": node.kind.value, **node.model_dump(mode="json")}
                for node in self.topological_order()
            ],
            "edges": [edge.model_dump(mode="json") for edge in self._edges],
            "warnings": list(self.warnings),
        }

    # -- internals --------------------------------------------------------

    def _link(self, source: str, target: str, kind: EdgeKind, attribute: str | None = None) -> None:
        edge = Edge(source=source, target=target, kind=kind, attribute=attribute)
        key = _edge_key(edge)
        if key not in self._edge_keys:
            self._edge_keys.add(key)
            self._edges.append(edge)

    def _ensure_open(self) -> None:
        if self._sealed:
            raise SealedGraphError(f"graph {self.name!r} is sealed")


def _edge_key(edge: Edge) -> tuple[str, str, EdgeKind, str | None]:
    return (edge.source, edge.target, edge.kind, edge.attribute)


def _binds_secret(source: Node, edge: Edge) -> bool:
    if isinstance(source, DataStore):
        return source.credential == edge.target
    if isinstance(source, Workload):
        return any(
            binding.credential == edge.target and binding.field == edge.attribute
            for binding in source.secrets.values()
        )
    return False
