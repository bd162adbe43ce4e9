"""Resource node types.

Every node is a frozen pydantic model identified by its logical ``name``.
Nodes refer to each other by name; the edges between them live in
:class:`topology.graph.ResourceGraph`.
"""

from __future__ import annotations

from enum import Enum
from typing import ClassVar, Literal

from pydantic import BaseModel, ConfigDict, Field

from topology.errors import TopologyValidationError


class NodeKind(str, Enum):
    """Resource kinds a graph can hold."""

    NETWORK = "Network"
    SUBDIVISION = "Subdivision"
    GATEWAY = "Gateway"
    CREDENTIAL = "Credential"
    DATA_STORE = "DataStore"
    CLUSTER = "Cluster"
    LOG_SINK = "LogSink"
    EXECUTION_IDENTITY = "ExecutionIdentity"
    PERMISSION_GRANT = "PermissionGrant"
    WORKLOAD = "Workload"
    ENTRY_POINT = "EntryPoint"
    SECURITY_RULE = "SecurityRule"
    FIREWALL_POLICY = "FirewallPolicy"
    NOTIFICATION_TARGET = "NotificationTarget"
    ALARM = "Alarm"


class SubdivisionKind(str, Enum):
    PUBLIC = "public"
    PRIVATE = "private"


class WorkloadMode(str, Enum):
    LOAD_BALANCED = "load_balanced"
    STANDALONE = "standalone"


class Protocol(str, Enum):
    TCP = "tcp"
    UDP = "udp"


class CharacterClass(str, Enum):
    """Character classes a generated secret may exclude."""

    PUNCTUATION = "punctuation"
    NUMBERS = "numbers"
    UPPERCASE = "uppercase"
    LOWERCASE = "lowercase"


class RemovalBehavior(str, Enum):
    DESTROY = "destroy"
    SNAPSHOT = "snapshot"
    RETAIN = "retain"


class FirewallAction(str, Enum):
    ALLOW = "allow"
    BLOCK = "block"


class Comparison(str, Enum):
    GREATER_THAN_OR_EQUAL_TO_THRESHOLD = "GreaterThanOrEqualToThreshold"
    GREATER_THAN_THRESHOLD = "GreaterThanThreshold"
    LESS_THAN_THRESHOLD = "LessThanThreshold"
    LESS_THAN_OR_EQUAL_TO_THRESHOLD = "LessThanOrEqualToThreshold"


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")


class Ref(_Frozen):
    """Deploy-time lookup of one attribute of another node."""

    node: str
    kind: NodeKind
    attribute: str


class Node(_Frozen):
    """Base class for all graph nodes."""

    kind: ClassVar[NodeKind]
    # Attributes other nodes may look up at deploy time
    referenceable: ClassVar[frozenset[str]] = frozenset()

    name: str = Field(..., min_length=1, pattern=r"^[A-Za-z][A-Za-z0-9]*$")

    def ref(self, attribute: str) -> Ref:
        if attribute not in self.referenceable:
            raise TopologyValidationError(
                self.name,
                "referenceable-attribute",
                f"{self.kind.value} exposes no attribute {attribute!r}",
            )
        return Ref(node=self.name, kind=self.kind, attribute=attribute)


# ---------------------------------------------------------------------------
# Network
# ---------------------------------------------------------------------------


class Network(Node):
    kind: ClassVar[NodeKind] = NodeKind.NETWORK
    referenceable: ClassVar[frozenset[str]] = frozenset({"vpc_id"})

    cidr: str
    region: str
    availability_zones: tuple[str, ...]
    subnet_prefix: int
    public_subdivisions: tuple[str, ...]
    private_subdivisions: tuple[str, ...]
    gateways: tuple[str, ...] = ()

    def subdivisions(self, kind: SubdivisionKind) -> tuple[str, ...]:
        if kind is SubdivisionKind.PUBLIC:
            return self.public_subdivisions
        return self.private_subdivisions


class Subdivision(Node):
    kind: ClassVar[NodeKind] = NodeKind.SUBDIVISION
    referenceable: ClassVar[frozenset[str]] = frozenset({"subnet_id"})

    network: str
    subdivision_kind: SubdivisionKind
    cidr: str
    availability_zone: str
    # Private subdivisions egress only through this shared gateway
    egress_gateway: str | None = None


class Gateway(Node):
    """Shared outbound (NAT) gateway living in a public subdivision."""

    kind: ClassVar[NodeKind] = NodeKind.GATEWAY

    network: str
    subdivision: str


class Placement(_Frozen):
    """Where a resource lands: every subdivision of a kind, or named ones."""

    subdivision_kind: SubdivisionKind | None = SubdivisionKind.PRIVATE
    subdivisions: tuple[str, ...] = ()

    @classmethod
    def private(cls) -> Placement:
        return cls(subdivision_kind=SubdivisionKind.PRIVATE)

    @classmethod
    def public(cls) -> Placement:
        return cls(subdivision_kind=SubdivisionKind.PUBLIC)

    @classmethod
    def named(cls, *subdivisions: str) -> Placement:
        return cls(subdivision_kind=None, subdivisions=subdivisions)

    def resolve(self, network: Network) -> tuple[str, ...]:
        if self.subdivision_kind is not None:
            return network.subdivisions(self.subdivision_kind)
        known = set(network.public_subdivisions) | set(network.private_subdivisions)
        unknown = [name for name in self.subdivisions if name not in known]
        if unknown:
            raise TopologyValidationError(
                network.name,
                "placement-in-network",
                f"subdivisions {unknown} are not part of this network",
            )
        return self.subdivisions


# ---------------------------------------------------------------------------
# Secrets and data stores
# ---------------------------------------------------------------------------


class SecretBinding(_Frozen):
    """Binds an environment key to one field of a credential, by reference."""

    credential: str
    field: str


class Credential(Node):
    """Generated secret record. Holds the field layout, never a value."""

    kind: ClassVar[NodeKind] = NodeKind.CREDENTIAL
    referenceable: ClassVar[frozenset[str]] = frozenset({"arn"})

    fixed_fields: dict[str, str]
    generated_field: str
    excluded_character_classes: frozenset[CharacterClass] = frozenset()

    @property
    def field_names(self) -> tuple[str, ...]:
        return (*self.fixed_fields, self.generated_field)

    def bind(self, field: str) -> SecretBinding:
        if field not in self.field_names:
            raise TopologyValidationError(
                self.name,
                "secret-field-exists",
                f"credential has no field {field!r} (fields: {', '.join(self.field_names)})",
            )
        return SecretBinding(credential=self.name, field=field)


class DataStoreEngine(_Frozen):
    name: Literal["postgres", "mysql"] = "postgres"
    version: str = "15.12"

    @property
    def major_version(self) -> str:
        if self.name == "mysql":
            return self.version.rsplit(".", 1)[0]
        return self.version.split(".")[0]


class DataStoreSizing(_Frozen):
    instance_class: str = "t3.micro"
    allocated_storage: int = 20
    max_allocated_storage: int = 100
    multi_az: bool = False


class RetentionPolicy(_Frozen):
    """Teardown behaviour. The defaults suit non-production deployments."""

    removal: RemovalBehavior = RemovalBehavior.DESTROY
    backup_retention_days: int = Field(default=0, ge=0, le=35)
    delete_automated_backups: bool = True
    deletion_protection: bool = False

    @classmethod
    def production(cls) -> RetentionPolicy:
        return cls(
            removal=RemovalBehavior.SNAPSHOT,
            backup_retention_days=7,
            delete_automated_backups=False,
            deletion_protection=True,
        )


class DataStore(Node):
    kind: ClassVar[NodeKind] = NodeKind.DATA_STORE
    referenceable: ClassVar[frozenset[str]] = frozenset(
        {"endpoint_address", "endpoint_port"}
    )

    network: str
    credential: str
    subdivisions: tuple[str, ...]
    engine: DataStoreEngine
    sizing: DataStoreSizing
    retention: RetentionPolicy
    database_name: str
    port: int
    publicly_accessible: Literal[False] = False


# ---------------------------------------------------------------------------
# Cluster and workloads
# ---------------------------------------------------------------------------


class Cluster(Node):
    kind: ClassVar[NodeKind] = NodeKind.CLUSTER
    referenceable: ClassVar[frozenset[str]] = frozenset({"cluster_name"})

    network: str
    container_insights: bool = False


class LogSink(Node):
    kind: ClassVar[NodeKind] = NodeKind.LOG_SINK

    group_name: str
    stream_prefix: str
    retention_days: int


class ExecutionIdentity(Node):
    """Role a workload's tasks run image pulls and log writes under."""

    kind: ClassVar[NodeKind] = NodeKind.EXECUTION_IDENTITY
    referenceable: ClassVar[frozenset[str]] = frozenset({"arn"})

    service_principal: str = "ecs-tasks.amazonaws.com"


class PermissionGrant(Node):
    kind: ClassVar[NodeKind] = NodeKind.PERMISSION_GRANT

    identity: str
    managed_policy: str


class AddressPeer(_Frozen):
    """An address range a security rule can admit traffic from."""

    cidr: str

    @classmethod
    def any_ipv4(cls) -> AddressPeer:
        return cls(cidr="0.0.0.0/0")

    @property
    def label(self) -> str:
        if self.cidr == "0.0.0.0/0":
            return "AnyIPv4"
        return "Cidr" + "".join(ch for ch in self.cidr if ch.isalnum())


class ExposurePolicy(_Frozen):
    """How a standalone workload is reachable from outside the network."""

    assign_public_ip: bool = False
    ingress: tuple[AddressPeer, ...] = ()
    protocol: Protocol = Protocol.TCP
    description: str = ""

    @classmethod
    def public_http(cls) -> ExposurePolicy:
        return cls(
            assign_public_ip=True,
            ingress=(AddressPeer.any_ipv4(),),
            description="Allow HTTP from public",
        )


class Workload(Node):
    kind: ClassVar[NodeKind] = NodeKind.WORKLOAD
    referenceable: ClassVar[frozenset[str]] = frozenset({"service_name"})

    cluster: str
    mode: WorkloadMode
    image: str
    port: int
    cpu: int
    memory: int
    desired_count: int
    env: dict[str, str | Ref] = Field(default_factory=dict)
    secrets: dict[str, SecretBinding] = Field(default_factory=dict)
    log_sink: str
    execution_identity: str
    subdivisions: tuple[str, ...]
    assign_public_ip: bool = False
    exposure: ExposurePolicy | None = None


class EntryPoint(Node):
    """Public load-balancing front of exactly one load-balanced workload."""

    kind: ClassVar[NodeKind] = NodeKind.ENTRY_POINT
    referenceable: ClassVar[frozenset[str]] = frozenset({"dns_name", "arn"})

    workload: str
    network: str
    subdivisions: tuple[str, ...]
    public: bool = True
    listener_port: int = 80


# ---------------------------------------------------------------------------
# Security policy
# ---------------------------------------------------------------------------


class SecurityRule(Node):
    """Directional permission: traffic from a source into a target."""

    kind: ClassVar[NodeKind] = NodeKind.SECURITY_RULE

    target: str
    target_kind: NodeKind
    source_workload: str | None = None
    source_peer: AddressPeer | None = None
    protocol: Protocol
    port: int
    description: str = ""


class ManagedRuleGroup(_Frozen):
    vendor: str = "AWS"
    name: str


BASELINE_RULE_GROUP = ManagedRuleGroup(name="AWSManagedRulesCommonRuleSet")


class FirewallPolicy(Node):
    kind: ClassVar[NodeKind] = NodeKind.FIREWALL_POLICY
    referenceable: ClassVar[frozenset[str]] = frozenset({"arn"})

    entry_point: str
    # Position is priority: the first group is evaluated first
    rule_groups: tuple[ManagedRuleGroup, ...]
    default_action: FirewallAction
    scope: Literal["REGIONAL"] = "REGIONAL"
    metric_name: str


# ---------------------------------------------------------------------------
# Observability
# ---------------------------------------------------------------------------


class NotificationTarget(Node):
    kind: ClassVar[NodeKind] = NodeKind.NOTIFICATION_TARGET
    referenceable: ClassVar[frozenset[str]] = frozenset({"arn"})

    display_name: str = ""
    subscribers: tuple[str, ...] = ()


class MetricSource(_Frozen):
    """One utilization metric published for a workload or data store."""

    node: str
    node_kind: NodeKind
    namespace: str
    metric_name: str
    statistic: str = "Average"

    @classmethod
    def cpu_utilization(cls, node: Workload | DataStore) -> MetricSource:
        return cls._for(node, "CPUUtilization")

    @classmethod
    def memory_utilization(cls, node: Workload) -> MetricSource:
        if not isinstance(node, Workload):
            raise TopologyValidationError(
                node.name,
                "metric-source-kind",
                "memory utilization is only published for workloads",
            )
        return cls._for(node, "MemoryUtilization")

    @classmethod
    def _for(cls, node: Workload | DataStore, metric_name: str) -> MetricSource:
        namespaces = {NodeKind.WORKLOAD: "AWS/ECS", NodeKind.DATA_STORE: "AWS/RDS"}
        if node.kind not in namespaces:
            raise TopologyValidationError(
                node.name,
                "metric-source-kind",
                f"{node.kind.value} publishes no utilization metrics",
            )
        return cls(
            node=node.name,
            node_kind=node.kind,
            namespace=namespaces[node.kind],
            metric_name=metric_name,
        )


class Alarm(Node):
    kind: ClassVar[NodeKind] = NodeKind.ALARM

    metric: MetricSource
    period_seconds: int
    threshold: float
    comparison: Comparison
    evaluation_periods: int
    datapoints_to_alarm: int
    actions: tuple[str, ...]
    description: str = ""
