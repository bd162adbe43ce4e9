"""The deployment blueprint: expands a few intents into the full resource graph."""

from __future__ import annotations

import logging
from datetime import timedelta

from pydantic import BaseModel, Field

from topology.alerting import create_alarm, create_notification_target
from topology.config import DEFAULT_REGION
from topology.datastore import generate_credential, provision_data_store
from topology.graph import ResourceGraph
from topology.network import DEFAULT_CIDR, DEFAULT_SUBNET_PREFIX, build_network
from topology.nodes import (
    BASELINE_RULE_GROUP,
    Comparison,
    DataStoreEngine,
    DataStoreSizing,
    ExposurePolicy,
    FirewallAction,
    ManagedRuleGroup,
    MetricSource,
    Placement,
    RetentionPolicy,
)
from topology.security import allow_database_ingress, attach_firewall_policy, grant_image_pull
from topology.workloads import (
    add_load_balanced_workload,
    add_standalone_workload,
    build_cluster,
    create_log_sink,
)

logger = logging.getLogger(__name__)


class NetworkIntent(BaseModel):
    az_count: int = Field(default=2, ge=1)
    nat_gateways: int = Field(default=1, ge=0)
    cidr: str = DEFAULT_CIDR
    subnet_prefix: int = Field(default=DEFAULT_SUBNET_PREFIX, ge=1, le=32)


class DatabaseIntent(BaseModel):
    engine: DataStoreEngine = Field(default_factory=DataStoreEngine)
    sizing: DataStoreSizing = Field(default_factory=DataStoreSizing)
    retention: RetentionPolicy = Field(default_factory=RetentionPolicy)
    database_name: str = Field(default="appdb", min_length=1)
    username: str = Field(default="postgres", min_length=1)
    port: int | None = Field(default=None, ge=1, le=65535)


class ServiceIntent(BaseModel):
    image: str = Field(..., min_length=1)
    port: int = Field(..., ge=1, le=65535)
    cpu: int = Field(default=256, gt=0)
    memory: int = Field(default=512, gt=0)
    desired_count: int = Field(default=1, ge=1)
    log_retention_days: int = Field(default=7, gt=0)


class AlarmIntent(BaseModel):
    threshold: float = Field(default=70, allow_inf_nan=False)
    period: timedelta = timedelta(minutes=1)
    evaluation_periods: int = Field(default=2, ge=1)
    datapoints_to_alarm: int = Field(default=2, ge=1)


class DeploymentIntent(BaseModel):
    """Everything that varies between deployments of this topology."""

    name: str = "AwsInfraStack"
    region: str = DEFAULT_REGION
    network: NetworkIntent = Field(default_factory=NetworkIntent)
    database: DatabaseIntent = Field(default_factory=DatabaseIntent)
    backend: ServiceIntent
    frontend: ServiceIntent
    listener_port: int = Field(default=80, ge=1, le=65535)
    firewall_rule_groups: tuple[ManagedRuleGroup, ...] = (BASELINE_RULE_GROUP,)
    firewall_default_action: FirewallAction = FirewallAction.ALLOW
    # Subscribers of the alarm topic
    alert_emails: tuple[str, ...] = Field(..., min_length=1)
    cpu_alarm: AlarmIntent = Field(default_factory=AlarmIntent)

    @classmethod
    def for_registry(cls, registry: str, region: str = DEFAULT_REGION, **overrides) -> DeploymentIntent:
        """Default intent pulling ``backend`` and ``frontend`` images from ``registry``.

        ``alert_emails`` has no default and must be passed in ``overrides``.
        """
        overrides.setdefault("backend", ServiceIntent(image=f"{registry}/backend", port=3000))
        overrides.setdefault("frontend", ServiceIntent(image=f"{registry}/frontend", port=80))
        return cls(region=region, **overrides)


def build_topology(intent: DeploymentIntent) -> ResourceGraph:
    """Build and seal the resource graph for ``intent``.

    Layers are built leaf first; each consumes the handles of the layers
    before it. Any failure propagates before a graph is returned, so a
    partial topology never leaves this function.
    """
    logger.info("Building topology %s in %s", intent.name, intent.region)
    graph = ResourceGraph(intent.name)

    # Network
    network = build_network(
        graph,
        intent.network.az_count,
        intent.network.nat_gateways,
        cidr=intent.network.cidr,
        subnet_prefix=intent.network.subnet_prefix,
        region=intent.region,
    )

    # Secret and data store
    db = intent.database
    credential = generate_credential(graph, fixed_fields={"username": db.username})
    database = provision_data_store(
        graph,
        network,
        credential,
        placement=Placement.private(),
        sizing=db.sizing,
        retention=db.retention,
        engine=db.engine,
        database_name=db.database_name,
        port=db.port,
    )

    # Cluster and workloads
    cluster = build_cluster(graph, network)
    backend_logs = create_log_sink(
        graph,
        "BackendLogGroup",
        group_name="/ecs/backend",
        stream_prefix="backend",
        retention_days=intent.backend.log_retention_days,
    )
    frontend_logs = create_log_sink(
        graph,
        "FrontendLogGroup",
        group_name="/ecs/frontend",
        stream_prefix="frontend",
        retention_days=intent.frontend.log_retention_days,
    )
    backend, entry_point = add_load_balanced_workload(
        graph,
        cluster,
        name="BackendService",
        image=intent.backend.image,
        port=intent.backend.port,
        cpu=intent.backend.cpu,
        memory=intent.backend.memory,
        desired_count=intent.backend.desired_count,
        env={
            "DB_NAME": database.database_name,
            "DB_HOST": database.ref("endpoint_address"),
            "DB_PORT": database.ref("endpoint_port"),
        },
        secrets={
            "DB_USER": credential.bind("username"),
            "DB_PASSWORD": credential.bind(credential.generated_field),
        },
        log_sink=backend_logs,
        listener_port=intent.listener_port,
    )
    frontend = add_standalone_workload(
        graph,
        cluster,
        name="FrontendService",
        image=intent.frontend.image,
        port=intent.frontend.port,
        cpu=intent.frontend.cpu,
        memory=intent.frontend.memory,
        desired_count=intent.frontend.desired_count,
        placement=Placement.public(),
        exposure=ExposurePolicy.public_http(),
        log_sink=frontend_logs,
    )

    # Security policy
    grant_image_pull(graph, backend)
    grant_image_pull(graph, frontend)
    allow_database_ingress(
        graph, database, backend, "Allow backend ECS tasks to connect to the database"
    )
    attach_firewall_policy(
        graph,
        entry_point,
        intent.firewall_rule_groups,
        intent.firewall_default_action,
        name="BackendWafAcl",
        metric_name="BackendWafMetrics",
    )

    # Observability
    topic = create_notification_target(
        graph, "AlarmTopic", intent.alert_emails, display_name="Infra Alarms Topic"
    )
    alarm = intent.cpu_alarm
    for alarm_name, source, label in (
        ("BackendHighCpu", MetricSource.cpu_utilization(backend), "backend"),
        ("RdsHighCpu", MetricSource.cpu_utilization(database), "RDS"),
    ):
        create_alarm(
            graph,
            alarm_name,
            source,
            alarm.period,
            alarm.threshold,
            Comparison.GREATER_THAN_THRESHOLD,
            alarm.evaluation_periods,
            alarm.datapoints_to_alarm,
            [topic],
            description=f"CPU usage > {alarm.threshold:g}% on {label}",
        )

    return graph.seal()
