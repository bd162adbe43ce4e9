"""Deployment stack - renders a sealed resource graph into CDK constructs."""

import json
import logging
from collections.abc import Callable
from typing import Any

import aws_cdk as cdk
from aws_cdk import (
    Duration,
    RemovalPolicy,
    Stack,
    aws_cloudwatch as cw,
    aws_cloudwatch_actions as cw_actions,
    aws_ec2 as ec2,
    aws_ecs as ecs,
    aws_ecs_patterns as ecs_patterns,
    aws_iam as iam,
    aws_logs as logs,
    aws_rds as rds,
    aws_secretsmanager as secretsmanager,
    aws_sns as sns,
    aws_sns_subscriptions as subs,
    aws_wafv2 as wafv2,
)
from constructs import Construct

from topology.errors import TopologyError
from topology.graph import ResourceGraph
from topology.network import subdivisions
from topology.nodes import (
    Alarm,
    CharacterClass,
    Cluster,
    Credential,
    DataStore,
    EntryPoint,
    ExecutionIdentity,
    FirewallAction,
    FirewallPolicy,
    LogSink,
    Network,
    Node,
    NodeKind,
    NotificationTarget,
    PermissionGrant,
    Protocol,
    Ref,
    RemovalBehavior,
    SecurityRule,
    SubdivisionKind,
    Workload,
    WorkloadMode,
)

logger = logging.getLogger(__name__)

_REMOVAL = {
    RemovalBehavior.DESTROY: RemovalPolicy.DESTROY,
    RemovalBehavior.SNAPSHOT: RemovalPolicy.SNAPSHOT,
    RemovalBehavior.RETAIN: RemovalPolicy.RETAIN,
}

_LOG_RETENTION = {
    1: logs.RetentionDays.ONE_DAY,
    3: logs.RetentionDays.THREE_DAYS,
    5: logs.RetentionDays.FIVE_DAYS,
    7: logs.RetentionDays.ONE_WEEK,
    14: logs.RetentionDays.TWO_WEEKS,
    30: logs.RetentionDays.ONE_MONTH,
    60: logs.RetentionDays.TWO_MONTHS,
    90: logs.RetentionDays.THREE_MONTHS,
    120: logs.RetentionDays.FOUR_MONTHS,
    150: logs.RetentionDays.FIVE_MONTHS,
    180: logs.RetentionDays.SIX_MONTHS,
    365: logs.RetentionDays.ONE_YEAR,
}

# (node kind, referenceable attribute) -> attribute of the rendered construct
_ATTRIBUTES = {
    (NodeKind.NETWORK, "vpc_id"): "vpc_id",
    (NodeKind.CREDENTIAL, "arn"): "secret_arn",
    (NodeKind.DATA_STORE, "endpoint_address"): "db_instance_endpoint_address",
    (NodeKind.DATA_STORE, "endpoint_port"): "db_instance_endpoint_port",
    (NodeKind.CLUSTER, "cluster_name"): "cluster_name",
    (NodeKind.EXECUTION_IDENTITY, "arn"): "role_arn",
    (NodeKind.WORKLOAD, "service_name"): "service_name",
    (NodeKind.ENTRY_POINT, "dns_name"): "load_balancer_dns_name",
    (NodeKind.ENTRY_POINT, "arn"): "load_balancer_arn",
    (NodeKind.FIREWALL_POLICY, "arn"): "attr_arn",
    (NodeKind.NOTIFICATION_TARGET, "arn"): "topic_arn",
}


class DeploymentStack(Stack):
    """Stack holding every resource of one sealed topology graph.

    Nodes are rendered in the graph's construction order, so every construct
    a node needs already exists when the node is rendered.
    """

    def __init__(
        self,
        scope: Construct,
        construct_id: str,
        graph: ResourceGraph,
        **kwargs,
    ) -> None:
        super().__init__(scope, construct_id, **kwargs)

        if not graph.sealed:
            raise TopologyError(f"graph {graph.name!r} must be sealed before rendering")

        self.graph = graph
        self._constructs: dict[str, Any] = {}
        renderers: dict[NodeKind, Callable[[Any], None]] = {
            NodeKind.NETWORK: self._render_network,
            # Subnets and NAT gateways are part of the rendered VPC
            NodeKind.SUBDIVISION: self._skip,
            NodeKind.GATEWAY: self._skip,
            NodeKind.CREDENTIAL: self._render_credential,
            NodeKind.DATA_STORE: self._render_data_store,
            NodeKind.CLUSTER: self._render_cluster,
            NodeKind.LOG_SINK: self._render_log_sink,
            NodeKind.EXECUTION_IDENTITY: self._render_execution_identity,
            NodeKind.PERMISSION_GRANT: self._render_permission_grant,
            NodeKind.WORKLOAD: self._render_workload,
            # Created together with its load-balanced workload
            NodeKind.ENTRY_POINT: self._render_entry_point,
            NodeKind.SECURITY_RULE: self._render_security_rule,
            NodeKind.FIREWALL_POLICY: self._render_firewall_policy,
            NodeKind.NOTIFICATION_TARGET: self._render_notification_target,
            NodeKind.ALARM: self._render_alarm,
        }

        for node in graph.topological_order():
            renderers[node.kind](node)
            logger.debug("Rendered %s %s", node.kind.value, node.name)

        self.vpc: ec2.Vpc = self._single(Network)
        self.database: rds.DatabaseInstance = self._single(DataStore)
        self.ecs_cluster: ecs.Cluster = self._single(Cluster)

    def construct_for(self, name: str) -> Any:
        try:
            return self._constructs[name]
        except KeyError:
            raise TopologyError(f"no construct rendered for {name!r}") from None

    # -- network ----------------------------------------------------------

    def _render_network(self, network: Network) -> None:
        if not cdk.Token.is_unresolved(self.region) and self.region != network.region:
            raise TopologyError(
                f"network {network.name!r} is in {network.region}, the stack deploys to {self.region}"
            )
        # One public and one private subnet per zone, in the graph's zone order
        zones = [
            subnet.availability_zone
            for subnet in subdivisions(self.graph, network, SubdivisionKind.PUBLIC)
        ]
        private_type = (
            ec2.SubnetType.PRIVATE_WITH_EGRESS if network.gateways else ec2.SubnetType.PRIVATE_ISOLATED
        )
        self._constructs[network.name] = ec2.Vpc(
            self,
            network.name,
            ip_addresses=ec2.IpAddresses.cidr(network.cidr),
            availability_zones=zones,
            nat_gateways=len(network.gateways),
            subnet_configuration=[
                ec2.SubnetConfiguration(
                    name="Public",
                    subnet_type=ec2.SubnetType.PUBLIC,
                    cidr_mask=network.subnet_prefix,
                ),
                ec2.SubnetConfiguration(
                    name="Private",
                    subnet_type=private_type,
                    cidr_mask=network.subnet_prefix,
                ),
            ],
        )

    def _skip(self, node: Node) -> None:
        pass

    # -- secrets and database ---------------------------------------------

    def _render_credential(self, credential: Credential) -> None:
        excluded = credential.excluded_character_classes
        self._constructs[credential.name] = secretsmanager.Secret(
            self,
            credential.name,
            generate_secret_string=secretsmanager.SecretStringGenerator(
                secret_string_template=json.dumps(credential.fixed_fields),
                generate_string_key=credential.generated_field,
                exclude_punctuation=CharacterClass.PUNCTUATION in excluded,
                exclude_numbers=CharacterClass.NUMBERS in excluded,
                exclude_uppercase=CharacterClass.UPPERCASE in excluded,
                exclude_lowercase=CharacterClass.LOWERCASE in excluded,
            ),
        )

    def _render_data_store(self, store: DataStore) -> None:
        network = self.graph.get(store.network)
        vpc = self.construct_for(store.network)
        retention = store.retention
        self._constructs[store.name] = rds.DatabaseInstance(
            self,
            store.name,
            engine=self._engine(store),
            instance_type=ec2.InstanceType(store.sizing.instance_class),
            vpc=vpc,
            vpc_subnets=self._subnet_selection(network, store.subdivisions),
            credentials=rds.Credentials.from_secret(self.construct_for(store.credential)),
            allocated_storage=store.sizing.allocated_storage,
            max_allocated_storage=store.sizing.max_allocated_storage,
            database_name=store.database_name,
            port=store.port,
            multi_az=store.sizing.multi_az,
            publicly_accessible=False,
            removal_policy=_REMOVAL[retention.removal],
            deletion_protection=retention.deletion_protection,
            delete_automated_backups=retention.delete_automated_backups,
            backup_retention=Duration.days(retention.backup_retention_days),
        )
        cdk.CfnOutput(
            self,
            f"{store.name}Endpoint",
            value=self._constructs[store.name].db_instance_endpoint_address,
            description="Database endpoint",
        )

    def _engine(self, store: DataStore) -> rds.IInstanceEngine:
        engine = store.engine
        if engine.name == "postgres":
            return rds.DatabaseInstanceEngine.postgres(
                version=rds.PostgresEngineVersion.of(engine.version, engine.major_version)
            )
        return rds.DatabaseInstanceEngine.mysql(
            version=rds.MysqlEngineVersion.of(engine.version, engine.major_version)
        )

    # -- cluster and workloads --------------------------------------------

    def _render_cluster(self, cluster: Cluster) -> None:
        self._constructs[cluster.name] = ecs.Cluster(
            self,
            cluster.name,
            vpc=self.construct_for(cluster.network),
            container_insights=cluster.container_insights,
        )

    def _render_log_sink(self, sink: LogSink) -> None:
        self._constructs[sink.name] = logs.LogGroup(
            self,
            sink.name,
            log_group_name=sink.group_name,
            retention=_LOG_RETENTION[sink.retention_days],
            removal_policy=RemovalPolicy.DESTROY,
        )

    def _render_execution_identity(self, identity: ExecutionIdentity) -> None:
        self._constructs[identity.name] = iam.Role(
            self,
            identity.name,
            assumed_by=iam.ServicePrincipal(identity.service_principal),
        )

    def _render_permission_grant(self, grant: PermissionGrant) -> None:
        role: iam.Role = self.construct_for(grant.identity)
        role.add_managed_policy(iam.ManagedPolicy.from_aws_managed_policy_name(grant.managed_policy))
        self._constructs[grant.name] = role

    def _render_workload(self, workload: Workload) -> None:
        if workload.mode is WorkloadMode.LOAD_BALANCED:
            self._render_load_balanced(workload)
        else:
            self._render_standalone(workload)

    def _render_load_balanced(self, workload: Workload) -> None:
        entry_point = next(
            e for e in self.graph.nodes_of(EntryPoint) if e.workload == workload.name
        )
        sink: LogSink = self.graph.get(workload.log_sink)
        service = ecs_patterns.ApplicationLoadBalancedFargateService(
            self,
            workload.name,
            cluster=self.construct_for(workload.cluster),
            desired_count=workload.desired_count,
            cpu=workload.cpu,
            memory_limit_mib=workload.memory,
            public_load_balancer=entry_point.public,
            listener_port=entry_point.listener_port,
            task_image_options=ecs_patterns.ApplicationLoadBalancedTaskImageOptions(
                image=ecs.ContainerImage.from_registry(workload.image),
                container_port=workload.port,
                environment=self._environment(workload),
                secrets=self._secrets(workload),
                log_driver=ecs.LogDrivers.aws_logs(
                    stream_prefix=sink.stream_prefix,
                    log_group=self.construct_for(sink.name),
                ),
                execution_role=self.construct_for(workload.execution_identity),
            ),
        )
        self._constructs[workload.name] = service.service
        self._constructs[entry_point.name] = service.load_balancer

        cdk.CfnOutput(
            self,
            f"{workload.name}Url",
            value=f"http://{service.load_balancer.load_balancer_dns_name}",
            description=f"{workload.name} URL",
        )

    def _render_standalone(self, workload: Workload) -> None:
        network = self.graph.get(self.graph.get(workload.cluster).network)
        sink: LogSink = self.graph.get(workload.log_sink)

        security_group = ec2.SecurityGroup(
            self,
            f"{workload.name}SecurityGroup",
            vpc=self.construct_for(network.name),
            description=f"Ingress to {workload.name} containers",
            allow_all_outbound=True,
        )

        task_definition = ecs.FargateTaskDefinition(
            self,
            f"{workload.name}TaskDef",
            cpu=workload.cpu,
            memory_limit_mib=workload.memory,
            execution_role=self.construct_for(workload.execution_identity),
        )
        task_definition.add_container(
            f"{workload.name}Container",
            image=ecs.ContainerImage.from_registry(workload.image),
            environment=self._environment(workload),
            secrets=self._secrets(workload),
            port_mappings=[ecs.PortMapping(container_port=workload.port)],
            logging=ecs.LogDrivers.aws_logs(
                stream_prefix=sink.stream_prefix,
                log_group=self.construct_for(sink.name),
            ),
        )

        self._constructs[workload.name] = ecs.FargateService(
            self,
            workload.name,
            cluster=self.construct_for(workload.cluster),
            task_definition=task_definition,
            desired_count=workload.desired_count,
            assign_public_ip=workload.assign_public_ip,
            vpc_subnets=self._subnet_selection(network, workload.subdivisions),
            security_groups=[security_group],
        )

    def _render_entry_point(self, entry_point: EntryPoint) -> None:
        if entry_point.name not in self._constructs:
            raise TopologyError(
                f"entry point {entry_point.name!r} was not rendered with workload {entry_point.workload!r}"
            )

    def _environment(self, workload: Workload) -> dict[str, str]:
        return {
            key: self._resolve(value) if isinstance(value, Ref) else value
            for key, value in workload.env.items()
        }

    def _secrets(self, workload: Workload) -> dict[str, ecs.Secret]:
        return {
            key: ecs.Secret.from_secrets_manager(self.construct_for(binding.credential), binding.field)
            for key, binding in workload.secrets.items()
        }

    # -- security ---------------------------------------------------------

    def _render_security_rule(self, rule: SecurityRule) -> None:
        target = self.construct_for(rule.target)
        if rule.source_workload is not None:
            source = self.construct_for(rule.source_workload)
        elif rule.source_peer.cidr == "0.0.0.0/0":
            source = ec2.Peer.any_ipv4()
        else:
            source = ec2.Peer.ipv4(rule.source_peer.cidr)
        port = ec2.Port.tcp(rule.port) if rule.protocol is Protocol.TCP else ec2.Port.udp(rule.port)
        target.connections.allow_from(source, port, rule.description or None)

    def _render_firewall_policy(self, policy: FirewallPolicy) -> None:
        if policy.default_action is FirewallAction.ALLOW:
            default_action = wafv2.CfnWebACL.DefaultActionProperty(
                allow=wafv2.CfnWebACL.AllowActionProperty()
            )
        else:
            default_action = wafv2.CfnWebACL.DefaultActionProperty(
                block=wafv2.CfnWebACL.BlockActionProperty()
            )

        web_acl = wafv2.CfnWebACL(
            self,
            policy.name,
            default_action=default_action,
            scope=policy.scope,
            visibility_config=wafv2.CfnWebACL.VisibilityConfigProperty(
                cloud_watch_metrics_enabled=True,
                metric_name=policy.metric_name,
                sampled_requests_enabled=True,
            ),
            rules=[
                wafv2.CfnWebACL.RuleProperty(
                    name=f"{group.vendor}-{group.name}",
                    priority=priority,
                    override_action=wafv2.CfnWebACL.OverrideActionProperty(none={}),
                    statement=wafv2.CfnWebACL.StatementProperty(
                        managed_rule_group_statement=wafv2.CfnWebACL.ManagedRuleGroupStatementProperty(
                            vendor_name=group.vendor,
                            name=group.name,
                        ),
                    ),
                    visibility_config=wafv2.CfnWebACL.VisibilityConfigProperty(
                        cloud_watch_metrics_enabled=True,
                        metric_name=group.name,
                        sampled_requests_enabled=True,
                    ),
                )
                for priority, group in enumerate(policy.rule_groups)
            ],
        )

        wafv2.CfnWebACLAssociation(
            self,
            f"{policy.name}Association",
            resource_arn=self.construct_for(policy.entry_point).load_balancer_arn,
            web_acl_arn=web_acl.attr_arn,
        )
        self._constructs[policy.name] = web_acl

    # -- observability ----------------------------------------------------

    def _render_notification_target(self, target: NotificationTarget) -> None:
        topic = sns.Topic(self, target.name, display_name=target.display_name or None)
        for address in target.subscribers:
            topic.add_subscription(subs.EmailSubscription(address))
        self._constructs[target.name] = topic

    def _render_alarm(self, alarm: Alarm) -> None:
        source = self.construct_for(alarm.metric.node)
        cw_alarm = cw.Alarm(
            self,
            alarm.name,
            alarm_name=alarm.name,
            metric=source.metric(
                alarm.metric.metric_name,
                period=Duration.seconds(alarm.period_seconds),
                statistic=alarm.metric.statistic,
            ),
            threshold=alarm.threshold,
            evaluation_periods=alarm.evaluation_periods,
            datapoints_to_alarm=alarm.datapoints_to_alarm,
            comparison_operator=getattr(cw.ComparisonOperator, alarm.comparison.name),
            alarm_description=alarm.description or None,
        )
        for action in alarm.actions:
            cw_alarm.add_alarm_action(cw_actions.SnsAction(self.construct_for(action)))
        self._constructs[alarm.name] = cw_alarm

    # -- helpers ----------------------------------------------------------

    def _resolve(self, ref: Ref) -> str:
        try:
            attribute = _ATTRIBUTES[(ref.kind, ref.attribute)]
        except KeyError:
            raise TopologyError(
                f"cannot resolve {ref.attribute!r} of {ref.kind.value} {ref.node!r}"
            ) from None
        return getattr(self.construct_for(ref.node), attribute)

    def _subnet_selection(self, network: Network, chosen: tuple[str, ...]) -> ec2.SubnetSelection:
        for kind in SubdivisionKind:
            if set(chosen) == set(network.subdivisions(kind)):
                if kind is SubdivisionKind.PUBLIC:
                    return ec2.SubnetSelection(subnet_type=ec2.SubnetType.PUBLIC)
                vpc: ec2.Vpc = self.construct_for(network.name)
                return ec2.SubnetSelection(subnets=vpc.private_subnets or vpc.isolated_subnets)
        # Explicit subsets map by position within their kind
        vpc = self.construct_for(network.name)
        subnets = [
            *(
                vpc.public_subnets[i]
                for i, name in enumerate(network.public_subdivisions)
                if name in chosen
            ),
            *(
                (vpc.private_subnets or vpc.isolated_subnets)[i]
                for i, name in enumerate(network.private_subdivisions)
                if name in chosen
            ),
        ]
        return ec2.SubnetSelection(subnets=subnets)

    def _single(self, node_type: type[Node]) -> Any:
        nodes = self.graph.nodes_of(node_type)
        return self.construct_for(nodes[0].name) if nodes else None
