#!/usr/bin/env python3
"""CDK App entry point: build the deployment topology and synthesize it."""

import logging
import sys

import aws_cdk as cdk

from stacks.deployment_stack import DeploymentStack
from topology.blueprint import DeploymentIntent, build_topology
from topology.config import get_settings
from topology.errors import TopologyError

settings = get_settings()
logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

if settings.registry is None:
    sys.exit("CDK_DEFAULT_ACCOUNT is not set; it is needed to locate the image registry")
if not settings.alert_emails:
    sys.exit("ALERT_EMAIL is not set; it lists the addresses the alarm topic notifies")

intent = DeploymentIntent.for_registry(
    settings.registry,
    region=settings.cdk_default_region,
    alert_emails=settings.alert_emails,
)

# Validation fails here, before any stack exists
try:
    graph = build_topology(intent)
except TopologyError as exc:
    sys.exit(f"Topology construction failed: {exc}")

app = cdk.App()

env = cdk.Environment(
    account=settings.cdk_default_account,
    region=settings.cdk_default_region,
)

DeploymentStack(app, intent.name, graph=graph, env=env)

app.synth()
