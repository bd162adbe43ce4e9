"""Network topology: the VPC, its public/private subdivisions and NAT gateways."""

from __future__ import annotations

import ipaddress
import logging
import string
from itertools import islice

from topology.errors import TopologyValidationError
from topology.graph import ResourceGraph
from topology.nodes import Gateway, Network, Subdivision, SubdivisionKind

logger = logging.getLogger(__name__)

DEFAULT_CIDR = "10.0.0.0/16"
DEFAULT_SUBNET_PREFIX = 24
# Smallest block AWS accepts for a subnet
MAX_SUBNET_PREFIX = 28


def build_network(
    graph: ResourceGraph,
    az_count: int,
    nat_gateway_count: int = 1,
    *,
    name: str = "AppVpc",
    cidr: str = DEFAULT_CIDR,
    subnet_prefix: int = DEFAULT_SUBNET_PREFIX,
    region: str = "eu-central-1",
) -> Network:
    """Create a network with one public and one private subdivision per AZ.

    Address blocks are carved in order from ``cidr``: every public block
    first, then every private block. Private subdivision ``i`` egresses
    through gateway ``i % nat_gateway_count``; with no gateways the private
    subdivisions are isolated.
    """
    if az_count < 1:
        raise TopologyValidationError(
            name, "az-count-positive", f"availability zone count must be at least 1, got {az_count}"
        )
    if az_count > len(string.ascii_lowercase):
        raise TopologyValidationError(
            name, "az-count-in-region", f"a region has at most 26 zones, got {az_count}"
        )
    if not 0 <= nat_gateway_count <= az_count:
        raise TopologyValidationError(
            name,
            "nat-gateway-count",
            f"NAT gateway count must be between 0 and {az_count}, got {nat_gateway_count}",
        )

    blocks = _carve(name, cidr, subnet_prefix, 2 * az_count)
    zones = tuple(f"{region}{letter}" for letter in string.ascii_lowercase[:az_count])
    public_names = tuple(f"{name}PublicSubnet{i + 1}" for i in range(az_count))
    private_names = tuple(f"{name}PrivateSubnet{i + 1}" for i in range(az_count))
    gateway_names = tuple(f"{name}NatGateway{i + 1}" for i in range(nat_gateway_count))

    with graph.atomic():
        network = graph.add(
            Network(
                name=name,
                cidr=cidr,
                region=region,
                availability_zones=zones,
                subnet_prefix=subnet_prefix,
                public_subdivisions=public_names,
                private_subdivisions=private_names,
                gateways=gateway_names,
            )
        )

        for subnet_name, zone, block in zip(public_names, zones, blocks[:az_count]):
            graph.add(
                Subdivision(
                    name=subnet_name,
                    network=name,
                    subdivision_kind=SubdivisionKind.PUBLIC,
                    cidr=str(block),
                    availability_zone=zone,
                ),
                depends_on=[network],
            )

        for gateway_name, subnet_name in zip(gateway_names, public_names):
            graph.add(
                Gateway(name=gateway_name, network=name, subdivision=subnet_name),
                depends_on=[subnet_name],
            )

        for index, (subnet_name, zone, block) in enumerate(
            zip(private_names, zones, blocks[az_count:])
        ):
            gateway = gateway_names[index % nat_gateway_count] if gateway_names else None
            graph.add(
                Subdivision(
                    name=subnet_name,
                    network=name,
                    subdivision_kind=SubdivisionKind.PRIVATE,
                    cidr=str(block),
                    availability_zone=zone,
                    egress_gateway=gateway,
                ),
                depends_on=[network] + ([gateway] if gateway else []),
            )

    logger.info(
        "Network %s: %d AZs, %d NAT gateway(s), %s", name, az_count, nat_gateway_count, cidr
    )
    return network


def subdivisions(
    graph: ResourceGraph, network: Network, kind: SubdivisionKind
) -> list[Subdivision]:
    """Return the subdivision nodes of ``network`` with the given kind."""
    return [
        node
        for node in graph.nodes_of(Subdivision)
        if node.network == network.name and node.subdivision_kind is kind
    ]


def _carve(
    name: str, cidr: str, prefix: int, count: int
) -> list[ipaddress.IPv4Network | ipaddress.IPv6Network]:
    try:
        block = ipaddress.ip_network(cidr)
    except ValueError as exc:
        raise TopologyValidationError(name, "valid-cidr", f"invalid CIDR {cidr!r}: {exc}") from exc

    if not block.prefixlen < prefix <= MAX_SUBNET_PREFIX:
        raise TopologyValidationError(
            name,
            "subnet-prefix",
            f"subnet prefix /{prefix} must be longer than /{block.prefixlen} "
            f"and at most /{MAX_SUBNET_PREFIX}",
        )

    carved = list(islice(block.subnets(new_prefix=prefix), count))
    if len(carved) < count:
        raise TopologyValidationError(
            name,
            "address-space",
            f"{cidr} holds only {len(carved)} /{prefix} blocks, {count} needed",
        )
    return carved
