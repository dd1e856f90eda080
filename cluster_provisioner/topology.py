"""Deterministic node topology planning.

Turns per-role node counts into an ordered list of named nodes and, for
providers that do not hand out their own addresses, assigns each node an IPv4
address inside the node CIDR.

Nodes are produced in waves: wave ``j`` contains one node for every role whose
requested count is at least ``j``. In overlap mode all roles of a wave are
folded into a single node. The first address is the network address plus two
(the gateway takes plus one); every following node takes the next address.
"""

import ipaddress
from functools import reduce
from ipaddress import IPv4Address, IPv4Network
from typing import Collection, Iterator, Mapping

from cluster_provisioner.exceptions import (
    AddressSpaceExhaustedError,
    InvalidNetworkError,
    ValidationError,
)
from cluster_provisioner.logging_config import get_logger
from cluster_provisioner.models.cluster import ClusterTopology
from cluster_provisioner.models.node import NodeRole, NodeSpec

logger = get_logger(__name__)

OVERLAP_NODE_NAME = "node"


def node_name(prefix: str, index: int) -> str:
    """Build a hostname such as ``etcd001``."""
    return f"{prefix}{index:03d}"


class TopologyPlanner:
    """Stateless planner for node roles, names and addresses."""

    @staticmethod
    def validate_counts(role_counts: Mapping[NodeRole, int]) -> dict[NodeRole, int]:
        """Check role counts and normalise them to single-role keys.

        Raises:
            ValidationError: If a key is not a single role or a count is negative
        """
        counts = {}
        for role, count in role_counts.items():
            if not isinstance(role, NodeRole) or len(role.members()) != 1:
                raise ValidationError(f"Role counts must be keyed by a single role, got {role!r}")
            if count < 0:
                raise ValidationError(f"Node count for {role.label} cannot be negative: {count}")
            counts[role] = int(count)
        return counts

    @staticmethod
    def waves(
        role_counts: Mapping[NodeRole, int],
        overlap: bool = False,
        dedicated: Collection[NodeRole] = (),
    ) -> Iterator[NodeSpec]:
        """Yield node specs wave by wave, without addresses.

        In overlap mode, roles listed in ``dedicated`` still get nodes of their
        own, emitted after the wave's combined node.
        """
        counts = TopologyPlanner.validate_counts(role_counts)

        wave = 1
        while True:
            qualifying = [role for role in NodeRole.ordered() if counts.get(role, 0) >= wave]
            if not qualifying:
                break

            if overlap:
                shared = [role for role in qualifying if role not in dedicated]
                if shared:
                    roles = reduce(lambda a, b: a | b, shared)
                    name = node_name(OVERLAP_NODE_NAME, wave)
                    yield NodeSpec(roles=roles, index=wave, name=name)
                qualifying = [role for role in qualifying if role in dedicated]

            for role in qualifying:
                yield NodeSpec(roles=role, index=wave, name=node_name(role.label, wave))

            wave += 1

    @staticmethod
    def node_specs(
        role_counts: Mapping[NodeRole, int],
        overlap: bool = False,
        dedicated: Collection[NodeRole] = (),
    ) -> list[NodeSpec]:
        return list(TopologyPlanner.waves(role_counts, overlap, dedicated))

    @staticmethod
    def plan(
        role_counts: Mapping[NodeRole, int],
        cidr: str,
        overlap: bool = False,
        dedicated: Collection[NodeRole] = (),
    ) -> ClusterTopology:
        """Plan an addressed topology.

        Args:
            role_counts: Requested node count per role
            cidr: Node network in CIDR notation; host bits are ignored
            overlap: Fold all roles of a wave into one node
            dedicated: Roles kept on nodes of their own in overlap mode

        Returns:
            ClusterTopology with strictly increasing addresses

        Raises:
            InvalidNetworkError: If the CIDR cannot be parsed
            AddressSpaceExhaustedError: If the nodes do not fit in the network
            ValidationError: If the role counts are invalid
        """
        network = parse_network(cidr)
        broadcast = network.broadcast_address

        nodes = []
        previous = None
        for spec in TopologyPlanner.waves(role_counts, overlap, dedicated):
            address = next_address(network, broadcast, previous)
            nodes.append(spec.model_copy(update={"ip": address}))
            previous = address

        logger.debug(f"Planned {len(nodes)} nodes in {network} (overlap={overlap})")
        return ClusterTopology(network=network, broadcast=broadcast, nodes=tuple(nodes))


def parse_network(cidr: str) -> IPv4Network:
    """Parse an IPv4 CIDR, masking any host bits.

    Raises:
        InvalidNetworkError: If the CIDR is malformed or not IPv4
    """
    try:
        return IPv4Network(cidr, strict=False)
    except (ValueError, TypeError) as e:
        raise InvalidNetworkError(
            f"Invalid node network: {cidr!r}",
            f"{e}. Provide an IPv4 CIDR block such as 192.168.42.0/24",
        )


def next_address(
    network: IPv4Network, broadcast: IPv4Address, previous: IPv4Address | None
) -> IPv4Address:
    """Return the address after ``previous``, or the first node address.

    Raises:
        AddressSpaceExhaustedError: If the candidate leaves the network or hits broadcast
    """
    try:
        candidate = network.network_address + 2 if previous is None else previous + 1
    except ipaddress.AddressValueError:
        candidate = None

    if candidate is None or candidate not in network or candidate == broadcast:
        capacity = max(network.num_addresses - 3, 0)
        raise AddressSpaceExhaustedError(
            f"Node addresses overflowed the available range of {network}",
            f"{network} holds at most {capacity} nodes after reserving the network, gateway "
            "and broadcast addresses. Use a larger CIDR or request fewer nodes.",
        )
    return candidate
