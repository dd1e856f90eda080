"""Provider client capability.

Every backing infrastructure implements :class:`ProviderClient`. The
orchestrator only talks to this interface, so it can run against any
provider, including an in-memory fake in tests.
"""

from abc import ABC, abstractmethod

from cluster_provisioner.logging_config import get_logger
from cluster_provisioner.models.cluster import ClusterTopology
from cluster_provisioner.models.node import KeyHandle, NodeHandle, NodeSpec, NodeStatus

logger = get_logger(__name__)


class ProviderClient(ABC):
    """Node and key operations of a backing infrastructure."""

    #: Registry name of the provider
    name: str = ""

    #: False when nodes must be given addresses from a planned topology
    assigns_addresses: bool = True

    #: Login user of the provider's images
    default_ssh_user: str = "root"

    def prepare(self, topology: ClusterTopology, key: KeyHandle) -> None:
        """Receive the planned topology before any node is created.

        Only called for providers that do not assign addresses themselves.
        """
        logger.debug(f"Provider '{self.name}' has no preparation step")

    @abstractmethod
    def ensure_key(self, name: str, public_key: str) -> KeyHandle:
        """Return the SSH key registered under ``name``, registering it if missing."""

    @abstractmethod
    def create_node(self, spec: NodeSpec, key: KeyHandle) -> NodeHandle:
        """Request a node and return without waiting for it to come up."""

    @abstractmethod
    def get_node(self, handle: NodeHandle) -> NodeStatus:
        """Return the current addresses of a requested node."""

    @abstractmethod
    def delete_nodes_by_tag(self, tag: str) -> None:
        """Delete every node carrying the cluster tag."""

    def delete_key(self, name: str) -> None:
        """Remove the SSH key registered under ``name``, if the provider keeps one."""
        logger.debug(f"Provider '{self.name}' does not store SSH keys")
