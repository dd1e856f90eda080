"""Provisioning orchestration.

Drives a provider client through the creation of every requested node, phase
by phase (etcd, master, worker, ingress, storage, bootstrap). Within a phase
all creates are issued first, in request order, then the address polls run
concurrently on a bounded thread pool. A phase starts only after the previous
phase has every node address-assigned.

There is no rollback: when a phase fails, nodes that were already created are
left running. The raised error carries the nodes that reached address
assignment as ``partial_cluster`` so they can be reported and removed with
:func:`teardown`. After a failed create, its already created siblings are only
given ``failure_grace`` seconds to report an address.
"""

import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Mapping

from pydantic import BaseModel, Field

from cluster_provisioner.exceptions import AddressTimeoutError, ProviderError, ValidationError
from cluster_provisioner.logging_config import get_logger
from cluster_provisioner.models.cluster import ClusterTopology, ProvisionedCluster
from cluster_provisioner.models.node import (
    KeyHandle,
    NodeHandle,
    NodeRole,
    NodeSpec,
    NodeState,
    NodeStatus,
    ProvisionedNode,
)
from cluster_provisioner.polling import Deadline, poll
from cluster_provisioner.providers.base import ProviderClient
from cluster_provisioner.topology import TopologyPlanner

logger = get_logger(__name__)

PHASES = (
    NodeRole.ETCD,
    NodeRole.MASTER,
    NodeRole.WORKER,
    NodeRole.INGRESS,
    NodeRole.STORAGE,
    NodeRole.BOOTSTRAP,
)

# Never folded into an overlap node
DEDICATED_ROLES = (NodeRole.BOOTSTRAP,)


class ProvisionOptions(BaseModel):
    """Settings for one provisioning run."""

    ssh_user: str
    ssh_key_name: str
    public_key: str
    node_cidr: str = "192.168.42.2/24"
    overlap: bool = False
    parallelism: int = Field(default=4, ge=1)
    poll_interval: float = Field(default=3.0, gt=0)
    address_timeout: float | None = Field(default=600.0, gt=0)
    # Address wait for nodes created before a failed create in the same phase
    failure_grace: float = Field(default=30.0, ge=0)


class ProvisionOrchestrator:
    """Creates the nodes of a cluster on a provider.

    Args:
        provider: Provider client to create nodes with
        options: Run settings
        cancel_event: Optional event that stops every wait when set
    """

    def __init__(
        self,
        provider: ProviderClient,
        options: ProvisionOptions,
        cancel_event: threading.Event | None = None,
    ):
        self.provider = provider
        self.options = options
        self.cancel_event = cancel_event if cancel_event is not None else threading.Event()
        self._key: KeyHandle | None = None
        self._states: dict[str, NodeState] = {}
        self._states_lock = threading.Lock()

    @property
    def node_states(self) -> dict[str, NodeState]:
        """Snapshot of every node's lifecycle state."""
        with self._states_lock:
            return dict(self._states)

    def _set_state(self, spec: NodeSpec, state: NodeState) -> None:
        with self._states_lock:
            self._states[spec.name] = state
        logger.debug(f"{spec.name}: {state.value}")

    def plan_nodes(
        self, role_counts: Mapping[NodeRole, int]
    ) -> tuple[list[NodeSpec], ClusterTopology | None]:
        """Work out the nodes to create, with addresses when the provider needs them.

        Raises:
            ValidationError: If the role counts are invalid
            InvalidNetworkError: If the node CIDR is malformed
            AddressSpaceExhaustedError: If the nodes do not fit in the node CIDR
        """
        counts = TopologyPlanner.validate_counts(role_counts)
        if counts.get(NodeRole.BOOTSTRAP, 0) > 1:
            raise ValidationError(
                "At most one bootstrap node can be requested",
                f"Requested {counts[NodeRole.BOOTSTRAP]} bootstrap nodes",
            )

        if self.provider.assigns_addresses:
            specs = TopologyPlanner.node_specs(counts, self.options.overlap, DEDICATED_ROLES)
            return specs, None

        topology = TopologyPlanner.plan(
            counts, self.options.node_cidr, self.options.overlap, DEDICATED_ROLES
        )
        return list(topology.nodes), topology

    def ensure_key(self) -> KeyHandle:
        """Make sure the SSH key exists on the provider. Runs at most once."""
        if self._key is None:
            logger.info(f"Ensuring SSH key '{self.options.ssh_key_name}' on {self.provider.name}")
            try:
                self._key = self.provider.ensure_key(
                    self.options.ssh_key_name, self.options.public_key
                )
            except ProviderError:
                raise
            except Exception as e:
                raise ProviderError(f"Failed to register SSH key: {e}")
        return self._key

    def provision(self, role_counts: Mapping[NodeRole, int]) -> ProvisionedCluster:
        """Create every requested node and wait for its addresses.

        Args:
            role_counts: Requested node count per role; bootstrap is 0 or 1

        Returns:
            ProvisionedCluster with the nodes in phase and request order

        Raises:
            ValidationError: If the role counts are invalid
            InvalidNetworkError: If the node CIDR is malformed
            AddressSpaceExhaustedError: If the nodes do not fit in the node CIDR
            ProviderError: If the provider fails; carries ``partial_cluster``
            AddressTimeoutError: If nodes get no address in time; carries ``partial_cluster``
        """
        specs, topology = self.plan_nodes(role_counts)
        for spec in specs:
            self._set_state(spec, NodeState.REQUESTED)

        cluster = ProvisionedCluster()
        try:
            key = self.ensure_key()
            if topology is not None:
                self.provider.prepare(topology, key)
        except ProviderError as e:
            e.partial_cluster = cluster
            raise

        for phase in PHASES:
            phase_specs = [spec for spec in specs if spec.primary_role == phase]
            if phase_specs:
                self._run_phase(phase, phase_specs, key, cluster)

        logger.info(f"Provisioned {len(cluster)} nodes on {self.provider.name}")
        return cluster

    def prepare_only(self, role_counts: Mapping[NodeRole, int]) -> ProvisionedCluster:
        """Hand the planned topology to the provider without creating any node.

        Only for providers that do not assign addresses themselves. The
        returned cluster carries the planned addresses.

        Raises:
            ValidationError: If the provider assigns addresses or the counts are invalid
            InvalidNetworkError: If the node CIDR is malformed
            AddressSpaceExhaustedError: If the nodes do not fit in the node CIDR
            ProviderError: If the provider fails
        """
        if self.provider.assigns_addresses:
            raise ValidationError(
                f"Provider '{self.provider.name}' assigns addresses when nodes are created",
                "Only providers with planned addresses, such as vagrant, can be prepared "
                "without creating nodes",
            )
        _, topology = self.plan_nodes(role_counts)
        self.provider.prepare(topology, self.ensure_key())

        cluster = ProvisionedCluster()
        for spec in topology.nodes:
            cluster.add(
                ProvisionedNode(
                    id=spec.name,
                    hostname=spec.name,
                    public_address=str(spec.ip),
                    private_address=str(spec.ip),
                    ssh_user=self.options.ssh_user,
                    roles=spec.roles,
                )
            )
        logger.info(f"Prepared {len(cluster)} nodes on {self.provider.name} without creating them")
        return cluster

    def _run_phase(
        self, phase: NodeRole, specs: list[NodeSpec], key: KeyHandle, cluster: ProvisionedCluster
    ) -> None:
        logger.info(f"Creating {len(specs)} {phase.label} node(s)")

        created: list[tuple[NodeSpec, NodeHandle]] = []
        failure: ProviderError | None = None
        for spec in specs:
            if self.cancel_event.is_set():
                failure = ProviderError(
                    f"Provisioning cancelled before creating '{spec.name}'",
                    "Nodes created so far are left running",
                )
                break

            self._set_state(spec, NodeState.CREATING)
            try:
                handle = self.provider.create_node(spec, key)
            except Exception as e:
                self._set_state(spec, NodeState.CREATE_FAILED)
                logger.error(f"Failed to create node '{spec.name}': {e}")
                if isinstance(e, ProviderError):
                    failure = e
                else:
                    failure = ProviderError(f"Failed to create node '{spec.name}': {e}")
                break

            created.append((spec, handle))
            self._set_state(spec, NodeState.ADDRESS_PENDING)

        timeout = self.options.address_timeout
        if failure is not None:
            timeout = self._grace_timeout()
        nodes, timed_out, poll_error = self._await_addresses(phase, created, timeout)
        for node in nodes:
            cluster.add(node)

        error = failure or poll_error
        if error is not None:
            if failure is not None and timed_out:
                error.add_details(
                    f"Stopped waiting after {timeout} seconds for the address of "
                    f"{', '.join(timed_out)}, created before the failure; "
                    "remove them with 'cluster-provision delete-all'."
                )
            error.partial_cluster = cluster
            raise error
        if timed_out:
            raise AddressTimeoutError(
                timed_out,
                self.options.address_timeout,
                partial_cluster=cluster,
                cancelled=self.cancel_event.is_set(),
            )
        logger.info(f"All {phase.label} nodes have addresses")

    def _grace_timeout(self) -> float:
        if self.options.address_timeout is None:
            return self.options.failure_grace
        return min(self.options.failure_grace, self.options.address_timeout)

    def _await_addresses(
        self,
        phase: NodeRole,
        created: list[tuple[NodeSpec, NodeHandle]],
        timeout: float | None,
    ) -> tuple[list[ProvisionedNode], list[str], ProviderError | None]:
        """Poll created nodes concurrently until they have addresses.

        Returns:
            Address-assigned nodes in request order, names of nodes that timed
            out, and the first provider error raised while polling
        """
        if not created:
            return [], [], None

        deadline = Deadline(timeout, self.cancel_event)
        results: dict[str, ProvisionedNode] = {}
        timed_out: set[str] = set()
        error: ProviderError | None = None

        workers = min(self.options.parallelism, len(created))
        prefix = f"{phase.label}-poll"
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix=prefix) as pool:
            futures = {
                pool.submit(self._wait_for_address, spec, handle, deadline): spec
                for spec, handle in created
            }
            for future in as_completed(futures):
                spec = futures[future]
                try:
                    node = future.result()
                except ProviderError as e:
                    logger.error(f"Failed to get address of '{spec.name}': {e.message}")
                    error = error or e
                    continue
                if node is None:
                    timed_out.add(spec.name)
                else:
                    results[spec.name] = node

        ordered = [results[spec.name] for spec, _ in created if spec.name in results]
        missing = [spec.name for spec, _ in created if spec.name in timed_out]
        return ordered, missing, error

    def _get_status(self, spec: NodeSpec, handle: NodeHandle) -> NodeStatus:
        try:
            return self.provider.get_node(handle)
        except ProviderError:
            raise
        except Exception as e:
            raise ProviderError(f"Failed to get status of node '{spec.name}': {e}")

    def _wait_for_address(
        self, spec: NodeSpec, handle: NodeHandle, deadline: Deadline
    ) -> ProvisionedNode | None:
        logger.info(f"Waiting for addresses to be assigned to {spec.name}")

        def check() -> NodeStatus | None:
            status = self._get_status(spec, handle)
            if status.address_assigned:
                return status
            logger.debug(f"{spec.name} has no public address yet")
            return None

        status = poll(check, self.options.poll_interval, deadline)
        if status is None:
            logger.warning(f"Gave up waiting for an address on {spec.name}")
            return None

        self._set_state(spec, NodeState.ADDRESS_ASSIGNED)
        logger.info(
            f"Addresses assigned to {spec.name}: public={status.public_address} "
            f"private={status.private_address}"
        )
        return ProvisionedNode(
            id=handle.id,
            hostname=spec.name,
            public_address=status.public_address,
            private_address=status.private_address,
            ssh_user=self.options.ssh_user,
            roles=spec.roles,
        )


def teardown(provider: ProviderClient, tag: str, key_name: str | None = None) -> None:
    """Delete every node carrying ``tag`` and, optionally, the SSH key.

    Raises:
        ProviderError: If the provider fails to delete
    """
    logger.info(f"Deleting nodes tagged '{tag}' on {provider.name}")
    provider.delete_nodes_by_tag(tag)
    if key_name:
        provider.delete_key(key_name)
