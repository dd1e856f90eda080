"""Pytest configuration and shared fixtures."""

import threading

import pytest
from hypothesis import Verbosity, settings

from cluster_provisioner.exceptions import ProviderError
from cluster_provisioner.models.cluster import ClusterTopology, ProvisionedCluster
from cluster_provisioner.models.node import (
    KeyHandle,
    NodeHandle,
    NodeRole,
    NodeSpec,
    NodeStatus,
    ProvisionedNode,
)
from cluster_provisioner.orchestrator import ProvisionOptions
from cluster_provisioner.providers.base import ProviderClient

# Configure Hypothesis for property-based testing
settings.register_profile("default", max_examples=100, verbosity=Verbosity.normal)
settings.register_profile("ci", max_examples=1000, verbosity=Verbosity.verbose)
settings.register_profile("dev", max_examples=10, verbosity=Verbosity.verbose)

# Load the default profile
settings.load_profile("default")


class FakeProvider(ProviderClient):
    """In-memory provider with failure injection and call recording.

    Args:
        assigns_addresses: Whether nodes get addresses from the provider
        fail_create: Node names whose create call fails
        fail_get: Node names whose status lookup fails
        never_ready: Node names that never report an address
        polls_before_ready: Status lookups that return no address before one is reported
    """

    name = "fake"

    def __init__(
        self,
        assigns_addresses: bool = True,
        fail_create: set[str] | None = None,
        fail_get: set[str] | None = None,
        never_ready: set[str] | None = None,
        polls_before_ready: int = 0,
    ):
        self.assigns_addresses = assigns_addresses
        self.fail_create = fail_create or set()
        self.fail_get = fail_get or set()
        self.never_ready = never_ready or set()
        self.polls_before_ready = polls_before_ready
        self.calls: list[tuple] = []
        self.created: dict[str, NodeSpec] = {}
        self.prepared: ClusterTopology | None = None
        self._polls: dict[str, int] = {}
        self._lock = threading.Lock()

    def _record(self, *call) -> None:
        with self._lock:
            self.calls.append(call)

    def call_names(self, method: str) -> list:
        return [call[1] for call in self.calls if call[0] == method]

    def ensure_key(self, name: str, public_key: str) -> KeyHandle:
        self._record("ensure_key", name)
        return KeyHandle(id="key-1", name=name, fingerprint="aa:bb:cc")

    def prepare(self, topology: ClusterTopology, key: KeyHandle) -> None:
        self._record("prepare", len(topology.nodes))
        self.prepared = topology

    def create_node(self, spec: NodeSpec, key: KeyHandle) -> NodeHandle:
        self._record("create_node", spec.name)
        if spec.name in self.fail_create:
            raise ProviderError(f"create failed for {spec.name}")
        with self._lock:
            self.created[spec.name] = spec
            number = len(self.created)
        return NodeHandle(id=f"id-{number}", name=spec.name)

    def get_node(self, handle: NodeHandle) -> NodeStatus:
        self._record("get_node", handle.name)
        if handle.name in self.fail_get:
            raise ProviderError(f"lookup failed for {handle.name}")
        with self._lock:
            polls = self._polls.get(handle.name, 0) + 1
            self._polls[handle.name] = polls
        if handle.name in self.never_ready or polls <= self.polls_before_ready:
            return NodeStatus(id=handle.id, name=handle.name)

        spec = self.created[handle.name]
        if spec.ip is not None:
            public = private = str(spec.ip)
        else:
            number = handle.id.split("-")[1]
            public, private = f"203.0.113.{number}", f"10.0.0.{number}"
        return NodeStatus(
            id=handle.id, name=handle.name, public_address=public, private_address=private
        )

    def delete_nodes_by_tag(self, tag: str) -> None:
        self._record("delete_nodes_by_tag", tag)

    def delete_key(self, name: str) -> None:
        self._record("delete_key", name)


@pytest.fixture
def provider_factory():
    """The FakeProvider class, for tests that need custom failure injection."""
    return FakeProvider


@pytest.fixture
def fake_provider():
    """Provider that hands out addresses on the first lookup."""
    return FakeProvider()


@pytest.fixture
def provision_options():
    """Fast polling options for orchestrator tests."""
    return ProvisionOptions(
        ssh_user="root",
        ssh_key_name="test-key",
        public_key="ssh-rsa AAAAB3 test",
        parallelism=4,
        poll_interval=0.01,
        address_timeout=2.0,
    )


def make_node(hostname: str, roles: NodeRole, number: int = 1, ssh_user: str = "root"):
    return ProvisionedNode(
        id=f"id-{number}",
        hostname=hostname,
        public_address=f"203.0.113.{number}",
        private_address=f"10.0.0.{number}",
        ssh_user=ssh_user,
        roles=roles,
    )


@pytest.fixture
def node_factory():
    return make_node


@pytest.fixture
def sample_cluster():
    """Cluster with one etcd node, two masters and three workers."""
    cluster = ProvisionedCluster()
    cluster.add(make_node("etcd001", NodeRole.ETCD, 1))
    cluster.add(make_node("master001", NodeRole.MASTER, 2))
    cluster.add(make_node("master002", NodeRole.MASTER, 3))
    cluster.add(make_node("worker001", NodeRole.WORKER, 4))
    cluster.add(make_node("worker002", NodeRole.WORKER, 5))
    cluster.add(make_node("worker003", NodeRole.WORKER, 6))
    return cluster
