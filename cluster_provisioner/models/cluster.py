"""Data models for cluster topology, provisioning state and configuration."""

import ipaddress
from ipaddress import IPv4Address, IPv4Network

from pydantic import BaseModel, ConfigDict, Field, field_validator

from cluster_provisioner.models.node import NodeRole, NodeSpec, ProvisionedNode


class ClusterTopology(BaseModel):
    """Planned nodes with their addresses inside a node CIDR."""

    model_config = ConfigDict(frozen=True)

    network: IPv4Network
    broadcast: IPv4Address
    nodes: tuple[NodeSpec, ...] = ()

    def nodes_by_role(self, role: NodeRole) -> list[NodeSpec]:
        """Return every node carrying ``role``, in topology order."""
        return [node for node in self.nodes if node.roles & role]

    def addresses(self) -> list[IPv4Address]:
        return [node.ip for node in self.nodes]


class ProvisionedCluster(BaseModel):
    """Provisioned nodes, built up phase by phase.

    Role groups are views over ``nodes``: a node carrying several roles shows
    up in each of those groups but only once in ``all_nodes``.
    """

    nodes: list[ProvisionedNode] = Field(default_factory=list)

    def add(self, node: ProvisionedNode) -> None:
        self.nodes.append(node)

    def by_role(self, role: NodeRole) -> list[ProvisionedNode]:
        return [node for node in self.nodes if node.has_role(role)]

    @property
    def etcd(self) -> list[ProvisionedNode]:
        return self.by_role(NodeRole.ETCD)

    @property
    def master(self) -> list[ProvisionedNode]:
        return self.by_role(NodeRole.MASTER)

    @property
    def worker(self) -> list[ProvisionedNode]:
        return self.by_role(NodeRole.WORKER)

    @property
    def ingress(self) -> list[ProvisionedNode]:
        return self.by_role(NodeRole.INGRESS)

    @property
    def storage(self) -> list[ProvisionedNode]:
        return self.by_role(NodeRole.STORAGE)

    @property
    def bootstrap(self) -> list[ProvisionedNode]:
        return self.by_role(NodeRole.BOOTSTRAP)

    def all_nodes(self) -> list[ProvisionedNode]:
        return list(self.nodes)

    def __len__(self) -> int:
        return len(self.nodes)


class PlanNode(BaseModel):
    """Node entry of a role section in the cluster plan."""

    model_config = ConfigDict(frozen=True)

    host: str
    ip: str
    internal_ip: str | None = None
    labels: dict[str, str] = Field(default_factory=dict)


class ClusterPlanModel(BaseModel):
    """Installable cluster plan assembled from a provisioned cluster."""

    model_config = ConfigDict(frozen=True)

    cluster_name: str = "kubernetes"
    admin_password: str
    disable_package_installation: bool = False
    pod_cidr: str
    service_cidr: str
    ssh_user: str
    ssh_key: str
    ssh_port: int = 22
    fail_swap_on: bool = True
    docker_registry_host: str = ""
    docker_registry_port: int | None = None
    docker_registry_ca: str = ""
    load_balanced_fqdn: str
    load_balanced_short_name: str
    etcd: tuple[PlanNode, ...] = ()
    master: tuple[PlanNode, ...] = ()
    worker: tuple[PlanNode, ...] = ()
    ingress: tuple[PlanNode, ...] = ()
    storage: tuple[PlanNode, ...] = ()

    def role_sections(self) -> dict[str, tuple[PlanNode, ...]]:
        """Role sections in document order."""
        return {
            "etcd": self.etcd,
            "master": self.master,
            "worker": self.worker,
            "ingress": self.ingress,
            "storage": self.storage,
        }


class ProvisionConfig(BaseModel):
    """Provisioning configuration, loadable from a YAML file."""

    provider: str = "digitalocean"
    cluster_name: str = "kubernetes"
    cluster_tag: str = "apprenda"
    region: str = "tor1"
    image: str = "ubuntu-16-04-x64"
    instance_size: str = "1gb"
    worker_size: str = "4gb"
    ssh_user: str | None = None
    ssh_key_name: str = "apprenda-key"
    node_cidr: str = "192.168.42.2/24"
    overlap_roles: bool = False
    centos: bool = False
    parallelism: int = Field(default=4, ge=1)
    poll_interval: float = Field(default=3.0, gt=0)
    address_timeout: float = Field(default=600.0, gt=0)
    ssh_retry_interval: float = Field(default=5.0, gt=0)
    ssh_timeout: float = Field(default=900.0, gt=0)
    pod_cidr: str = "172.16.0.0/16"
    service_cidr: str = "172.20.0.0/16"
    install_dir: str = "/ket"

    @field_validator("provider")
    @classmethod
    def validate_provider(cls, v: str) -> str:
        """Validate provider is one of the supported backends."""
        allowed = ["digitalocean", "vagrant"]
        if v not in allowed:
            raise ValueError(f"provider must be one of {allowed}, got '{v}'")
        return v

    @field_validator("cluster_tag", "ssh_key_name")
    @classmethod
    def validate_not_empty(cls, v: str) -> str:
        if not v:
            raise ValueError("value cannot be empty")
        return v

    @field_validator("pod_cidr", "service_cidr")
    @classmethod
    def validate_cidr(cls, v: str) -> str:
        """Validate CIDR blocks parse as IPv4 networks."""
        try:
            ipaddress.IPv4Network(v, strict=False)
        except ValueError:
            raise ValueError(f"'{v}' must be a valid IPv4 CIDR (e.g., 192.168.42.0/24)")
        return v

    def save(self, path: str) -> None:
        """Save configuration to YAML file."""
        import yaml

        with open(path, "w") as f:
            yaml.dump(self.model_dump(), f, default_flow_style=False)

    @classmethod
    def load(cls, path: str) -> "ProvisionConfig":
        """Load configuration from YAML file."""
        import yaml

        with open(path) as f:
            data = yaml.safe_load(f)
        return cls(**(data or {}))
