"""Cluster plan assembly.

Turns a provisioned, reachable cluster into the plan model consumed by the
installer. Rendering and writing are left to a serializer such as
:class:`cluster_provisioner.plan_file.PlanFileWriter`.
"""

from pathlib import Path, PurePosixPath
from typing import Callable, Protocol

from pydantic import BaseModel

from cluster_provisioner.exceptions import ValidationError, WeakPasswordFallback
from cluster_provisioner.logging_config import get_logger
from cluster_provisioner.models.cluster import ClusterPlanModel, PlanNode, ProvisionedCluster
from cluster_provisioner.models.node import ProvisionedNode
from cluster_provisioner.passwords import FALLBACK_PASSWORD, generate_admin_password
from cluster_provisioner.ssh import upload_file

logger = get_logger(__name__)

REMOTE_PLAN_NAME = "cluster-plan.yaml"


class PlanSerializer(Protocol):
    def write(self, plan: ClusterPlanModel) -> Path: ...


class PlanOptions(BaseModel):
    """Inputs to plan assembly that do not come from the provisioned nodes."""

    cluster_name: str = "kubernetes"
    storage: bool = False
    designate_ingress: bool = True
    load_balancer: str | None = None
    ssh_key_path: str
    ssh_port: int = 22
    install_dir: str = "/ket"
    pod_cidr: str = "172.16.0.0/16"
    service_cidr: str = "172.20.0.0/16"
    disable_package_installation: bool = False
    fail_swap_on: bool = True
    docker_registry_host: str = ""
    docker_registry_port: int | None = None
    docker_registry_ca: str = ""
    admin_password: str | None = None


def plan_node(node: ProvisionedNode) -> PlanNode:
    """Plan entry for a node; the private address is listed only when it differs."""
    internal_ip = node.private_address
    if internal_ip == node.public_address:
        internal_ip = None
    return PlanNode(host=node.hostname, ip=node.public_address, internal_ip=internal_ip)


class PlanEmitter:
    """Assembles a :class:`ClusterPlanModel` from a provisioned cluster.

    Args:
        password_generator: Produces the admin password; may raise WeakPasswordFallback
        serializer: Renders and stores the plan in :meth:`write`
    """

    def __init__(
        self,
        password_generator: Callable[[], str] = generate_admin_password,
        serializer: PlanSerializer | None = None,
    ):
        self.password_generator = password_generator
        self.serializer = serializer

    def _admin_password(self, options: PlanOptions) -> str:
        if options.admin_password:
            return options.admin_password
        try:
            return self.password_generator()
        except WeakPasswordFallback as e:
            logger.warning(
                f"{e.message}. Using the placeholder admin password; change it after install"
            )
            return FALLBACK_PASSWORD

    def _ingress(self, cluster: ProvisionedCluster, options: PlanOptions) -> list[ProvisionedNode]:
        ingress = cluster.ingress
        if ingress:
            return ingress
        if options.designate_ingress and cluster.worker:
            return [cluster.worker[0]]
        return []

    def _storage(self, cluster: ProvisionedCluster, options: PlanOptions) -> list[ProvisionedNode]:
        # Storage-role nodes, then the workers when they also serve storage
        storage = cluster.storage
        if options.storage:
            listed = {node.hostname for node in storage}
            storage = storage + [node for node in cluster.worker if node.hostname not in listed]
        return storage

    def _ssh_key(self, cluster: ProvisionedCluster, options: PlanOptions) -> str:
        # The installer runs on the bootstrap node, so point at the key copied there
        if cluster.bootstrap:
            key_name = Path(options.ssh_key_path).name
            return str(PurePosixPath(options.install_dir) / "ssh" / key_name)
        return options.ssh_key_path

    def emit(self, cluster: ProvisionedCluster, options: PlanOptions) -> ClusterPlanModel:
        """Build the plan model.

        Raises:
            ValidationError: If the cluster has no master node
        """
        masters = cluster.master
        if not masters:
            raise ValidationError(
                "Cannot build a cluster plan without a master node",
                "Request at least one master node",
            )

        load_balancer = options.load_balancer or masters[0].public_address

        plan = ClusterPlanModel(
            cluster_name=options.cluster_name,
            admin_password=self._admin_password(options),
            disable_package_installation=options.disable_package_installation,
            pod_cidr=options.pod_cidr,
            service_cidr=options.service_cidr,
            ssh_user=masters[0].ssh_user,
            ssh_key=self._ssh_key(cluster, options),
            ssh_port=options.ssh_port,
            fail_swap_on=options.fail_swap_on,
            docker_registry_host=options.docker_registry_host,
            docker_registry_port=options.docker_registry_port,
            docker_registry_ca=options.docker_registry_ca,
            load_balanced_fqdn=load_balancer,
            load_balanced_short_name=load_balancer,
            etcd=tuple(plan_node(node) for node in cluster.etcd),
            master=tuple(plan_node(node) for node in masters),
            worker=tuple(plan_node(node) for node in cluster.worker),
            ingress=tuple(plan_node(node) for node in self._ingress(cluster, options)),
            storage=tuple(plan_node(node) for node in self._storage(cluster, options)),
        )
        logger.info(
            "Assembled plan: "
            + ", ".join(f"{name}={len(nodes)}" for name, nodes in plan.role_sections().items())
        )
        return plan

    def write(
        self, cluster: ProvisionedCluster, options: PlanOptions
    ) -> tuple[ClusterPlanModel, Path]:
        """Build the plan and hand it to the serializer.

        Raises:
            ValidationError: If the cluster has no master node
            PlanWriteError: If the serializer cannot store the plan
        """
        if self.serializer is None:
            raise ValidationError("No plan serializer configured")
        plan = self.emit(cluster, options)
        return plan, self.serializer.write(plan)


def push_plan_to_bootstrap(
    cluster: ProvisionedCluster,
    plan_path: str | Path,
    ssh_key_path: str | Path,
    install_dir: str = "/ket",
    ssh_port: int = 22,
) -> str | None:
    """Copy the plan file and SSH key to the bootstrap node, if there is one.

    Returns:
        Remote plan path, or None when the cluster has no bootstrap node

    Raises:
        PlanWriteError: If the upload fails
    """
    bootstrap = cluster.bootstrap
    if not bootstrap:
        return None
    node = bootstrap[0]

    key_path = Path(ssh_key_path).expanduser()
    remote_key = str(PurePosixPath(install_dir) / "ssh" / key_path.name)
    remote_plan = str(PurePosixPath(install_dir) / REMOTE_PLAN_NAME)

    upload_file(node, key_path, key_path, remote_key, ssh_port)
    upload_file(node, key_path, plan_path, remote_plan, ssh_port)
    return remote_plan
