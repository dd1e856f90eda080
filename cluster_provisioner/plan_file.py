"""Cluster plan file writing.

Renders a :class:`ClusterPlanModel` as a commented YAML document with
ruamel.yaml and stores it under a file name that is not in use yet.
"""

import io
from pathlib import Path

from ruamel.yaml import YAML
from ruamel.yaml.comments import CommentedMap, CommentedSeq

from cluster_provisioner.exceptions import PlanWriteError
from cluster_provisioner.logging_config import get_logger
from cluster_provisioner.models.cluster import ClusterPlanModel, PlanNode

logger = get_logger(__name__)

SECTION_COMMENTS = {
    "etcd": "Etcd nodes run the etcd distributed key-value database.",
    "master": "Master nodes run the Kubernetes control plane components.",
    "worker": "Worker nodes run the workloads scheduled on the cluster.",
    "ingress": "Ingress nodes run the ingress controller.",
    "storage": "Storage nodes join the cluster's storage pool.",
}


class PlanFileWriter:
    """Writes cluster plans as YAML files.

    Args:
        directory: Directory the plan is written into
        base_name: File name without suffix; ``-1``, ``-2``... is appended when taken
    """

    def __init__(self, directory: str | Path = ".", base_name: str = "cluster-plan"):
        self.directory = Path(directory)
        self.base_name = base_name
        self.yaml = YAML()
        self.yaml.default_flow_style = False
        self.yaml.indent(mapping=2, sequence=2, offset=0)

    def candidate_path(self, count: int) -> Path:
        suffix = f"-{count}" if count > 0 else ""
        return self.directory / f"{self.base_name}{suffix}.yaml"

    def unique_path(self) -> Path:
        """First candidate path that does not exist yet."""
        count = 0
        while self.candidate_path(count).exists():
            count += 1
        return self.candidate_path(count)

    def _node(self, node: PlanNode) -> CommentedMap:
        entry = CommentedMap()
        entry["host"] = node.host
        entry["ip"] = node.ip
        if node.internal_ip:
            entry["internalip"] = node.internal_ip
        entry["labels"] = CommentedMap(node.labels)
        return entry

    def build_document(self, plan: ClusterPlanModel) -> CommentedMap:
        """Build the YAML document tree for a plan."""
        networking = CommentedMap()
        networking["pod_cidr_block"] = plan.pod_cidr
        networking["service_cidr_block"] = plan.service_cidr
        networking["update_hosts_files"] = True

        certificates = CommentedMap()
        certificates["expiry"] = "17520h"
        certificates["ca_expiry"] = "17520h"

        ssh = CommentedMap()
        ssh["user"] = plan.ssh_user
        ssh["ssh_key"] = plan.ssh_key
        ssh["ssh_port"] = plan.ssh_port
        ssh.yaml_set_comment_before_after_key(
            "user", before="This user must be able to sudo without password.", indent=4
        )

        kubelet = CommentedMap()
        kubelet["option_overrides"] = CommentedMap({"fail-swap-on": plan.fail_swap_on})

        cluster = CommentedMap()
        cluster["name"] = plan.cluster_name
        cluster["admin_password"] = plan.admin_password
        cluster["disable_package_installation"] = plan.disable_package_installation
        cluster["disconnected_installation"] = False
        cluster["networking"] = networking
        cluster["certificates"] = certificates
        cluster["ssh"] = ssh
        cluster["kubelet"] = kubelet
        cluster.yaml_set_comment_before_after_key(
            "admin_password",
            before="Used to log in to the dashboard and for administration without a certificate.",
            indent=2,
        )

        registry = CommentedMap()
        registry["address"] = plan.docker_registry_host
        registry["port"] = plan.docker_registry_port if plan.docker_registry_port else ""
        registry["CA"] = plan.docker_registry_ca

        document = CommentedMap()
        document["cluster"] = cluster
        document["docker_registry"] = registry

        for name, nodes in plan.role_sections().items():
            section = CommentedMap()
            section["expected_count"] = len(nodes)
            section["nodes"] = CommentedSeq(self._node(node) for node in nodes)
            if name == "master":
                section["load_balanced_fqdn"] = plan.load_balanced_fqdn
                section["load_balanced_short_name"] = plan.load_balanced_short_name
            document[name] = section
            document.yaml_set_comment_before_after_key(name, before="\n" + SECTION_COMMENTS[name])

        return document

    def render(self, plan: ClusterPlanModel) -> str:
        stream = io.StringIO()
        self.yaml.dump(self.build_document(plan), stream)
        return stream.getvalue()

    def write(self, plan: ClusterPlanModel) -> Path:
        """Write the plan to a new file; existing files are never overwritten.

        Returns:
            Path of the written file

        Raises:
            PlanWriteError: If the file cannot be written
        """
        content = self.render(plan)

        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            while True:
                path = self.unique_path()
                try:
                    # Exclusive create; another writer may have taken the name
                    with open(path, "x") as f:
                        f.write(content)
                    break
                except FileExistsError:
                    continue
        except PermissionError as e:
            logger.error(f"Permission denied writing plan file: {e}")
            raise PlanWriteError(
                f"Permission denied writing plan file in {self.directory}",
                "Check directory permissions or choose another output directory",
            )
        except OSError as e:
            logger.error(f"OS error writing plan file: {e}")
            raise PlanWriteError(
                f"Failed to write plan file: {e}", "Check disk space and file system permissions"
            )

        logger.info(f"Wrote cluster plan to {path}")
        return path
