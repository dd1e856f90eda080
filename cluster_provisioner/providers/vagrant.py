"""Local Vagrant provider.

Vagrant machines do not get addresses from a cloud API, so the orchestrator
plans the topology first and this provider writes a Vagrantfile that pins
every machine to its planned private address.
"""

import subprocess
from pathlib import Path

from jinja2 import Template

from cluster_provisioner.exceptions import ProviderError
from cluster_provisioner.logging_config import get_logger
from cluster_provisioner.models.cluster import ClusterTopology
from cluster_provisioner.models.node import KeyHandle, NodeHandle, NodeSpec, NodeStatus
from cluster_provisioner.providers.base import ProviderClient

logger = get_logger(__name__)

UBUNTU_BOX = "ubuntu/xenial64"
CENTOS_BOX = "centos/7"

VAGRANTFILE_TEMPLATE = Template(
    """# -*- mode: ruby -*-
# Generated by cluster-provision. Changes are overwritten on the next run.

Vagrant.configure("2") do |config|
  config.vm.box = "{{ box }}"
  config.ssh.insert_key = false
{% for node in nodes %}
  config.vm.define "{{ node.name }}" do |node|
    node.vm.hostname = "{{ node.name }}"
    node.vm.network "private_network", ip: "{{ node.ip }}"
    node.vm.provider "virtualbox" do |vb|
      vb.memory = {{ memory }}
    end
    node.vm.provision "shell", inline: <<-SHELL
      mkdir -p /home/vagrant/.ssh
      grep -q '{{ public_key }}' /home/vagrant/.ssh/authorized_keys 2>/dev/null || echo '{{ public_key }}' >> /home/vagrant/.ssh/authorized_keys
      mkdir -p /root/.ssh
      cp /home/vagrant/.ssh/authorized_keys /root/.ssh/authorized_keys
    SHELL
  end
{% endfor %}
end
"""
)


class VagrantProvider(ProviderClient):
    """Runs planned nodes as local Vagrant machines.

    Args:
        working_dir: Directory holding the Vagrantfile
        centos: Use a CentOS box instead of Ubuntu
        memory: Memory per machine in MiB
        command_timeout: Seconds allowed for a single vagrant command
    """

    name = "vagrant"
    assigns_addresses = False
    default_ssh_user = "vagrant"

    def __init__(
        self,
        working_dir: str | Path = ".",
        centos: bool = False,
        memory: int = 2048,
        command_timeout: float = 1800,
    ):
        self.working_dir = Path(working_dir)
        self.box = CENTOS_BOX if centos else UBUNTU_BOX
        self.memory = memory
        self.command_timeout = command_timeout
        self._public_key: str | None = None
        self._planned: dict[str, NodeSpec] = {}

    @property
    def vagrantfile(self) -> Path:
        return self.working_dir / "Vagrantfile"

    def _run(self, args: list[str]) -> str:
        """Run a vagrant command in the working directory.

        Raises:
            ProviderError: If vagrant is missing, fails or times out
        """
        logger.debug(f"Running: {' '.join(args)}")
        try:
            result = subprocess.run(
                args,
                cwd=self.working_dir,
                capture_output=True,
                text=True,
                check=True,
                timeout=self.command_timeout,
            )
            return result.stdout
        except subprocess.TimeoutExpired:
            logger.error(f"'{' '.join(args)}' timed out after {self.command_timeout} seconds")
            raise ProviderError(
                f"Vagrant command timed out: {' '.join(args)}",
                f"The command did not finish within {self.command_timeout} seconds.",
            )
        except subprocess.CalledProcessError as e:
            logger.error(f"'{' '.join(args)}' failed with return code {e.returncode}")
            raise ProviderError(
                f"Vagrant command failed: {' '.join(args)}",
                f"Command output: {e.stderr or e.stdout}",
            )
        except FileNotFoundError:
            logger.error("vagrant binary not found in PATH")
            raise ProviderError(
                "Vagrant is not installed or not in PATH",
                "Install Vagrant from https://www.vagrantup.com/downloads",
            )

    def ensure_key(self, name: str, public_key: str) -> KeyHandle:
        # Vagrant keeps no key registry; the key goes into the Vagrantfile.
        self._public_key = public_key.strip()
        return KeyHandle(id=name, name=name)

    def prepare(self, topology: ClusterTopology, key: KeyHandle) -> None:
        """Write the Vagrantfile for every planned node."""
        if self._public_key is None:
            raise ProviderError(
                "No SSH key registered with the Vagrant provider",
                "ensure_key must run before the Vagrantfile is written",
            )
        self._planned = {node.name: node for node in topology.nodes}

        content = VAGRANTFILE_TEMPLATE.render(
            box=self.box, memory=self.memory, nodes=topology.nodes, public_key=self._public_key
        )
        try:
            self.working_dir.mkdir(parents=True, exist_ok=True)
            self.vagrantfile.write_text(content)
        except OSError as e:
            raise ProviderError(
                f"Failed to write Vagrantfile: {self.vagrantfile}", f"{e}"
            )
        logger.info(f"Wrote Vagrantfile with {len(topology.nodes)} machines to {self.vagrantfile}")

    def create_node(self, spec: NodeSpec, key: KeyHandle) -> NodeHandle:
        if spec.name not in self._planned:
            raise ProviderError(
                f"Node '{spec.name}' is not part of the planned topology",
                "The Vagrantfile only defines planned machines",
            )
        self._run(["vagrant", "up", spec.name])
        return NodeHandle(id=spec.name, name=spec.name)

    def get_node(self, handle: NodeHandle) -> NodeStatus:
        spec = self._planned.get(handle.id)
        if spec is None or spec.ip is None:
            raise ProviderError(f"Unknown Vagrant machine: {handle.id}")
        address = str(spec.ip)
        return NodeStatus(
            id=handle.id, name=handle.name, public_address=address, private_address=address
        )

    def delete_nodes_by_tag(self, tag: str) -> None:
        # Every machine in the Vagrantfile belongs to this cluster.
        logger.info(f"Destroying Vagrant machines in {self.working_dir} (tag '{tag}')")
        self._run(["vagrant", "destroy", "--force"])
