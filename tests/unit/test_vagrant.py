"""Tests for the Vagrant provider."""

import subprocess
from unittest.mock import MagicMock, patch

import pytest

from cluster_provisioner.exceptions import ProviderError
from cluster_provisioner.models.node import KeyHandle, NodeHandle, NodeRole, NodeSpec
from cluster_provisioner.providers.vagrant import CENTOS_BOX, VagrantProvider
from cluster_provisioner.topology import TopologyPlanner

PUBLIC_KEY = "ssh-rsa AAAAB3NzaC1yc2E test"


@pytest.fixture
def topology():
    return TopologyPlanner.plan(
        {NodeRole.ETCD: 1, NodeRole.MASTER: 1, NodeRole.WORKER: 1}, "192.168.42.2/24"
    )


@pytest.fixture
def provider(tmp_path, topology):
    provider = VagrantProvider(working_dir=tmp_path)
    key = provider.ensure_key("apprenda-key", PUBLIC_KEY)
    provider.prepare(topology, key)
    return provider


def test_vagrantfile_defines_planned_machines(provider):
    content = provider.vagrantfile.read_text()

    assert 'config.vm.define "etcd001"' in content
    assert 'node.vm.network "private_network", ip: "192.168.42.2"' in content
    assert 'node.vm.network "private_network", ip: "192.168.42.4"' in content
    assert PUBLIC_KEY in content
    assert 'config.vm.box = "ubuntu/xenial64"' in content


def test_centos_box(tmp_path, topology):
    provider = VagrantProvider(working_dir=tmp_path, centos=True)
    provider.prepare(topology, provider.ensure_key("k", PUBLIC_KEY))

    assert f'config.vm.box = "{CENTOS_BOX}"' in provider.vagrantfile.read_text()


def test_prepare_requires_key(tmp_path, topology):
    provider = VagrantProvider(working_dir=tmp_path)

    with pytest.raises(ProviderError):
        provider.prepare(topology, KeyHandle(id="k", name="k"))


def test_create_node_runs_vagrant_up(provider, tmp_path, topology):
    with patch("cluster_provisioner.providers.vagrant.subprocess.run") as mock_run:
        mock_run.return_value = MagicMock(stdout="")
        handle = provider.create_node(topology.nodes[0], KeyHandle(id="k", name="k"))

    assert handle == NodeHandle(id="etcd001", name="etcd001")
    assert mock_run.call_args.args[0] == ["vagrant", "up", "etcd001"]
    assert mock_run.call_args.kwargs["cwd"] == tmp_path


def test_create_unplanned_node(provider):
    spec = NodeSpec(roles=NodeRole.WORKER, index=9, name="worker009")

    with pytest.raises(ProviderError):
        provider.create_node(spec, KeyHandle(id="k", name="k"))


def test_get_node_reports_planned_address(provider):
    status = provider.get_node(NodeHandle(id="master001", name="master001"))

    assert status.public_address == "192.168.42.3"
    assert status.private_address == "192.168.42.3"


def test_vagrant_failure_becomes_provider_error(provider, topology):
    error = subprocess.CalledProcessError(1, ["vagrant", "up"], stderr="VirtualBox not found")
    with patch("cluster_provisioner.providers.vagrant.subprocess.run", side_effect=error):
        with pytest.raises(ProviderError) as exc_info:
            provider.create_node(topology.nodes[0], KeyHandle(id="k", name="k"))

    assert "VirtualBox not found" in exc_info.value.details


def test_vagrant_missing(provider):
    with patch(
        "cluster_provisioner.providers.vagrant.subprocess.run", side_effect=FileNotFoundError()
    ):
        with pytest.raises(ProviderError) as exc_info:
            provider.delete_nodes_by_tag("apprenda")

    assert "not installed" in exc_info.value.message


def test_vagrant_timeout(provider):
    timeout = subprocess.TimeoutExpired(["vagrant", "destroy"], 1800)
    with patch("cluster_provisioner.providers.vagrant.subprocess.run", side_effect=timeout):
        with pytest.raises(ProviderError) as exc_info:
            provider.delete_nodes_by_tag("apprenda")

    assert "timed out" in exc_info.value.message


def test_delete_destroys_all_machines(provider):
    with patch("cluster_provisioner.providers.vagrant.subprocess.run") as mock_run:
        mock_run.return_value = MagicMock(stdout="")
        provider.delete_nodes_by_tag("apprenda")

    assert mock_run.call_args.args[0] == ["vagrant", "destroy", "--force"]
