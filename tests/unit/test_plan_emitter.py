"""Tests for cluster plan assembly."""

import logging
from unittest.mock import MagicMock, patch

import pytest

from cluster_provisioner.exceptions import ValidationError, WeakPasswordFallback
from cluster_provisioner.models.cluster import ProvisionedCluster
from cluster_provisioner.models.node import NodeRole
from cluster_provisioner.orchestrator import ProvisionOrchestrator
from cluster_provisioner.passwords import FALLBACK_PASSWORD
from cluster_provisioner.plan import PlanEmitter, PlanOptions, push_plan_to_bootstrap


@pytest.fixture
def options():
    return PlanOptions(ssh_key_path="/home/ops/ssh/cluster.pem")


def fixed_password():
    return "Abcdefgh12345678"


def test_load_balancer_defaults_to_first_master(sample_cluster, options):
    plan = PlanEmitter(fixed_password).emit(sample_cluster, options)

    assert plan.load_balanced_fqdn == "203.0.113.2"
    assert plan.load_balanced_short_name == "203.0.113.2"


def test_explicit_load_balancer(sample_cluster, options):
    options = options.model_copy(update={"load_balancer": "lb.example.com"})

    plan = PlanEmitter(fixed_password).emit(sample_cluster, options)

    assert plan.load_balanced_fqdn == "lb.example.com"


def test_role_sections_list_every_node(sample_cluster, options):
    plan = PlanEmitter(fixed_password).emit(sample_cluster, options)

    assert [n.host for n in plan.etcd] == ["etcd001"]
    assert [n.host for n in plan.master] == ["master001", "master002"]
    assert [n.host for n in plan.worker] == ["worker001", "worker002", "worker003"]
    assert plan.storage == ()
    assert plan.master[0].ip == "203.0.113.2"
    assert plan.master[0].internal_ip == "10.0.0.2"


def test_first_worker_is_designated_ingress(sample_cluster, options):
    plan = PlanEmitter(fixed_password).emit(sample_cluster, options)

    assert [n.host for n in plan.ingress] == ["worker001"]


def test_ingress_designation_can_be_disabled(sample_cluster, options):
    options = options.model_copy(update={"designate_ingress": False})

    plan = PlanEmitter(fixed_password).emit(sample_cluster, options)

    assert plan.ingress == ()


def test_dedicated_ingress_nodes_win(sample_cluster, options, node_factory):
    sample_cluster.add(node_factory("ingress001", NodeRole.INGRESS, 9))

    plan = PlanEmitter(fixed_password).emit(sample_cluster, options)

    assert [n.host for n in plan.ingress] == ["ingress001"]


def test_storage_mirrors_workers(sample_cluster, options):
    options = options.model_copy(update={"storage": True})

    plan = PlanEmitter(fixed_password).emit(sample_cluster, options)

    assert plan.storage == plan.worker


def test_storage_role_nodes_are_listed(sample_cluster, options, node_factory):
    sample_cluster.add(node_factory("storage001", NodeRole.STORAGE, 10))

    plan = PlanEmitter(fixed_password).emit(sample_cluster, options)

    assert [n.host for n in plan.storage] == ["storage001"]
    assert sample_cluster.storage[0].hostname == "storage001"


def test_storage_nodes_and_mirrored_workers_are_listed_once(options, node_factory):
    cluster = ProvisionedCluster()
    cluster.add(node_factory("master001", NodeRole.MASTER, 1))
    cluster.add(node_factory("node001", NodeRole.WORKER | NodeRole.STORAGE, 2))
    cluster.add(node_factory("worker002", NodeRole.WORKER, 3))
    cluster.add(node_factory("storage002", NodeRole.STORAGE, 4))
    options = options.model_copy(update={"storage": True})

    plan = PlanEmitter(fixed_password).emit(cluster, options)

    assert [n.host for n in plan.storage] == ["node001", "storage002", "worker002"]


def test_bootstrap_node_is_not_listed_and_moves_ssh_key(sample_cluster, options, node_factory):
    sample_cluster.add(node_factory("bootstrap001", NodeRole.BOOTSTRAP, 10))

    plan = PlanEmitter(fixed_password).emit(sample_cluster, options)

    hosts = [n.host for nodes in plan.role_sections().values() for n in nodes]
    assert "bootstrap001" not in hosts
    assert plan.ssh_key == "/ket/ssh/cluster.pem"


def test_ssh_key_path_without_bootstrap(sample_cluster, options):
    plan = PlanEmitter(fixed_password).emit(sample_cluster, options)

    assert plan.ssh_key == "/home/ops/ssh/cluster.pem"
    assert plan.ssh_user == "root"


def test_same_address_is_not_repeated_as_internal_ip(options, node_factory):
    node = node_factory("master001", NodeRole.MASTER).model_copy(
        update={"private_address": "203.0.113.1"}
    )
    cluster = ProvisionedCluster(nodes=[node])

    plan = PlanEmitter(fixed_password).emit(cluster, options)

    assert plan.master[0].internal_ip is None


def test_overlap_node_listed_once_per_role(options, node_factory):
    cluster = ProvisionedCluster(
        nodes=[node_factory("node001", NodeRole.ETCD | NodeRole.MASTER | NodeRole.WORKER)]
    )

    plan = PlanEmitter(fixed_password).emit(cluster, options)

    assert [n.host for n in plan.etcd] == ["node001"]
    assert [n.host for n in plan.master] == ["node001"]
    assert [n.host for n in plan.worker] == ["node001"]


def test_cluster_without_master_is_rejected(options, node_factory):
    cluster = ProvisionedCluster(nodes=[node_factory("worker001", NodeRole.WORKER)])

    with pytest.raises(ValidationError):
        PlanEmitter(fixed_password).emit(cluster, options)


def test_generated_password_is_used(sample_cluster, options):
    plan = PlanEmitter(fixed_password).emit(sample_cluster, options)

    assert plan.admin_password == "Abcdefgh12345678"


def test_password_override(sample_cluster, options):
    generator = MagicMock()
    options = options.model_copy(update={"admin_password": "chosenByOperator"})

    plan = PlanEmitter(generator).emit(sample_cluster, options)

    assert plan.admin_password == "chosenByOperator"
    generator.assert_not_called()


def test_weak_password_fallback_is_logged(sample_cluster, options, caplog):
    def exhausted():
        raise WeakPasswordFallback("Could not generate a password after 50 attempts")

    with caplog.at_level(logging.WARNING, logger="cluster_provisioner.plan"):
        plan = PlanEmitter(exhausted).emit(sample_cluster, options)

    assert plan.admin_password == FALLBACK_PASSWORD
    assert any("placeholder admin password" in r.message for r in caplog.records)


def test_write_hands_plan_to_serializer(sample_cluster, options, tmp_path):
    serializer = MagicMock()
    serializer.write.return_value = tmp_path / "cluster-plan.yaml"

    plan, path = PlanEmitter(fixed_password, serializer).write(sample_cluster, options)

    serializer.write.assert_called_once_with(plan)
    assert path == tmp_path / "cluster-plan.yaml"


def test_write_without_serializer(sample_cluster, options):
    with pytest.raises(ValidationError):
        PlanEmitter(fixed_password).write(sample_cluster, options)


def test_push_plan_skipped_without_bootstrap(sample_cluster, tmp_path):
    with patch("cluster_provisioner.plan.upload_file") as mock_upload:
        result = push_plan_to_bootstrap(sample_cluster, tmp_path / "plan.yaml", tmp_path / "key")

    assert result is None
    mock_upload.assert_not_called()


def test_push_plan_uploads_key_and_plan(sample_cluster, node_factory, tmp_path):
    sample_cluster.add(node_factory("bootstrap001", NodeRole.BOOTSTRAP, 10))
    key_path = tmp_path / "cluster.pem"
    plan_path = tmp_path / "cluster-plan.yaml"

    with patch("cluster_provisioner.plan.upload_file") as mock_upload:
        result = push_plan_to_bootstrap(sample_cluster, plan_path, key_path, "/opt/install")

    assert result == "/opt/install/cluster-plan.yaml"
    remote_paths = [call.args[3] for call in mock_upload.call_args_list]
    assert remote_paths == ["/opt/install/ssh/cluster.pem", "/opt/install/cluster-plan.yaml"]
    assert all(call.args[0].hostname == "bootstrap001" for call in mock_upload.call_args_list)


def test_every_provisioned_node_reaches_the_plan(fake_provider, provision_options, options):
    cluster = ProvisionOrchestrator(fake_provider, provision_options).provision(
        {NodeRole.MASTER: 1, NodeRole.WORKER: 1, NodeRole.STORAGE: 1}
    )

    plan = PlanEmitter(fixed_password).emit(cluster, options)

    listed = {node.host for nodes in plan.role_sections().values() for node in nodes}
    assert listed == {node.hostname for node in cluster.all_nodes()}
