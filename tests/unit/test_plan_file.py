"""Tests for plan file rendering and writing."""

import pytest
import yaml

from cluster_provisioner.exceptions import PlanWriteError
from cluster_provisioner.plan import PlanEmitter, PlanOptions
from cluster_provisioner.plan_file import PlanFileWriter


@pytest.fixture
def plan(sample_cluster):
    options = PlanOptions(ssh_key_path="/home/ops/ssh/cluster.pem", storage=True)
    return PlanEmitter(lambda: "Abcdefgh12345678").emit(sample_cluster, options)


def test_document_sections(plan, tmp_path):
    data = yaml.safe_load(PlanFileWriter(tmp_path).render(plan))

    assert list(data) == [
        "cluster",
        "docker_registry",
        "etcd",
        "master",
        "worker",
        "ingress",
        "storage",
    ]
    assert data["cluster"]["admin_password"] == "Abcdefgh12345678"
    assert data["cluster"]["ssh"]["ssh_key"] == "/home/ops/ssh/cluster.pem"
    assert data["cluster"]["ssh"]["user"] == "root"
    assert data["cluster"]["networking"]["pod_cidr_block"] == "172.16.0.0/16"
    assert data["master"]["load_balanced_fqdn"] == "203.0.113.2"


def test_role_sections_render_nodes(plan, tmp_path):
    data = yaml.safe_load(PlanFileWriter(tmp_path).render(plan))

    assert data["master"]["expected_count"] == 2
    assert data["master"]["nodes"][0] == {
        "host": "master001",
        "ip": "203.0.113.2",
        "internalip": "10.0.0.2",
        "labels": {},
    }
    assert data["storage"]["expected_count"] == 3
    assert [n["host"] for n in data["ingress"]["nodes"]] == ["worker001"]


def test_document_has_comments(plan, tmp_path):
    content = PlanFileWriter(tmp_path).render(plan)

    assert "# Master nodes run the Kubernetes control plane components." in content
    assert "# This user must be able to sudo without password." in content


def test_write_creates_file(plan, tmp_path):
    path = PlanFileWriter(tmp_path).write(plan)

    assert path == tmp_path / "cluster-plan.yaml"
    assert yaml.safe_load(path.read_text())["etcd"]["expected_count"] == 1


def test_write_never_overwrites(plan, tmp_path):
    existing = tmp_path / "cluster-plan.yaml"
    existing.write_text("keep me\n")
    writer = PlanFileWriter(tmp_path)

    first = writer.write(plan)
    second = writer.write(plan)

    assert existing.read_text() == "keep me\n"
    assert first == tmp_path / "cluster-plan-1.yaml"
    assert second == tmp_path / "cluster-plan-2.yaml"


def test_write_failure_raises_plan_write_error(plan, tmp_path):
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("")

    with pytest.raises(PlanWriteError):
        PlanFileWriter(blocker / "plans").write(plan)
