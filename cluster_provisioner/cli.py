"""Main CLI entry point for cluster provisioning."""

import signal
import threading
from pathlib import Path

import typer
from pydantic import ValidationError as PydanticValidationError
from rich.console import Console
from rich.table import Table

from cluster_provisioner.exceptions import (
    ClusterProvisionerError,
    ConfigurationError,
    ProviderError,
)
from cluster_provisioner.logging_config import get_logger, setup_logging
from cluster_provisioner.models.cluster import ProvisionConfig, ProvisionedCluster
from cluster_provisioner.models.node import NodeRole

app = typer.Typer(
    name="cluster-provision",
    help="Provision cluster nodes on DigitalOcean or Vagrant and write an install plan",
    add_completion=False,
)

console = Console()
logger = get_logger(__name__)

DEFAULT_SSH_KEY = "ssh/cluster.pem"
EXIT_INTERRUPTED = 130


# Global callback to set up logging
@app.callback()
def main_callback(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logging"),
    log_file: str | None = typer.Option(None, "--log-file", help="Path to log file"),
):
    """Global options for all commands."""
    log_path = Path(log_file) if log_file else None
    setup_logging(verbose=verbose, log_file=log_path)
    logger.debug("Logging initialized")


@app.command()
def version() -> None:
    """Show version information."""
    from cluster_provisioner import __version__

    typer.echo(f"cluster-provision version {__version__}")


def load_config(config_path: str | None, **overrides) -> ProvisionConfig:
    """Load the YAML config file, if any, and apply flags that were given.

    Raises:
        ConfigurationError: If the config file cannot be read
        pydantic.ValidationError: If a value is invalid
    """
    data = {}
    if config_path:
        try:
            data = ProvisionConfig.load(config_path).model_dump()
        except OSError as e:
            raise ConfigurationError(f"Failed to read config file: {config_path}", f"{e}")
    data.update({key: value for key, value in overrides.items() if value is not None})
    return ProvisionConfig(**data)


def role_counts(
    etcd: int, master: int, worker: int, ingress: int, storage: int, bootstrap: bool
) -> dict[NodeRole, int]:
    return {
        NodeRole.ETCD: etcd,
        NodeRole.MASTER: master,
        NodeRole.WORKER: worker,
        NodeRole.INGRESS: ingress,
        NodeRole.STORAGE: storage,
        NodeRole.BOOTSTRAP: 1 if bootstrap else 0,
    }


def print_nodes(cluster: ProvisionedCluster, title: str = "Provisioned Nodes") -> None:
    table = Table(title=title)
    table.add_column("Hostname", style="cyan")
    table.add_column("Roles", style="green")
    table.add_column("Public IP", style="magenta")
    table.add_column("Private IP", style="magenta")
    table.add_column("SSH User")

    for node in cluster.all_nodes():
        table.add_row(
            node.hostname,
            node.roles.label,
            node.public_address,
            node.private_address or "-",
            node.ssh_user,
        )
    console.print(table)


def report_error(e: ClusterProvisionerError) -> None:
    logger.error(f"{type(e).__name__}: {e.message}")
    console.print(f"[red]Error:[/red] {e.message}")
    if e.details:
        console.print(f"\n{e.details}")

    partial = getattr(e, "partial_cluster", None)
    if partial is None:
        return
    if len(partial):
        console.print()
        print_nodes(partial, title="Nodes Created Before The Failure")
    if isinstance(e, ProviderError):
        console.print(
            "\n[yellow]Created nodes are not removed automatically.[/yellow] "
            "Run 'cluster-provision delete-all' to remove them."
        )


def report_validation_error(e: PydanticValidationError) -> None:
    console.print("[red]Validation Error:[/red]")
    for error in e.errors():
        field = ".".join(str(x) for x in error["loc"])
        console.print(f"  - {field}: {error['msg']}")


@app.command()
def plan(
    etcd: int = typer.Option(1, "--etcd", "-e", help="Number of etcd nodes"),
    master: int = typer.Option(1, "--master", "-m", help="Number of master nodes"),
    worker: int = typer.Option(1, "--worker", "-w", help="Number of worker nodes"),
    ingress: int = typer.Option(1, "--ingress", "-i", help="Number of ingress nodes"),
    storage: int = typer.Option(0, "--storage", help="Number of storage nodes"),
    bootstrap: bool = typer.Option(False, "--bootstrap", "-b", help="Add a bootstrap node"),
    cidr: str = typer.Option("192.168.42.2/24", "--cidr", help="Node network in CIDR notation"),
    overlap: bool = typer.Option(
        False, "--overlap", "-o", help="Fold the roles of each wave into one node"
    ),
) -> None:
    """
    Preview the node topology for a set of role counts.

    No provider is contacted; this shows the names, roles and addresses that a
    provider without its own address assignment (such as Vagrant) would use.
    """
    from cluster_provisioner.orchestrator import DEDICATED_ROLES
    from cluster_provisioner.topology import TopologyPlanner

    try:
        counts = role_counts(etcd, master, worker, ingress, storage, bootstrap)
        topology = TopologyPlanner.plan(counts, cidr, overlap, DEDICATED_ROLES)
    except ClusterProvisionerError as e:
        report_error(e)
        raise typer.Exit(code=1)

    table = Table(title=f"Planned Topology ({topology.network})")
    table.add_column("Hostname", style="cyan")
    table.add_column("Roles", style="green")
    table.add_column("IP", style="magenta")
    for node in topology.nodes:
        table.add_row(node.name, node.roles.label, str(node.ip))

    console.print(table)
    console.print(f"\n[bold]Total nodes:[/bold] {len(topology.nodes)}")


def run_create(
    config_path: str | None,
    overrides: dict,
    *,
    etcd: int,
    master: int,
    worker: int,
    ingress: int | None,
    bootstrap: bool,
    storage: bool,
    noplan: bool,
    bootstrap_file: str | None,
    token: str | None,
    ssh_key: str,
    output_dir: str,
    working_dir: str,
    vagrantfile_only: bool = False,
) -> None:
    """Provision nodes, wait for SSH and write the plan; shared by create and create-mini.

    With ``vagrantfile_only`` the machine definitions are written but nothing
    is started, and the plan uses the planned addresses.
    """
    from cluster_provisioner.orchestrator import ProvisionOptions, ProvisionOrchestrator
    from cluster_provisioner.plan import PlanEmitter, PlanOptions, push_plan_to_bootstrap
    from cluster_provisioner.plan_file import PlanFileWriter
    from cluster_provisioner.providers import get_provider
    from cluster_provisioner.readiness import ReadinessWaiter
    from cluster_provisioner.ssh import load_or_create_key_pair

    cancel_event = threading.Event()

    def interrupt(signum, frame):
        console.print("\n[yellow]Interrupted, stopping after in-flight calls...[/yellow]")
        cancel_event.set()

    previous_handler = signal.signal(signal.SIGINT, interrupt)
    try:
        config = load_config(config_path, **overrides)

        bootstrap_script = None
        if bootstrap_file:
            bootstrap_script = Path(bootstrap_file).read_text()

        key_path, public_key = load_or_create_key_pair(ssh_key)
        provider = get_provider(config, token, bootstrap_script, working_dir)
        user = config.ssh_user or provider.default_ssh_user

        if ingress is None:
            ingress = 0 if provider.assigns_addresses else 1
        counts = role_counts(etcd, master, worker, ingress, 0, bootstrap)

        orchestrator = ProvisionOrchestrator(
            provider,
            ProvisionOptions(
                ssh_user=user,
                ssh_key_name=config.ssh_key_name,
                public_key=public_key,
                node_cidr=config.node_cidr,
                overlap=config.overlap_roles,
                parallelism=config.parallelism,
                poll_interval=config.poll_interval,
                address_timeout=config.address_timeout,
            ),
            cancel_event=cancel_event,
        )

        if vagrantfile_only:
            cluster = orchestrator.prepare_only(counts)
            print_nodes(cluster, title="Planned Nodes")
            console.print(f"\nTo create the machines, run 'vagrant up' in {working_dir}")
        else:
            console.print(f"[bold]Provisioning nodes on {provider.name}...[/bold]")
            cluster = orchestrator.provision(counts)
            print_nodes(cluster)

            console.print("\n[bold]Waiting for SSH...[/bold]")
            waiter = ReadinessWaiter(
                interval=config.ssh_retry_interval,
                timeout=config.ssh_timeout,
                parallelism=config.parallelism,
                cancel_event=cancel_event,
            )
            waiter.await_reachable(cluster.all_nodes(), key_path)

        if noplan:
            if not vagrantfile_only:
                console.print("[green]✓[/green] Your instances are ready.")
            return

        emitter = PlanEmitter(serializer=PlanFileWriter(output_dir))
        _, plan_path = emitter.write(
            cluster,
            PlanOptions(
                cluster_name=config.cluster_name,
                storage=storage,
                ssh_key_path=str(key_path),
                install_dir=config.install_dir,
                pod_cidr=config.pod_cidr,
                service_cidr=config.service_cidr,
            ),
        )
        console.print(f"[green]✓[/green] Wrote cluster plan to {plan_path}")

        if not vagrantfile_only:
            remote_plan = push_plan_to_bootstrap(
                cluster, plan_path, key_path, config.install_dir
            )
            if remote_plan:
                console.print(
                    f"[green]✓[/green] Copied the plan to the bootstrap node: {remote_plan}"
                )

        console.print(f"\nInstall the cluster with the plan at {plan_path}")

    except ClusterProvisionerError as e:
        report_error(e)
        raise typer.Exit(code=EXIT_INTERRUPTED if cancel_event.is_set() else 1)
    except PydanticValidationError as e:
        report_validation_error(e)
        raise typer.Exit(code=1)
    except OSError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(code=1)
    except Exception as e:
        logger.error(f"Unexpected error during create: {e}", exc_info=True)
        console.print(f"[red]Unexpected error:[/red] {e}")
        console.print("\nRun with --verbose --log-file debug.log for more details")
        raise typer.Exit(code=1)
    finally:
        signal.signal(signal.SIGINT, previous_handler)


@app.command()
def create(
    provider_name: str | None = typer.Option(
        None, "--provider", "-p", help="Provider: digitalocean or vagrant"
    ),
    config_path: str | None = typer.Option(None, "--config", "-c", help="YAML config file"),
    etcd: int = typer.Option(1, "--etcd", "-e", help="Number of etcd nodes"),
    master: int = typer.Option(1, "--master", "-m", help="Number of master nodes"),
    worker: int = typer.Option(1, "--worker", "-w", help="Number of worker nodes"),
    ingress: int | None = typer.Option(
        None,
        "--ingress",
        "-i",
        help="Number of dedicated ingress nodes (default: 1 on vagrant, 0 on digitalocean)",
    ),
    storage: bool = typer.Option(
        False, "--storage-cluster", "-s", help="Create a storage cluster from all worker nodes"
    ),
    bootstrap: bool = typer.Option(False, "--bootstrap", "-b", help="Add a bootstrap node"),
    bootstrap_file: str | None = typer.Option(
        None, "--bootstrap-file", help="Script run on the bootstrap node at first boot"
    ),
    noplan: bool = typer.Option(
        False, "--noplan", "-n", help="Skip writing a plan file for the new nodes"
    ),
    vagrantfile_only: bool = typer.Option(
        False, "--vagrantfile-only", help="Write the Vagrantfile without starting machines"
    ),
    region: str | None = typer.Option(None, "--region", help="Region slug"),
    image: str | None = typer.Option(None, "--image", help="Image slug"),
    instance_size: str | None = typer.Option(None, "--size", help="Instance size slug"),
    worker_size: str | None = typer.Option(None, "--worker-size", help="Worker size slug"),
    cluster_tag: str | None = typer.Option(None, "--tag", "-t", help="Tag for every node"),
    ssh_user: str | None = typer.Option(None, "--sshuser", help="SSH user name"),
    ssh_key_name: str | None = typer.Option(
        None, "--keyname", help="Name of the SSH key on the provider"
    ),
    node_cidr: str | None = typer.Option(None, "--cidr", help="Node network (vagrant)"),
    overlap: bool | None = typer.Option(
        None, "--overlap/--no-overlap", help="Fold the roles of each wave into one node"
    ),
    centos: bool | None = typer.Option(None, "--centos/--ubuntu", help="Box image (vagrant)"),
    parallelism: int | None = typer.Option(None, "--parallelism", help="Concurrent node waits"),
    address_timeout: float | None = typer.Option(
        None, "--address-timeout", help="Seconds to wait for node addresses"
    ),
    ssh_timeout: float | None = typer.Option(
        None, "--ssh-timeout", help="Seconds to wait for SSH on all nodes"
    ),
    token: str | None = typer.Option(
        None, "--token", envvar="DO_API_TOKEN", help="DigitalOcean API token"
    ),
    ssh_key: str = typer.Option(
        DEFAULT_SSH_KEY,
        "--ssh-key",
        envvar="DO_SECRET_ACCESS_KEY",
        help="Private SSH key path; a key pair is generated when missing",
    ),
    output_dir: str = typer.Option(".", "--output-dir", help="Directory for the plan file"),
    working_dir: str = typer.Option(".", "--working-dir", help="Directory for the Vagrantfile"),
) -> None:
    """
    Create cluster nodes, wait until they are reachable and write a plan.

    Nodes are created phase by phase (etcd, master, worker, ingress, storage,
    bootstrap). Nodes are not removed when a step fails; use delete-all.
    """
    run_create(
        config_path,
        {
            "provider": provider_name,
            "region": region,
            "image": image,
            "instance_size": instance_size,
            "worker_size": worker_size,
            "cluster_tag": cluster_tag,
            "ssh_user": ssh_user,
            "ssh_key_name": ssh_key_name,
            "node_cidr": node_cidr,
            "overlap_roles": overlap,
            "centos": centos,
            "parallelism": parallelism,
            "address_timeout": address_timeout,
            "ssh_timeout": ssh_timeout,
        },
        etcd=etcd,
        master=master,
        worker=worker,
        ingress=ingress,
        bootstrap=bootstrap,
        storage=storage,
        noplan=noplan,
        bootstrap_file=bootstrap_file,
        token=token,
        ssh_key=ssh_key,
        output_dir=output_dir,
        working_dir=working_dir,
        vagrantfile_only=vagrantfile_only,
    )


@app.command()
def create_mini(
    provider_name: str | None = typer.Option(
        None, "--provider", "-p", help="Provider: digitalocean or vagrant"
    ),
    config_path: str | None = typer.Option(None, "--config", "-c", help="YAML config file"),
    noplan: bool = typer.Option(
        False, "--noplan", "-n", help="Skip writing a plan file for the new node"
    ),
    vagrantfile_only: bool = typer.Option(
        False, "--vagrantfile-only", help="Write the Vagrantfile without starting the machine"
    ),
    cluster_tag: str | None = typer.Option(None, "--tag", "-t", help="Tag for the node"),
    ssh_user: str | None = typer.Option(None, "--sshuser", help="SSH user name"),
    ssh_key_name: str | None = typer.Option(
        None, "--keyname", help="Name of the SSH key on the provider"
    ),
    node_cidr: str | None = typer.Option(None, "--cidr", help="Node network (vagrant)"),
    centos: bool | None = typer.Option(None, "--centos/--ubuntu", help="Box image (vagrant)"),
    token: str | None = typer.Option(
        None, "--token", envvar="DO_API_TOKEN", help="DigitalOcean API token"
    ),
    ssh_key: str = typer.Option(
        DEFAULT_SSH_KEY,
        "--ssh-key",
        envvar="DO_SECRET_ACCESS_KEY",
        help="Private SSH key path; a key pair is generated when missing",
    ),
    output_dir: str = typer.Option(".", "--output-dir", help="Directory for the plan file"),
    working_dir: str = typer.Option(".", "--working-dir", help="Directory for the Vagrantfile"),
) -> None:
    """
    Create a single node carrying the etcd, master, worker and ingress roles.
    """
    run_create(
        config_path,
        {
            "provider": provider_name,
            "cluster_tag": cluster_tag,
            "ssh_user": ssh_user,
            "ssh_key_name": ssh_key_name,
            "node_cidr": node_cidr,
            "overlap_roles": True,
            "centos": centos,
        },
        etcd=1,
        master=1,
        worker=1,
        ingress=1,
        bootstrap=False,
        storage=False,
        noplan=noplan,
        bootstrap_file=None,
        token=token,
        ssh_key=ssh_key,
        output_dir=output_dir,
        working_dir=working_dir,
        vagrantfile_only=vagrantfile_only,
    )


@app.command()
def delete_all(
    provider_name: str | None = typer.Option(
        None, "--provider", "-p", help="Provider: digitalocean or vagrant"
    ),
    config_path: str | None = typer.Option(None, "--config", "-c", help="YAML config file"),
    cluster_tag: str | None = typer.Option(None, "--tag", "-t", help="Tag of the nodes to delete"),
    remove_key: bool = typer.Option(
        False, "--remove-key", help="Also delete the SSH key used for provisioning"
    ),
    ssh_key_name: str | None = typer.Option(
        None, "--keyname", help="Name of the SSH key on the provider"
    ),
    token: str | None = typer.Option(
        None, "--token", envvar="DO_API_TOKEN", help="DigitalOcean API token"
    ),
    working_dir: str = typer.Option(".", "--working-dir", help="Directory of the Vagrantfile"),
    force: bool = typer.Option(False, "--force", "-f", help="Skip confirmation prompt"),
) -> None:
    """
    Delete every node carrying the cluster tag.

    With --remove-key the SSH key registered for provisioning is deleted too.
    """
    from cluster_provisioner.orchestrator import teardown
    from cluster_provisioner.providers import get_provider

    try:
        config = load_config(
            config_path, provider=provider_name, cluster_tag=cluster_tag, ssh_key_name=ssh_key_name
        )

        if not force:
            confirm = typer.confirm(
                f"Delete all {config.provider} nodes tagged '{config.cluster_tag}'?"
            )
            if not confirm:
                console.print("[yellow]Operation cancelled[/yellow]")
                raise typer.Exit(code=0)

        provider = get_provider(config, token, working_dir=working_dir)
        teardown(provider, config.cluster_tag, config.ssh_key_name if remove_key else None)

        console.print(f"[green]✓[/green] Deleted nodes tagged '{config.cluster_tag}'")
        if remove_key:
            console.print(f"[green]✓[/green] Deleted SSH key '{config.ssh_key_name}'")

    except ClusterProvisionerError as e:
        report_error(e)
        raise typer.Exit(code=1)
    except PydanticValidationError as e:
        report_validation_error(e)
        raise typer.Exit(code=1)


def main() -> None:
    app()


if __name__ == "__main__":
    main()
