"""Provider clients and selection by configuration."""

from pathlib import Path

from cluster_provisioner.exceptions import ConfigurationError
from cluster_provisioner.models.cluster import ProvisionConfig
from cluster_provisioner.providers.base import ProviderClient
from cluster_provisioner.providers.digitalocean import (
    DigitalOceanProvider,
    render_bootstrap_user_data,
)
from cluster_provisioner.providers.vagrant import VagrantProvider

PROVIDERS = {
    DigitalOceanProvider.name: DigitalOceanProvider,
    VagrantProvider.name: VagrantProvider,
}


def get_provider(
    config: ProvisionConfig,
    token: str | None = None,
    bootstrap_script: str | None = None,
    working_dir: str | Path = ".",
) -> ProviderClient:
    """Build the provider client selected by ``config.provider``.

    Args:
        config: Provisioning configuration
        token: API token for cloud providers
        bootstrap_script: Contents of the bootstrap node's init script
        working_dir: Directory for local providers' state files

    Raises:
        ConfigurationError: If the provider is unknown or misconfigured
    """
    if config.provider == DigitalOceanProvider.name:
        user_data = None
        if bootstrap_script:
            user_data = render_bootstrap_user_data(bootstrap_script, config.install_dir)
        return DigitalOceanProvider(
            token=token or "",
            region=config.region,
            image=config.image,
            size=config.instance_size,
            worker_size=config.worker_size,
            tag=config.cluster_tag,
            bootstrap_user_data=user_data,
        )
    if config.provider == VagrantProvider.name:
        return VagrantProvider(working_dir=working_dir, centos=config.centos)

    raise ConfigurationError(
        f"Unknown provider: {config.provider}",
        f"Supported providers: {', '.join(sorted(PROVIDERS))}",
    )


__all__ = [
    "DigitalOceanProvider",
    "PROVIDERS",
    "ProviderClient",
    "VagrantProvider",
    "get_provider",
    "render_bootstrap_user_data",
]
