"""DigitalOcean provider backed by the v2 REST API."""

import re

import requests

from cluster_provisioner.exceptions import ConfigurationError, ProviderError
from cluster_provisioner.logging_config import get_logger
from cluster_provisioner.models.node import KeyHandle, NodeHandle, NodeRole, NodeSpec, NodeStatus
from cluster_provisioner.providers.base import ProviderClient

logger = get_logger(__name__)

API_URL = "https://api.digitalocean.com/v2"
PAGE_SIZE = 200


def _key_handle(key: dict) -> KeyHandle:
    return KeyHandle(id=str(key["id"]), name=key["name"], fingerprint=key.get("fingerprint", ""))


def render_bootstrap_user_data(script: str, install_dir: str) -> str:
    """Prepare a bootstrap script for cloud-init.

    The script runs from ``install_dir``, which is created first. Line endings
    are normalised so scripts edited on Windows still run.
    """
    init = f"#!/bin/bash\nmkdir -p {install_dir}\ncd {install_dir} && "
    script = script.replace("#!/bin/bash", init)
    return re.sub(r"\r?\n", "\n", script)


class DigitalOceanProvider(ProviderClient):
    """Creates droplets tagged with the cluster tag.

    Args:
        token: DigitalOcean API token
        region: Region slug, e.g. ``tor1``
        image: Image slug
        size: Droplet size slug for every node
        worker_size: Size slug overriding ``size`` for worker nodes
        tag: Cluster tag attached to every droplet
        bootstrap_user_data: cloud-init user data for the bootstrap node
        session: Optional preconfigured requests session
        timeout: Per-request timeout in seconds
    """

    name = "digitalocean"
    assigns_addresses = True
    default_ssh_user = "root"

    def __init__(
        self,
        token: str,
        region: str,
        image: str,
        size: str,
        worker_size: str | None = None,
        tag: str = "apprenda",
        bootstrap_user_data: str | None = None,
        session: requests.Session | None = None,
        timeout: float = 30.0,
    ):
        if not token:
            raise ConfigurationError(
                "The DigitalOcean API token is required",
                "Set DO_API_TOKEN or pass --token",
            )
        self.region = region
        self.image = image
        self.size = size
        self.worker_size = worker_size
        self.tag = tag
        self.bootstrap_user_data = bootstrap_user_data
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update(
            {"Authorization": f"Bearer {token}", "Content-Type": "application/json"}
        )

    def _request(self, method: str, path: str, **kwargs) -> dict:
        """Send an API request and return the decoded body.

        Raises:
            ProviderError: On connection failures and non-2xx responses
        """
        url = f"{API_URL}{path}"
        logger.debug(f"DigitalOcean API {method} {path}")

        try:
            response = self.session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.RequestException as e:
            logger.error(f"DigitalOcean API request {method} {path} failed: {e}")
            raise ProviderError(
                f"DigitalOcean API request failed: {method} {path}",
                f"{e}\n\nCheck your network connection and https://status.digitalocean.com",
            )

        if response.status_code >= 400:
            try:
                message = response.json().get("message", response.text)
            except ValueError:
                message = response.text
            logger.error(f"DigitalOcean API {method} {path} returned {response.status_code}")
            raise ProviderError(
                f"DigitalOcean API returned {response.status_code} for {method} {path}",
                message,
            )

        if response.status_code == 204 or not response.content:
            return {}
        return response.json()

    def find_key(self, name: str) -> KeyHandle | None:
        """Look up a registered SSH key by name."""
        page = 1
        while True:
            data = self._request(
                "GET", "/account/keys", params={"page": page, "per_page": PAGE_SIZE}
            )
            keys = data.get("ssh_keys", [])
            for key in keys:
                if key["name"] == name:
                    return _key_handle(key)
            if len(keys) < PAGE_SIZE:
                return None
            page += 1

    def ensure_key(self, name: str, public_key: str) -> KeyHandle:
        existing = self.find_key(name)
        if existing is not None:
            logger.info(f"Using existing SSH key '{name}' ({existing.fingerprint})")
            return existing

        logger.info(f"Registering new SSH key '{name}'")
        data = self._request("POST", "/account/keys", json={"name": name, "public_key": public_key})
        key = data["ssh_key"]
        return _key_handle(key)

    def _size_for(self, spec: NodeSpec) -> str:
        if self.worker_size and spec.roles & NodeRole.WORKER:
            return self.worker_size
        return self.size

    def create_node(self, spec: NodeSpec, key: KeyHandle) -> NodeHandle:
        body = {
            "name": spec.name,
            "region": self.region,
            "size": self._size_for(spec),
            "image": self.image,
            "ssh_keys": [key.fingerprint or key.id],
            "tags": [self.tag],
            "private_networking": True,
        }
        if spec.roles & NodeRole.BOOTSTRAP and self.bootstrap_user_data:
            body["user_data"] = self.bootstrap_user_data

        data = self._request("POST", "/droplets", json=body)
        droplet = data["droplet"]
        logger.debug(f"Droplet {droplet['id']} requested for {spec.name}")
        return NodeHandle(id=str(droplet["id"]), name=droplet["name"])

    def get_node(self, handle: NodeHandle) -> NodeStatus:
        data = self._request("GET", f"/droplets/{handle.id}")
        droplet = data["droplet"]

        public_address = None
        private_address = None
        for network in (droplet.get("networks") or {}).get("v4") or []:
            if network.get("type") == "public":
                public_address = network.get("ip_address")
            elif network.get("type") == "private":
                private_address = network.get("ip_address")

        return NodeStatus(
            id=str(droplet["id"]),
            name=droplet["name"],
            public_address=public_address,
            private_address=private_address,
        )

    def delete_nodes_by_tag(self, tag: str) -> None:
        logger.info(f"Deleting droplets with tag '{tag}'")
        self._request("DELETE", "/droplets", params={"tag_name": tag})

    def delete_key(self, name: str) -> None:
        key = self.find_key(name)
        if key is None:
            logger.info(f"SSH key '{name}' not found, nothing to delete")
            return
        logger.info(f"Deleting SSH key '{name}'")
        self._request("DELETE", f"/account/keys/{key.fingerprint or key.id}")
