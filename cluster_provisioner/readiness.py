"""SSH readiness gate.

A node counts as ready once an SSH session can be opened to it with the
cluster key. The key is loaded once up front, then all nodes are checked
concurrently and share one deadline.
"""

import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from pathlib import Path
from typing import Callable, Sequence

import paramiko

from cluster_provisioner.exceptions import ReadinessTimeoutError
from cluster_provisioner.logging_config import get_logger
from cluster_provisioner.models.node import ProvisionedNode
from cluster_provisioner.polling import Deadline, poll
from cluster_provisioner.ssh import load_private_key, open_ssh

logger = get_logger(__name__)

Connector = Callable[[ProvisionedNode, paramiko.PKey, int, float], paramiko.SSHClient]

# Errors that mean "not up yet"; paramiko raises EOFError when sshd drops the
# connection during the banner exchange
RETRYABLE_ERRORS = (paramiko.SSHException, OSError, EOFError)


class ReadinessWaiter:
    """Blocks until every node accepts an SSH connection.

    Args:
        port: SSH port to connect to
        interval: Seconds between attempts on one node
        timeout: Seconds allowed for all nodes together, or None to wait until cancelled
        parallelism: Maximum number of nodes checked at once
        connect_timeout: Seconds allowed for a single connection attempt
        cancel_event: Optional event that stops the wait when set
        connector: Opens a connection; defaults to :func:`cluster_provisioner.ssh.open_ssh`
        key_loader: Loads the private key; defaults to
            :func:`cluster_provisioner.ssh.load_private_key`
    """

    def __init__(
        self,
        port: int = 22,
        interval: float = 5.0,
        timeout: float | None = 900.0,
        parallelism: int = 4,
        connect_timeout: float = 10.0,
        cancel_event: threading.Event | None = None,
        connector: Connector = open_ssh,
        key_loader: Callable[[Path], paramiko.PKey] = load_private_key,
    ):
        self.port = port
        self.interval = interval
        self.timeout = timeout
        self.parallelism = max(parallelism, 1)
        self.connect_timeout = connect_timeout
        self.cancel_event = cancel_event
        self.connector = connector
        self.key_loader = key_loader

    def await_reachable(self, nodes: Sequence[ProvisionedNode], ssh_key_path: str | Path) -> None:
        """Wait until every node is reachable over SSH.

        Raises:
            ConfigurationError: If the private key cannot be loaded
            ReadinessTimeoutError: Naming the nodes still unreachable at the deadline
        """
        if not nodes:
            return

        key = self.key_loader(Path(ssh_key_path).expanduser())
        deadline = Deadline(self.timeout, self.cancel_event)
        unreachable = []

        workers = min(self.parallelism, len(nodes))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="ssh-wait") as pool:
            futures = {
                pool.submit(self._wait_for_node, node, key, deadline): node for node in nodes
            }
            for future in as_completed(futures):
                node = futures[future]
                if not future.result():
                    unreachable.append(node.hostname)

        if unreachable:
            ordered = [node.hostname for node in nodes if node.hostname in unreachable]
            raise ReadinessTimeoutError(ordered, self.timeout, cancelled=deadline.cancelled)
        logger.info(f"All {len(nodes)} nodes are reachable over SSH")

    def _try_connect(self, node: ProvisionedNode, key: paramiko.PKey) -> bool | None:
        try:
            client = self.connector(node, key, self.port, self.connect_timeout)
        except RETRYABLE_ERRORS as e:
            logger.debug(f"SSH to {node.hostname} ({node.public_address}) not ready: {e}")
            return None
        client.close()
        return True

    def _wait_for_node(
        self, node: ProvisionedNode, key: paramiko.PKey, deadline: Deadline
    ) -> bool:
        logger.info(f"Waiting for SSH on {node.hostname} ({node.public_address})")
        ready = poll(lambda: self._try_connect(node, key), self.interval, deadline)
        if ready:
            logger.info(f"SSH is up on {node.hostname}")
            return True
        logger.warning(f"Gave up waiting for SSH on {node.hostname}")
        return False
