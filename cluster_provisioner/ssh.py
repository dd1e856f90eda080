"""SSH helpers built on paramiko.

Covers the three things provisioning needs from SSH: a local key pair to
register with the provider, a connection check for the readiness gate, and
uploading the plan file to the bootstrap node.
"""

import os
from pathlib import Path

import paramiko

from cluster_provisioner.exceptions import ConfigurationError, PlanWriteError
from cluster_provisioner.logging_config import get_logger
from cluster_provisioner.models.node import ProvisionedNode

logger = get_logger(__name__)

KEY_BITS = 2048


def load_private_key(key_path: str | Path) -> paramiko.PKey:
    """Load a private key of any type paramiko supports.

    Raises:
        ConfigurationError: If the file is missing or holds no usable key
    """
    key_path = Path(key_path).expanduser()
    if not key_path.exists():
        raise ConfigurationError(
            f"SSH private key not found: {key_path}",
            "Pass --ssh-key with the path of an existing key, or omit it to generate one",
        )

    for key_cls in (paramiko.RSAKey, paramiko.Ed25519Key, paramiko.ECDSAKey):
        try:
            return key_cls.from_private_key_file(str(key_path))
        except paramiko.SSHException:
            continue
    raise ConfigurationError(
        f"Unsupported or encrypted SSH private key: {key_path}",
        "Use an unencrypted RSA, Ed25519 or ECDSA key",
    )


def public_key_line(key: paramiko.PKey, comment: str = "") -> str:
    """Render a key in authorized_keys format."""
    line = f"{key.get_name()} {key.get_base64()}"
    return f"{line} {comment}" if comment else line


def load_or_create_key_pair(key_path: str | Path) -> tuple[Path, str]:
    """Load the key pair at ``key_path``, generating an RSA pair when absent.

    A new private key is written with mode 0600 and its public half next to it
    as ``<key_path>.pub``.

    Returns:
        Path of the private key and the public key in authorized_keys format
    """
    key_path = Path(key_path).expanduser()
    public_path = key_path.with_name(key_path.name + ".pub")

    if key_path.exists():
        key = load_private_key(key_path)
        if public_path.exists():
            public_key = public_path.read_text().strip()
        else:
            public_key = public_key_line(key)
        logger.debug(f"Using existing SSH key pair at {key_path}")
        return key_path, public_key

    logger.info(f"Generating a {KEY_BITS}-bit RSA key pair at {key_path}")
    key = paramiko.RSAKey.generate(KEY_BITS)
    public_key = public_key_line(key)
    try:
        key_path.parent.mkdir(parents=True, exist_ok=True)
        key.write_private_key_file(str(key_path))
        os.chmod(key_path, 0o600)
        public_path.write_text(public_key + "\n")
    except OSError as e:
        raise ConfigurationError(f"Failed to write SSH key pair to {key_path}", f"{e}")
    return key_path, public_key


def open_ssh(
    node: ProvisionedNode,
    key: str | Path | paramiko.PKey,
    port: int = 22,
    connect_timeout: float = 20.0,
) -> paramiko.SSHClient:
    """Open an SSH connection to a node as its SSH user.

    Args:
        node: Node to connect to
        key: Private key, or the path of one
        port: SSH port
        connect_timeout: Seconds allowed for the connection and handshake

    Raises:
        ConfigurationError: If ``key`` is a path without a usable key
        paramiko.SSHException: If the handshake or authentication fails
        OSError: If the TCP connection fails
    """
    pkey = key if isinstance(key, paramiko.PKey) else load_private_key(key)

    client = paramiko.SSHClient()
    client.set_missing_host_key_policy(paramiko.AutoAddPolicy())
    try:
        client.connect(
            hostname=node.public_address,
            port=port,
            username=node.ssh_user,
            pkey=pkey,
            timeout=connect_timeout,
            banner_timeout=connect_timeout,
            auth_timeout=connect_timeout,
            allow_agent=False,
            look_for_keys=False,
        )
    except Exception:
        client.close()
        raise
    return client


def upload_file(
    node: ProvisionedNode,
    key_path: str | Path,
    local_path: str | Path,
    remote_path: str,
    port: int = 22,
) -> None:
    """Copy a local file to a node over SFTP, creating the remote directory.

    Raises:
        PlanWriteError: If the connection or the copy fails
    """
    logger.info(f"Uploading {local_path} to {node.hostname}:{remote_path}")
    try:
        client = open_ssh(node, key_path, port)
    except (paramiko.SSHException, OSError) as e:
        raise PlanWriteError(
            f"Failed to connect to {node.hostname} to upload {local_path}", f"{e}"
        )

    try:
        remote_dir = os.path.dirname(remote_path)
        if remote_dir:
            _, stdout, _ = client.exec_command(f"mkdir -p {remote_dir}")
            stdout.channel.recv_exit_status()
        with client.open_sftp() as sftp:
            sftp.put(str(local_path), remote_path)
    except (paramiko.SSHException, OSError) as e:
        raise PlanWriteError(
            f"Failed to upload {local_path} to {node.hostname}:{remote_path}", f"{e}"
        )
    finally:
        client.close()
