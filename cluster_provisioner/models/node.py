"""Data models for planned and provisioned nodes."""

import enum
import re
from ipaddress import IPv4Address

from pydantic import BaseModel, ConfigDict, Field, field_validator

# RFC 1123 hostname
HOSTNAME_PATTERN = re.compile(
    r"^[a-z0-9]([-a-z0-9]*[a-z0-9])?(\.[a-z0-9]([-a-z0-9]*[a-z0-9])?)*$", re.IGNORECASE
)


class NodeRole(enum.IntFlag):
    """Composable node role set.

    A single node may carry several roles at once, e.g. ``NodeRole.ETCD | NodeRole.MASTER``.
    """

    ETCD = 1
    MASTER = 2
    WORKER = 4
    INGRESS = 8
    BOOTSTRAP = 16
    STORAGE = 32

    @classmethod
    def ordered(cls) -> list["NodeRole"]:
        """Return the single roles in canonical order."""
        return [cls.ETCD, cls.MASTER, cls.WORKER, cls.INGRESS, cls.BOOTSTRAP, cls.STORAGE]

    @classmethod
    def parse(cls, value: str) -> "NodeRole":
        """Parse a role name such as ``etcd`` or ``master+worker``."""
        roles = cls(0)
        for part in value.split("+"):
            name = part.strip().upper()
            if name not in cls.__members__:
                allowed = [role.name.lower() for role in cls.ordered()]
                raise ValueError(f"role must be one of {allowed}, got '{part.strip()}'")
            roles |= cls[name]
        return roles

    def members(self) -> list["NodeRole"]:
        """Decompose this role set into single roles, in canonical order."""
        return [role for role in NodeRole.ordered() if role & self]

    @property
    def label(self) -> str:
        return "+".join(role.name.lower() for role in self.members())


class NodeState(str, enum.Enum):
    """Lifecycle of a node during a provisioning run."""

    REQUESTED = "requested"
    CREATING = "creating"
    ADDRESS_PENDING = "address-pending"
    ADDRESS_ASSIGNED = "address-assigned"
    CREATE_FAILED = "create-failed"


def _coerce_roles(v):
    if isinstance(v, NodeRole):
        return v
    if isinstance(v, int):
        return NodeRole(v)
    if isinstance(v, str):
        return NodeRole.parse(v)
    return v


def _validate_hostname(v: str) -> str:
    if not v:
        raise ValueError("hostname cannot be empty")
    if len(v) > 253:
        raise ValueError("hostname cannot exceed 253 characters")
    if not HOSTNAME_PATTERN.match(v):
        raise ValueError(
            f"hostname '{v}' must contain only alphanumeric characters, "
            "hyphens, and dots, and cannot start or end with a hyphen"
        )
    return v


class NodeSpec(BaseModel):
    """A node requested from the planner.

    ``ip`` is set when the node belongs to a planned topology and left empty
    for providers that assign their own addresses.
    """

    model_config = ConfigDict(frozen=True)

    roles: NodeRole
    index: int = Field(ge=1)
    name: str
    ip: IPv4Address | None = None

    @field_validator("roles", mode="before")
    @classmethod
    def coerce_roles(cls, v):
        return _coerce_roles(v)

    @field_validator("roles")
    @classmethod
    def validate_roles(cls, v: NodeRole) -> NodeRole:
        """A node must carry at least one role."""
        if not v:
            raise ValueError("roles cannot be empty")
        return v

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        return _validate_hostname(v)

    @property
    def primary_role(self) -> NodeRole:
        """The first role in canonical order; decides the creation phase."""
        return self.roles.members()[0]


class NodeHandle(BaseModel):
    """Provider reference to a node that has been requested."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str


class NodeStatus(BaseModel):
    """Provider view of a node while waiting for address assignment."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    public_address: str | None = None
    private_address: str | None = None

    @property
    def address_assigned(self) -> bool:
        return bool(self.public_address)


class KeyHandle(BaseModel):
    """SSH key registered with a provider."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    fingerprint: str = ""


class ProvisionedNode(BaseModel):
    """A node the provider has created and assigned an address to."""

    model_config = ConfigDict(frozen=True)

    id: str
    hostname: str
    public_address: str
    private_address: str | None = None
    ssh_user: str
    roles: NodeRole

    @field_validator("roles", mode="before")
    @classmethod
    def coerce_roles(cls, v):
        return _coerce_roles(v)

    @field_validator("hostname")
    @classmethod
    def validate_hostname(cls, v: str) -> str:
        """Validate hostname follows DNS naming conventions."""
        return _validate_hostname(v)

    @field_validator("public_address", "ssh_user")
    @classmethod
    def validate_not_empty(cls, v: str) -> str:
        if not v:
            raise ValueError("value cannot be empty")
        return v

    def has_role(self, role: NodeRole) -> bool:
        return bool(self.roles & role)
