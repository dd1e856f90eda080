"""Custom exceptions for the cluster provisioner."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from cluster_provisioner.models.cluster import ProvisionedCluster


class ClusterProvisionerError(Exception):
    """Base exception for all cluster provisioner errors."""

    def __init__(self, message: str, details: str | None = None):
        """Initialize the exception.

        Args:
            message: Main error message
            details: Additional details or suggestions
        """
        self.message = message
        self.details = details
        super().__init__(self.format_message())

    def format_message(self) -> str:
        """Format the complete error message.

        Returns:
            Formatted error message with details
        """
        if self.details:
            return f"{self.message}\n\nDetails: {self.details}"
        return self.message

    def add_details(self, text: str) -> None:
        """Append a paragraph to the details and refresh the exception text."""
        self.details = f"{self.details}\n\n{text}" if self.details else text
        self.args = (self.format_message(),)


class ValidationError(ClusterProvisionerError):
    """Exception raised for invalid requests (role counts, plan inputs)."""

    pass


class ConfigurationError(ClusterProvisionerError):
    """Exception raised for configuration errors."""

    pass


class InvalidNetworkError(ClusterProvisionerError):
    """Exception raised when the node CIDR cannot be parsed."""

    pass


class AddressSpaceExhaustedError(ClusterProvisionerError):
    """Exception raised when the requested nodes do not fit in the node CIDR."""

    pass


class ProviderError(ClusterProvisionerError):
    """Exception raised for failures reported by a provider client.

    When raised out of a provisioning run, ``partial_cluster`` holds the nodes
    that were created and reached address assignment before the failure.
    Those nodes are not deleted.
    """

    def __init__(
        self,
        message: str,
        details: str | None = None,
        partial_cluster: ProvisionedCluster | None = None,
    ):
        self.partial_cluster = partial_cluster
        super().__init__(message, details)


class AddressTimeoutError(ProviderError):
    """Exception raised when nodes never report an address before the deadline.

    Also raised when the run is cancelled while nodes are still waiting; then
    ``cancelled`` is True.
    """

    def __init__(
        self,
        nodes: list[str],
        timeout: float | None,
        partial_cluster: ProvisionedCluster | None = None,
        cancelled: bool = False,
    ):
        self.nodes = list(nodes)
        self.timeout = timeout
        self.cancelled = cancelled
        names = ", ".join(self.nodes)
        cleanup = (
            "The nodes were created and are left running; "
            "remove them with 'cluster-provision delete-all'."
        )
        if cancelled:
            message = f"Interrupted while waiting for address assignment on: {names}"
            details = f"Provisioning was cancelled. {cleanup}"
        else:
            message = f"Timed out waiting for address assignment on: {names}"
            details = f"No address was reported within {timeout} seconds. {cleanup}"
        super().__init__(message, details, partial_cluster=partial_cluster)


class ReadinessTimeoutError(ClusterProvisionerError):
    """Exception raised when nodes are not reachable over SSH before the deadline.

    ``cancelled`` is True when the wait ended because the run was interrupted.
    """

    def __init__(self, nodes: list[str], timeout: float | None, cancelled: bool = False):
        self.nodes = list(nodes)
        self.timeout = timeout
        self.cancelled = cancelled
        names = ", ".join(self.nodes)
        if cancelled:
            super().__init__(
                f"Interrupted while waiting for SSH on: {names}",
                "The wait was cancelled. The infrastructure is left intact.",
            )
            return
        super().__init__(
            f"Timed out waiting for SSH on: {names}",
            f"The nodes did not accept an SSH connection within {timeout} seconds. "
            "The infrastructure is left intact; check security groups and the SSH key.",
        )


class WeakPasswordFallback(ClusterProvisionerError):
    """Raised by the password generator when it exhausts its retry budget.

    Non-fatal: the plan emitter catches it and uses a fixed placeholder.
    """

    pass


class PlanWriteError(ClusterProvisionerError):
    """Exception raised when the plan file cannot be written or uploaded."""

    pass
