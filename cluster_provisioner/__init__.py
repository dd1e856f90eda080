"""Cluster topology planning and provisioning."""

__version__ = "0.1.0"
