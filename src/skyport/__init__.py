"""Skyport - control plane for containerized workloads on remote node agents."""

__version__ = "0.1.0"
