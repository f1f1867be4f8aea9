"""Core interfaces for Control Plane."""

from skyport.core.interfaces.kv import KeyValueStore

__all__ = ["KeyValueStore"]
