"""Service layer utilities consolidating reusable business logic."""

from .network_manager import NetworkManager

__all__ = [
    "NetworkManager",
]
