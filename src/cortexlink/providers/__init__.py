"""Provider implementations."""

from .base import Provider, ProviderCapabilities
from .cli import AdapterState, CliAvailability, CortexCliProvider

__all__ = [
    "AdapterState",
    "CliAvailability",
    "CortexCliProvider",
    "Provider",
    "ProviderCapabilities",
]
