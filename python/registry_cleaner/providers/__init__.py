"""
Registry providers.

Each provider implements RegistryProvider for one registry family:
- GitHub Container Registry (ghcr.io)
- Any OCI Distribution v2 registry (Harbor, Quay, distribution/registry, ...)
"""

from registry_cleaner.providers.base import BaseProvider, RegistryProvider
from registry_cleaner.providers.factory import create_provider, detect_registry_type
from registry_cleaner.providers.ghcr import GHCRProvider
from registry_cleaner.providers.oci import GenericOCIProvider

__all__ = [
    "RegistryProvider",
    "BaseProvider",
    "GHCRProvider",
    "GenericOCIProvider",
    "create_provider",
    "detect_registry_type",
]
