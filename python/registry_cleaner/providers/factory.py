"""
Provider selection from a ProviderConfig.
"""

import logging
from typing import Dict, List, Type

from registry_cleaner.http_client import HttpClient
from registry_cleaner.models import ProviderConfig
from registry_cleaner.providers.base import BaseProvider
from registry_cleaner.providers.ghcr import GHCRProvider
from registry_cleaner.providers.oci import GenericOCIProvider
from registry_cleaner.validation import match_registry_url, validate_registry_type

logger = logging.getLogger(__name__)

PROVIDERS: Dict[str, Type[BaseProvider]] = {
    "ghcr": GHCRProvider,
    "oci": GenericOCIProvider,
}

KNOWN_REGISTRY_URLS: Dict[str, List[str]] = {
    "ghcr": ["ghcr.io"],
}


def detect_registry_type(registry_url: str) -> str:
    """Match a registry URL against known hosts; anything else is a generic OCI registry"""
    for registry_type, known_urls in KNOWN_REGISTRY_URLS.items():
        if match_registry_url(registry_url, known_urls):
            logger.debug(f"Matched registry URL {registry_url} to {registry_type} provider")
            return registry_type
    logger.debug(f"No provider match found for {registry_url}, using the generic OCI provider")
    return "oci"


def create_provider(config: ProviderConfig, http_client: HttpClient) -> BaseProvider:
    """Instantiate the provider for config.registry_type, resolving 'auto' from the URL

    Raises:
        ConfigValidationError: Unknown registry type
        ValueError: Missing settings the chosen provider needs
    """
    registry_type = validate_registry_type(config.registry_type)
    if registry_type == "auto":
        if not config.registry_url:
            raise ValueError("registry-url is required when registry-type is auto")
        registry_type = detect_registry_type(config.registry_url)
        logger.info(f"Auto-detected registry type: {registry_type} for URL: {config.registry_url}")
    return PROVIDERS[registry_type](config, http_client)
