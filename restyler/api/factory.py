"""
Provider Factory
================

Factory for creating image-edit provider instances.
"""

import logging
from typing import Optional, List, Dict, Type

from ..core.exceptions import ConfigurationError
from .base import BaseImageEditor

logger = logging.getLogger(__name__)

# Registry of available providers
_PROVIDERS: Dict[str, Type[BaseImageEditor]] = {}


def register_provider(name: str):
    """Decorator to register an image-edit provider class."""
    def decorator(cls: Type[BaseImageEditor]):
        _PROVIDERS[name.lower()] = cls
        return cls
    return decorator


def get_editor(
    name: str,
    api_key: Optional[str] = None,
    **kwargs,
) -> BaseImageEditor:
    """
    Get an image-edit provider instance.

    Args:
        name: Provider name (e.g., 'fal')
        api_key: Optional API key (otherwise read from environment)
        **kwargs: Additional provider-specific arguments

    Returns:
        Configured provider instance

    Raises:
        ConfigurationError: If provider name is not recognized
    """
    name_lower = name.lower()

    if name_lower not in _PROVIDERS and name_lower == "fal":
        from . import fal  # noqa: F401  (registers on import)

    provider_class = _PROVIDERS.get(name_lower)
    if provider_class is None:
        raise ConfigurationError(
            f"Unknown image-edit provider: {name}",
            config_key="edit.provider",
        )

    return provider_class(api_key=api_key, **kwargs)


def list_providers() -> List[str]:
    """
    List all available provider names.

    Returns:
        List of provider names
    """
    from . import fal  # noqa: F401

    return sorted(_PROVIDERS.keys())
