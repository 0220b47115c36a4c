"""
Format Provider Registry

Maps file extensions to format providers. CSV and TSV providers are
registered at import; additional formats are added with
FormatRegistry.register() during startup. Lookups are safe from any thread.
"""

import logging
import threading
from typing import Dict, List

from .exceptions import ConfigurationError
from .models import DataFormat
from .parser import CsvFormatProvider, FormatProvider, TsvFormatProvider

logger = logging.getLogger(__name__)


def _normalize_extension(extension) -> str:
    if isinstance(extension, DataFormat):
        extension = extension.extension
    normalized = str(extension).strip().lstrip(".").lower()
    if not normalized:
        raise ConfigurationError("File extension must not be blank")
    return normalized


class FormatRegistry:
    """Global registry of format providers keyed by file extension."""

    _providers: Dict[str, FormatProvider] = {}
    _registry_lock = threading.Lock()

    @classmethod
    def register(cls, provider: FormatProvider):
        """Register (or replace) the provider for its extension."""
        extension = _normalize_extension(provider.extension)
        with cls._registry_lock:
            providers = dict(cls._providers)
            providers[extension] = provider
            cls._providers = providers
        logger.debug(f"Registered format provider {type(provider).__name__} for .{extension}")

    @classmethod
    def remove(cls, extension):
        """Remove the provider for an extension."""
        extension = _normalize_extension(extension)
        with cls._registry_lock:
            providers = dict(cls._providers)
            providers.pop(extension, None)
            cls._providers = providers

    @classmethod
    def get_provider(cls, extension) -> FormatProvider:
        """
        Get the provider for a file extension or DataFormat.

        Raises:
            ConfigurationError: If no provider is registered for the extension
        """
        extension = _normalize_extension(extension)
        provider = cls._providers.get(extension)
        if provider is None:
            raise ConfigurationError(
                f"No format provider registered for file extension: {extension}. "
                f"Registered extensions: {cls.supported_extensions()}"
            )
        return provider

    @classmethod
    def has_provider(cls, extension) -> bool:
        return _normalize_extension(extension) in cls._providers

    @classmethod
    def supported_extensions(cls) -> List[str]:
        return sorted(cls._providers)


def register_default_providers():
    """Register the built-in CSV and TSV providers."""
    FormatRegistry.register(CsvFormatProvider())
    FormatRegistry.register(TsvFormatProvider())


register_default_providers()
