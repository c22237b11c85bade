"""Adapter registry mapping catalog adapter names to implementations."""

import logging
from typing import Any, Callable

from stockwatch.config import ConfigurationError
from stockwatch.ingest.adapters.static_html import StaticHTMLAdapter
from stockwatch.ingest.base import BaseAdapter

logger = logging.getLogger(__name__)

AdapterFactory = Callable[[dict[str, Any]], BaseAdapter]


class AdapterRegistry:
    """Registry of adapter factories, built once at startup."""

    def __init__(self, factories: dict[str, AdapterFactory] | None = None):
        self._factories: dict[str, AdapterFactory] = dict(factories or {})

    @classmethod
    def default(cls) -> "AdapterRegistry":
        registry = cls()
        registry.register("static_html", StaticHTMLAdapter.from_options)
        return registry

    def register(self, name: str, factory: AdapterFactory) -> None:
        """
        Register an adapter factory.

        Args:
            name: Adapter name used in the catalog file
            factory: Callable taking the target's options and returning an adapter
        """
        self._factories[name] = factory
        logger.debug(f"Registered adapter: {name}")

    def create(self, name: str, options: dict[str, Any] | None = None) -> BaseAdapter:
        """
        Create an adapter instance for a target.

        Raises:
            ConfigurationError: If the adapter name is not registered or its
                options are invalid
        """
        if name not in self._factories:
            raise ConfigurationError(
                f"Unknown adapter: {name}. Available: {self.list_adapters()}"
            )
        try:
            return self._factories[name](dict(options or {}))
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"Invalid options for adapter {name}: {e}") from e

    def list_adapters(self) -> list[str]:
        return list(self._factories)
