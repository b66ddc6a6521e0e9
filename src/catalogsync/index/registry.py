"""Backend registry — Resolves index backend classes by name.

Built-in backends are imported lazily so the optional client packages are
only required when the matching backend is configured. Extra backends can
be registered at runtime.
"""

from __future__ import annotations

import importlib
import logging
from typing import TYPE_CHECKING, Any

from catalogsync.errors import ConfigurationError
from catalogsync.index.base import IndexBackend

if TYPE_CHECKING:
    from catalogsync.config.settings import IndexSettings

logger = logging.getLogger(__name__)

# Maps backend names to (module_path, class_name) for lazy import
_BACKEND_MAP: dict[str, tuple[str, str]] = {
    "elasticsearch": ("catalogsync.index.elasticsearch", "ElasticsearchBackend"),
    "opensearch": ("catalogsync.index.opensearch", "OpenSearchBackend"),
    "memory": ("catalogsync.index.memory", "MemoryIndexBackend"),
}


class BackendRegistry:
    """Registry of index backend classes.

    Example:
        >>> registry = BackendRegistry()
        >>> registry.register("custom", CustomBackend)
        >>> backend = registry.create("custom", index_name="products")
    """

    def __init__(self) -> None:
        self._classes: dict[str, type[IndexBackend]] = {}

    def register(self, name: str, backend_class: type[IndexBackend]) -> None:
        """Register a backend class under ``name``."""
        if name in self._classes:
            logger.warning("Overwriting existing backend registration: %s", name)
        self._classes[name] = backend_class
        logger.info("Registered index backend: %s", name)

    def resolve(self, name: str) -> type[IndexBackend]:
        """Return the backend class for ``name``.

        Raises:
            ConfigurationError: If the name is unknown or its module cannot be imported.
        """
        if name in self._classes:
            return self._classes[name]

        entry = _BACKEND_MAP.get(name)
        if entry is None:
            raise ConfigurationError(
                f"No index backend registered with name '{name}'. "
                f"Available backends: {self.available_backends}"
            )

        module_path, class_name = entry
        try:
            module = importlib.import_module(module_path)
        except ImportError as e:
            raise ConfigurationError(f"Failed to import index backend '{name}': {e}") from e
        backend_class: type[IndexBackend] = getattr(module, class_name)
        self._classes[name] = backend_class
        return backend_class

    def create(self, name: str, **kwargs: Any) -> IndexBackend:
        """Instantiate the backend registered under ``name``."""
        return self.resolve(name)(**kwargs)

    def create_from_settings(self, settings: IndexSettings) -> IndexBackend:
        """Instantiate the configured backend from index settings."""
        kwargs: dict[str, Any] = {"index_name": settings.index_name}
        if settings.backend != "memory":
            kwargs.update(
                hosts=settings.hosts,
                verify_certs=settings.verify_certs,
                request_timeout=settings.request_timeout,
                refresh=settings.refresh,
            )
            if settings.username:
                kwargs["username"] = settings.username
            if settings.password:
                kwargs["password"] = settings.password
            if settings.api_key:
                kwargs["api_key"] = settings.api_key
        # Pass through any extra config
        kwargs.update(settings.extra)
        return self.create(settings.backend, **kwargs)

    @property
    def available_backends(self) -> list[str]:
        """List every backend name that can be resolved."""
        return sorted(set(_BACKEND_MAP) | set(self._classes))
