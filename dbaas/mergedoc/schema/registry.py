"""
Collection registry for MergeDoc.

The registry holds the host's collection definitions and answers the
store's metadata lookups (the CollectionLookup protocol). Hosts with their
own config machinery can pass any object with a get_collection() method
instead.

Invariants:
    - Registry is mutable during startup, frozen afterwards if the host wants
    - Slugs are unique
    - Lookups never raise; unknown slugs return None

Example:
    >>> registry = CollectionRegistry()
    >>> registry.register(CollectionDef(slug="posts"))
    >>> registry.get_collection("posts")
    CollectionDef(slug='posts', ...)
"""

from __future__ import annotations

import logging
import threading
from typing import Iterator, Optional, Protocol, runtime_checkable

from .types import CollectionDef

logger = logging.getLogger(__name__)

# Global registry instance
_global_registry: Optional[CollectionRegistry] = None
_registry_lock = threading.Lock()


class RegistryFrozenError(Exception):
    """Raised when attempting to modify a frozen registry."""
    pass


class DuplicateRegistrationError(Exception):
    """Raised when attempting to register a slug twice."""
    pass


@runtime_checkable
class CollectionLookup(Protocol):
    """Anything that can resolve a collection slug to its definition."""

    def get_collection(self, slug: str) -> CollectionDef | None:
        ...


class CollectionRegistry:
    """Registry of collection definitions keyed by slug.

    Thread-safety:
        - Registration is thread-safe (uses internal lock)
        - Lookups are plain dict reads
    """

    def __init__(self, collections: tuple[CollectionDef, ...] | list[CollectionDef] = ()) -> None:
        self._collections: dict[str, CollectionDef] = {}
        self._frozen = False
        self._lock = threading.Lock()
        for collection in collections:
            self.register(collection)

    @property
    def frozen(self) -> bool:
        return self._frozen

    def register(self, collection: CollectionDef) -> None:
        """Register a collection definition.

        Raises:
            RegistryFrozenError: If registry is frozen
            DuplicateRegistrationError: If the slug is already registered
        """
        with self._lock:
            if self._frozen:
                raise RegistryFrozenError(
                    f"Cannot register collection '{collection.slug}': registry is frozen"
                )
            if collection.slug in self._collections:
                raise DuplicateRegistrationError(
                    f"Collection '{collection.slug}' is already registered"
                )
            self._collections[collection.slug] = collection
            logger.debug(f"Registered collection: {collection.slug}")

    def freeze(self) -> None:
        """Prevent further registrations. Irreversible."""
        with self._lock:
            self._frozen = True

    def get_collection(self, slug: str) -> CollectionDef | None:
        return self._collections.get(slug)

    def __contains__(self, slug: object) -> bool:
        return slug in self._collections

    def __iter__(self) -> Iterator[CollectionDef]:
        return iter(list(self._collections.values()))

    def __len__(self) -> int:
        return len(self._collections)


def get_registry() -> CollectionRegistry:
    """Get the process-wide registry, creating it on first use."""
    global _global_registry
    with _registry_lock:
        if _global_registry is None:
            _global_registry = CollectionRegistry()
        return _global_registry


def reset_registry() -> None:
    """Drop the process-wide registry (tests only)."""
    global _global_registry
    with _registry_lock:
        _global_registry = None
