"""
Collection metadata for MergeDoc.

- types: FieldKind, FieldDef, BlockDef, TabDef, JoinDef, CollectionDef
- registry: CollectionRegistry, CollectionLookup protocol, global registry
"""

from .registry import (
    CollectionLookup,
    CollectionRegistry,
    DuplicateRegistrationError,
    RegistryFrozenError,
    get_registry,
    reset_registry,
)
from .types import BlockDef, CollectionDef, FieldDef, FieldKind, JoinDef, TabDef

__all__ = [
    "FieldKind",
    "FieldDef",
    "BlockDef",
    "TabDef",
    "JoinDef",
    "CollectionDef",
    "CollectionLookup",
    "CollectionRegistry",
    "DuplicateRegistrationError",
    "RegistryFrozenError",
    "get_registry",
    "reset_registry",
]
