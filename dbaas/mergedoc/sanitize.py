"""
Identifier validation and field-path sanitising.

Identifiers (namespaces, collection slugs, table and database names, field
paths) are spliced into SQL text because the backend cannot bind them as
parameters. Every such splice goes through this module.

Invariants:
    - Namespaces match ^\\w[\\w.-]*$
    - Collection slugs match ^[\\w-]+$
    - Table and database names match ^[a-z_]\\w*$ (case-insensitive)
    - Field paths keep only [A-Za-z0-9_.[\\]] characters
    - Validation happens before any query is built or sent
"""

from __future__ import annotations

import re

from .errors import InvalidArgumentError

_NAMESPACE_RE = re.compile(r"^\w[\w.-]*$", re.ASCII)
_SLUG_RE = re.compile(r"^[\w-]+$", re.ASCII)
_TABLE_RE = re.compile(r"^[a-z_]\w*$", re.ASCII | re.IGNORECASE)
_FIELD_PATH_STRIP_RE = re.compile(r"[^\w.\[\]]", re.ASCII)


def is_valid_namespace(namespace: str) -> bool:
    return isinstance(namespace, str) and bool(_NAMESPACE_RE.fullmatch(namespace))


def is_valid_slug(slug: str) -> bool:
    return isinstance(slug, str) and bool(_SLUG_RE.fullmatch(slug))


def is_valid_table_name(name: str) -> bool:
    return isinstance(name, str) and bool(_TABLE_RE.fullmatch(name))


def assert_valid_namespace(namespace: str) -> str:
    """Validate and return the namespace.

    Raises:
        InvalidArgumentError: If the namespace contains quotes, slashes,
            spaces or anything outside letters, digits, '_', '-' and '.'
    """
    if not is_valid_namespace(namespace):
        raise InvalidArgumentError(
            f"Invalid namespace '{namespace}'. Namespaces must start with a letter, "
            "number, or underscore and contain only alphanumeric characters, "
            "underscores, hyphens, and dots.",
            argument="namespace",
            value=namespace,
        )
    return namespace


def assert_valid_slug(slug: str, context: str = "collection") -> str:
    """Validate and return a collection (or other) slug.

    Raises:
        InvalidArgumentError: If the slug is not made of [A-Za-z0-9_-]
    """
    if not is_valid_slug(slug):
        raise InvalidArgumentError(
            f"Invalid {context} slug '{slug}'. Slugs must contain only alphanumeric "
            "characters, underscores, and hyphens.",
            argument=context,
            value=slug,
        )
    return slug


def assert_valid_table_name(name: str, context: str = "table") -> str:
    """Validate and return a table or database name.

    Raises:
        InvalidArgumentError: If the name is not a plain SQL identifier
    """
    if not is_valid_table_name(name):
        raise InvalidArgumentError(
            f"Invalid {context} name '{name}'. Must start with a letter or underscore "
            "and contain only alphanumeric characters and underscores.",
            argument=context,
            value=name,
        )
    return name


def sanitize_field_path(path: str) -> str:
    """Strip every character that is not allowed in a field path."""
    return _FIELD_PATH_STRIP_RE.sub("", str(path))
