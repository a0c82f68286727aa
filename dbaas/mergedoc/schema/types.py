"""
Collection metadata types for MergeDoc.

The host application describes its collections once; the store reads these
definitions to find relationship fields (for the edge index), join
definitions (for the join resolver) and the title field.

- FieldDef: One field in a collection, possibly containing nested fields
- BlockDef: One block type inside a `blocks` field
- TabDef: One tab inside a `tabs` field (named tabs nest their data)
- JoinDef: A virtual field listing documents that reference this collection
- CollectionDef: A collection slug with its fields and joins

Invariants:
    - Slugs are validated on construction
    - relation_to is never empty for relationship/upload fields
    - Definitions are immutable once built

Example:
    >>> from dbaas.mergedoc.schema import CollectionDef, FieldDef, FieldKind
    >>> Posts = CollectionDef(
    ...     slug="posts",
    ...     fields=(
    ...         FieldDef("title", FieldKind.TEXT),
    ...         FieldDef("author", FieldKind.RELATIONSHIP, relation_to=("users",)),
    ...     ),
    ... )
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from ..sanitize import assert_valid_slug


class FieldKind(Enum):
    """Field kinds the store distinguishes.

    Only relationship, upload and the four container kinds change how the
    store behaves; every other kind is stored as-is in the payload.
    """

    TEXT = "text"
    TEXTAREA = "textarea"
    EMAIL = "email"
    NUMBER = "number"
    CHECKBOX = "checkbox"
    DATE = "date"
    SELECT = "select"
    POINT = "point"
    JSON = "json"
    RICH_TEXT = "richText"
    RELATIONSHIP = "relationship"  # Reference(s) to documents in other collections
    UPLOAD = "upload"  # Reference to a media document
    GROUP = "group"  # Nested object of fields
    ARRAY = "array"  # List of objects of fields
    BLOCKS = "blocks"  # List of objects tagged with blockType
    TABS = "tabs"  # Layout-only container; named tabs nest their data

    @classmethod
    def from_str(cls, value: str) -> FieldKind:
        """Convert string representation to FieldKind.

        Raises:
            ValueError: If value is not a valid field kind
        """
        for kind in cls:
            if kind.value == value:
                return kind
        valid = [k.value for k in cls]
        raise ValueError(f"Invalid field kind '{value}'. Valid kinds: {valid}")

    @property
    def is_reference(self) -> bool:
        return self in (FieldKind.RELATIONSHIP, FieldKind.UPLOAD)


@dataclass(frozen=True)
class FieldDef:
    """A field within a collection.

    Attributes:
        name: Key of the field in the document payload
        kind: Field kind
        relation_to: Target collection slugs (relationship/upload only);
            more than one makes the field polymorphic
        has_many: Whether the field holds a list of references
        fields: Nested fields (group/array)
        blocks: Block definitions (blocks)
        tabs: Tab definitions (tabs)
    """

    name: str
    kind: FieldKind = FieldKind.TEXT
    relation_to: tuple[str, ...] = ()
    has_many: bool = False
    fields: tuple[FieldDef, ...] = ()
    blocks: tuple[BlockDef, ...] = ()
    tabs: tuple[TabDef, ...] = ()

    def __post_init__(self) -> None:
        if self.kind.is_reference and not self.relation_to:
            raise ValueError(f"Field '{self.name}' of kind {self.kind.value} needs relation_to")

    @property
    def is_polymorphic(self) -> bool:
        return len(self.relation_to) > 1


@dataclass(frozen=True)
class BlockDef:
    """A block type; documents tag each block with `blockType = slug`."""

    slug: str
    fields: tuple[FieldDef, ...] = ()


@dataclass(frozen=True)
class TabDef:
    """A tab; when named, its fields live under data[name]."""

    name: str | None
    fields: tuple[FieldDef, ...] = ()


@dataclass(frozen=True)
class JoinDef:
    """A join: documents in `collection` whose `on` field points here.

    Attributes:
        name: Dot-separated path the results are attached at
        collection: Source collection slug, or a tuple of slugs (polymorphic)
        on: Relationship field path in the source collection
        default_limit: Page size when the caller gives none
    """

    name: str
    collection: str | tuple[str, ...]
    on: str
    default_limit: int | None = None

    @property
    def targets(self) -> tuple[str, ...]:
        if isinstance(self.collection, str):
            return (self.collection,)
        return tuple(self.collection)

    @property
    def is_polymorphic(self) -> bool:
        return not isinstance(self.collection, str)


@dataclass(frozen=True)
class CollectionDef:
    """A collection definition.

    Attributes:
        slug: Collection slug (stored as the row `type`)
        fields: Top-level fields
        joins: Join definitions
        title_field: Field used for the `title` column
        versions: Whether version history is kept
    """

    slug: str
    fields: tuple[FieldDef, ...] = ()
    joins: tuple[JoinDef, ...] = ()
    title_field: str | None = None
    versions: bool = False

    def __post_init__(self) -> None:
        assert_valid_slug(self.slug)

    def get_join(self, name: str) -> JoinDef | None:
        for join in self.joins:
            if join.name == name:
                return join
        return None
