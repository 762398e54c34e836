"""
Index declaration and usage models.

An `IndexDefinition` is declared in code and applied idempotently through the driver's
`create_index`. Field order matters for compound indexes, so `fields` is an ordered
mapping of field name to direction (`1`, `-1`) or special type (`"text"`, `"2dsphere"`, `"2d"`).
"""

from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

IndexDirection = Union[int, str]

VALID_DIRECTIONS = {1, -1, "text", "2dsphere", "2d", "hashed"}
PRIMARY_KEY_INDEX = "_id_"


class IndexOptions(BaseModel):
    """Options passed to `create_index`."""

    model_config = ConfigDict(frozen=True)

    name: Optional[str] = None
    unique: bool = False
    sparse: bool = False
    background: bool = True
    expire_after_seconds: Optional[int] = None

    def to_driver_kwargs(self) -> Dict[str, Any]:
        kwargs: Dict[str, Any] = {"background": self.background}
        if self.name:
            kwargs["name"] = self.name
        if self.unique:
            kwargs["unique"] = True
        if self.sparse:
            kwargs["sparse"] = True
        if self.expire_after_seconds is not None:
            kwargs["expireAfterSeconds"] = self.expire_after_seconds
        return kwargs


class IndexDefinition(BaseModel):
    """A declared index on one collection.

    Attributes:
        collection (str): Target collection.
        fields (Dict[str, IndexDirection]): Ordered field -> direction mapping.
        options (IndexOptions): Uniqueness, sparsity, background build, TTL, explicit name.
    """

    model_config = ConfigDict(frozen=True)

    collection: str
    fields: Dict[str, IndexDirection]
    options: IndexOptions = Field(default_factory=IndexOptions)

    @field_validator("fields")
    @classmethod
    def validate_fields(cls, v: Dict[str, IndexDirection]) -> Dict[str, IndexDirection]:
        if not v:
            raise ValueError("an index needs at least one field")
        for field_name, direction in v.items():
            if direction not in VALID_DIRECTIONS:
                raise ValueError(f"invalid direction {direction!r} for field {field_name!r}")
        return v

    @property
    def keys(self) -> List[Tuple[str, IndexDirection]]:
        return list(self.fields.items())

    @property
    def index_name(self) -> str:
        """Name the server will assign (explicit name, or the driver's default naming)."""
        if self.options.name:
            return self.options.name
        return "_".join(f"{f}_{d}" for f, d in self.fields.items())


class IndexUsage(BaseModel):
    """Per-index operation counter as reported by `$indexStats`.

    `last_used` carries `accesses.since`, the server's reference time for `usage_ops`
    (index creation or the last server restart).
    """

    collection: str
    index_name: str
    usage_ops: int = 0
    last_used: Optional[datetime] = None


class IndexInfo(BaseModel):
    """A live index as returned by `list_indexes`."""

    name: str
    key: Dict[str, Any]
    unique: bool = False
    sparse: bool = False
    background: bool = False
    expire_after_seconds: Optional[int] = None


class IndexDiff(BaseModel):
    """Declared-vs-live comparison for one collection."""

    collection: str
    missing: List[str] = Field(default_factory=list)
    extra: List[str] = Field(default_factory=list)

    @property
    def in_sync(self) -> bool:
        return not self.missing and not self.extra


class IndexCreationSummary(BaseModel):
    """Outcome of `IndexCatalog.create_all()`."""

    created: List[str] = Field(default_factory=list)
    failed: Dict[str, str] = Field(default_factory=dict)

    @property
    def total(self) -> int:
        return len(self.created) + len(self.failed)
