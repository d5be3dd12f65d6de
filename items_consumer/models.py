from __future__ import annotations

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


# Firestore rejects document ids longer than this many bytes.
MAX_DOC_ID_BYTES = 1500


class Category(str, Enum):
    treats = "treats"
    food = "food"
    supplements = "supplements"
    toys = "toys"


class ItemEvent(BaseModel):
    """
    "item created" event as published by the items API.

    Notes:
    - `extra=allow`: fields the producer adds later are stored untouched.
    - Only `id`, `name` and `category` are guaranteed by the producer.
    """

    model_config = ConfigDict(extra="allow")

    id: str
    name: str = Field(min_length=1, max_length=100)
    category: Category
    description: Optional[str] = Field(default=None, max_length=500)
    timestamp: Optional[str] = None
    source: Optional[str] = None
    requestId: Optional[str] = None

    @field_validator("id")
    @classmethod
    def _id_is_document_key(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("must not be empty")
        if "/" in v:
            raise ValueError("must not contain '/'")
        if v in {".", ".."}:
            raise ValueError("must not be '.' or '..'")
        if len(v) >= 4 and v.startswith("__") and v.endswith("__"):
            raise ValueError("must not match __.*__")
        if len(v.encode("utf-8")) > MAX_DOC_ID_BYTES:
            raise ValueError(f"must be at most {MAX_DOC_ID_BYTES} bytes")
        return v

    @field_validator("name")
    @classmethod
    def _name_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("must not be blank")
        return v

    def to_fields(self) -> dict[str, Any]:
        """
        Fields as delivered, JSON-ready. Fields the producer omitted are left
        out so a merge-write never blanks a previously stored value.
        """
        return self.model_dump(mode="json", exclude_unset=True)
