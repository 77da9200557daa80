"""Base schemas for the application."""

from typing import Any, Optional, Self

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class BaseSchema(BaseModel):
    """Base schema class with common configuration."""
    model_config = ConfigDict(from_attributes=True)


class TreeRecord(BaseModel):
    """Base for records persisted in the tree store.

    Field names are snake_case in Python and camelCase in the tree, so data
    written by other clients of the same tree reads back unchanged.
    """
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    def to_tree(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)

    @classmethod
    def from_tree(cls, data: Any, **overrides: Any) -> Self | None:
        if not isinstance(data, dict):
            return None
        return cls.model_validate({**data, **overrides})


class ResponseSchema(BaseSchema):
    """Standard API response schema."""
    status: str
    message: Optional[str] = None
    data: Optional[Any] = None
