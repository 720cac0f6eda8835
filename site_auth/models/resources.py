"""Provider-side resources a token can see."""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field


class Resource(BaseModel):
    """A GA4 property or a Search Console site."""

    resource_id: str
    display_name: str
    parent_grouping_id: Optional[str] = None


class ResourcePage(BaseModel):
    """One page of a provider listing plus its continuation cursor."""

    items: list[Resource] = Field(default_factory=list)
    next_cursor: Optional[str] = None


__all__ = ["Resource", "ResourcePage"]
