"""
flashdeck/models/set.py

Request bodies for set writes. Field names are camelCase on the wire and
snake_case in Python, via the shared field table.
"""

from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from flashdeck.core.fields import to_camel_key


def normalize_tags(names: List[str]) -> List[str]:
    """Lowercase, trim and de-duplicate tag names, keeping first-seen order."""
    seen: List[str] = []
    for tag in names:
        name = tag.strip().lower()
        if name and name not in seen:
            seen.append(name)
    return seen


class CardIn(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel_key, populate_by_name=True)

    front: Optional[str] = None
    back: Optional[str] = None
    hint: Optional[str] = None
    front_image: Optional[str] = None
    back_image: Optional[str] = None

    @model_validator(mode="after")
    def _faces_present(self):
        if not (self.front or self.front_image):
            raise ValueError("Front must have either text or imageUrl")
        if not (self.back or self.back_image):
            raise ValueError("Back must have either text or imageUrl")
        return self


class SetCreate(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel_key, populate_by_name=True)

    title: str = Field(..., min_length=1, max_length=255)
    description: str = Field(..., min_length=1)
    category_id: Optional[int] = None
    price: Decimal = Field(default=Decimal("0"), ge=0, max_digits=10, decimal_places=2)
    is_subscriber_only: bool = False
    featured: bool = False
    hidden: bool = False
    thumbnail: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    cards: List[CardIn] = Field(default_factory=list)

    @field_validator("title", "description")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("must not be blank")
        return value.strip()

    @field_validator("tags")
    @classmethod
    def _clean_tags(cls, value: List[str]) -> List[str]:
        return normalize_tags(value)


class SetUpdate(BaseModel):
    """Partial update; None means leave unchanged. tags/cards replace when given."""
    model_config = ConfigDict(alias_generator=to_camel_key, populate_by_name=True)

    title: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = None
    category_id: Optional[int] = None
    price: Optional[Decimal] = Field(default=None, ge=0, max_digits=10, decimal_places=2)
    is_subscriber_only: Optional[bool] = None
    featured: Optional[bool] = None
    hidden: Optional[bool] = None
    thumbnail: Optional[str] = None
    tags: Optional[List[str]] = None
    cards: Optional[List[CardIn]] = None

    @field_validator("tags")
    @classmethod
    def _clean_tags(cls, value: Optional[List[str]]) -> Optional[List[str]]:
        if value is None:
            return None
        return normalize_tags(value)
