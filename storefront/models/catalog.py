"""
storefront/models/catalog.py

Profiles and their content items. Prices are in minor currency units (cents).
"""

from typing import Literal, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator

ContentType = Literal["free", "membership", "paid"]


class MediaRefs(BaseModel):
    """Preview (blurred/trimmed) and full asset references for one item."""
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    preview: str
    full: str
    thumbnail: Optional[str] = None


class ContentItem(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str
    type: ContentType = "paid"
    title: str = ""
    base_price: int = Field(default=0, alias="basePrice")
    media: MediaRefs

    @field_validator("base_price")
    @classmethod
    def _non_negative(cls, value: int) -> int:
        if value < 0:
            raise ValueError("basePrice must be >= 0")
        return value


class Profile(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str
    display_name: str = Field(default="", alias="displayName")
    membership_price: Optional[int] = Field(default=None, alias="membershipPrice")
    promotion_percentage: int = Field(default=0, alias="promotionPercentage")
    items: Tuple[ContentItem, ...] = ()

    @field_validator("promotion_percentage")
    @classmethod
    def _percentage_range(cls, value: int) -> int:
        if not 0 <= value <= 100:
            raise ValueError("promotionPercentage must be between 0 and 100")
        return value

    @property
    def is_free_membership(self) -> bool:
        """Zero-price profiles are followed rather than subscribed to."""
        return self.membership_price == 0

    def get_item(self, item_id: str) -> Optional[ContentItem]:
        for item in self.items:
            if item.id == item_id:
                return item
        return None
