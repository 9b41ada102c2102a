"""
Shop models for the reviewhub backend.

These are the records served through the read-through cache.
"""

from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field, ConfigDict


class ShopModel(BaseModel):
    """
    Shop information model.

    Cached as JSON under ``cache:shop:{id}`` by every cache strategy.
    """
    model_config = ConfigDict(from_attributes=True)

    id: int = Field(..., ge=1, description="Shop identifier")
    name: str = Field(..., min_length=1, max_length=128, description="Shop name")
    type_id: int = Field(..., ge=1, description="Shop type identifier")
    images: str = Field(default="", description="Comma-separated image URLs")
    area: Optional[str] = Field(None, description="Business district")
    address: str = Field(..., description="Street address")
    x: float = Field(..., description="Longitude")
    y: float = Field(..., description="Latitude")
    avg_price: Optional[int] = Field(None, ge=0, description="Average spend per person")
    sold: int = Field(default=0, ge=0, description="Units sold")
    comments: int = Field(default=0, ge=0, description="Number of reviews")
    score: int = Field(default=0, ge=0, le=50, description="Rating times ten (1-5 stars)")
    open_hours: Optional[str] = Field(None, description="Opening hours, e.g. '10:00-22:00'")
    create_time: Optional[datetime] = Field(None, description="Creation timestamp")
    update_time: Optional[datetime] = Field(None, description="Last update timestamp")


class ShopTypeModel(BaseModel):
    """Shop category shown on the home page."""
    model_config = ConfigDict(from_attributes=True)

    id: int = Field(..., ge=1, description="Type identifier")
    name: str = Field(..., description="Type name")
    icon: Optional[str] = Field(None, description="Icon URL")
    sort: int = Field(default=0, description="Display order")
