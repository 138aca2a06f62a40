"""Pydantic schemas for creator plans"""
from decimal import Decimal
from typing import Literal, Optional
from pydantic import BaseModel, Field


class CreateProductRequest(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    description: Optional[str] = None
    amount: Decimal = Field(gt=0)  # dollars per interval
    interval: Literal["month", "year"] = "month"
