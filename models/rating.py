# models/rating.py
from typing import Any, Literal

from pydantic import Field

from models.common import Schema

RatingType = Literal["owner_to_contractor", "contractor_to_owner", "general"]
RatingStatus = Literal["pending", "approved", "rejected"]

RATING_CATEGORIES = ("communication", "quality", "timeliness", "professionalism", "value")


class RatingCreate(Schema):
    project_id: int | None = None
    rated_user_id: int
    rating: int = Field(ge=1, le=5)
    review: str = Field(min_length=10, max_length=1000)
    rating_type: RatingType
    # 分項評分不在這裡驗證範圍，超出 1~5 的會在 service 裡被靜默丟掉
    categories: dict[str, Any] | None = None


class RatingUpdate(Schema):
    rating: int | None = Field(None, ge=1, le=5)
    review: str | None = Field(None, min_length=10, max_length=1000)
    categories: dict[str, Any] | None = None


class RatingReport(Schema):
    reason: str = Field(min_length=1, max_length=1000)


class RatingModeration(Schema):
    status: RatingStatus
    notes: str | None = Field(None, max_length=1000)
