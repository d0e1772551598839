# models/project.py
import json
from typing import Literal

from pydantic import Field, field_validator, model_validator

from models.common import Schema, UtcDatetime

ProjectCategory = Literal["residential", "commercial", "industrial", "infrastructure", "renovation", "other"]
ProjectStatus = Literal["draft", "live", "in_progress", "completed", "cancelled"]

# 專案可以附加的檔案欄位
PROJECT_FILE_FIELDS = ("property_images", "boq", "drawings", "other_documents")


class ProjectLocation(Schema):
    address: str = Field(min_length=1)
    city: str = Field(min_length=1)
    state: str = Field(min_length=1)
    zip_code: str | None = None
    lat: float | None = None
    lng: float | None = None


class Budget(Schema):
    min: float = Field(ge=0)
    max: float = Field(ge=0)
    currency: str = Field("USD", min_length=3, max_length=3)

    @model_validator(mode="after")
    def check_range(self):
        if self.min > self.max:
            raise ValueError("Minimum budget cannot exceed maximum budget")
        return self


class Timeline(Schema):
    start_date: UtcDatetime
    end_date: UtcDatetime
    estimated_duration: int = Field(gt=0)  # 天數

    @model_validator(mode="after")
    def check_dates(self):
        if self.start_date >= self.end_date:
            raise ValueError("Start date must be before end date")
        return self


class Specifications(Schema):
    area: float = Field(gt=0)
    floors: int = Field(1, ge=1)
    requirements: list[str] = []
    special_requirements: str | None = None

    @field_validator("requirements", mode="before")
    @classmethod
    def parse_requirements(cls, value):
        # 表單可能送 JSON 字串 '["a", "b"]'，也可能是單一字串或重複欄位
        if value is None or value == "":
            return []
        if isinstance(value, str):
            try:
                decoded = json.loads(value)
            except ValueError:
                return [value]
            return decoded if isinstance(decoded, list) else [str(decoded)]
        return value


class ProjectCreate(Schema):
    title: str = Field(min_length=1, max_length=200)
    description: str = Field(min_length=1)
    category: ProjectCategory
    location: ProjectLocation
    budget: Budget
    timeline: Timeline
    specifications: Specifications
    bidding_deadline: UtcDatetime
    # 預設建立後直接上架 (live + 公開)；勾選草稿則先不公開
    is_draft: bool = False


class ProjectUpdate(Schema):
    title: str | None = Field(None, min_length=1, max_length=200)
    description: str | None = Field(None, min_length=1)
    category: ProjectCategory | None = None
    location: ProjectLocation | None = None
    budget: Budget | None = None
    timeline: Timeline | None = None
    specifications: Specifications | None = None
    bidding_deadline: UtcDatetime | None = None
    is_public: bool | None = None
