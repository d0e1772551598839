# models/bid.py
from typing import Literal

from pydantic import Field

from models.common import Schema

BidStatus = Literal["pending", "accepted", "rejected"]


class BidCreate(Schema):
    project_id: int
    amount: float = Field(gt=0)
    timeline: int = Field(gt=0)  # 天數
    message: str = Field("", max_length=5000)


class BidUpdate(Schema):
    # 只有這幾個欄位可以修改；文件只能追加
    amount: float | None = Field(None, gt=0)
    timeline: int | None = Field(None, gt=0)
    message: str | None = Field(None, max_length=5000)
