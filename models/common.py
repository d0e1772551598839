from datetime import datetime, timezone
from typing import Annotated

from pydantic import AfterValidator, BaseModel, ConfigDict, ValidationError

from errors import invalid_input_from


def as_utc(value: datetime) -> datetime:
    # 沒有時區的時間一律視為 UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


UtcDatetime = Annotated[datetime, AfterValidator(as_utc)]


class Schema(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True, extra="ignore")


def parse_payload(model: type[Schema], data: dict) -> Schema:
    """驗證表單資料；失敗時一次回報所有欄位錯誤 (InvalidInput)。"""
    try:
        return model.model_validate(data)
    except ValidationError as exc:
        raise invalid_input_from(exc) from exc


def utcnow() -> datetime:
    return datetime.now(timezone.utc)
