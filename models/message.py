# models/message.py
from typing import Literal

from pydantic import Field

from models.common import Schema

MessageType = Literal["text", "file", "image"]
MessageStatus = Literal["sent", "delivered", "read"]


class MessageCreate(Schema):
    recipient_id: int
    content: str = Field(min_length=1, max_length=5000)
    project_id: int | None = None
