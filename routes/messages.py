from fastapi import APIRouter, Depends, Query, Request, status
from psycopg import AsyncConnection

from db import getDB
from models.common import parse_payload
from models.message import MessageCreate
from routes.auth import require_user
from services import conversations
from utils import check_uploads, split_form, stored_uploads

router = APIRouter(prefix="/api/messages", tags=["messages"])

MESSAGE_FILE_FIELDS = ("file",)


@router.get("/conversations")
async def list_conversations(
    user: dict = Depends(require_user),
    conn: AsyncConnection = Depends(getDB),
):
    return {"conversations": await conversations.list_conversations(conn, user)}


@router.get("/conversation/{conversation_id}")
async def get_conversation(
    conversation_id: str,
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=100),
    user: dict = Depends(require_user),
    conn: AsyncConnection = Depends(getDB),
):
    # 打開對話時，寄給自己的未讀訊息會一起被標成已讀
    return await conversations.get_conversation(conn, conversation_id, user, page=page, limit=limit)


@router.post("/send", status_code=status.HTTP_201_CREATED)
async def send_message(
    request: Request,
    user: dict = Depends(require_user),
    conn: AsyncConnection = Depends(getDB),
):
    fields, uploads = split_form(await request.form())
    data = parse_payload(MessageCreate, fields)
    check_uploads(uploads, MESSAGE_FILE_FIELDS)

    async with stored_uploads(uploads, MESSAGE_FILE_FIELDS) as stored:
        attachment = stored["file"][0] if stored.get("file") else None
        message = await conversations.send_message(conn, user, data, attachment)
    return {"message": message}


@router.get("/unread-count")
async def unread_count(
    user: dict = Depends(require_user),
    conn: AsyncConnection = Depends(getDB),
):
    return {"unread_count": await conversations.unread_count(conn, user)}


@router.put("/{message_id}/read")
async def mark_read(
    message_id: int,
    user: dict = Depends(require_user),
    conn: AsyncConnection = Depends(getDB),
):
    await conversations.mark_message_read(conn, message_id, user)
    return {"message": "Message marked as read"}


@router.delete("/{message_id}")
async def delete_message(
    message_id: int,
    user: dict = Depends(require_user),
    conn: AsyncConnection = Depends(getDB),
):
    await conversations.delete_message(conn, message_id, user)
    return {"message": "Message deleted successfully"}
