"""
訊息與對話 (Conversation)。

對話 ID 由兩個參與者 (加上可選的專案) 推導出來，不另外存對話表：
    conversation_id(7, 3)      -> "3-7"
    conversation_id(7, 3, 12)  -> "3-7-12"
兩個人的順序不影響結果，同一對人在不同專案下是不同的對話。
"""
from psycopg import AsyncConnection
from psycopg.types.json import Jsonb

from errors import AccessDenied, InvalidInput, NotFound
from logging_config import get_logger
from models.message import MessageCreate
from services import policy
from services.users import fetch_user_profile
from utils import page_window

log = get_logger(__name__)

MESSAGE_SELECT = """
    SELECT m.*,
           json_build_object(
               'id', s.id, 'first_name', s.first_name, 'last_name', s.last_name,
               'email', s.email, 'profile_image', s.profile_image
           ) AS sender,
           json_build_object(
               'id', r.id, 'first_name', r.first_name, 'last_name', r.last_name,
               'email', r.email, 'profile_image', r.profile_image
           ) AS recipient,
           CASE WHEN p.id IS NULL THEN NULL
                ELSE json_build_object('id', p.id, 'title', p.title) END AS project
    FROM messages m
    JOIN users s ON s.id = m.sender_id
    JOIN users r ON r.id = m.recipient_id
    LEFT JOIN projects p ON p.id = m.project_id
"""


# =========================================================
# 純函式
# =========================================================

def conversation_id(user_a: int, user_b: int, project_id: int | None = None) -> str:
    # 以字串排序，和舊資料的 ID 保持一致
    first, second = sorted([str(user_a), str(user_b)])
    cid = f"{first}-{second}"
    if project_id is not None:
        cid += f"-{project_id}"
    return cid


def parse_conversation_id(cid: str) -> tuple[int, int, int | None]:
    """反推 (參與者 A, 參與者 B, 專案)；格式不對就是 InvalidInput。"""
    parts = cid.split("-")
    if len(parts) not in (2, 3) or not all(p.isdigit() for p in parts):
        raise InvalidInput(
            "Invalid conversation id",
            errors=[{"field": "conversation_id", "message": "Malformed conversation id"}],
        )
    user_a, user_b = int(parts[0]), int(parts[1])
    project_id = int(parts[2]) if len(parts) == 3 else None
    return user_a, user_b, project_id


def is_unread_for(message: dict, user_id: int) -> bool:
    return message["recipient_id"] == user_id and not message["is_read"]


def message_type_for(attachment: dict | None) -> str:
    if attachment is None:
        return "text"
    if (attachment.get("mime_type") or "").startswith("image/"):
        return "image"
    return "file"


def summarize_conversations(latest_messages, unread_counts: dict[str, int], user_id: int) -> list[dict]:
    """
    latest_messages：每個對話的最新一則訊息 (含 sender / recipient / project)。
    回傳對話摘要，最新的對話排最前面。
    """
    summaries = []
    for msg in latest_messages:
        other = msg["recipient"] if msg["sender_id"] == user_id else msg["sender"]
        summaries.append({
            "conversation_id": msg["conversation_id"],
            "last_message": {
                "content": msg["content"],
                "type": msg["type"],
                "created_at": msg["created_at"],
                "is_read": msg["is_read"],
            },
            "other_participant": other,
            "unread_count": unread_counts.get(msg["conversation_id"], 0),
            "project": msg["project"],
        })
    summaries.sort(key=lambda s: s["last_message"]["created_at"], reverse=True)
    return summaries


# =========================================================
# 資料庫操作
# =========================================================

async def _fetch_message(conn: AsyncConnection, message_id: int) -> dict | None:
    async with conn.cursor() as cur:
        await cur.execute(MESSAGE_SELECT + " WHERE m.id = %s", (message_id,))
        return await cur.fetchone()


async def send_message(conn: AsyncConnection, actor: dict, data: MessageCreate, attachment: dict | None) -> dict:
    if data.recipient_id == actor["id"]:
        raise InvalidInput(
            "Validation failed",
            errors=[{"field": "recipient_id", "message": "Cannot send a message to yourself"}],
        )

    async with conn.transaction():
        async with conn.cursor() as cur:
            await cur.execute("SELECT id FROM users WHERE id = %s", (data.recipient_id,))
            if await cur.fetchone() is None:
                raise NotFound("Recipient not found")
            if data.project_id is not None:
                await cur.execute("SELECT id FROM projects WHERE id = %s", (data.project_id,))
                if await cur.fetchone() is None:
                    raise NotFound("Project not found")

            cid = conversation_id(actor["id"], data.recipient_id, data.project_id)
            await cur.execute(
                """
                INSERT INTO messages
                    (conversation_id, sender_id, recipient_id, content, type, attachment, project_id)
                VALUES (%s, %s, %s, %s, %s, %s, %s)
                RETURNING id
                """,
                (
                    cid,
                    actor["id"],
                    data.recipient_id,
                    data.content,
                    message_type_for(attachment),
                    Jsonb(attachment) if attachment else None,
                    data.project_id,
                ),
            )
            message_id = (await cur.fetchone())["id"]

    log.info("message_sent", message_id=message_id, conversation_id=cid, sender_id=actor["id"])
    return await _fetch_message(conn, message_id)


async def list_conversations(conn: AsyncConnection, actor: dict) -> list[dict]:
    user_id = actor["id"]
    async with conn.cursor() as cur:
        await cur.execute(
            "SELECT DISTINCT ON (m.conversation_id) * FROM ("
            + MESSAGE_SELECT
            + " WHERE m.sender_id = %s OR m.recipient_id = %s) m"
            " ORDER BY m.conversation_id, m.created_at DESC, m.id DESC",
            (user_id, user_id),
        )
        latest = await cur.fetchall()
        await cur.execute(
            """
            SELECT conversation_id, COUNT(*) AS unread
            FROM messages
            WHERE recipient_id = %s AND is_read = FALSE
            GROUP BY conversation_id
            """,
            (user_id,),
        )
        unread = {row["conversation_id"]: row["unread"] for row in await cur.fetchall()}
    return summarize_conversations(latest, unread, user_id)


async def get_conversation(
    conn: AsyncConnection, cid: str, actor: dict, *, page: int = 1, limit: int = 50
) -> dict:
    """
    打開對話：先把「收件人是我且未讀」的訊息一次標成已讀，
    再回傳這一頁的訊息 (時間由舊到新)。
    """
    user_a, user_b, project_id = parse_conversation_id(cid)
    if actor["id"] not in (user_a, user_b):
        raise AccessDenied("Access denied")
    other_id = user_b if actor["id"] == user_a else user_a
    page, limit, offset = page_window(page, limit)

    async with conn.transaction():
        async with conn.cursor() as cur:
            await cur.execute(
                """
                UPDATE messages
                SET is_read = TRUE, read_at = NOW(), status = 'read'
                WHERE conversation_id = %s AND recipient_id = %s AND is_read = FALSE
                RETURNING id
                """,
                (cid, actor["id"]),
            )
            marked = await cur.fetchall()

    async with conn.cursor() as cur:
        await cur.execute(
            MESSAGE_SELECT + " WHERE m.conversation_id = %s ORDER BY m.created_at DESC, m.id DESC LIMIT %s OFFSET %s",
            (cid, limit, offset),
        )
        messages = await cur.fetchall()
        project = None
        if project_id is not None:
            await cur.execute("SELECT id, title FROM projects WHERE id = %s", (project_id,))
            project = await cur.fetchone()

    if marked:
        log.info("messages_marked_read", conversation_id=cid, user_id=actor["id"], count=len(marked))

    messages.reverse()
    return {
        "messages": messages,
        "other_participant": await fetch_user_profile(conn, other_id),
        "project": project,
    }


async def mark_message_read(conn: AsyncConnection, message_id: int, actor: dict) -> None:
    message = await _fetch_message(conn, message_id)
    if message is None:
        raise NotFound("Message not found")
    if not policy.can_mark_message_read(actor["id"], message):
        raise AccessDenied("Not authorized")
    if message["is_read"]:
        return
    async with conn.transaction():
        async with conn.cursor() as cur:
            await cur.execute(
                """
                UPDATE messages SET is_read = TRUE, read_at = NOW(), status = 'read'
                WHERE id = %s AND is_read = FALSE
                """,
                (message_id,),
            )
    log.info("messages_marked_read", message_id=message_id, user_id=actor["id"], count=1)


async def unread_count(conn: AsyncConnection, actor: dict) -> int:
    async with conn.cursor() as cur:
        await cur.execute(
            "SELECT COUNT(*) AS count FROM messages WHERE recipient_id = %s AND is_read = FALSE",
            (actor["id"],),
        )
        return (await cur.fetchone())["count"]


async def delete_message(conn: AsyncConnection, message_id: int, actor: dict) -> None:
    message = await _fetch_message(conn, message_id)
    if message is None:
        raise NotFound("Message not found")
    if not policy.can_delete_message(actor["id"], message):
        raise AccessDenied("Not authorized to delete this message")
    async with conn.transaction():
        async with conn.cursor() as cur:
            await cur.execute("DELETE FROM messages WHERE id = %s", (message_id,))
    log.info("message_deleted", message_id=message_id, sender_id=actor["id"])
