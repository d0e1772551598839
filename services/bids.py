"""
投標生命週期 (Bid Lifecycle)。

每個投標的狀態：pending -> accepted / rejected，兩個終點都不會再變。
選標 (award) 是一個動作同時改掉整個專案的所有投標：
被選中的變 accepted，其他全部 rejected，專案變 in_progress。

所有會改資料的操作都先用 SELECT ... FOR UPDATE 鎖住專案那一列，
同一個專案上的操作因此一個接一個執行，不會出現兩筆同時被接受。
"""
from datetime import datetime

from psycopg import AsyncConnection
from psycopg.types.json import Jsonb

from errors import AccessDenied, Conflict, DeadlinePassed, InvalidState, NotFound
from logging_config import get_logger
from models.bid import BidCreate, BidUpdate
from models.common import utcnow
from services import policy
from services.projects import BID_SELECT, ensure_project_owner, fetch_bids, fetch_project

log = get_logger(__name__)


# =========================================================
# 純函式規則
# =========================================================

def find_bid(bids, bid_id: int) -> dict:
    for bid in bids:
        if bid["id"] == bid_id:
            return bid
    raise NotFound("Bid not found")


def ensure_bidding_open(project: dict | None, now: datetime) -> dict:
    if project is None:
        raise NotFound("Project not found")
    if project["status"] != "live":
        raise InvalidState("Project is not accepting bids")
    if now > project["bidding_deadline"]:
        raise DeadlinePassed("Bidding deadline has passed")
    return project


def ensure_can_submit(project: dict | None, bids, provider_id: int, now: datetime) -> None:
    ensure_bidding_open(project, now)
    if any(b["provider_id"] == provider_id for b in bids):
        raise Conflict("You have already submitted a bid for this project")


def ensure_bid_editable(project: dict | None, bids, bid_id: int, actor_id) -> dict:
    """修改與撤回共用：專案存在、投標存在、是自己的、專案還在 live。"""
    if project is None:
        raise NotFound("Project not found")
    bid = find_bid(bids, bid_id)
    if not policy.can_manage_bid(actor_id, bid):
        raise AccessDenied("Access denied")
    # 截標之後不論投標是什麼狀態都不能再動
    if project["status"] != "live":
        raise InvalidState("Project is not accepting bid updates")
    return bid


def plan_award(project: dict | None, bids, bid_id: int, actor_id) -> dict[int, str] | None:
    """
    回傳選標後每筆投標的新狀態 {bid_id: status}。
    重複接受同一筆已接受的投標回傳 None (什麼都不用做)。
    """
    project = ensure_project_owner(actor_id, project)
    target = find_bid(bids, bid_id)

    current = policy.accepted_bid(bids)
    if current is not None:
        if current["id"] == bid_id:
            return None
        raise InvalidState("Another bid has already been accepted for this project")
    if project["awarded_bid_id"] is not None:
        raise InvalidState("Project has already been awarded")
    if project["status"] != "live":
        raise InvalidState("Bids can only be accepted while the project is live")
    if target["status"] != "pending":
        raise InvalidState(f"Cannot accept a bid with status '{target['status']}'")

    return {b["id"]: ("accepted" if b["id"] == bid_id else "rejected") for b in bids}


def plan_reject(project: dict | None, bids, bid_id: int, actor_id) -> bool:
    """回傳 True 表示需要寫入；已經是 rejected 的投標直接當成功。"""
    project = ensure_project_owner(actor_id, project)
    target = find_bid(bids, bid_id)

    if target["status"] == "rejected":
        return False
    if target["status"] == "accepted":
        raise InvalidState("Cannot reject a bid that has been accepted")
    if project["status"] != "live":
        raise InvalidState("Bids can only be rejected while the project is live")
    return True


def bid_patch_columns(patch: BidUpdate) -> dict:
    cols = {}
    for key, value in patch.model_dump(exclude_unset=True).items():
        if key == "message":
            # message 送 null 代表清空；amount / timeline 不能清空
            cols[key] = value or ""
        elif value is not None:
            cols[key] = value
    return cols


# =========================================================
# 資料庫操作
# =========================================================

async def _fetch_bid(conn: AsyncConnection, bid_id: int) -> dict:
    async with conn.cursor() as cur:
        await cur.execute(BID_SELECT + " WHERE b.id = %s", (bid_id,))
        return await cur.fetchone()


async def submit_bid(conn: AsyncConnection, actor: dict, data: BidCreate, documents: list[dict]) -> dict:
    async with conn.transaction():
        project = await fetch_project(conn, data.project_id, for_update=True)
        bids = await fetch_bids(conn, data.project_id) if project else []
        ensure_can_submit(project, bids, actor["id"], utcnow())

        async with conn.cursor() as cur:
            # UNIQUE (project_id, provider_id) 是最後一道防線
            await cur.execute(
                """
                INSERT INTO bids (project_id, provider_id, amount, timeline, message, documents)
                VALUES (%s, %s, %s, %s, %s, %s)
                ON CONFLICT (project_id, provider_id) DO NOTHING
                RETURNING id
                """,
                (data.project_id, actor["id"], data.amount, data.timeline, data.message, Jsonb(documents)),
            )
            row = await cur.fetchone()
        if row is None:
            raise Conflict("You have already submitted a bid for this project")

    log.info("bid_submitted", project_id=data.project_id, bid_id=row["id"], provider_id=actor["id"])
    return await _fetch_bid(conn, row["id"])


async def update_bid(
    conn: AsyncConnection, project_id: int, bid_id: int, actor: dict, patch: BidUpdate, documents: list[dict]
) -> dict:
    cols = bid_patch_columns(patch)
    async with conn.transaction():
        project = await fetch_project(conn, project_id, for_update=True)
        bids = await fetch_bids(conn, project_id) if project else []
        bid = ensure_bid_editable(project, bids, bid_id, actor["id"])

        async with conn.cursor() as cur:
            await cur.execute(
                """
                UPDATE bids
                SET amount = %s, timeline = %s, message = %s,
                    documents = documents || %s, updated_at = NOW()
                WHERE id = %s
                """,
                (
                    cols.get("amount", bid["amount"]),
                    cols.get("timeline", bid["timeline"]),
                    cols.get("message", bid["message"]),
                    Jsonb(documents),
                    bid_id,
                ),
            )

    log.info("bid_updated", project_id=project_id, bid_id=bid_id, fields=sorted(cols), documents=len(documents))
    return await _fetch_bid(conn, bid_id)


async def withdraw_bid(conn: AsyncConnection, project_id: int, bid_id: int, actor: dict) -> None:
    async with conn.transaction():
        project = await fetch_project(conn, project_id, for_update=True)
        bids = await fetch_bids(conn, project_id) if project else []
        ensure_bid_editable(project, bids, bid_id, actor["id"])
        async with conn.cursor() as cur:
            await cur.execute("DELETE FROM bids WHERE id = %s", (bid_id,))
    log.info("bid_withdrawn", project_id=project_id, bid_id=bid_id, provider_id=actor["id"])


async def accept_bid(conn: AsyncConnection, project_id: int, bid_id: int, actor: dict) -> dict:
    """選標：同一個交易裡改掉全部投標與專案狀態。"""
    async with conn.transaction():
        project = await fetch_project(conn, project_id, for_update=True)
        bids = await fetch_bids(conn, project_id) if project else []
        plan = plan_award(project, bids, bid_id, actor["id"])

        if plan is not None:
            async with conn.cursor() as cur:
                # 先把其他投標改成 rejected，再接受目標，partial unique index 才不會撞到
                await cur.execute(
                    "UPDATE bids SET status = 'rejected', updated_at = NOW() WHERE project_id = %s AND id <> %s",
                    (project_id, bid_id),
                )
                await cur.execute(
                    "UPDATE bids SET status = 'accepted', updated_at = NOW() WHERE id = %s",
                    (bid_id,),
                )
                await cur.execute(
                    """
                    UPDATE projects
                    SET status = 'in_progress', awarded_bid_id = %s, updated_at = NOW()
                    WHERE id = %s
                    """,
                    (bid_id, project_id),
                )

    if plan is None:
        log.info("bid_accept_noop", project_id=project_id, bid_id=bid_id)
    else:
        log.info("bid_accepted", project_id=project_id, bid_id=bid_id, rejected=len(plan) - 1)
    return await _fetch_bid(conn, bid_id)


async def reject_bid(conn: AsyncConnection, project_id: int, bid_id: int, actor: dict) -> dict:
    async with conn.transaction():
        project = await fetch_project(conn, project_id, for_update=True)
        bids = await fetch_bids(conn, project_id) if project else []
        if plan_reject(project, bids, bid_id, actor["id"]):
            async with conn.cursor() as cur:
                await cur.execute(
                    "UPDATE bids SET status = 'rejected', updated_at = NOW() WHERE id = %s",
                    (bid_id,),
                )
            log.info("bid_rejected", project_id=project_id, bid_id=bid_id)
    return await _fetch_bid(conn, bid_id)


async def list_project_bids(conn: AsyncConnection, project_id: int, actor: dict) -> dict:
    ensure_project_owner(actor["id"], await fetch_project(conn, project_id))
    bids = await fetch_bids(conn, project_id)
    return {"bids": bids, "total_bids": len(bids)}


async def list_my_bids(conn: AsyncConnection, actor: dict) -> dict:
    async with conn.cursor() as cur:
        await cur.execute(
            """
            SELECT b.*,
                   p.title AS project_title,
                   p.category AS project_category,
                   p.location AS project_location,
                   p.status AS project_status,
                   json_build_object(
                       'id', o.id, 'first_name', o.first_name,
                       'last_name', o.last_name, 'email', o.email
                   ) AS project_owner
            FROM bids b
            JOIN projects p ON p.id = b.project_id
            JOIN users o ON o.id = p.owner_id
            WHERE b.provider_id = %s
            ORDER BY b.submitted_at DESC, b.id DESC
            """,
            (actor["id"],),
        )
        bids = await cur.fetchall()
    return {"bids": bids, "total": len(bids)}
