from psycopg import AsyncConnection, errors as pg_errors, sql
from psycopg.types.json import Jsonb

from errors import AccessDenied, Conflict, InvalidInput, InvalidState, NotFound, Unauthenticated
from logging_config import get_logger
from models.common import parse_payload, utcnow
from models.project import ProjectCreate, ProjectUpdate
from services import policy
from utils import page_window, pagination

log = get_logger(__name__)

# 專案本體 + 業主/建築師聯絡資訊 + 投標數
PROJECT_SELECT = """
    SELECT p.*,
           json_build_object(
               'id', o.id, 'first_name', o.first_name, 'last_name', o.last_name,
               'email', o.email, 'phone', o.phone
           ) AS owner,
           CASE WHEN a.id IS NULL THEN NULL ELSE json_build_object(
               'id', a.id, 'first_name', a.first_name, 'last_name', a.last_name,
               'email', a.email, 'phone', a.phone
           ) END AS assigned_architect,
           (SELECT COUNT(*) FROM bids bc WHERE bc.project_id = p.id) AS bid_count
    FROM projects p
    JOIN users o ON o.id = p.owner_id
    LEFT JOIN users a ON a.id = p.assigned_architect_id
"""

BID_SELECT = """
    SELECT b.*,
           json_build_object(
               'id', u.id, 'first_name', u.first_name, 'last_name', u.last_name,
               'email', u.email, 'service_provider', u.service_provider
           ) AS provider
    FROM bids b
    JOIN users u ON u.id = b.provider_id
"""

# 動作 -> (允許的目前狀態, 新狀態)
PROJECT_TRANSITIONS = {
    "publish": (("draft", "live"), "live"),
    "complete": (("in_progress",), "completed"),
    "cancel": (("draft", "live"), "cancelled"),
}

EDITABLE_STATUSES = ("draft", "live")


# =========================================================
# 共用查詢
# =========================================================

async def fetch_project(conn: AsyncConnection, project_id: int, *, for_update: bool = False) -> dict | None:
    """
    撈單一專案。for_update=True 時鎖住這一列，
    同一個專案上的投標/選標/刪除操作會因此排隊執行。
    """
    query = PROJECT_SELECT + " WHERE p.id = %s"
    if for_update:
        query += " FOR UPDATE OF p"
    async with conn.cursor() as cur:
        await cur.execute(query, (project_id,))
        return await cur.fetchone()


async def fetch_bids(conn: AsyncConnection, project_id: int) -> list[dict]:
    async with conn.cursor() as cur:
        await cur.execute(
            BID_SELECT + " WHERE b.project_id = %s ORDER BY b.submitted_at ASC, b.id ASC",
            (project_id,),
        )
        return await cur.fetchall()


def ensure_project_owner(actor_id, project: dict | None) -> dict:
    if project is None:
        raise NotFound("Project not found")
    if not policy.can_manage_project(actor_id, project):
        raise AccessDenied("Access denied")
    return project


# =========================================================
# 純函式：欄位對應、篩選條件、狀態轉換
# =========================================================

def project_columns(data: ProjectCreate | ProjectUpdate) -> dict:
    """把驗證過的 model 轉成資料表欄位；沒有提供的欄位 (None) 不會出現。"""
    cols = {}
    for field in ("title", "description", "category", "bidding_deadline"):
        value = getattr(data, field, None)
        if value is not None:
            cols[field] = value
    if getattr(data, "is_public", None) is not None:
        cols["is_public"] = data.is_public
    if data.location is not None:
        cols["location"] = Jsonb(data.location.model_dump())
    if data.budget is not None:
        cols["budget_min"] = data.budget.min
        cols["budget_max"] = data.budget.max
        cols["currency"] = data.budget.currency
    if data.timeline is not None:
        cols["start_date"] = data.timeline.start_date
        cols["end_date"] = data.timeline.end_date
        cols["estimated_duration"] = data.timeline.estimated_duration
    if data.specifications is not None:
        cols["specifications"] = Jsonb(data.specifications.model_dump())
    return cols


def merge_files(existing: dict | None, stored: dict[str, list[dict]]) -> dict:
    """新上傳的檔案接在原本的後面，不覆蓋。"""
    merged = {k: list(v) for k, v in (existing or {}).items()}
    for field, files in stored.items():
        merged.setdefault(field, []).extend(files)
    return merged


def build_project_filters(
    actor_id,
    *,
    my_projects: bool = False,
    category: str | None = None,
    city: str | None = None,
    state: str | None = None,
    min_budget: float | None = None,
    max_budget: float | None = None,
    status: str | None = None,
) -> tuple[list[str], list]:
    """
    回傳 (WHERE 條件清單, 參數清單)。
    自己的專案可以依狀態篩選；公開瀏覽永遠只看 live + 公開。
    """
    where, params = [], []
    if my_projects:
        if actor_id is None:
            raise Unauthenticated("Login required to list your projects")
        where.append("p.owner_id = %s")
        params.append(actor_id)
        if status:
            where.append("p.status = %s")
            params.append(status)
    else:
        where.append("p.status = 'live' AND p.is_public = TRUE")

    if category:
        where.append("p.category = %s")
        params.append(category)
    if city:
        where.append("p.location->>'city' ILIKE %s")
        params.append(f"%{city}%")
    if state:
        where.append("p.location->>'state' ILIKE %s")
        params.append(f"%{state}%")
    # 預算區間有交集就算符合
    if min_budget is not None:
        where.append("p.budget_max >= %s")
        params.append(min_budget)
    if max_budget is not None:
        where.append("p.budget_min <= %s")
        params.append(max_budget)
    return where, params


def _current_groups(project: dict) -> dict:
    return {
        "location": project["location"] or {},
        "budget": {"min": project["budget_min"], "max": project["budget_max"], "currency": project["currency"]},
        "timeline": {
            "start_date": project["start_date"],
            "end_date": project["end_date"],
            "estimated_duration": project["estimated_duration"],
        },
        "specifications": project["specifications"] or {},
    }


def merge_project_patch(project: dict, fields: dict) -> dict:
    """
    局部更新時把送來的巢狀欄位疊在目前的值上面，
    例如只改 budget[max]，驗證時仍會拿目前的 budget_min 來比。
    """
    merged = dict(fields)
    for group, current in _current_groups(project).items():
        if isinstance(fields.get(group), dict):
            merged[group] = {**current, **fields[group]}
    return merged


def plan_transition(project: dict, actor_id, action: str) -> str:
    ensure_project_owner(actor_id, project)
    allowed, new_status = PROJECT_TRANSITIONS[action]
    if project["status"] not in allowed:
        raise InvalidState(f"Cannot {action} a project with status '{project['status']}'")
    return new_status


def ensure_can_delete(project: dict | None, actor_id, bid_count: int) -> None:
    ensure_project_owner(actor_id, project)
    # 只要有任何投標 (不論狀態)，專案就不能刪
    if bid_count > 0:
        raise Conflict("Cannot delete project with existing bids")


# =========================================================
# 資料庫操作
# =========================================================

async def create_project(conn: AsyncConnection, actor: dict, data: ProjectCreate, stored_files: dict) -> dict:
    cols = project_columns(data)
    cols["owner_id"] = actor["id"]
    cols["files"] = Jsonb(merge_files({}, stored_files))
    cols["status"], cols["is_public"] = ("draft", False) if data.is_draft else ("live", True)

    query = sql.SQL("INSERT INTO projects ({}) VALUES ({}) RETURNING id").format(
        sql.SQL(", ").join(map(sql.Identifier, cols)),
        sql.SQL(", ").join(sql.Placeholder() * len(cols)),
    )
    async with conn.transaction():
        async with conn.cursor() as cur:
            await cur.execute(query, list(cols.values()))
            project_id = (await cur.fetchone())["id"]

    log.info("project_created", project_id=project_id, owner_id=actor["id"], status=cols["status"])
    return await get_project(conn, project_id, actor["id"])


async def list_projects(conn: AsyncConnection, actor_id, *, page: int = 1, limit: int = 10, **filters) -> dict:
    page, limit, offset = page_window(page, limit)
    where, params = build_project_filters(actor_id, **filters)
    where_sql = " WHERE " + " AND ".join(where)

    async with conn.cursor() as cur:
        await cur.execute("SELECT COUNT(*) AS count FROM projects p" + where_sql, params)
        total = (await cur.fetchone())["count"]
        await cur.execute(
            PROJECT_SELECT + where_sql + " ORDER BY p.created_at DESC, p.id DESC LIMIT %s OFFSET %s",
            params + [limit, offset],
        )
        rows = await cur.fetchall()

    now = utcnow()
    projects = []
    for row in rows:
        if policy.is_project_owner(actor_id, row):
            view = dict(row)
            view["days_until_deadline"] = policy.days_until_deadline(row["bidding_deadline"], now)
        else:
            view = policy.get_public_project_view(row, row["bid_count"], now)
        projects.append(view)

    return {"projects": projects, "pagination": pagination(page, limit, total)}


async def get_project(conn: AsyncConnection, project_id: int, actor_id) -> dict:
    """
    業主看到完整資料 (含所有投標)；
    其他有權限的人 (公開專案的訪客、得標者) 看到去除敏感資訊的公開版本。
    """
    project = await fetch_project(conn, project_id)
    if project is None:
        raise NotFound("Project not found")

    bids = await fetch_bids(conn, project_id)
    if policy.is_project_owner(actor_id, project):
        return policy.get_owner_project_view(project, bids)
    if policy.can_view_project(actor_id, project, bids):
        return policy.get_public_project_view(project, len(bids))
    raise AccessDenied("Access denied")


def ensure_editable(project: dict | None, actor_id) -> dict:
    ensure_project_owner(actor_id, project)
    if project["status"] not in EDITABLE_STATUSES:
        raise InvalidState("Project can only be edited while it is a draft or live")
    return project


async def prepare_update(conn: AsyncConnection, project_id: int, actor: dict, fields: dict) -> ProjectUpdate:
    """在存任何上傳檔案之前，先用目前的專案資料驗證這次的修改。"""
    project = ensure_editable(await fetch_project(conn, project_id), actor["id"])
    return parse_payload(ProjectUpdate, merge_project_patch(project, fields))


async def update_project(
    conn: AsyncConnection, project_id: int, actor: dict, patch: ProjectUpdate, stored_files: dict
) -> dict:
    cols = project_columns(patch)
    async with conn.transaction():
        project = ensure_editable(await fetch_project(conn, project_id, for_update=True), actor["id"])

        if stored_files:
            cols["files"] = Jsonb(merge_files(project["files"], stored_files))
        if cols:
            cols["updated_at"] = utcnow()
            query = sql.SQL("UPDATE projects SET {} WHERE id = %s").format(
                sql.SQL(", ").join(
                    sql.SQL("{} = %s").format(sql.Identifier(col)) for col in cols
                )
            )
            try:
                async with conn.cursor() as cur:
                    await cur.execute(query, list(cols.values()) + [project_id])
            except pg_errors.CheckViolation as exc:
                # 驗證後到上鎖之間專案被別人改過，合併結果不再一致
                raise InvalidInput(
                    "Validation failed",
                    errors=[{"field": "__root__", "message": "Project fields are inconsistent"}],
                ) from exc

    log.info("project_updated", project_id=project_id, fields=sorted(cols))
    return await get_project(conn, project_id, actor["id"])


async def transition_project(conn: AsyncConnection, project_id: int, actor: dict, action: str) -> dict:
    """發布 / 結案 / 取消，依 PROJECT_TRANSITIONS 檢查目前狀態。"""
    async with conn.transaction():
        project = await fetch_project(conn, project_id, for_update=True)
        if project is None:
            raise NotFound("Project not found")
        new_status = plan_transition(project, actor["id"], action)
        async with conn.cursor() as cur:
            if action == "publish":
                await cur.execute(
                    "UPDATE projects SET status = %s, is_public = TRUE, updated_at = NOW() WHERE id = %s",
                    (new_status, project_id),
                )
            else:
                await cur.execute(
                    "UPDATE projects SET status = %s, updated_at = NOW() WHERE id = %s",
                    (new_status, project_id),
                )

    log.info("project_status_changed", project_id=project_id, action=action, status=new_status)
    return await get_project(conn, project_id, actor["id"])


async def delete_project(conn: AsyncConnection, project_id: int, actor: dict) -> None:
    try:
        async with conn.transaction():
            project = await fetch_project(conn, project_id, for_update=True)
            # 等到鎖之後要重新查投標：FOR UPDATE 只會重讀專案這一列，子查詢的 bid_count 可能是舊的
            bids = await fetch_bids(conn, project_id) if project else []
            ensure_can_delete(project, actor["id"], len(bids))
            async with conn.cursor() as cur:
                await cur.execute("DELETE FROM projects WHERE id = %s", (project_id,))
    except pg_errors.ForeignKeyViolation:
        raise Conflict("Cannot delete project with existing bids") from None
    log.info("project_deleted", project_id=project_id, owner_id=actor["id"])
