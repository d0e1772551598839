"""
評價 (Rating)：唯一性與統計。

同一個評價者對同一個人、同一個專案只能評一次。
沒有專案的「一般評價」也算一個獨立範圍：同一對人只能有一筆一般評價。
唯一性交給資料庫的 unique index，INSERT ... ON CONFLICT DO NOTHING
沒有回傳資料列就代表重複，兩個同時送出的請求只會有一個成功。
"""
from psycopg import AsyncConnection
from psycopg.types.json import Jsonb

from errors import AccessDenied, Conflict, InvalidInput, InvalidState, NotFound
from logging_config import get_logger
from models.rating import RATING_CATEGORIES, RatingCreate, RatingModeration, RatingReport, RatingUpdate
from services import policy
from services.projects import fetch_bids, fetch_project
from utils import page_window, pagination

log = get_logger(__name__)

RATING_SELECT = """
    SELECT r.*,
           json_build_object(
               'id', ru.id, 'first_name', ru.first_name, 'last_name', ru.last_name,
               'profile_image', ru.profile_image
           ) AS rater,
           json_build_object(
               'id', rd.id, 'first_name', rd.first_name, 'last_name', rd.last_name,
               'profile_image', rd.profile_image
           ) AS rated_user,
           CASE WHEN p.id IS NULL THEN NULL
                ELSE json_build_object('id', p.id, 'title', p.title) END AS project
    FROM ratings r
    JOIN users ru ON ru.id = r.rater_id
    JOIN users rd ON rd.id = r.rated_user_id
    LEFT JOIN projects p ON p.id = r.project_id
"""

DUPLICATE_MESSAGE = "You have already rated this user for this project"


# =========================================================
# 純函式
# =========================================================

def clean_categories(categories: dict | None) -> dict:
    """只保留已知分項且分數是 1~5 的整數，其餘靜默丟掉。"""
    cleaned = {}
    for key, value in (categories or {}).items():
        if key not in RATING_CATEGORIES or isinstance(value, bool):
            continue
        try:
            score = int(value)
        except (TypeError, ValueError):
            continue
        if score != value and str(score) != str(value).strip():
            continue
        if 1 <= score <= 5:
            cleaned[key] = score
    return cleaned


def ensure_not_self_rating(rater_id: int, rated_user_id: int) -> None:
    if rater_id == rated_user_id:
        raise InvalidInput(
            "Validation failed",
            errors=[{"field": "rated_user_id", "message": "You cannot rate yourself"}],
        )


def ensure_can_rate(rater_id: int, rated_user: dict | None, project: dict | None, project_id, bids=()) -> None:
    """
    檢查順序：對象/專案不存在 -> 專案狀態 -> 是否為專案參與者。
    重複評價交給資料庫判斷。
    """
    if rated_user is None:
        raise NotFound("User to rate not found")
    if project_id is None:
        return
    if project is None:
        raise NotFound("Project not found")
    if project["status"] not in policy.RATEABLE_PROJECT_STATUSES:
        raise InvalidState("Can only rate projects that are in progress or completed")
    if not policy.can_rate_in_project(rater_id, project, bids):
        raise AccessDenied("You can only rate users involved in this project")


def rating_distribution(counts: dict[int, int]) -> list[dict]:
    # 5 -> 1，沒有人給的分數也列出來 (count = 0)
    return [{"rating": star, "count": counts.get(star, 0)} for star in range(5, 0, -1)]


def category_average(categories: dict | None) -> float | None:
    values = [v for v in (categories or {}).values() if v is not None]
    if not values:
        return None
    return round(sum(values) / len(values), 2)


def with_category_average(rating: dict) -> dict:
    rating = dict(rating)
    rating["average_category_rating"] = category_average(rating.get("categories"))
    return rating


# =========================================================
# 資料庫操作
# =========================================================

async def _fetch_rating(conn: AsyncConnection, rating_id: int) -> dict | None:
    async with conn.cursor() as cur:
        await cur.execute(RATING_SELECT + " WHERE r.id = %s", (rating_id,))
        return await cur.fetchone()


async def _fetch_owned_rating(conn: AsyncConnection, rating_id: int, actor: dict, action: str) -> dict:
    rating = await _fetch_rating(conn, rating_id)
    if rating is None:
        raise NotFound("Rating not found")
    if not policy.can_manage_rating(actor["id"], rating):
        raise AccessDenied(f"Not authorized to {action} this rating")
    return rating


async def submit_rating(conn: AsyncConnection, actor: dict, data: RatingCreate) -> dict:
    ensure_not_self_rating(actor["id"], data.rated_user_id)

    async with conn.transaction():
        async with conn.cursor() as cur:
            await cur.execute("SELECT id FROM users WHERE id = %s", (data.rated_user_id,))
            rated_user = await cur.fetchone()

        project, bids = None, []
        if data.project_id is not None:
            project = await fetch_project(conn, data.project_id)
            if project is not None:
                bids = await fetch_bids(conn, data.project_id)
        ensure_can_rate(actor["id"], rated_user, project, data.project_id, bids)

        async with conn.cursor() as cur:
            await cur.execute(
                """
                INSERT INTO ratings (project_id, rated_user_id, rater_id, rating, review, categories, rating_type)
                VALUES (%s, %s, %s, %s, %s, %s, %s)
                ON CONFLICT (rater_id, rated_user_id, (COALESCE(project_id, 0))) DO NOTHING
                RETURNING id
                """,
                (
                    data.project_id,
                    data.rated_user_id,
                    actor["id"],
                    data.rating,
                    data.review,
                    Jsonb(clean_categories(data.categories)),
                    data.rating_type,
                ),
            )
            row = await cur.fetchone()
        if row is None:
            raise Conflict(DUPLICATE_MESSAGE)

    log.info(
        "rating_submitted",
        rating_id=row["id"],
        rater_id=actor["id"],
        rated_user_id=data.rated_user_id,
        project_id=data.project_id,
    )
    return with_category_average(await _fetch_rating(conn, row["id"]))


async def get_user_ratings(conn: AsyncConnection, user_id: int, *, page: int = 1, limit: int = 10) -> dict:
    """某個使用者收到的評價統計 (只算 approved)。"""
    page, limit, offset = page_window(page, limit)
    async with conn.cursor() as cur:
        await cur.execute("SELECT id FROM users WHERE id = %s", (user_id,))
        if await cur.fetchone() is None:
            raise NotFound("User not found")

        await cur.execute(
            """
            SELECT rating, COUNT(*) AS count
            FROM ratings
            WHERE rated_user_id = %s AND status = 'approved'
            GROUP BY rating
            """,
            (user_id,),
        )
        counts = {row["rating"]: row["count"] for row in await cur.fetchall()}

        await cur.execute(
            """
            SELECT ROUND(AVG(rating)::numeric, 2) AS average,
                   ROUND(AVG((categories->>'communication')::numeric), 2) AS communication,
                   ROUND(AVG((categories->>'quality')::numeric), 2) AS quality,
                   ROUND(AVG((categories->>'timeliness')::numeric), 2) AS timeliness,
                   ROUND(AVG((categories->>'professionalism')::numeric), 2) AS professionalism,
                   ROUND(AVG((categories->>'value')::numeric), 2) AS value
            FROM ratings
            WHERE rated_user_id = %s AND status = 'approved'
            """,
            (user_id,),
        )
        averages = await cur.fetchone()

        await cur.execute(
            RATING_SELECT
            + " WHERE r.rated_user_id = %s AND r.status = 'approved'"
            " ORDER BY r.created_at DESC, r.id DESC LIMIT %s OFFSET %s",
            (user_id, limit, offset),
        )
        reviews = [with_category_average(r) for r in await cur.fetchall()]

    total = sum(counts.values())
    average = averages["average"]
    return {
        "average_rating": float(average) if average is not None else 0.0,
        "total_ratings": total,
        "distribution": rating_distribution(counts),
        "category_averages": {
            key: float(averages[key]) for key in RATING_CATEGORIES if averages[key] is not None
        },
        "reviews": reviews,
        "pagination": pagination(page, limit, total),
    }


async def get_project_ratings(conn: AsyncConnection, project_id: int, actor: dict) -> list[dict]:
    project = await fetch_project(conn, project_id)
    if project is None:
        raise NotFound("Project not found")
    bids = await fetch_bids(conn, project_id)
    if not policy.can_rate_in_project(actor["id"], project, bids):
        raise AccessDenied("Access denied")

    async with conn.cursor() as cur:
        await cur.execute(
            RATING_SELECT + " WHERE r.project_id = %s ORDER BY r.created_at DESC, r.id DESC",
            (project_id,),
        )
        return [with_category_average(r) for r in await cur.fetchall()]


async def list_my_ratings(conn: AsyncConnection, actor: dict, *, page: int = 1, limit: int = 10) -> dict:
    page, limit, offset = page_window(page, limit)
    async with conn.cursor() as cur:
        await cur.execute("SELECT COUNT(*) AS count FROM ratings WHERE rater_id = %s", (actor["id"],))
        total = (await cur.fetchone())["count"]
        await cur.execute(
            RATING_SELECT + " WHERE r.rater_id = %s ORDER BY r.created_at DESC, r.id DESC LIMIT %s OFFSET %s",
            (actor["id"], limit, offset),
        )
        ratings = [with_category_average(r) for r in await cur.fetchall()]
    return {"ratings": ratings, "pagination": pagination(page, limit, total)}


async def update_rating(conn: AsyncConnection, rating_id: int, actor: dict, patch: RatingUpdate) -> dict:
    rating = await _fetch_owned_rating(conn, rating_id, actor, "update")
    categories = rating["categories"] if patch.categories is None else clean_categories(patch.categories)

    async with conn.transaction():
        async with conn.cursor() as cur:
            await cur.execute(
                """
                UPDATE ratings SET rating = %s, review = %s, categories = %s, updated_at = NOW()
                WHERE id = %s
                """,
                (
                    patch.rating if patch.rating is not None else rating["rating"],
                    patch.review if patch.review is not None else rating["review"],
                    Jsonb(categories),
                    rating_id,
                ),
            )

    log.info("rating_updated", rating_id=rating_id, rater_id=actor["id"])
    return with_category_average(await _fetch_rating(conn, rating_id))


async def delete_rating(conn: AsyncConnection, rating_id: int, actor: dict) -> None:
    await _fetch_owned_rating(conn, rating_id, actor, "delete")
    async with conn.transaction():
        async with conn.cursor() as cur:
            await cur.execute("DELETE FROM ratings WHERE id = %s", (rating_id,))
    log.info("rating_deleted", rating_id=rating_id, rater_id=actor["id"])


async def report_rating(conn: AsyncConnection, rating_id: int, actor: dict, report: RatingReport) -> None:
    async with conn.transaction():
        async with conn.cursor() as cur:
            # 同一個人重複檢舉同一筆評價時不會更新到任何資料列
            await cur.execute(
                """
                UPDATE ratings
                SET reported = TRUE, report_reason = %s, reported_by = %s, reported_at = NOW()
                WHERE id = %s AND (reported = FALSE OR reported_by IS DISTINCT FROM %s)
                RETURNING id
                """,
                (report.reason, actor["id"], rating_id, actor["id"]),
            )
            if await cur.fetchone() is None:
                await cur.execute("SELECT id FROM ratings WHERE id = %s", (rating_id,))
                if await cur.fetchone() is None:
                    raise NotFound("Rating not found")
                raise Conflict("You have already reported this rating")

    log.info("rating_reported", rating_id=rating_id, reported_by=actor["id"])


async def moderate_rating(conn: AsyncConnection, rating_id: int, actor: dict, decision: RatingModeration) -> dict:
    async with conn.transaction():
        async with conn.cursor() as cur:
            await cur.execute(
                """
                UPDATE ratings
                SET status = %s, moderation_notes = %s, moderated_by = %s,
                    moderated_at = NOW(), updated_at = NOW()
                WHERE id = %s
                RETURNING id
                """,
                (decision.status, decision.notes, actor["id"], rating_id),
            )
            if await cur.fetchone() is None:
                raise NotFound("Rating not found")

    log.info("rating_moderated", rating_id=rating_id, status=decision.status, moderator_id=actor["id"])
    return with_category_average(await _fetch_rating(conn, rating_id))
