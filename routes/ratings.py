from fastapi import APIRouter, Depends, Query, status
from psycopg import AsyncConnection

from db import getDB
from models.rating import RatingCreate, RatingModeration, RatingReport, RatingUpdate
from routes.auth import get_current_admin_user, require_user
from services import ratings

router = APIRouter(prefix="/api/ratings", tags=["ratings"])


# ------------------------------------------------------
# POST：提交評價 (JSON)
# ------------------------------------------------------
@router.post("", status_code=status.HTTP_201_CREATED)
async def submit_rating(
    data: RatingCreate,
    user: dict = Depends(require_user),
    conn: AsyncConnection = Depends(getDB),
):
    return {"rating": await ratings.submit_rating(conn, user, data)}


# ------------------------------------------------------
# 查詢
# ------------------------------------------------------
@router.get("/user/{user_id}")
async def user_ratings(
    user_id: int,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    conn: AsyncConnection = Depends(getDB),
):
    # 公開：任何人都可以看某個使用者的評價統計
    return await ratings.get_user_ratings(conn, user_id, page=page, limit=limit)


@router.get("/project/{project_id}")
async def project_ratings(
    project_id: int,
    user: dict = Depends(require_user),
    conn: AsyncConnection = Depends(getDB),
):
    return {"ratings": await ratings.get_project_ratings(conn, project_id, user)}


@router.get("/my-ratings")
async def my_ratings(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    user: dict = Depends(require_user),
    conn: AsyncConnection = Depends(getDB),
):
    return await ratings.list_my_ratings(conn, user, page=page, limit=limit)


# ------------------------------------------------------
# 修改 / 刪除 (只有評價者本人)
# ------------------------------------------------------
@router.put("/{rating_id}")
async def update_rating(
    rating_id: int,
    patch: RatingUpdate,
    user: dict = Depends(require_user),
    conn: AsyncConnection = Depends(getDB),
):
    return {"rating": await ratings.update_rating(conn, rating_id, user, patch)}


@router.delete("/{rating_id}")
async def delete_rating(
    rating_id: int,
    user: dict = Depends(require_user),
    conn: AsyncConnection = Depends(getDB),
):
    await ratings.delete_rating(conn, rating_id, user)
    return {"message": "Rating deleted successfully"}


# ------------------------------------------------------
# 檢舉 / 審核
# ------------------------------------------------------
@router.post("/{rating_id}/report")
async def report_rating(
    rating_id: int,
    report: RatingReport,
    user: dict = Depends(require_user),
    conn: AsyncConnection = Depends(getDB),
):
    await ratings.report_rating(conn, rating_id, user, report)
    return {"message": "Rating reported successfully"}


@router.put("/{rating_id}/moderate")
async def moderate_rating(
    rating_id: int,
    decision: RatingModeration,
    user: dict = Depends(get_current_admin_user),
    conn: AsyncConnection = Depends(getDB),
):
    return {"rating": await ratings.moderate_rating(conn, rating_id, user, decision)}
