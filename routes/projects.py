from fastapi import APIRouter, Depends, Query, Request, status
from psycopg import AsyncConnection

from db import getDB
from models.common import parse_payload
from models.project import PROJECT_FILE_FIELDS, ProjectCategory, ProjectCreate, ProjectStatus
from routes.auth import get_current_owner_user, get_current_user
from services import projects
from utils import check_uploads, split_form, stored_uploads

router = APIRouter(prefix="/api/projects", tags=["projects"])


# =========================================================
# 1. 建立專案 (業主)
# =========================================================
@router.post("", status_code=status.HTTP_201_CREATED)
async def create_project(
    request: Request,
    user: dict = Depends(get_current_owner_user),
    conn: AsyncConnection = Depends(getDB),
):
    """
    multipart 表單：一般欄位用 location[city]、budget[min] 這種巢狀寫法，
    檔案欄位為 property_images / boq / drawings / other_documents。
    """
    # 步驟 A: 先驗證欄位與檔案 (都還沒寫入任何東西)
    fields, uploads = split_form(await request.form())
    data = parse_payload(ProjectCreate, fields)
    check_uploads(uploads, PROJECT_FILE_FIELDS)

    # 步驟 B: 存檔 -> 寫資料庫；寫入失敗會把檔案刪掉
    async with stored_uploads(uploads, PROJECT_FILE_FIELDS) as stored:
        project = await projects.create_project(conn, user, data, stored)
    return {"message": "Project created successfully", "project": project}


# =========================================================
# 2. 瀏覽 / 搜尋專案
# =========================================================
@router.get("")
async def list_projects(
    category: ProjectCategory | None = None,
    city: str | None = None,
    state: str | None = None,
    min_budget: float | None = Query(None, ge=0),
    max_budget: float | None = Query(None, ge=0),
    status: ProjectStatus | None = None,
    my_projects: bool = False,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    user: dict | None = Depends(get_current_user),
    conn: AsyncConnection = Depends(getDB),
):
    return await projects.list_projects(
        conn,
        user["id"] if user else None,
        page=page,
        limit=limit,
        my_projects=my_projects,
        category=category,
        city=city,
        state=state,
        min_budget=min_budget,
        max_budget=max_budget,
        status=status,
    )


# =========================================================
# 3. 專案詳情
# =========================================================
@router.get("/{project_id}")
async def get_project(
    project_id: int,
    user: dict | None = Depends(get_current_user),
    conn: AsyncConnection = Depends(getDB),
):
    project = await projects.get_project(conn, project_id, user["id"] if user else None)
    return {"project": project}


# =========================================================
# 4. 修改專案 (業主，只在 draft / live)
# =========================================================
@router.put("/{project_id}")
async def update_project(
    project_id: int,
    request: Request,
    user: dict = Depends(get_current_owner_user),
    conn: AsyncConnection = Depends(getDB),
):
    fields, uploads = split_form(await request.form())
    patch = await projects.prepare_update(conn, project_id, user, fields)
    check_uploads(uploads, PROJECT_FILE_FIELDS)

    async with stored_uploads(uploads, PROJECT_FILE_FIELDS) as stored:
        project = await projects.update_project(conn, project_id, user, patch, stored)
    return {"message": "Project updated successfully", "project": project}


@router.delete("/{project_id}")
async def delete_project(
    project_id: int,
    user: dict = Depends(get_current_owner_user),
    conn: AsyncConnection = Depends(getDB),
):
    await projects.delete_project(conn, project_id, user)
    return {"message": "Project deleted successfully"}


# =========================================================
# 5. 狀態轉換：發布 / 結案 / 取消
# =========================================================
@router.post("/{project_id}/publish")
async def publish_project(
    project_id: int,
    user: dict = Depends(get_current_owner_user),
    conn: AsyncConnection = Depends(getDB),
):
    project = await projects.transition_project(conn, project_id, user, "publish")
    return {"message": "Project published successfully", "project": project}


@router.post("/{project_id}/complete")
async def complete_project(
    project_id: int,
    user: dict = Depends(get_current_owner_user),
    conn: AsyncConnection = Depends(getDB),
):
    project = await projects.transition_project(conn, project_id, user, "complete")
    return {"message": "Project marked as completed", "project": project}


@router.post("/{project_id}/cancel")
async def cancel_project(
    project_id: int,
    user: dict = Depends(get_current_owner_user),
    conn: AsyncConnection = Depends(getDB),
):
    project = await projects.transition_project(conn, project_id, user, "cancel")
    return {"message": "Project cancelled", "project": project}
