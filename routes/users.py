from fastapi import APIRouter, Depends, File, UploadFile
from psycopg import AsyncConnection

from db import getDB
from routes.auth import require_user
from services import users
from utils import stored_uploads

router = APIRouter(prefix="/api/users", tags=["users"])


# =========================================================
# 1. 查看個人檔案 (需登入)
# =========================================================
@router.get("/{user_id}")
async def get_user_profile(
    user_id: int,
    user: dict = Depends(require_user),
    conn: AsyncConnection = Depends(getDB),
):
    return {"user": await users.get_user_profile(conn, user_id)}


# =========================================================
# 2. 上傳頭像
# =========================================================
@router.post("/me/avatar")
async def upload_avatar(
    avatar: UploadFile = File(...),
    user: dict = Depends(require_user),
    conn: AsyncConnection = Depends(getDB),
):
    # 只接受圖片；資料庫更新失敗時剛存的檔案會被刪掉
    async with stored_uploads({"avatar": [avatar]}, ("avatar",)) as stored:
        updated = await users.update_avatar(conn, user, stored["avatar"][0]["path"])
    return {"message": "Profile image updated", "user": updated}
