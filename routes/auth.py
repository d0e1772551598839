from fastapi import APIRouter, Depends, Form, Request, status
from psycopg import AsyncConnection

from db import getDB  # 資料庫連線函式
from errors import AccessDenied, Unauthenticated
from models.common import parse_payload
from models.user import UserCreate, UserUpdate
from services import users
from utils import check_uploads, split_form

# --- 1. 設定 Router ---
router = APIRouter(prefix="/api/auth", tags=["auth"])


# --- 2. 核心依賴函式：取得當前登入者 ---
# 這是一個 "Dependency"，會在其他路由執行前先跑過一遍
async def get_current_user(request: Request, conn: AsyncConnection = Depends(getDB)) -> dict | None:
    """
    檢查 Session，如果使用者已登入，返回使用者的資料 (dict)。
    如果未登入，返回 None。

    運作原理：
    1. 瀏覽器發送請求時會帶上 Cookie (Session)。
    2. 伺服器驗證簽章後取得 "user_id"。
    3. 用這個 ID 去資料庫查是不是真的有這個人。
    """
    user_id = request.session.get("user_id")
    if not user_id:
        return None

    try:
        user_id = int(user_id)
    except (TypeError, ValueError):
        request.session.clear()  # Session 資料怪怪的 (不是數字)，為了安全就清掉
        return None

    user = await users.fetch_public_user(conn, user_id)
    if not user or not user["is_active"]:
        # Session 有紀錄 ID，但帳號已不存在或被停用 -> 強制登出
        request.session.clear()
        return None
    return user


# --- 3. 權限控管依賴函式 ---
async def require_user(user: dict | None = Depends(get_current_user)) -> dict:
    if user is None:
        raise Unauthenticated("Not authenticated")
    return user


def _require_role(user: dict, role: str) -> dict:
    if user["role"] != role:
        raise AccessDenied(f"Access denied: requires role '{role}'")
    return user


# [業主 Project Owner] 專用權限檢查
async def get_current_owner_user(user: dict = Depends(require_user)) -> dict:
    return _require_role(user, "project_owner")


# [承包商 Service Provider] 專用權限檢查
async def get_current_provider_user(user: dict = Depends(require_user)) -> dict:
    return _require_role(user, "service_provider")


# [管理員 Admin] 專用權限檢查
async def get_current_admin_user(user: dict = Depends(require_user)) -> dict:
    return _require_role(user, "admin")


# --- 4. 註冊 / 登入 / 登出 ---

@router.post("/register", status_code=status.HTTP_201_CREATED)
async def register(request: Request, conn: AsyncConnection = Depends(getDB)):
    """
    接收註冊表單 (可包含 location[city]、service_provider[skills] 這類巢狀欄位)，
    成功後直接登入。
    """
    fields, uploads = split_form(await request.form())
    check_uploads(uploads, ())  # 註冊不收檔案
    data = parse_payload(UserCreate, fields)

    user = await users.create_user(conn, data)
    request.session["user_id"] = user["id"]
    return {"message": "User registered successfully", "user": user}


@router.post("/login")
async def login(
    request: Request,
    email: str = Form(...),  # Form(...) 表示這些資料來自表單
    password: str = Form(...),
    conn: AsyncConnection = Depends(getDB),
):
    user = await users.authenticate(conn, email, password)
    # 這行執行後，SessionMiddleware 會把簽章過的 Cookie 塞給瀏覽器
    request.session["user_id"] = user["id"]
    return {"message": "Login successful", "user": user}


@router.post("/logout")
async def logout(request: Request):
    request.session.clear()
    return {"message": "Logged out"}


# --- 5. 個人資料 ---

@router.get("/me")
async def me(user: dict = Depends(require_user)):
    return {"user": user}


@router.put("/profile")
async def update_profile(
    patch: UserUpdate,
    user: dict = Depends(require_user),
    conn: AsyncConnection = Depends(getDB),
):
    updated = await users.update_profile(conn, user, patch)
    return {"message": "Profile updated successfully", "user": updated}
