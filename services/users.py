from passlib.context import CryptContext
from psycopg import AsyncConnection, errors as pg_errors
from psycopg.types.json import Jsonb

from errors import Conflict, NotFound, Unauthenticated
from logging_config import get_logger
from models.user import UserCreate, UserUpdate

log = get_logger(__name__)

# 密碼雜湊 (pbkdf2_sha256 不需要額外的 C 擴充套件)
pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")

# 登入者本人的帳號資料，永遠不包含 hashed_password
PUBLIC_USER_COLUMNS = (
    "id, email, role, first_name, last_name, phone, location, company, "
    "service_provider, profile_image, is_verified, is_active, created_at, updated_at"
)

# 其他登入使用者查看某人的個人檔案時只看得到這些欄位
PROFILE_COLUMNS = "id, first_name, last_name, email, profile_image, role, phone, location"

JSON_PROFILE_FIELDS = ("location", "company", "service_provider")


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


def normalize_email(email: str) -> str:
    return email.strip().lower()


async def fetch_public_user(conn: AsyncConnection, user_id: int) -> dict | None:
    async with conn.cursor() as cur:
        await cur.execute(f"SELECT {PUBLIC_USER_COLUMNS} FROM users WHERE id = %s", (user_id,))
        return await cur.fetchone()


async def get_user(conn: AsyncConnection, user_id: int) -> dict:
    user = await fetch_public_user(conn, user_id)
    if user is None:
        raise NotFound("User not found")
    return user


async def fetch_user_profile(conn: AsyncConnection, user_id: int) -> dict | None:
    async with conn.cursor() as cur:
        await cur.execute(f"SELECT {PROFILE_COLUMNS} FROM users WHERE id = %s", (user_id,))
        return await cur.fetchone()


async def get_user_profile(conn: AsyncConnection, user_id: int) -> dict:
    profile = await fetch_user_profile(conn, user_id)
    if profile is None:
        raise NotFound("User not found")
    return profile


async def create_user(conn: AsyncConnection, data: UserCreate) -> dict:
    email = normalize_email(data.email)
    try:
        async with conn.transaction():
            async with conn.cursor() as cur:
                await cur.execute(
                    f"""
                    INSERT INTO users (email, hashed_password, role, first_name, last_name, phone,
                                       location, company, service_provider)
                    VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)
                    RETURNING {PUBLIC_USER_COLUMNS}
                    """,
                    (
                        email,
                        hash_password(data.password),
                        data.role,
                        data.first_name,
                        data.last_name,
                        data.phone,
                        Jsonb(data.location.model_dump()) if data.location else None,
                        Jsonb(data.company.model_dump()) if data.company else None,
                        Jsonb(data.service_provider.model_dump()) if data.service_provider else None,
                    ),
                )
                user = await cur.fetchone()
    except pg_errors.UniqueViolation as exc:
        raise Conflict("User already exists with this email") from exc

    log.info("user_registered", user_id=user["id"], role=user["role"])
    return user


async def authenticate(conn: AsyncConnection, email: str, password: str) -> dict:
    """帳號或密碼錯誤都回同一個訊息，不透露帳號是否存在。"""
    async with conn.cursor() as cur:
        await cur.execute(
            f"SELECT {PUBLIC_USER_COLUMNS}, hashed_password FROM users WHERE email = %s",
            (normalize_email(email),),
        )
        user = await cur.fetchone()

    if user is None or not verify_password(password, user["hashed_password"]):
        log.info("login_failed", email=normalize_email(email))
        raise Unauthenticated("Invalid credentials")
    if not user["is_active"]:
        raise Unauthenticated("Account is deactivated")

    user.pop("hashed_password")
    log.info("login_succeeded", user_id=user["id"])
    return user


async def update_profile(conn: AsyncConnection, actor: dict, patch: UserUpdate) -> dict:
    changes = patch.model_dump(exclude_none=True)
    if not changes:
        return await get_user(conn, actor["id"])

    values = [Jsonb(v) if k in JSON_PROFILE_FIELDS else v for k, v in changes.items()]
    set_clause = ", ".join(f"{k} = %s" for k in changes)
    async with conn.transaction():
        async with conn.cursor() as cur:
            await cur.execute(
                f"UPDATE users SET {set_clause}, updated_at = NOW() WHERE id = %s RETURNING {PUBLIC_USER_COLUMNS}",
                values + [actor["id"]],
            )
            user = await cur.fetchone()

    log.info("profile_updated", user_id=actor["id"], fields=sorted(changes))
    return user


async def update_avatar(conn: AsyncConnection, actor: dict, path: str) -> dict:
    async with conn.transaction():
        async with conn.cursor() as cur:
            await cur.execute(
                f"UPDATE users SET profile_image = %s, updated_at = NOW() WHERE id = %s RETURNING {PUBLIC_USER_COLUMNS}",
                (path, actor["id"]),
            )
            user = await cur.fetchone()
    log.info("avatar_updated", user_id=actor["id"])
    return user
