# config.py
import os
from dotenv import load_dotenv

# 讀取專案根目錄的 .env (如果有的話)，正式環境直接用環境變數即可
load_dotenv()

# --- 資料庫設定 ---
DATABASE_URL = os.getenv(
    "DATABASE_URL",
    "dbname=bidding_platform user=postgres password=postgres host=localhost port=5432",
)
DB_POOL_MIN_SIZE = int(os.getenv("DB_POOL_MIN_SIZE", "1"))
DB_POOL_MAX_SIZE = int(os.getenv("DB_POOL_MAX_SIZE", "10"))

# --- Session (登入狀態) ---
SECRET_KEY = os.getenv("SECRET_KEY", "a_very_secret_key_please_change_me")
SESSION_MAX_AGE = int(os.getenv("SESSION_MAX_AGE", "86400"))  # 預設 1 天
HTTPS_ONLY = os.getenv("HTTPS_ONLY", "false").lower() == "true"

# 逗號分隔，例如 "https://a.com,https://b.com"
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]

# --- 檔案上傳 ---
UPLOAD_ROOT = os.getenv("UPLOAD_ROOT", "uploads")
MAX_UPLOAD_SIZE = int(os.getenv("MAX_UPLOAD_SIZE", str(10 * 1024 * 1024)))  # 每個檔案 10MB
MAX_FILES_PER_REQUEST = int(os.getenv("MAX_FILES_PER_REQUEST", "10"))

# --- 其他 ---
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
ENVIRONMENT = os.getenv("ENVIRONMENT", "development")
