# init_db.py
import psycopg

import config
from logging_config import get_logger

log = get_logger(__name__)

# 定義初始化 SQL 指令
# 使用 IF NOT EXISTS 避免重複建立錯誤，伺服器每次啟動都可以安全地再跑一次
INIT_SQL = """
-- 1. 建立列舉類型 (Enum Types) - 統一管理狀態與角色
DO $$ BEGIN
    IF NOT EXISTS (SELECT 1 FROM pg_type WHERE typname = 'user_role') THEN
        CREATE TYPE user_role AS ENUM ('project_owner', 'service_provider', 'admin');
    END IF;
    IF NOT EXISTS (SELECT 1 FROM pg_type WHERE typname = 'project_status') THEN
        CREATE TYPE project_status AS ENUM ('draft', 'live', 'in_progress', 'completed', 'cancelled');
    END IF;
    IF NOT EXISTS (SELECT 1 FROM pg_type WHERE typname = 'project_category') THEN
        CREATE TYPE project_category AS ENUM (
            'residential', 'commercial', 'industrial', 'infrastructure', 'renovation', 'other'
        );
    END IF;
    IF NOT EXISTS (SELECT 1 FROM pg_type WHERE typname = 'bid_status') THEN
        CREATE TYPE bid_status AS ENUM ('pending', 'accepted', 'rejected');
    END IF;
    IF NOT EXISTS (SELECT 1 FROM pg_type WHERE typname = 'message_type') THEN
        CREATE TYPE message_type AS ENUM ('text', 'file', 'image');
    END IF;
    IF NOT EXISTS (SELECT 1 FROM pg_type WHERE typname = 'message_status') THEN
        CREATE TYPE message_status AS ENUM ('sent', 'delivered', 'read');
    END IF;
    IF NOT EXISTS (SELECT 1 FROM pg_type WHERE typname = 'rating_type') THEN
        CREATE TYPE rating_type AS ENUM ('owner_to_contractor', 'contractor_to_owner', 'general');
    END IF;
    IF NOT EXISTS (SELECT 1 FROM pg_type WHERE typname = 'rating_status') THEN
        CREATE TYPE rating_status AS ENUM ('pending', 'approved', 'rejected');
    END IF;
END $$;

-- 2. 使用者表 (users)
CREATE TABLE IF NOT EXISTS users (
    id SERIAL PRIMARY KEY,
    email VARCHAR(255) NOT NULL UNIQUE,
    hashed_password VARCHAR(255) NOT NULL,
    role user_role NOT NULL,
    first_name VARCHAR(100) NOT NULL,
    last_name VARCHAR(100) NOT NULL,
    phone VARCHAR(50) NOT NULL,
    location JSONB,
    profile_image VARCHAR(500),     -- 頭像路徑
    is_verified BOOLEAN NOT NULL DEFAULT FALSE,
    is_active BOOLEAN NOT NULL DEFAULT TRUE,
    company JSONB,                  -- 業主專用欄位
    service_provider JSONB,         -- 承包商專用欄位 (技能、經驗、時薪)
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

-- 3. 專案表 (projects)
CREATE TABLE IF NOT EXISTS projects (
    id SERIAL PRIMARY KEY,
    owner_id INT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    assigned_architect_id INT REFERENCES users(id) ON DELETE SET NULL,
    title VARCHAR(200) NOT NULL,
    description TEXT NOT NULL,
    category project_category NOT NULL,
    location JSONB NOT NULL,
    budget_min NUMERIC(14, 2) NOT NULL,
    budget_max NUMERIC(14, 2) NOT NULL,
    currency VARCHAR(3) NOT NULL DEFAULT 'USD',
    start_date TIMESTAMPTZ NOT NULL,
    end_date TIMESTAMPTZ NOT NULL,
    estimated_duration INT NOT NULL,  -- 天數
    specifications JSONB NOT NULL DEFAULT '{}'::jsonb,
    files JSONB NOT NULL DEFAULT '{}'::jsonb,
    status project_status NOT NULL DEFAULT 'draft',
    is_public BOOLEAN NOT NULL DEFAULT FALSE,
    bidding_deadline TIMESTAMPTZ NOT NULL,
    awarded_bid_id INT,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    CHECK (budget_min >= 0 AND budget_max >= budget_min),
    CHECK (end_date > start_date),
    CHECK (estimated_duration > 0)
);

-- 4. 投標表 (bids) - 每個承包商對同一個專案只能有一筆
CREATE TABLE IF NOT EXISTS bids (
    id SERIAL PRIMARY KEY,
    project_id INT NOT NULL REFERENCES projects(id) ON DELETE RESTRICT,
    provider_id INT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    amount NUMERIC(14, 2) NOT NULL CHECK (amount > 0),
    timeline INT NOT NULL CHECK (timeline > 0),  -- 天數
    message TEXT NOT NULL DEFAULT '',
    documents JSONB NOT NULL DEFAULT '[]'::jsonb,
    status bid_status NOT NULL DEFAULT 'pending',
    submitted_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    UNIQUE (project_id, provider_id)
);

-- 同一個專案最多只會有一筆 accepted
CREATE UNIQUE INDEX IF NOT EXISTS uq_bids_one_accepted ON bids(project_id) WHERE status = 'accepted';
CREATE INDEX IF NOT EXISTS idx_bids_provider ON bids(provider_id);

-- projects.awarded_bid_id 與 bids 互相參照，所以 FK 要等 bids 建好再補
DO $$ BEGIN
    IF NOT EXISTS (SELECT 1 FROM pg_constraint WHERE conname = 'fk_projects_awarded_bid') THEN
        ALTER TABLE projects
            ADD CONSTRAINT fk_projects_awarded_bid
            FOREIGN KEY (awarded_bid_id) REFERENCES bids(id) ON DELETE SET NULL;
    END IF;
END $$;

CREATE INDEX IF NOT EXISTS idx_projects_status_public ON projects(status, is_public);
CREATE INDEX IF NOT EXISTS idx_projects_owner ON projects(owner_id);
CREATE INDEX IF NOT EXISTS idx_projects_deadline ON projects(bidding_deadline);

-- 5. 訊息表 (messages)
CREATE TABLE IF NOT EXISTS messages (
    id SERIAL PRIMARY KEY,
    conversation_id VARCHAR(100) NOT NULL,
    sender_id INT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    recipient_id INT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    content TEXT NOT NULL,
    type message_type NOT NULL DEFAULT 'text',
    attachment JSONB,
    project_id INT REFERENCES projects(id) ON DELETE SET NULL,
    is_read BOOLEAN NOT NULL DEFAULT FALSE,
    read_at TIMESTAMPTZ,
    status message_status NOT NULL DEFAULT 'sent',
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    CHECK (sender_id <> recipient_id)
);

CREATE INDEX IF NOT EXISTS idx_messages_conversation ON messages(conversation_id, created_at DESC);
CREATE INDEX IF NOT EXISTS idx_messages_recipient_unread ON messages(recipient_id, is_read);
CREATE INDEX IF NOT EXISTS idx_messages_sender ON messages(sender_id);

-- 6. 評價表 (ratings)
CREATE TABLE IF NOT EXISTS ratings (
    id SERIAL PRIMARY KEY,
    project_id INT REFERENCES projects(id) ON DELETE CASCADE,
    rated_user_id INT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    rater_id INT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    rating INT NOT NULL CHECK (rating BETWEEN 1 AND 5),
    review TEXT NOT NULL CHECK (char_length(review) BETWEEN 10 AND 1000),
    categories JSONB NOT NULL DEFAULT '{}'::jsonb,
    rating_type rating_type NOT NULL,
    status rating_status NOT NULL DEFAULT 'approved',
    moderated_by INT REFERENCES users(id) ON DELETE SET NULL,
    moderated_at TIMESTAMPTZ,
    moderation_notes TEXT,
    helpful_votes INT NOT NULL DEFAULT 0,
    reported BOOLEAN NOT NULL DEFAULT FALSE,
    report_reason TEXT,
    reported_by INT REFERENCES users(id) ON DELETE SET NULL,
    reported_at TIMESTAMPTZ,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    CHECK (rater_id <> rated_user_id)
);

-- 防止重複評價：沒有專案的「一般評價」用 0 當作獨立的範圍值，而不是萬用字元
CREATE UNIQUE INDEX IF NOT EXISTS uq_ratings_rater_rated_project
    ON ratings(rater_id, rated_user_id, COALESCE(project_id, 0));
CREATE INDEX IF NOT EXISTS idx_ratings_rated_user ON ratings(rated_user_id, created_at DESC);
CREATE INDEX IF NOT EXISTS idx_ratings_project ON ratings(project_id);
"""


def init_database(conninfo: str | None = None):
    """
    執行資料庫初始化：建立列舉、表格、索引與延後建立的外鍵。
    這裡使用同步連線 (psycopg.connect)，因為初始化只在伺服器啟動前執行一次。
    """
    log.info("db_schema_checking")
    try:
        with psycopg.connect(conninfo or config.DATABASE_URL) as conn:
            with conn.cursor() as cur:
                cur.execute(INIT_SQL)
            conn.commit()
    except psycopg.Error:
        log.exception("db_schema_init_failed")
        raise
    log.info("db_schema_ready")


if __name__ == "__main__":
    init_database()
