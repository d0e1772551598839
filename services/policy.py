"""
存取控制規則 (Access Control Policy)。

這裡全部都是純函式：輸入「誰 (actor_id)」與「目標資料 (dict)」，回傳能不能做。
呼叫端負責把 False 轉成 AccessDenied，或者降級成公開版本的資料。
actor_id 為 None 代表匿名訪客。
"""
import math
from datetime import datetime, timezone

# 公開版本不能出現的欄位
HIDDEN_PROJECT_FIELDS = (
    "owner_id", "assigned_architect_id", "awarded_bid_id", "bids",
    "owner", "assigned_architect", "bid_count",
)

RATEABLE_PROJECT_STATUSES = ("in_progress", "completed")


def accepted_bid(bids) -> dict | None:
    return next((b for b in bids if b["status"] == "accepted"), None)


def is_project_owner(actor_id, project: dict) -> bool:
    return actor_id is not None and actor_id == project["owner_id"]


def is_accepted_bidder(actor_id, bids) -> bool:
    if actor_id is None:
        return False
    return any(b["provider_id"] == actor_id and b["status"] == "accepted" for b in bids)


def is_publicly_visible(project: dict) -> bool:
    return project["status"] == "live" and bool(project["is_public"])


def can_view_project(actor_id, project: dict, bids=()) -> bool:
    """業主、公開上架中的專案 (任何人)、或已得標的承包商 (唯讀) 可以查看。"""
    return (
        is_project_owner(actor_id, project)
        or is_publicly_visible(project)
        or is_accepted_bidder(actor_id, bids)
    )


def can_manage_project(actor_id, project: dict) -> bool:
    return is_project_owner(actor_id, project)


def can_manage_bid(actor_id, bid: dict) -> bool:
    return actor_id is not None and actor_id == bid["provider_id"]


def can_rate_in_project(actor_id, project: dict, bids) -> bool:
    return is_project_owner(actor_id, project) or is_accepted_bidder(actor_id, bids)


def can_mark_message_read(actor_id, message: dict) -> bool:
    return actor_id is not None and actor_id == message["recipient_id"]


def can_delete_message(actor_id, message: dict) -> bool:
    return actor_id is not None and actor_id == message["sender_id"]


def can_manage_rating(actor_id, rating: dict) -> bool:
    return actor_id is not None and actor_id == rating["rater_id"]


# =========================================================
# 衍生欄位與公開版本
# =========================================================

def days_until_deadline(deadline: datetime, now: datetime | None = None) -> int:
    """距離截止日還有幾天 (無條件進位，已過期會是負數或 0)。"""
    now = now or datetime.now(timezone.utc)
    return math.ceil((deadline - now).total_seconds() / 86400)


def redact_contact(user: dict | None) -> dict | None:
    # 只留下名字與 email
    if not user:
        return None
    return {
        "first_name": user.get("first_name"),
        "last_name": user.get("last_name"),
        "email": user.get("email"),
    }


def get_public_project_view(project: dict, bid_count: int, now: datetime | None = None) -> dict:
    view = {k: v for k, v in project.items() if k not in HIDDEN_PROJECT_FIELDS}
    view["owner"] = redact_contact(project.get("owner"))
    view["assigned_architect"] = redact_contact(project.get("assigned_architect"))
    view["bid_count"] = bid_count
    view["days_until_deadline"] = days_until_deadline(project["bidding_deadline"], now)
    return view


def get_owner_project_view(project: dict, bids, now: datetime | None = None) -> dict:
    view = dict(project)
    view["bids"] = list(bids)
    view["bid_count"] = len(view["bids"])
    view["days_until_deadline"] = days_until_deadline(project["bidding_deadline"], now)
    return view
