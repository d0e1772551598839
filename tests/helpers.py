from datetime import datetime, timedelta, timezone

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)

OWNER = {"id": 1, "role": "project_owner", "email": "owner@example.com",
         "first_name": "Olive", "last_name": "Owner", "is_active": True}
PROVIDER = {"id": 2, "role": "service_provider", "email": "builder@example.com",
            "first_name": "Bob", "last_name": "Builder", "is_active": True}
ADMIN = {"id": 9, "role": "admin", "email": "admin@example.com",
         "first_name": "Ada", "last_name": "Admin", "is_active": True}


def make_project(**overrides) -> dict:
    project = {
        "id": 10,
        "owner_id": 1,
        "assigned_architect_id": None,
        "title": "Two-storey house",
        "description": "New build on an empty lot",
        "category": "residential",
        "location": {"address": "1 Main St", "city": "Taipei", "state": "TP", "zip_code": None},
        "budget_min": 1000,
        "budget_max": 5000,
        "currency": "USD",
        "start_date": NOW + timedelta(days=30),
        "end_date": NOW + timedelta(days=120),
        "estimated_duration": 90,
        "specifications": {"area": 120.0, "floors": 2, "requirements": [], "special_requirements": None},
        "files": {},
        "status": "live",
        "is_public": True,
        "bidding_deadline": NOW + timedelta(days=7),
        "awarded_bid_id": None,
        "owner": {"id": 1, "first_name": "Olive", "last_name": "Owner",
                  "email": "owner@example.com", "phone": "0912-345-678"},
        "assigned_architect": None,
        "bid_count": 0,
    }
    project.update(overrides)
    return project


def make_bid(bid_id: int, provider_id: int, status: str = "pending", **overrides) -> dict:
    bid = {
        "id": bid_id,
        "project_id": 10,
        "provider_id": provider_id,
        "amount": 1000,
        "timeline": 30,
        "message": "",
        "documents": [],
        "status": status,
        "submitted_at": NOW,
    }
    bid.update(overrides)
    return bid
