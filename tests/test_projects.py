import pytest

from errors import AccessDenied, Conflict, InvalidInput, InvalidState, NotFound, Unauthenticated
from helpers import make_project
from models.common import parse_payload
from models.project import ProjectCreate, ProjectUpdate
from services import projects


def valid_fields(**overrides) -> dict:
    fields = {
        "title": "Office fit-out",
        "description": "Open-plan office on the 3rd floor",
        "category": "commercial",
        "location": {"address": "5 Harbour Rd", "city": "Kaohsiung", "state": "KH"},
        "budget": {"min": "10000", "max": "25000"},
        "timeline": {
            "start_date": "2026-05-01T00:00:00",
            "end_date": "2026-07-01T00:00:00",
            "estimated_duration": "60",
        },
        "specifications": {"area": "300", "requirements": '["fire doors", "raised floor"]'},
        "bidding_deadline": "2026-04-15T00:00:00Z",
    }
    fields.update(overrides)
    return fields


# --- 欄位驗證 ---

def test_project_create_parses_form_strings():
    data = parse_payload(ProjectCreate, valid_fields())
    assert data.budget.min == 10000
    assert data.timeline.estimated_duration == 60
    assert data.timeline.start_date.tzinfo is not None
    assert data.specifications.requirements == ["fire doors", "raised floor"]
    assert data.specifications.floors == 1
    assert data.is_draft is False


def test_project_create_reports_every_violation_at_once():
    fields = valid_fields(
        title="",
        budget={"min": "500", "max": "100"},
        timeline={
            "start_date": "2026-07-01T00:00:00",
            "end_date": "2026-05-01T00:00:00",
            "estimated_duration": "0",
        },
    )
    with pytest.raises(InvalidInput) as exc:
        parse_payload(ProjectCreate, fields)

    failed = {e["field"] for e in exc.value.errors}
    assert "title" in failed
    assert "budget" in failed
    assert "timeline.estimated_duration" in failed


def test_project_columns_flattens_budget_and_timeline():
    data = parse_payload(ProjectCreate, valid_fields())
    cols = projects.project_columns(data)
    assert cols["budget_min"] == 10000
    assert cols["budget_max"] == 25000
    assert cols["currency"] == "USD"
    assert cols["estimated_duration"] == 60
    assert cols["location"].obj["city"] == "Kaohsiung"
    assert "is_draft" not in cols
    assert "status" not in cols


def test_project_columns_skips_missing_update_fields():
    cols = projects.project_columns(ProjectUpdate(title="New title", is_public=False))
    assert cols == {"title": "New title", "is_public": False}


# --- 局部更新 ---

def test_partial_budget_update_is_checked_against_current_values():
    project = make_project(budget_min=1000, budget_max=5000)
    merged = projects.merge_project_patch(project, {"budget": {"max": "500"}})
    assert merged["budget"]["min"] == 1000

    with pytest.raises(InvalidInput) as exc:
        parse_payload(ProjectUpdate, merged)
    assert exc.value.errors[0]["field"] == "budget"


def test_partial_timeline_update_keeps_other_dates():
    project = make_project()
    merged = projects.merge_project_patch(project, {"timeline": {"estimated_duration": "45"}})
    patch = parse_payload(ProjectUpdate, merged)
    assert patch.timeline.start_date == project["start_date"]
    assert patch.timeline.estimated_duration == 45


def test_untouched_groups_stay_out_of_the_patch():
    merged = projects.merge_project_patch(make_project(), {"title": "Renamed"})
    assert merged == {"title": "Renamed"}


def test_uploaded_files_are_appended():
    existing = {"boq": [{"filename": "a.pdf"}]}
    merged = projects.merge_files(existing, {"boq": [{"filename": "b.pdf"}], "drawings": [{"filename": "c.pdf"}]})
    assert [f["filename"] for f in merged["boq"]] == ["a.pdf", "b.pdf"]
    assert merged["drawings"] == [{"filename": "c.pdf"}]
    assert existing == {"boq": [{"filename": "a.pdf"}]}


def test_only_draft_or_live_projects_are_editable():
    assert projects.ensure_editable(make_project(status="draft"), 1)
    with pytest.raises(InvalidState):
        projects.ensure_editable(make_project(status="in_progress"), 1)
    with pytest.raises(AccessDenied):
        projects.ensure_editable(make_project(), 2)


# --- 列表篩選 ---

def test_public_browse_only_shows_live_public_projects():
    where, params = projects.build_project_filters(None, status="draft")
    assert where == ["p.status = 'live' AND p.is_public = TRUE"]
    assert params == []


def test_my_projects_can_filter_by_status():
    where, params = projects.build_project_filters(1, my_projects=True, status="draft")
    assert where == ["p.owner_id = %s", "p.status = %s"]
    assert params == [1, "draft"]


def test_my_projects_requires_login():
    with pytest.raises(Unauthenticated):
        projects.build_project_filters(None, my_projects=True)


def test_budget_filters_match_overlapping_ranges():
    where, params = projects.build_project_filters(None, min_budget=2000, max_budget=3000, city="tai")
    assert "p.budget_max >= %s" in where
    assert "p.budget_min <= %s" in where
    assert params == ["%tai%", 2000, 3000]


# --- 狀態轉換 / 刪除 ---

@pytest.mark.parametrize(
    "action, current, expected",
    [
        ("publish", "draft", "live"),
        ("publish", "live", "live"),
        ("complete", "in_progress", "completed"),
        ("cancel", "draft", "cancelled"),
        ("cancel", "live", "cancelled"),
    ],
)
def test_allowed_transitions(action, current, expected):
    assert projects.plan_transition(make_project(status=current), 1, action) == expected


@pytest.mark.parametrize(
    "action, current",
    [("publish", "in_progress"), ("complete", "live"), ("cancel", "completed"), ("cancel", "in_progress")],
)
def test_rejected_transitions(action, current):
    with pytest.raises(InvalidState):
        projects.plan_transition(make_project(status=current), 1, action)


def test_transition_is_owner_only():
    with pytest.raises(AccessDenied):
        projects.plan_transition(make_project(status="draft"), 2, "publish")


def test_project_with_any_bid_cannot_be_deleted():
    with pytest.raises(Conflict):
        projects.ensure_can_delete(make_project(), 1, bid_count=1)
    projects.ensure_can_delete(make_project(), 1, bid_count=0)
    with pytest.raises(NotFound):
        projects.ensure_can_delete(None, 1, bid_count=0)
