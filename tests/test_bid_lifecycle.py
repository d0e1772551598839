from datetime import timedelta

import pytest

from errors import AccessDenied, Conflict, DeadlinePassed, InvalidState, NotFound
from helpers import NOW, make_bid, make_project
from models.bid import BidUpdate
from services import bids as lifecycle


# --- 投標 ---

def test_submit_requires_existing_live_project_before_deadline():
    with pytest.raises(NotFound):
        lifecycle.ensure_can_submit(None, [], 2, NOW)
    with pytest.raises(InvalidState):
        lifecycle.ensure_can_submit(make_project(status="draft"), [], 2, NOW)
    with pytest.raises(DeadlinePassed):
        lifecycle.ensure_can_submit(make_project(bidding_deadline=NOW - timedelta(seconds=1)), [], 2, NOW)

    lifecycle.ensure_can_submit(make_project(), [], 2, NOW)


def test_submitting_at_the_deadline_is_still_allowed():
    lifecycle.ensure_can_submit(make_project(bidding_deadline=NOW), [], 2, NOW)


def test_second_bid_from_same_provider_conflicts():
    bids = [make_bid(1, 2)]
    with pytest.raises(Conflict):
        lifecycle.ensure_can_submit(make_project(), bids, 2, NOW)
    lifecycle.ensure_can_submit(make_project(), bids, 3, NOW)


# --- 修改 / 撤回 ---

def test_only_the_bidder_can_edit_their_bid():
    bids = [make_bid(1, 2)]
    with pytest.raises(AccessDenied):
        lifecycle.ensure_bid_editable(make_project(), bids, 1, 3)
    assert lifecycle.ensure_bid_editable(make_project(), bids, 1, 2)["id"] == 1


def test_bids_are_frozen_once_project_leaves_live():
    bids = [make_bid(1, 2, "accepted")]
    with pytest.raises(InvalidState):
        lifecycle.ensure_bid_editable(make_project(status="in_progress"), bids, 1, 2)


def test_rejected_bid_on_live_project_is_still_editable():
    bids = [make_bid(1, 2, "rejected")]
    assert lifecycle.ensure_bid_editable(make_project(), bids, 1, 2)["status"] == "rejected"


def test_edit_unknown_bid_is_not_found():
    with pytest.raises(NotFound):
        lifecycle.ensure_bid_editable(make_project(), [make_bid(1, 2)], 99, 2)


def test_bid_patch_only_keeps_provided_fields():
    assert lifecycle.bid_patch_columns(BidUpdate(amount=1200)) == {"amount": 1200}
    assert lifecycle.bid_patch_columns(BidUpdate()) == {}


def test_bid_patch_null_message_clears_it():
    assert lifecycle.bid_patch_columns(BidUpdate(message=None)) == {"message": ""}
    assert lifecycle.bid_patch_columns(BidUpdate(amount=None, timeline=5)) == {"timeline": 5}


# --- 選標 ---

def test_award_accepts_target_and_rejects_every_sibling():
    bids = [make_bid(1, 2), make_bid(2, 3), make_bid(3, 4, "rejected")]
    plan = lifecycle.plan_award(make_project(), bids, 1, actor_id=1)
    assert plan == {1: "accepted", 2: "rejected", 3: "rejected"}


def test_reaccepting_the_accepted_bid_is_a_noop():
    project = make_project(status="in_progress", awarded_bid_id=1)
    bids = [make_bid(1, 2, "accepted"), make_bid(2, 3, "rejected")]
    assert lifecycle.plan_award(project, bids, 1, actor_id=1) is None


def test_accepting_a_second_bid_fails():
    project = make_project(status="in_progress", awarded_bid_id=1)
    bids = [make_bid(1, 2, "accepted"), make_bid(2, 3, "rejected")]
    with pytest.raises(InvalidState):
        lifecycle.plan_award(project, bids, 2, actor_id=1)


def test_award_guards_against_stale_award_reference():
    bids = [make_bid(1, 2), make_bid(2, 3)]
    with pytest.raises(InvalidState):
        lifecycle.plan_award(make_project(awarded_bid_id=7), bids, 1, actor_id=1)


def test_award_requires_owner_live_project_and_pending_target():
    bids = [make_bid(1, 2), make_bid(2, 3, "rejected")]
    with pytest.raises(AccessDenied):
        lifecycle.plan_award(make_project(), bids, 1, actor_id=2)
    with pytest.raises(NotFound):
        lifecycle.plan_award(make_project(), bids, 99, actor_id=1)
    with pytest.raises(NotFound):
        lifecycle.plan_award(None, bids, 1, actor_id=1)
    with pytest.raises(InvalidState):
        lifecycle.plan_award(make_project(status="cancelled"), bids, 1, actor_id=1)
    with pytest.raises(InvalidState):
        lifecycle.plan_award(make_project(), bids, 2, actor_id=1)


# --- 拒絕 ---

def test_reject_pending_bid_leaves_project_alone():
    assert lifecycle.plan_reject(make_project(), [make_bid(1, 2)], 1, actor_id=1) is True


def test_rejecting_twice_is_a_noop():
    assert lifecycle.plan_reject(make_project(), [make_bid(1, 2, "rejected")], 1, actor_id=1) is False


def test_cannot_reject_the_accepted_bid():
    project = make_project(status="in_progress", awarded_bid_id=1)
    with pytest.raises(InvalidState):
        lifecycle.plan_reject(project, [make_bid(1, 2, "accepted")], 1, actor_id=1)


def test_reject_needs_owner_and_live_project():
    with pytest.raises(AccessDenied):
        lifecycle.plan_reject(make_project(), [make_bid(1, 2)], 1, actor_id=2)
    with pytest.raises(InvalidState):
        lifecycle.plan_reject(make_project(status="cancelled"), [make_bid(1, 2)], 1, actor_id=1)
