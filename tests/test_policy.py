from datetime import timedelta

from helpers import NOW, make_bid, make_project
from services import policy


def test_owner_sees_own_draft_but_others_do_not():
    project = make_project(status="draft", is_public=False)
    assert policy.can_view_project(1, project)
    assert not policy.can_view_project(2, project)
    assert not policy.can_view_project(None, project)


def test_live_public_project_is_visible_to_anyone():
    project = make_project()
    assert policy.can_view_project(None, project)
    assert policy.can_view_project(42, project)


def test_live_private_project_is_hidden_from_strangers():
    project = make_project(is_public=False)
    assert not policy.can_view_project(42, project)


def test_accepted_bidder_keeps_read_access_after_award():
    project = make_project(status="in_progress")
    bids = [make_bid(1, 2, "accepted"), make_bid(2, 3, "rejected")]
    assert policy.can_view_project(2, project, bids)
    assert not policy.can_view_project(3, project, bids)
    assert not policy.can_manage_project(2, project)


def test_public_view_strips_owner_details_and_bids():
    project = make_project(awarded_bid_id=None, bids=[make_bid(1, 2)])
    view = policy.get_public_project_view(project, bid_count=1, now=NOW)

    for field in ("owner_id", "assigned_architect_id", "awarded_bid_id", "bids"):
        assert field not in view
    assert view["owner"] == {"first_name": "Olive", "last_name": "Owner", "email": "owner@example.com"}
    assert view["assigned_architect"] is None
    assert view["bid_count"] == 1
    assert view["days_until_deadline"] == 7
    assert view["title"] == project["title"]


def test_days_until_deadline_rounds_up_and_goes_negative():
    assert policy.days_until_deadline(NOW + timedelta(days=1, hours=12), NOW) == 2
    assert policy.days_until_deadline(NOW - timedelta(hours=12), NOW) == 0
    assert policy.days_until_deadline(NOW - timedelta(days=2, hours=12), NOW) == -2


def test_owner_view_includes_bids_and_count():
    bids = [make_bid(1, 2), make_bid(2, 3)]
    view = policy.get_owner_project_view(make_project(), bids, now=NOW)
    assert view["bids"] == bids
    assert view["bid_count"] == 2
    assert view["owner_id"] == 1


def test_bid_management_is_provider_only():
    bid = make_bid(1, 2)
    assert policy.can_manage_bid(2, bid)
    assert not policy.can_manage_bid(1, bid)
    assert not policy.can_manage_bid(None, bid)


def test_only_owner_and_accepted_bidder_can_rate_in_project():
    project = make_project(status="in_progress")
    bids = [make_bid(1, 2, "accepted"), make_bid(2, 3, "rejected")]
    assert policy.can_rate_in_project(1, project, bids)
    assert policy.can_rate_in_project(2, project, bids)
    assert not policy.can_rate_in_project(3, project, bids)


def test_message_permissions_split_between_sender_and_recipient():
    message = {"sender_id": 1, "recipient_id": 2}
    assert policy.can_mark_message_read(2, message)
    assert not policy.can_mark_message_read(1, message)
    assert policy.can_delete_message(1, message)
    assert not policy.can_delete_message(2, message)


def test_rating_management_is_rater_only():
    rating = {"rater_id": 5, "rated_user_id": 6}
    assert policy.can_manage_rating(5, rating)
    assert not policy.can_manage_rating(6, rating)
