import json
from datetime import timedelta
from types import SimpleNamespace

import pytest

from errors import InvalidPayload
from qr_tickets import build_ticket_payload, make_ticket_id, parse_scanned_payload, render_qr_data_uri
from search import fuzzy_filter, order_by_preference, relevance_score
from time_utils import utc_now


def _event(id, name, description="", tags=None, organizer_id=1, age_hours=0):
    return SimpleNamespace(
        id=id,
        name=name,
        description=description,
        tags=tags or [],
        organizer_id=organizer_id,
        created_at=utc_now() - timedelta(hours=age_hours),
    )


def test_fuzzy_filter_tolerates_typos():
    events = [
        _event(1, "Battle of Bands", "Live music on the main stage", ["music"]),
        _event(2, "Competitive Programming Contest", "Three hours of algorithms", ["coding"]),
        _event(3, "Quiz Night"),
    ]
    assert [e.id for e in fuzzy_filter(events, "programing")] == [2]
    assert [e.id for e in fuzzy_filter(events, "MUSIC")] == [1]
    assert fuzzy_filter(events, "   ") == []


def test_fuzzy_filter_matches_tags():
    events = [_event(1, "Evening Session", tags=["Photography"])]
    assert [e.id for e in fuzzy_filter(events, "photo")] == [1]


def test_relevance_prefers_followed_then_interests():
    followed = _event(1, "A", organizer_id=7)
    tagged = _event(2, "B", tags=["Dance"], organizer_id=8)
    plain = _event(3, "C", organizer_id=9)
    assert relevance_score(followed, [7], []) == 10
    assert relevance_score(tagged, [7], ["dance"]) == 3
    assert relevance_score(plain, [7], ["dance"]) == 0


def test_order_by_preference_falls_back_to_newest():
    user = SimpleNamespace(followed_organizer_ids=[5], areas_of_interest=["robotics"])
    old_followed = _event(1, "Old Followed", organizer_id=5, age_hours=48)
    new_plain = _event(2, "New Plain", organizer_id=6, age_hours=1)
    newer_plain = _event(3, "Newer Plain", organizer_id=6, age_hours=0)
    tagged = _event(4, "Robotics Expo", tags=["Robotics"], organizer_id=6, age_hours=72)

    ordered = order_by_preference([new_plain, tagged, newer_plain, old_followed], user)
    assert [e.id for e in ordered] == [1, 4, 3, 2]


def test_ticket_ids_are_distinct():
    ids = {make_ticket_id() for _ in range(50)}
    assert len(ids) == 50
    assert all(t.startswith("TKT-") and len(t) == 16 for t in ids)


def test_ticket_payload_shape():
    payload = json.loads(build_ticket_payload("TKT-ABC", 4, 9))
    assert payload == {"ticketId": "TKT-ABC", "eventId": 4, "userId": 9}
    payload = json.loads(build_ticket_payload("TKT-ABC", 4, 9, team_id=2))
    assert payload["teamId"] == 2


def test_parse_scanned_payload():
    assert parse_scanned_payload(build_ticket_payload("TKT-ABC", 4, 9)) == ("TKT-ABC", 9)
    assert parse_scanned_payload('{"userId": "12"}') == (None, 12)


@pytest.mark.parametrize("raw", ["", "plain text", "[1, 2]", "{}", '{"userId": "abc"}', '{"ticketId": 5}'])
def test_parse_scanned_payload_rejects(raw):
    with pytest.raises(InvalidPayload):
        parse_scanned_payload(raw)


def test_qr_data_uri_is_png():
    uri = render_qr_data_uri(build_ticket_payload("TKT-ABC", 1, 1))
    assert uri.startswith("data:image/png;base64,")
    assert len(uri) > 100
