from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timezone

from chat_client.domain.entities.message import Message
from chat_client.services.timeline import MessageTimeline
from tests.conftest import make_message


def test_add_puts_newest_first_and_ignores_known_ids():
    timeline = MessageTimeline()
    older = make_message(message_id="m1", text="first")
    newer = make_message(message_id="m2", text="second")

    assert timeline.add(older) is True
    assert timeline.add(newer) is True
    assert timeline.add(replace(older, text="again")) is False

    assert [m.id for m in timeline] == ["m2", "m1"]
    assert timeline.get("m1").text == "first"


def test_extend_older_appends_page_and_skips_duplicates():
    timeline = MessageTimeline()
    timeline.add(make_message(message_id="m3"))

    page = [make_message(message_id=mid) for mid in ("m3", "m2", "m1")]
    added = timeline.extend_older(page)

    assert added == 2
    assert [m.id for m in timeline] == ["m3", "m2", "m1"]


def test_confirm_swaps_temp_id_in_place():
    timeline = MessageTimeline()
    timeline.add(make_message(message_id="m1"))
    timeline.add(replace(make_message(message_id="local-abc", text="hi"), pending=True))
    timeline.add(make_message(message_id="m2"))

    confirmed = timeline.confirm("local-abc", "m9")

    assert confirmed is not None
    assert confirmed.pending is False
    assert [m.id for m in timeline] == ["m2", "m9", "m1"]
    assert "local-abc" not in timeline


def test_confirm_after_echo_keeps_a_single_copy():
    timeline = MessageTimeline()
    timeline.add(replace(make_message(message_id="local-abc", text="hi"), pending=True))
    echo = make_message(message_id="m9", text="hi", created_at=datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc))
    timeline.add(echo)

    confirmed = timeline.confirm("local-abc", "m9")

    assert confirmed == echo
    assert [m.id for m in timeline] == ["m9"]


def test_confirm_unknown_temp_id_is_a_no_op():
    timeline = MessageTimeline()
    timeline.add(make_message(message_id="m1"))

    assert timeline.confirm("local-missing", "m2") is None
    assert [m.id for m in timeline] == ["m1"]


def test_listeners_receive_snapshots_on_change_only():
    timeline = MessageTimeline()
    snapshots: list[tuple[Message, ...]] = []
    timeline.subscribe(snapshots.append)

    timeline.add(make_message(message_id="m1"))
    timeline.add(make_message(message_id="m1"))
    timeline.remove("m1")
    timeline.remove("m1")
    timeline.clear()

    assert [len(s) for s in snapshots] == [1, 0]
