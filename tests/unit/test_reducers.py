from __future__ import annotations

from chat_sync.domain.entities.presence import PresenceStatus, TypingStatus
from chat_sync.domain.events.inbound import UnknownEvent
from chat_sync.domain.events.message_received import NewMessage
from chat_sync.domain.events.presence_changed import PresenceSnapshot, PresenceUpdate
from chat_sync.domain.events.reaction_changed import ReactionDelta
from chat_sync.domain.events.typing_changed import TypingNotice
from chat_sync.services import reducers
from tests.conftest import make_message, make_reaction, make_user


def _ids(state) -> list[str]:
    return [m.id for m in state.messages]


def _online(user_id: str, is_online: bool = True) -> PresenceStatus:
    return PresenceStatus(user_id=user_id, user=make_user(user_id), is_online=is_online)


def test_merge_history_is_idempotent():
    page = [
        make_message("a", created_at="10:00"),
        make_message("b", created_at="10:01"),
        make_message("c", created_at="10:02"),
    ]
    once = reducers.merge_history(reducers.empty_state("C1"), page)
    twice = reducers.merge_history(once, page)

    assert _ids(twice) == ["a", "b", "c"]
    assert twice is once
    assert twice.message_ids == frozenset({"a", "b", "c"})


def test_merge_history_first_seen_wins():
    state = reducers.merge_history(
        reducers.empty_state("C1"), [make_message("a", content="original")],
    )
    state = reducers.merge_history(state, [make_message("a", content="edited")])

    assert state.messages[0].content == "original"


def test_merge_history_splices_older_page_before_newer():
    state = reducers.merge_history(reducers.empty_state("C1"), [
        make_message("c", created_at="10:02"),
        make_message("d", created_at="10:03"),
    ])
    state = reducers.merge_history(state, [
        make_message("a", created_at="10:00"),
        make_message("b", created_at="10:01"),
    ])

    assert _ids(state) == ["a", "b", "c", "d"]


def test_merge_history_sorts_equal_timestamps_by_id():
    state = reducers.merge_history(reducers.empty_state("C1"), [
        make_message("y", created_at="10:00"),
        make_message("x", created_at="10:00"),
    ])

    assert _ids(state) == ["x", "y"]


def test_history_then_realtime_preserves_order():
    state = reducers.merge_history(reducers.empty_state("C1"), [
        make_message("A", created_at="10:00"),
        make_message("B", created_at="10:01"),
        make_message("C", created_at="10:02"),
    ])
    state = reducers.apply_new_message(state, make_message("D", created_at="10:03"))
    state = reducers.apply_new_message(state, make_message("E", created_at="10:04"))

    assert _ids(state) == ["A", "B", "C", "D", "E"]


def test_realtime_appends_in_delivery_order_without_resorting():
    state = reducers.apply_new_message(reducers.empty_state("C1"), make_message("late", created_at="10:05"))
    state = reducers.apply_new_message(state, make_message("skewed", created_at="09:00"))

    assert _ids(state) == ["late", "skewed"]


def test_realtime_duplicate_is_ignored():
    state = reducers.apply_new_message(reducers.empty_state("C1"), make_message("m1"))
    again = reducers.apply_new_message(state, make_message("m1", content="dup"))

    assert again is state
    assert len(again.messages) == 1


def test_history_after_realtime_keeps_realtime_copy():
    state = reducers.apply_new_message(reducers.empty_state("C1"), make_message("m3", created_at="10:02"))
    state = reducers.merge_history(state, [
        make_message("m1", created_at="10:00"),
        make_message("m3", created_at="10:02", content="from history"),
    ])

    assert _ids(state) == ["m1", "m3"]
    assert state.get_message("m3").content == "hello"


def test_reaction_round_trip_restores_reactions():
    existing = make_reaction(reaction_id="r0", emoji="🎉", user_id="7")
    state = reducers.merge_history(
        reducers.empty_state("C1"), [make_message("M", reactions=(existing,))],
    )
    thumbs = make_reaction(reaction_id="r1", emoji="👍", user_id="U")

    added = reducers.apply_reaction(state, ReactionDelta(message_id="M", reaction=thumbs, action="added"))
    removed = reducers.apply_reaction(added, ReactionDelta(message_id="M", reaction=thumbs, action="removed"))

    assert added.get_message("M").reactions == (existing, thumbs)
    assert removed.get_message("M").reactions == (existing,)


def test_same_reaction_twice_is_stored_once():
    state = reducers.merge_history(reducers.empty_state("C1"), [make_message("M")])
    thumbs = make_reaction(reaction_id="r1", user_id="U")
    delta = ReactionDelta(message_id="M", reaction=thumbs, action="added")

    state = reducers.apply_reaction(state, delta)
    again = reducers.apply_reaction(state, delta)

    assert again is state
    assert len(state.get_message("M").reactions) == 1


def test_reaction_equivalence_by_emoji_and_user_when_id_missing():
    state = reducers.merge_history(reducers.empty_state("C1"), [
        make_message("M", reactions=(make_reaction(reaction_id="r1", user_id="U"),)),
    ])
    anonymous = make_reaction(reaction_id=None, user_id="U")

    removed = reducers.apply_reaction(
        state, ReactionDelta(message_id="M", reaction=anonymous, action="removed"),
    )

    assert removed.get_message("M").reactions == ()


def test_unknown_action_removes():
    state = reducers.merge_history(reducers.empty_state("C1"), [
        make_message("M", reactions=(make_reaction(),)),
    ])

    out = reducers.apply_reaction(
        state, ReactionDelta(message_id="M", reaction=make_reaction(), action="toggled"),
    )

    assert out.get_message("M").reactions == ()


def test_reaction_for_unknown_message_is_noop():
    state = reducers.merge_history(reducers.empty_state("C1"), [make_message("M")])

    out = reducers.apply_reaction(
        state, ReactionDelta(message_id="ghost", reaction=make_reaction(), action="added"),
    )
    missing = reducers.apply_reaction(
        state, ReactionDelta(message_id="M", reaction=None, action="added"),
    )

    assert out is state
    assert missing is state


def test_typing_upserts_and_clears():
    state = reducers.empty_state("C1")
    on = TypingNotice(status=TypingStatus(user_id="U", user=make_user("U"), is_typing=True))
    off = TypingNotice(status=TypingStatus(user_id="U", user=None, is_typing=False))

    state = reducers.apply_typing(state, on)
    assert list(state.typing) == ["U"]

    state = reducers.apply_typing(state, off)
    assert dict(state.typing) == {}

    assert reducers.apply_typing(state, off) is state


def test_presence_last_write_wins():
    state = reducers.apply_presence(reducers.empty_state("C1"), PresenceUpdate(status=_online("U1")))
    state = reducers.apply_presence(state, PresenceUpdate(status=_online("U1", is_online=False)))

    assert dict(state.online) == {}


def test_presence_snapshot_replaces_online_set():
    state = reducers.empty_state("C1")
    state = reducers.apply_presence(state, PresenceUpdate(status=_online("U1")))
    state = reducers.apply_presence(state, PresenceUpdate(status=_online("U2")))

    state = reducers.apply_presence_snapshot(state, PresenceSnapshot(statuses=(_online("U1"),)))

    assert set(state.online) == {"U1"}


def test_presence_snapshot_ignores_offline_entries():
    snapshot = PresenceSnapshot(statuses=(_online("U1"), _online("U2", is_online=False)))

    state = reducers.apply_presence_snapshot(reducers.empty_state("C1"), snapshot)

    assert set(state.online) == {"U1"}


def test_reduce_dispatches_on_kind():
    state = reducers.empty_state("C1")

    state = reducers.reduce(state, NewMessage(message=make_message("m1")))

    assert _ids(state) == ["m1"]
    assert reducers.reduce(state, UnknownEvent(reason="noise")) is state


def test_reducers_do_not_mutate_input():
    before = reducers.merge_history(reducers.empty_state("C1"), [make_message("M")])

    reducers.apply_new_message(before, make_message("N"))
    reducers.apply_reaction(before, ReactionDelta(message_id="M", reaction=make_reaction(), action="added"))

    assert _ids(before) == ["M"]
    assert before.get_message("M").reactions == ()
