from __future__ import annotations

from chat_sync.domain.events.message_received import NewMessage
from chat_sync.services.conversation_store import ConversationStore
from tests.conftest import make_message


def test_listener_sees_new_state():
    store = ConversationStore("C1")
    seen = []
    store.add_listener(seen.append)

    store.dispatch(NewMessage(message=make_message("m1")))

    assert len(seen) == 1
    assert seen[0] is store.state
    assert [m.id for m in seen[0].messages] == ["m1"]


def test_no_notification_when_nothing_changes():
    store = ConversationStore("C1")
    store.merge_history([make_message("m1")])
    seen = []
    store.add_listener(seen.append)

    store.merge_history([make_message("m1")])
    store.dispatch(NewMessage(message=make_message("m1")))

    assert seen == []


def test_remove_listener():
    store = ConversationStore("C1")
    seen = []
    remove = store.add_listener(seen.append)
    remove()
    remove()

    store.dispatch(NewMessage(message=make_message("m1")))

    assert seen == []


def test_failing_listener_does_not_block_others():
    store = ConversationStore("C1")
    seen = []

    def broken(_state):
        raise RuntimeError("boom")

    store.add_listener(broken)
    store.add_listener(seen.append)

    store.dispatch(NewMessage(message=make_message("m1")))

    assert len(seen) == 1


def test_reset_and_clear():
    store = ConversationStore("C1")
    store.merge_history([make_message("m1")])

    store.reset("C2")
    assert store.conversation_id == "C2"
    assert store.state.messages == ()

    store.merge_history([make_message("m2")])
    store.clear()
    assert store.conversation_id == ""
    assert store.state.message_ids == frozenset()
