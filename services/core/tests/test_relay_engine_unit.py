"""Unit tests for the relay engine."""

import asyncio

import pytest

from topicdesk_core.domain.errors import NotFoundError
from topicdesk_core.domain.services.relay import (
    CREATE_FAILED_NOTICE,
    FORWARD_FAILED_NOTICE,
    ORIGINAL_UNAVAILABLE,
    RECREATE_FAILED_NOTICE,
    THREAD_NAME_MAX_LENGTH,
    UNSUPPORTED_CONTENT_NOTICE,
    ForwardOutcome,
    RelayEngine,
    media_reference,
    thread_name,
)
from topicdesk_core.domain.services.sessions import SessionStore, utc_from_timestamp
from topicdesk_core.providers.base import MediaKind
from topicdesk_core.providers.telegram.schemas import User
from tests.factories import (
    ADMIN_GROUP_ID,
    BASE_DATE,
    USER_ID,
    FakeTransport,
    create_user_session,
    group_message,
    private_message,
    user_payload,
)

OLD_THREAD = "55"


class TestThreadNaming:
    """Tests for thread names."""

    def test_name_and_id(self):
        user = User(id=42, first_name="Alice", last_name="Smith")
        assert thread_name(user) == "Alice Smith | 42"

    def test_truncated(self):
        user = User(id=42, first_name="A" * 300)
        assert len(thread_name(user)) == THREAD_NAME_MAX_LENGTH


class TestForwarding:
    """Tests for forwarding into relay threads."""

    @pytest.mark.asyncio
    async def test_first_message_creates_thread(
        self, relay: RelayEngine, transport: FakeTransport, store: SessionStore
    ):
        session = store.get_or_create(USER_ID)

        outcome = await relay.forward(private_message("hi"), session)

        assert outcome == ForwardOutcome.FORWARDED
        assert [name for name, _ in transport.calls] == [
            "create_forum_topic",
            "send_message",
            "copy_message",
        ]
        assert transport.topics["100"] == "Alice | 42"
        assert store.get(USER_ID).thread_id == "100"
        assert store.get(USER_ID).profile_json["handle"] == "@alice"

        card = transport.calls_to("send_message")[0]
        assert card["thread_id"] == "100"
        assert "<code>42</code>" in card["text"]
        buttons = [b["callback_data"] for row in card["reply_markup"]["inline_keyboard"] for b in row]
        assert buttons == ["block:42", "pin_card:42"]

        copy = transport.calls_to("copy_message")[0]
        assert copy == {
            "chat_id": ADMIN_GROUP_ID,
            "from_chat_id": 42,
            "message_id": 1,
            "thread_id": "100",
        }

    @pytest.mark.asyncio
    async def test_existing_thread_reused(
        self, relay: RelayEngine, transport: FakeTransport, db_session
    ):
        session = create_user_session(db_session, thread_id=OLD_THREAD)

        outcome = await relay.forward(private_message("hi"), session)

        assert outcome == ForwardOutcome.FORWARDED
        assert transport.calls_to("create_forum_topic") == []
        assert transport.calls_to("copy_message")[0]["thread_id"] == OLD_THREAD

    @pytest.mark.asyncio
    async def test_text_recorded_in_ledger(
        self, relay: RelayEngine, db_session, store: SessionStore
    ):
        session = create_user_session(db_session, thread_id=OLD_THREAD)

        await relay.forward(private_message("A", message_id=9), session)

        entry = store.get_message(USER_ID, 9)
        assert entry.text == "A"
        assert entry.sent_at == utc_from_timestamp(BASE_DATE)

    @pytest.mark.asyncio
    async def test_deleted_thread_is_recreated(
        self, relay: RelayEngine, transport: FakeTransport, db_session, store: SessionStore
    ):
        session = create_user_session(db_session, thread_id=OLD_THREAD)
        transport.delete_thread(OLD_THREAD)

        outcome = await relay.forward(private_message("hi"), session)

        assert outcome == ForwardOutcome.FORWARDED
        assert [c["thread_id"] for c in transport.calls_to("copy_message")] == [OLD_THREAD, "100"]
        assert len(transport.calls_to("create_forum_topic")) == 1
        assert store.get(USER_ID).thread_id == "100"
        assert store.get_user_by_thread(OLD_THREAD) is None
        assert store.get_user_by_thread("100").user_id == USER_ID

    @pytest.mark.asyncio
    async def test_retry_failure_notifies_and_clears(
        self, relay: RelayEngine, transport: FakeTransport, db_session, store: SessionStore
    ):
        session = create_user_session(db_session, thread_id=OLD_THREAD)
        transport.delete_thread(OLD_THREAD)
        transport.delete_thread("100")

        outcome = await relay.forward(private_message("hi"), session)

        assert outcome == ForwardOutcome.RETRY_FAILED
        assert len(transport.calls_to("copy_message")) == 2
        assert len(transport.calls_to("create_forum_topic")) == 1
        assert transport.texts_to(USER_ID) == [FORWARD_FAILED_NOTICE]
        assert store.get(USER_ID).thread_id is None
        assert store.get_message(USER_ID, 1) is None

    @pytest.mark.asyncio
    async def test_creation_failure_reported_without_retry(
        self, relay: RelayEngine, transport: FakeTransport, store: SessionStore
    ):
        session = store.get_or_create(USER_ID)
        transport.fail_next("create_forum_topic", "Bad Request: not enough rights to create a topic")

        outcome = await relay.forward(private_message("hi"), session)

        assert outcome == ForwardOutcome.CREATE_FAILED
        assert len(transport.calls_to("create_forum_topic")) == 1
        assert transport.calls_to("copy_message") == []
        assert transport.texts_to(USER_ID) == [CREATE_FAILED_NOTICE]
        assert store.get(USER_ID).thread_id is None

    @pytest.mark.asyncio
    async def test_recreation_failure(
        self, relay: RelayEngine, transport: FakeTransport, db_session, store: SessionStore
    ):
        session = create_user_session(db_session, thread_id=OLD_THREAD)
        transport.delete_thread(OLD_THREAD)
        transport.fail_next("create_forum_topic")

        outcome = await relay.forward(private_message("hi"), session)

        assert outcome == ForwardOutcome.RECREATE_FAILED
        assert transport.texts_to(USER_ID) == [RECREATE_FAILED_NOTICE]
        assert store.get(USER_ID).thread_id is None

    @pytest.mark.asyncio
    async def test_card_failure_keeps_binding(
        self, relay: RelayEngine, transport: FakeTransport, store: SessionStore
    ):
        session = store.get_or_create(USER_ID)
        transport.fail_next("send_message")

        outcome = await relay.forward(private_message("hi"), session)

        assert outcome == ForwardOutcome.FORWARDED
        assert store.get(USER_ID).thread_id == "100"

    @pytest.mark.asyncio
    async def test_concurrent_first_messages_bind_one_thread(
        self, relay: RelayEngine, transport: FakeTransport, store: SessionStore
    ):
        session = store.get_or_create(USER_ID)

        await asyncio.gather(
            relay.forward(private_message("one", message_id=1), session),
            relay.forward(private_message("two", message_id=2), session),
        )

        # Creation is not idempotent: both events create a thread
        assert len(transport.calls_to("create_forum_topic")) == 2
        bound = store.get(USER_ID).thread_id
        assert bound in {"100", "101"}
        orphan = ({"100", "101"} - {bound}).pop()
        assert store.get_user_by_thread(orphan) is None
        assert store.get_user_by_thread(bound).user_id == USER_ID

    @pytest.mark.asyncio
    async def test_concurrent_users_get_distinct_threads(
        self, relay: RelayEngine, store: SessionStore
    ):
        alice = store.get_or_create("42")
        bob = store.get_or_create("43")

        await asyncio.gather(
            relay.forward(private_message("hi", user_id="42"), alice),
            relay.forward(private_message("hi", user_id="43"), bob),
        )

        assert store.get("42").thread_id != store.get("43").thread_id
        assert store.get_user_by_thread(store.get("42").thread_id).user_id == "42"
        assert store.get_user_by_thread(store.get("43").thread_id).user_id == "43"


class TestEditReconciliation:
    """Tests for edit notices."""

    @pytest.mark.asyncio
    async def test_edit_reports_original_and_new(
        self, relay: RelayEngine, transport: FakeTransport, db_session, store: SessionStore
    ):
        session = create_user_session(db_session, thread_id=OLD_THREAD)
        await relay.forward(private_message("A", message_id=9), session)

        report = await relay.reconcile_edit(private_message("B", message_id=9))

        assert report.original_text == "A"
        assert report.original_sent_at == utc_from_timestamp(BASE_DATE)
        assert report.new_text == "B"

        notice = transport.thread_texts(OLD_THREAD)[-1]
        assert "<code>A</code>" in notice
        assert notice.endswith("B")

        entry = store.get_message(USER_ID, 9)
        assert entry.text == "B"
        assert entry.sent_at == utc_from_timestamp(BASE_DATE)

    @pytest.mark.asyncio
    async def test_second_edit_diffs_against_first(self, relay: RelayEngine, db_session):
        session = create_user_session(db_session, thread_id=OLD_THREAD)
        await relay.forward(private_message("A", message_id=9), session)

        await relay.reconcile_edit(private_message("B", message_id=9))
        report = await relay.reconcile_edit(private_message("C", message_id=9))

        assert report.original_text == "B"
        assert report.new_text == "C"

    @pytest.mark.asyncio
    async def test_edit_without_ledger_entry(self, relay: RelayEngine, db_session):
        create_user_session(db_session, thread_id=OLD_THREAD)

        report = await relay.reconcile_edit(private_message("B", message_id=77))

        assert report.original_text == ORIGINAL_UNAVAILABLE
        assert report.original_sent_at is None

    @pytest.mark.asyncio
    async def test_edit_without_thread_ignored(
        self, relay: RelayEngine, transport: FakeTransport, db_session
    ):
        create_user_session(db_session)

        assert await relay.reconcile_edit(private_message("B")) is None
        assert transport.calls == []


class TestProfileRefresh:
    """Tests for profile-change handling."""

    @pytest.mark.asyncio
    async def test_rename_and_new_card(
        self, relay: RelayEngine, transport: FakeTransport, db_session, store: SessionStore
    ):
        session = create_user_session(
            db_session,
            thread_id=OLD_THREAD,
            profile={"name": "Alice", "handle": "@alice", "first_seen_at": BASE_DATE},
        )
        user = User.model_validate(user_payload(first_name="Alice", last_name="Smith", username="asmith"))

        assert await relay.refresh_profile(session, user) is True

        rename = transport.calls_to("edit_forum_topic")[0]
        assert rename["thread_id"] == OLD_THREAD
        assert rename["name"] == "Alice Smith | 42"
        assert len(transport.thread_texts(OLD_THREAD)) == 2
        assert store.get(USER_ID).profile_json == {
            "name": "Alice Smith",
            "handle": "@asmith",
            "first_seen_at": BASE_DATE,
        }

    @pytest.mark.asyncio
    async def test_no_thread_no_action(
        self, relay: RelayEngine, transport: FakeTransport, db_session
    ):
        session = create_user_session(db_session)
        user = User(id=42, first_name="Bob")

        assert await relay.refresh_profile(session, user) is False
        assert transport.calls == []
        assert transport.calls_to("create_forum_topic") == []


class TestAdminReplies:
    """Tests for relaying admin thread messages to users."""

    @pytest.mark.asyncio
    async def test_text_reply_sent(self, relay: RelayEngine, transport: FakeTransport, db_session):
        create_user_session(db_session, thread_id=OLD_THREAD)

        assert await relay.relay_admin_reply(group_message(OLD_THREAD, "hello there")) is True
        assert transport.texts_to(USER_ID) == ["hello there"]

    @pytest.mark.asyncio
    async def test_media_reply_copied(
        self, relay: RelayEngine, transport: FakeTransport, db_session
    ):
        create_user_session(db_session, thread_id=OLD_THREAD)
        message = group_message(OLD_THREAD, text=None, document={"file_id": "doc-1"})

        assert await relay.relay_admin_reply(message) is True
        copy = transport.calls_to("copy_message")[0]
        assert copy["chat_id"] == USER_ID
        assert copy["message_id"] == 700

    @pytest.mark.asyncio
    async def test_unknown_thread_discarded(self, relay: RelayEngine, transport: FakeTransport):
        assert await relay.relay_admin_reply(group_message("999")) is False
        assert transport.calls == []

    @pytest.mark.asyncio
    async def test_voice_fallback_sends_exactly_one(
        self, relay: RelayEngine, transport: FakeTransport, db_session
    ):
        create_user_session(db_session, thread_id=OLD_THREAD)
        transport.fail_next("copy_message")
        message = group_message(OLD_THREAD, text=None, voice={"file_id": "voice-1"})

        assert await relay.relay_admin_reply(message) is True

        media = transport.calls_to("send_media")
        assert len(media) == 1
        assert media[0]["kind"] == MediaKind.VOICE
        assert media[0]["file_id"] == "voice-1"
        assert transport.texts_to(USER_ID) == []

    @pytest.mark.asyncio
    async def test_photo_fallback_uses_largest_size(
        self, relay: RelayEngine, transport: FakeTransport, db_session
    ):
        create_user_session(db_session, thread_id=OLD_THREAD)
        transport.fail_next("copy_message")
        message = group_message(
            OLD_THREAD,
            text=None,
            caption="look",
            photo=[{"file_id": "small"}, {"file_id": "large"}],
        )

        await relay.relay_admin_reply(message)

        media = transport.calls_to("send_media")[0]
        assert media["file_id"] == "large"
        assert media["caption"] == "look"

    @pytest.mark.asyncio
    async def test_unsupported_content_notice(
        self, relay: RelayEngine, transport: FakeTransport, db_session
    ):
        create_user_session(db_session, thread_id=OLD_THREAD)
        transport.fail_next("copy_message")
        message = group_message(OLD_THREAD, text=None, poll={"id": "p1", "question": "?"})

        assert await relay.relay_admin_reply(message) is True
        assert transport.texts_to(USER_ID) == [UNSUPPORTED_CONTENT_NOTICE]

    def test_animation_keeps_its_type(self):
        message = group_message(
            OLD_THREAD, text=None, animation={"file_id": "gif"}, document={"file_id": "gif"}
        )
        assert media_reference(message) == (MediaKind.ANIMATION, "gif")


class TestCardControls:
    """Tests for block/unblock/pin buttons on the profile card."""

    @pytest.mark.asyncio
    async def test_block_and_unblock(
        self, relay: RelayEngine, transport: FakeTransport, db_session, store: SessionStore
    ):
        create_user_session(db_session, thread_id=OLD_THREAD, block_count=2)
        card = group_message(OLD_THREAD, text="card", message_id=300, is_bot=True)

        await relay.block_user(USER_ID, card)

        assert store.get(USER_ID).is_blocked is True
        markup = transport.calls_to("edit_message_reply_markup")[-1]
        assert markup["message_id"] == 300
        assert markup["reply_markup"]["inline_keyboard"][0][0]["callback_data"] == "unblock:42"
        assert "blocked" in transport.thread_texts(OLD_THREAD)[-1]

        await relay.unblock_user(USER_ID, card)

        session = store.get(USER_ID)
        assert session.is_blocked is False
        assert session.block_count == 0
        markup = transport.calls_to("edit_message_reply_markup")[-1]
        assert markup["reply_markup"]["inline_keyboard"][0][0]["callback_data"] == "block:42"

    @pytest.mark.asyncio
    async def test_block_unknown_user(self, relay: RelayEngine):
        card = group_message(OLD_THREAD, message_id=300)

        with pytest.raises(NotFoundError):
            await relay.block_user("404", card)

    @pytest.mark.asyncio
    async def test_pin_success(self, relay: RelayEngine, transport: FakeTransport):
        card = group_message(OLD_THREAD, message_id=300)

        assert await relay.pin_card("cbq-1", card) is True

        pin = transport.calls_to("pin_chat_message")[0]
        assert pin["message_id"] == 300
        assert pin["thread_id"] == OLD_THREAD
        assert transport.calls_to("answer_callback_query")[0]["show_alert"] is False

    @pytest.mark.asyncio
    async def test_pin_failure_alert_includes_reason(
        self, relay: RelayEngine, transport: FakeTransport
    ):
        transport.fail_next("pin_chat_message", "Bad Request: not enough rights to pin a message")
        card = group_message(OLD_THREAD, message_id=300)

        assert await relay.pin_card("cbq-1", card) is False

        answer = transport.calls_to("answer_callback_query")[0]
        assert answer["show_alert"] is True
        assert "not enough rights to pin a message" in answer["text"]
