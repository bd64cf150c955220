import pytest
from pydantic import ValidationError as SchemaError
from sqlalchemy import event

from taskhub.database import SessionLocal
from taskhub.errors import AuthorizationError, NotFoundError, ValidationError
from taskhub.messaging_service import crud
from taskhub.messaging_service.models import Message, MessageReaction, MessageStatus
from taskhub.messaging_service.schemas import FileAttachment, ImageAttachment


@pytest.fixture
def pair(db, make_user):
    alice, bob = make_user("Alice"), make_user("Bob")
    conversation, _, _ = crud.start_or_get_conversation(db, alice.id, bob.id)
    return alice, bob, conversation


def _image(url="http://files.test/messages/a.png"):
    return ImageAttachment(url=url, file_name="a.png", file_size=1024, mime_type="image/png")


def test_send_persists_and_updates_summary(db, pair):
    alice, bob, conversation = pair

    message, updated, created = crud.send_message(db, alice.id, conversation_id=conversation.id, text="  hello  ")

    assert created is False
    assert message.text == "hello"
    assert message.receiver_id == bob.id
    assert message.status == MessageStatus.SENT
    assert message.is_read is False
    assert updated.last_message_text == "hello"
    assert updated.last_message_sender_id == alice.id
    assert updated.last_message_at is not None


def test_send_requires_text_or_attachment(db, pair):
    alice, _, conversation = pair
    with pytest.raises(ValidationError):
        crud.send_message(db, alice.id, conversation_id=conversation.id, text="   ")


def test_attachment_only_message_uses_placeholder_summary(db, pair):
    alice, _, conversation = pair

    message, updated, _ = crud.send_message(
        db, alice.id, conversation_id=conversation.id, attachments=[_image()]
    )

    assert message.text == ""
    assert message.attachments == [{
        "url": "http://files.test/messages/a.png",
        "file_name": "a.png",
        "file_size": 1024,
        "mime_type": "image/png",
        "type": "image",
    }]
    assert updated.last_message_text == "[Attachment]"


def test_attachments_must_match_a_known_variant(db, pair):
    alice, _, conversation = pair
    with pytest.raises(SchemaError):
        crud.send_message(
            db, alice.id, conversation_id=conversation.id,
            attachments=[{"type": "sticker", "url": "http://files.test/s.gif"}]
        )


def test_non_participant_cannot_send(db, pair, make_user):
    _, _, conversation = pair
    mallory = make_user()
    with pytest.raises(AuthorizationError):
        crud.send_message(db, mallory.id, conversation_id=conversation.id, text="hi")


def test_send_by_receiver_creates_conversation_once(db, make_user):
    alice, carol = make_user(), make_user()

    first, conversation, created = crud.send_message(db, alice.id, receiver_id=carol.id, text="hi", task_id=4)
    second, same, created_again = crud.send_message(db, carol.id, receiver_id=alice.id, text="hello")

    assert created is True
    assert created_again is False
    assert same.id == conversation.id
    assert conversation.task_id == 4
    assert second.receiver_id == alice.id


def test_reply_must_stay_in_conversation(db, pair, make_user):
    alice, bob, conversation = pair
    carol = make_user()
    other, _, _ = crud.send_message(db, alice.id, receiver_id=carol.id, text="elsewhere")
    original, _, _ = crud.send_message(db, bob.id, conversation_id=conversation.id, text="question")

    reply, _, _ = crud.send_message(db, alice.id, conversation_id=conversation.id, text="answer", reply_to_id=original.id)
    assert reply.reply_to_id == original.id

    with pytest.raises(ValidationError):
        crud.send_message(db, alice.id, conversation_id=conversation.id, text="answer", reply_to_id=other.id)


def test_recipient_offline_message_is_stored_unread(db, pair):
    alice, bob, conversation = pair

    message, _, _ = crud.send_message(db, alice.id, conversation_id=conversation.id, text="ping")

    stored = db.query(Message).filter(Message.id == message.id).one()
    assert stored.status == MessageStatus.SENT
    assert stored.is_read is False
    entry = crud.list_inbox(db, bob.id)[0]
    assert entry["conversation_id"] == conversation.id
    assert entry["unread_count"] >= 1


def test_mark_conversation_read_flips_only_incoming_unread(db, pair):
    alice, bob, conversation = pair
    crud.send_message(db, alice.id, conversation_id=conversation.id, text="one")
    crud.send_message(db, alice.id, conversation_id=conversation.id, text="two")
    crud.send_message(db, bob.id, conversation_id=conversation.id, text="reply")

    _, count = crud.mark_conversation_read(db, conversation.id, bob.id)
    assert count == 2

    incoming = db.query(Message).filter(Message.receiver_id == bob.id).all()
    assert all(m.is_read and m.status == MessageStatus.SEEN and m.read_at for m in incoming)
    outgoing = db.query(Message).filter(Message.receiver_id == alice.id).one()
    assert outgoing.is_read is False

    _, count = crud.mark_conversation_read(db, conversation.id, bob.id)
    assert count == 0


def test_list_messages_is_oldest_first_and_marks_read(db, pair):
    alice, bob, conversation = pair
    for text in ("one", "two", "three"):
        crud.send_message(db, alice.id, conversation_id=conversation.id, text=text)

    messages, seen = crud.list_messages(db, conversation.id, bob.id, page=1, limit=2)
    assert [m.text for m in messages] == ["two", "three"]
    assert seen == 3

    older, seen = crud.list_messages(db, conversation.id, bob.id, page=2, limit=2)
    assert [m.text for m in older] == ["one"]
    assert seen == 0
    assert crud.unread_total(db, bob.id) == 0


def test_soft_delete_hides_only_for_caller(db, pair):
    alice, bob, conversation = pair
    kept, _, _ = crud.send_message(db, alice.id, conversation_id=conversation.id, text="keep")
    hidden, _, _ = crud.send_message(db, alice.id, conversation_id=conversation.id, text="oops")

    crud.soft_delete_message(db, hidden.id, alice.id)
    message = crud.soft_delete_message(db, hidden.id, alice.id)

    assert message.deleted_by == [alice.id]
    alice_view, _ = crud.list_messages(db, conversation.id, alice.id)
    bob_view, _ = crud.list_messages(db, conversation.id, bob.id)
    assert [m.id for m in alice_view] == [kept.id]
    assert [m.id for m in bob_view] == [kept.id, hidden.id]
    assert db.query(Message).filter(Message.id == hidden.id).one().text == "oops"


def test_edit_is_sender_only_and_updates_attachments(db, pair):
    alice, bob, conversation = pair
    first = _image("http://files.test/messages/first.png")
    second = _image("http://files.test/messages/second.png")
    message, _, _ = crud.send_message(db, alice.id, conversation_id=conversation.id, text="draft", attachments=[first, second])

    with pytest.raises(AuthorizationError):
        crud.edit_message(db, message.id, bob.id, text="hijack")

    pdf = FileAttachment(url="http://files.test/messages/quote.pdf", file_name="quote.pdf", mime_type="application/pdf")
    edited = crud.edit_message(
        db, message.id, alice.id,
        text="final",
        attachments_to_remove=["http://files.test/messages/first.png"],
        new_attachments=[pdf],
    )

    assert edited.text == "final"
    assert edited.is_edited is True
    assert edited.edited_at is not None
    assert [a["url"] for a in edited.attachments] == [
        "http://files.test/messages/second.png",
        "http://files.test/messages/quote.pdf",
    ]
    assert edited.attachments[1]["type"] == "file"


def test_edit_cannot_leave_message_empty(db, pair):
    alice, _, conversation = pair
    message, _, _ = crud.send_message(db, alice.id, conversation_id=conversation.id, text="hello")
    with pytest.raises(ValidationError):
        crud.edit_message(db, message.id, alice.id, text="  ")


def test_reaction_toggle_parity(db, pair):
    alice, bob, conversation = pair
    message, _, _ = crud.send_message(db, alice.id, conversation_id=conversation.id, text="nice")

    for calls in range(1, 5):
        crud.toggle_reaction(db, message.id, bob.id, "👍")
        count = db.query(MessageReaction).filter(
            MessageReaction.message_id == message.id,
            MessageReaction.user_id == bob.id,
            MessageReaction.emoji == "👍",
        ).count()
        assert count == calls % 2


def test_reactions_are_keyed_by_user_and_emoji(db, pair):
    alice, bob, conversation = pair
    message, _, _ = crud.send_message(db, alice.id, conversation_id=conversation.id, text="nice")

    crud.toggle_reaction(db, message.id, bob.id, "👍")
    crud.toggle_reaction(db, message.id, alice.id, "👍")
    message = crud.toggle_reaction(db, message.id, bob.id, "🎉")

    assert sorted((r.user_id, r.emoji) for r in message.reactions) == sorted([
        (bob.id, "👍"), (alice.id, "👍"), (bob.id, "🎉"),
    ])


def test_identical_toggle_racing_to_add_keeps_one_reaction(db, pair):
    alice, bob, conversation = pair
    message, _, _ = crud.send_message(db, alice.id, conversation_id=conversation.id, text="nice")
    message_id, bob_id = message.id, bob.id
    toggle_session = SessionLocal()
    raced = []

    def add_same_reaction_first(session, flush_context, instances):
        if not raced:
            other = SessionLocal()
            try:
                other.add(MessageReaction(message_id=message_id, user_id=bob_id, emoji="👍"))
                other.commit()
            finally:
                other.close()
            raced.append(True)

    event.listen(toggle_session, "before_flush", add_same_reaction_first)
    try:
        toggled = crud.toggle_reaction(toggle_session, message.id, bob.id, "👍")
        assert [(r.user_id, r.emoji) for r in toggled.reactions] == [(bob.id, "👍")]
    finally:
        toggle_session.close()

    assert raced == [True]
    assert db.query(MessageReaction).filter(
        MessageReaction.message_id == message.id,
        MessageReaction.user_id == bob.id,
        MessageReaction.emoji == "👍",
    ).count() == 1



def test_outsiders_cannot_touch_messages(db, pair, make_user):
    alice, _, conversation = pair
    mallory = make_user()
    message, _, _ = crud.send_message(db, alice.id, conversation_id=conversation.id, text="private")

    with pytest.raises(NotFoundError):
        crud.toggle_reaction(db, message.id, mallory.id, "👀")
    with pytest.raises(NotFoundError):
        crud.soft_delete_message(db, message.id, mallory.id)
    with pytest.raises(NotFoundError):
        crud.list_messages(db, conversation.id, mallory.id)


def test_only_receiver_marks_single_message_read(db, pair):
    alice, bob, conversation = pair
    message, _, _ = crud.send_message(db, alice.id, conversation_id=conversation.id, text="read me")

    with pytest.raises(NotFoundError):
        crud.mark_message_read(db, message.id, alice.id)

    read = crud.mark_message_read(db, message.id, bob.id)
    assert read.is_read is True
    assert read.status == MessageStatus.SEEN
    assert crud.unread_total(db, bob.id) == 0


def test_search_own_messages(db, pair, make_user):
    alice, bob, conversation = pair
    carol = make_user()
    crud.send_message(db, alice.id, conversation_id=conversation.id, text="Invoice for 100% of the work")
    hidden, _, _ = crud.send_message(db, bob.id, conversation_id=conversation.id, text="invoice attached")
    crud.send_message(db, carol.id, receiver_id=bob.id, text="invoice from carol")
    crud.soft_delete_message(db, hidden.id, alice.id)

    results = crud.search_messages(db, alice.id, "invoice")
    assert [m.text for m in results] == ["Invoice for 100% of the work"]
    assert len(crud.search_messages(db, alice.id, "100%")) == 1
    assert crud.search_messages(db, alice.id, "0_%") == []

    with pytest.raises(ValidationError):
        crud.search_messages(db, alice.id, "  ")
