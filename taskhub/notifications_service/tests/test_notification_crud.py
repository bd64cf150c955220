import pytest

from taskhub.errors import NotFoundError, ValidationError
from taskhub.notifications_service import crud
from taskhub.notifications_service.models import Notification, NotificationType


@pytest.fixture
def inbox(db, make_user):
    user = make_user()
    crud.create_notification(db, user.id, NotificationType.MESSAGE, "Bob sent you a message", link="/messages/3")
    crud.create_notification(db, user.id, NotificationType.PROPOSAL, "New proposal", link="/tasks/12")
    crud.create_notification(db, user.id, NotificationType.PROPOSAL, "Another proposal", link="/tasks/12")
    return user


def test_list_is_newest_first_with_counts(db, inbox):
    page = crud.get_notifications(db, inbox.id, page=1, limit=2)

    assert [n.message for n in page["notifications"]] == ["Another proposal", "New proposal"]
    assert page["total"] == 3
    assert page["unread_count"] == 3
    assert page["total_pages"] == 2

    second = crud.get_notifications(db, inbox.id, page=2, limit=2)
    assert [n.message for n in second["notifications"]] == ["Bob sent you a message"]


def test_list_filters_by_type_and_unread(db, inbox):
    proposals = crud.get_notifications(db, inbox.id, type="proposal")
    assert {n.type for n in proposals["notifications"]} == {NotificationType.PROPOSAL}
    assert proposals["total"] == 2

    everything = crud.get_notifications(db, inbox.id, type="all")
    assert everything["total"] == 3

    first = proposals["notifications"][0]
    crud.mark_notification_read(db, first.id, inbox.id)
    unread = crud.get_notifications(db, inbox.id, unread_only=True)
    assert first.id not in [n.id for n in unread["notifications"]]
    assert unread["unread_count"] == 2


def test_notifications_belong_to_their_owner(db, inbox, make_user):
    stranger = make_user()
    notification = db.query(Notification).filter(Notification.user_id == inbox.id).first()

    with pytest.raises(NotFoundError):
        crud.mark_notification_read(db, notification.id, stranger.id)
    with pytest.raises(NotFoundError):
        crud.delete_notification(db, notification.id, stranger.id)
    assert crud.get_notifications(db, stranger.id)["total"] == 0


def test_mark_all_read_returns_count(db, inbox):
    assert crud.mark_all_read(db, inbox.id) == 3
    assert crud.mark_all_read(db, inbox.id) == 0
    assert crud.get_unread_count(db, inbox.id) == 0


def test_mark_read_by_link_only_touches_exact_link(db, inbox):
    assert crud.mark_read_by_link(db, inbox.id, "/tasks/12") == 2
    assert crud.get_unread_count(db, inbox.id) == 1

    for link in ("", "/tasks/", "/tasks/12/edit", "/admin/1", "https://evil.test/tasks/1"):
        with pytest.raises(ValidationError):
            crud.mark_read_by_link(db, inbox.id, link)


def test_deleted_notifications_are_hidden(db, inbox):
    ids = [n.id for n in crud.get_notifications(db, inbox.id)["notifications"]]

    crud.delete_notification(db, ids[0], inbox.id)
    assert crud.get_notifications(db, inbox.id)["total"] == 2

    assert crud.delete_notifications(db, inbox.id, ids[1:2]) == 1
    assert crud.get_notifications(db, inbox.id)["total"] == 1

    with pytest.raises(ValidationError):
        crud.delete_notifications(db, inbox.id, [])

    assert crud.delete_all_notifications(db, inbox.id) == 1
    assert crud.get_notifications(db, inbox.id)["total"] == 0
    assert crud.get_unread_count(db, inbox.id) == 0
    # rows stay for auditing
    assert db.query(Notification).filter(Notification.user_id == inbox.id).count() == 3
