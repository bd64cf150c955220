import pytest

from taskhub.errors import NotFoundError
from taskhub.user_service import crud


def test_defaults_for_unknown_user(db):
    prefs = crud.get_preferences(db, 4242)
    assert prefs.email_notifications is True
    assert prefs.in_app_notifications is True
    assert prefs.message_notifications is True


def test_update_only_touches_known_boolean_flags(db, make_user):
    user = make_user()

    prefs = crud.update_preferences(db, user.id, task_updates=False, email="x@example.com", system_updates="no")

    assert prefs.task_updates is False
    assert prefs.system_updates is True
    db.refresh(user)
    assert user.email != "x@example.com"


def test_update_unknown_user(db):
    with pytest.raises(NotFoundError):
        crud.update_preferences(db, 4242, task_updates=False)


def test_display_names(db, make_user):
    named = make_user("Dana", "Reyes")
    blank = make_user("", "")

    assert crud.get_display_name(db, named.id) == "Dana Reyes"
    assert crud.get_display_name(db, blank.id) == f"User #{blank.id}"
    assert crud.get_display_name(db, 4242) == "User #4242"
    assert set(crud.get_users(db, [named.id, blank.id, 4242])) == {named.id, blank.id}
    assert crud.get_users(db, []) == {}
