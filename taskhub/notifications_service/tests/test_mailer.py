import json

import httpx
import pytest
import respx

from taskhub.notifications_service import mailer
from taskhub.notifications_service.mailer import MailerError


@pytest.fixture
def resend():
    with respx.mock(assert_all_called=False) as mock:
        yield mock


def test_no_api_key_skips_sending(resend):
    route = resend.post(mailer.RESEND_API_URL)

    assert mailer.send_email("dana@example.com", "Hi", "<p>Hi</p>", api_key="") is True
    assert not route.called


def test_sends_through_provider(resend):
    route = resend.post(mailer.RESEND_API_URL).mock(return_value=httpx.Response(200, json={"id": "em_1"}))

    assert mailer.send_email("dana@example.com", "Welcome", "<p>Hi</p>", api_key="re_test") is True

    request = route.calls.last.request
    assert request.headers["Authorization"] == "Bearer re_test"
    payload = json.loads(request.content)
    assert payload["to"] == ["dana@example.com"]
    assert payload["subject"] == "Welcome"
    assert payload["html"] == "<p>Hi</p>"
    assert payload["from"] == mailer.EMAIL_FROM


def test_provider_rejection_raises(resend):
    resend.post(mailer.RESEND_API_URL).mock(return_value=httpx.Response(422, json={"message": "invalid to"}))

    with pytest.raises(MailerError) as excinfo:
        mailer.send_email("not-an-address", "Hi", "<p>Hi</p>", api_key="re_test")
    assert "422" in excinfo.value.detail
    assert excinfo.value.status_code == 503


def test_unreachable_provider_raises(resend):
    resend.post(mailer.RESEND_API_URL).mock(side_effect=httpx.ConnectError("refused"))

    with pytest.raises(MailerError):
        mailer.send_email("dana@example.com", "Hi", "<p>Hi</p>", api_key="re_test")
