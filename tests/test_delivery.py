import json
import smtplib

import httpx
import pytest

from app.services.delivery import SMTPEmailProvider, TermiiSMSProvider
from app.services.exceptions import DeliveryError

TERMII_URL = "https://termii.test/api/sms/send"


def _termii(handler) -> TermiiSMSProvider:
    return TermiiSMSProvider(
        api_key="key",
        sender_id="Bareloft",
        api_url=TERMII_URL,
        client=httpx.Client(transport=httpx.MockTransport(handler)),
    )


def test_termii_sends_plain_sms():
    captured = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["url"] = str(request.url)
        captured["body"] = json.loads(request.content)
        return httpx.Response(200, json={"message_id": "m-1", "message": "Successfully Sent", "balance": 9.5})

    result = _termii(handler).send_text(phone="+2348012345678", message="Your code is 123456")

    assert captured["url"] == TERMII_URL
    assert captured["body"] == {
        "to": "2348012345678",
        "from": "Bareloft",
        "sms": "Your code is 123456",
        "type": "plain",
        "channel": "dnd",
        "api_key": "key",
    }
    assert result.provider == "termii"
    assert result.provider_message_id == "m-1"
    assert result.meta == {"balance": 9.5}


def test_termii_http_error_raises_delivery_error():
    provider = _termii(lambda request: httpx.Response(401, json={"message": "bad key"}))

    with pytest.raises(DeliveryError):
        provider.send_text(phone="+2348012345678", message="hi")


def test_termii_network_error_raises_delivery_error():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    with pytest.raises(DeliveryError):
        _termii(handler).send_text(phone="+2348012345678", message="hi")


def test_termii_missing_message_id_is_a_failure():
    provider = _termii(lambda request: httpx.Response(200, json={"message": "queued?"}))

    with pytest.raises(DeliveryError):
        provider.send_text(phone="+2348012345678", message="hi")


class FakeSMTP:
    instances: list["FakeSMTP"] = []
    fail_on_send = False

    def __init__(self, host, port, **kwargs):
        self.host = host
        self.port = port
        self.started_tls = False
        self.logged_in = None
        self.sent = []
        FakeSMTP.instances.append(self)

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def starttls(self, context=None):
        self.started_tls = True

    def login(self, user, password):
        self.logged_in = (user, password)

    def sendmail(self, from_addr, to_addr, message):
        if self.fail_on_send:
            raise smtplib.SMTPRecipientsRefused({to_addr: (550, b"no such user")})
        self.sent.append((from_addr, to_addr, message))


@pytest.fixture()
def fake_smtp(monkeypatch):
    FakeSMTP.instances = []
    FakeSMTP.fail_on_send = False
    monkeypatch.setattr(smtplib, "SMTP", FakeSMTP)
    monkeypatch.setattr(smtplib, "SMTP_SSL", FakeSMTP)
    return FakeSMTP


def test_smtp_sends_with_starttls(fake_smtp):
    provider = SMTPEmailProvider(host="smtp.test", user="mailer", password="pw", from_email="no-reply@bareloft.test")

    result = provider.send_email(email="ada@example.com", subject="Your code", body="123456")

    server = fake_smtp.instances[0]
    assert server.started_tls is True
    assert server.logged_in == ("mailer", "pw")
    assert server.sent[0][:2] == ("no-reply@bareloft.test", "ada@example.com")
    assert result.provider == "smtp"


def test_smtp_failure_raises_delivery_error(fake_smtp):
    fake_smtp.fail_on_send = True
    provider = SMTPEmailProvider(host="smtp.test", port=465, use_tls=False, from_email="no-reply@bareloft.test")

    with pytest.raises(DeliveryError):
        provider.send_email(email="ada@example.com", subject="Your code", body="123456")
    assert fake_smtp.instances[0].logged_in is None
