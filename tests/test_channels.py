import smtplib

import httpx
import pytest

from grocery_tracker.config import Settings, load_settings
from grocery_tracker.core import channels as channels_module
from grocery_tracker.core import users as users_core
from grocery_tracker.core.channels import ChannelSender
from grocery_tracker.db.models import User


@pytest.fixture
def user_id(db):
    return users_core.add(User(id=None, name="Pat", email="pat@example.com", push_token="device-1"))


def _settings(**overrides):
    base = dict(push_gateway_url="https://push.example.com/send", push_api_key="k",
                smtp_host="smtp.example.com", smtp_user="u", smtp_password="p",
                channel_timeout=2.0)
    base.update(overrides)
    return Settings(**base)


def test_push_posts_to_gateway(user_id, monkeypatch):
    calls = []

    def fake_post(url, json=None, headers=None, timeout=None):
        calls.append((url, json, headers, timeout))
        return httpx.Response(200, request=httpx.Request("POST", url))

    monkeypatch.setattr(channels_module.httpx, "post", fake_post)

    result = ChannelSender(_settings()).send_push(user_id, "Title", "Body", {"item_id": 7})

    assert result.ok
    url, message, headers, timeout = calls[0]
    assert message["token"] == "device-1"
    assert message["data"] == {"item_id": "7"}
    assert headers["Authorization"] == "Bearer k"
    assert timeout == 2.0


def test_push_gateway_error_is_reported(user_id, monkeypatch):
    def fake_post(url, **kwargs):
        return httpx.Response(503, request=httpx.Request("POST", url))

    monkeypatch.setattr(channels_module.httpx, "post", fake_post)

    result = ChannelSender(_settings()).send_push(user_id, "Title", "Body")

    assert not result.ok
    assert "503" in result.reason


def test_push_timeout_is_reported(user_id, monkeypatch):
    def fake_post(url, **kwargs):
        raise httpx.ConnectTimeout("timed out")

    monkeypatch.setattr(channels_module.httpx, "post", fake_post)

    assert not ChannelSender(_settings()).send_push(user_id, "Title", "Body").ok


def test_unconfigured_channels_report_reason(user_id):
    sender = ChannelSender(Settings())
    assert sender.send_push(user_id, "t", "b").reason == "push not configured"
    assert sender.send_email(user_id, "s", "b").reason == "email not configured"


def test_missing_contact_details(db):
    bare = users_core.add(User(id=None, name="Nobody"))
    sender = ChannelSender(_settings())
    assert sender.send_push(bare, "t", "b").reason == "no push token"
    assert sender.send_email(bare, "s", "b").reason == "no email address"


class FakeSMTP:
    sent = []
    fail = False

    def __init__(self, host, port, timeout=None):
        self.host, self.port, self.timeout = host, port, timeout

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def starttls(self):
        pass

    def login(self, user, password):
        pass

    def send_message(self, msg):
        if FakeSMTP.fail:
            raise smtplib.SMTPServerDisconnected("gone")
        FakeSMTP.sent.append(msg)


def test_email_is_sent_over_smtp(user_id, monkeypatch):
    FakeSMTP.sent, FakeSMTP.fail = [], False
    monkeypatch.setattr(channels_module.smtplib, "SMTP", FakeSMTP)

    result = ChannelSender(_settings(smtp_from="alerts@example.com")).send_email(user_id, "Subject", "Body")

    assert result.ok
    msg = FakeSMTP.sent[0]
    assert msg["To"] == "pat@example.com"
    assert msg["From"] == "alerts@example.com"
    assert msg["Subject"] == "Subject"


def test_smtp_failure_is_reported(user_id, monkeypatch):
    FakeSMTP.sent, FakeSMTP.fail = [], True
    monkeypatch.setattr(channels_module.smtplib, "SMTP", FakeSMTP)

    result = ChannelSender(_settings()).send_email(user_id, "Subject", "Body")

    assert not result.ok
    assert result.channel == "email"


def test_load_settings_reads_environment(monkeypatch):
    monkeypatch.setenv("TIMEZONE", "Europe/Berlin")
    monkeypatch.setenv("JOB_WORKERS", "8")
    monkeypatch.setenv("SMTP_STARTTLS", "false")
    monkeypatch.setenv("NOTIFICATION_RETENTION_DAYS", "14")

    settings = load_settings()

    assert settings.timezone == "Europe/Berlin"
    assert settings.job_workers == 8
    assert settings.smtp_starttls is False
    assert settings.notification_retention_days == 14
    assert settings.expired_item_retention_days == 90
