# backend/tests/test_config_and_email.py
from __future__ import annotations

import dataclasses
import urllib.error

import pytest

from tapauth.core import email as email_module
from tapauth.core.config import AuthConfig, Settings
from tapauth.core.email import send_email
from tapauth.core.errors import ConfigurationError


def _settings(**overrides) -> Settings:
    base = {"environment": "dev", "jwt_secret": "s3cr3t-value"}
    base.update(overrides)
    return Settings(**base)


def test_auth_config_from_settings():
    cfg = AuthConfig.from_settings(
        _settings(
            admin_emails="Boss@Example.com, ops@example.com",
            cookie_domain=".TapCanvas.com",
            login_url="  ",
            email_provider=" SMTP ",
        )
    )
    assert cfg.jwt_secret == "s3cr3t-value"
    assert cfg.admin_emails == ("boss@example.com", "ops@example.com")
    assert cfg.cookie_domain == "tapcanvas.com"
    assert cfg.login_url is None
    assert cfg.email_provider == "smtp"
    assert cfg.is_prod is False


def test_admin_emails_accept_json_list():
    cfg = AuthConfig.from_settings(_settings(admin_emails='["a@x.com", "B@y.com"]'))
    assert cfg.admin_emails == ("a@x.com", "b@y.com")


def test_config_is_immutable():
    cfg = AuthConfig.from_settings(_settings())
    with pytest.raises(dataclasses.FrozenInstanceError):
        cfg.jwt_secret = "other"


def test_missing_secret_is_a_configuration_error():
    with pytest.raises(ConfigurationError):
        AuthConfig.from_settings(_settings(jwt_secret="   "))


def test_well_known_secret_refused_in_prod():
    with pytest.raises(ConfigurationError):
        AuthConfig.from_settings(_settings(environment="production", jwt_secret="dev-secret"))

    # Allowed outside prod
    assert AuthConfig.from_settings(_settings(jwt_secret="dev-secret")).jwt_secret == "dev-secret"


# ---------- email ----------

def _email_config(**overrides) -> AuthConfig:
    return dataclasses.replace(AuthConfig(jwt_secret="x"), **overrides)


def _send(cfg):
    return send_email(cfg, to_email="a@b.com", subject="Hi", text_body="code 123456", html_body="<b>123456</b>")


def test_log_mode_prints(capsys):
    assert _send(_email_config(email_provider="log")) is True
    out = capsys.readouterr().out
    assert "a@b.com" in out
    assert "code 123456" in out


def test_unknown_provider_falls_back_to_log(capsys):
    assert _send(_email_config(email_provider="carrier-pigeon")) is True
    assert "a@b.com" in capsys.readouterr().out


def test_blank_recipient_is_not_delivered():
    assert send_email(_email_config(), to_email="  ", subject="s", text_body="t") is False


@pytest.mark.parametrize("provider", ["resend", "smtp"])
def test_missing_credentials_fall_back_outside_prod(provider, capsys):
    assert _send(_email_config(email_provider=provider)) is True
    assert "a@b.com" in capsys.readouterr().out


@pytest.mark.parametrize("provider", ["resend", "smtp"])
def test_missing_credentials_raise_in_prod(provider):
    with pytest.raises(ConfigurationError):
        _send(_email_config(email_provider=provider, is_prod=True))


def test_resend_network_failure_returns_false(monkeypatch):
    calls = []

    def _boom(req, timeout):
        calls.append((req.full_url, timeout))
        raise urllib.error.URLError("timed out")

    monkeypatch.setattr(email_module.urllib.request, "urlopen", _boom)

    assert _send(_email_config(email_provider="resend", resend_api_key="re_test")) is False
    assert calls == [(email_module.RESEND_API_URL, email_module.SEND_TIMEOUT_SECONDS)]


def test_smtp_sends_over_implicit_tls(monkeypatch):
    sent = []

    class _FakeSMTP:
        def __init__(self, host, port, timeout):
            sent.append(("connect", host, port, timeout))

        def __enter__(self):
            return self

        def __exit__(self, *exc):
            return False

        def starttls(self):
            sent.append(("starttls",))

        def login(self, user, password):
            sent.append(("login", user))

        def send_message(self, msg):
            sent.append(("send", msg["To"], msg["Subject"]))

    monkeypatch.setattr(email_module.smtplib, "SMTP_SSL", _FakeSMTP)

    cfg = _email_config(
        email_provider="smtp",
        smtp_host="smtp.example.com",
        smtp_port=465,
        smtp_user="mailer",
        smtp_password="pw",
    )
    assert _send(cfg) is True
    assert sent == [
        ("connect", "smtp.example.com", 465, email_module.SEND_TIMEOUT_SECONDS),
        ("login", "mailer"),
        ("send", "a@b.com", "Hi"),
    ]


def test_smtp_failure_returns_false(monkeypatch):
    def _refuse(*args, **kwargs):
        raise OSError("connection refused")

    monkeypatch.setattr(email_module.smtplib, "SMTP", _refuse)

    cfg = _email_config(
        email_provider="smtp",
        smtp_host="smtp.example.com",
        smtp_port=587,
        smtp_user="mailer",
        smtp_password="pw",
    )
    assert _send(cfg) is False
