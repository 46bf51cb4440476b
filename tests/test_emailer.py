# tests/test_emailer.py
import smtplib

from pensive import config
from pensive.emailer import send_email

def test_send_email_console(monkeypatch):
    monkeypatch.setattr(config, "SEND_MODE", "console")
    assert send_email("Test", "<p>hi</p>", ["me@example.com"]) is True

def test_send_email_needs_a_valid_recipient(monkeypatch):
    monkeypatch.setattr(config, "SEND_MODE", "console")
    assert send_email("Test", "<p>hi</p>", []) is False
    assert send_email("Test", "<p>hi</p>", ["not-an-address"]) is False

def test_smtp_delivery(monkeypatch, mocker):
    monkeypatch.setattr(config, "SEND_MODE", "smtp")
    monkeypatch.setattr(config, "SMTP_HOST", "smtp.example.com")
    monkeypatch.setattr(config, "SMTP_USER", "bot")
    smtp = mocker.patch("pensive.emailer.smtplib.SMTP")
    server = smtp.return_value.__enter__.return_value
    server.has_extn.return_value = True

    assert send_email("Digest", "<p>hi</p>", ["me@example.com"]) is True
    server.starttls.assert_called_once()
    server.login.assert_called_once_with("bot", config.SMTP_PASS)
    args = server.sendmail.call_args.args
    assert args[1] == ["me@example.com"]
    assert "Subject: Digest" in args[2]

def test_smtp_failure_returns_false(monkeypatch, mocker):
    monkeypatch.setattr(config, "SEND_MODE", "smtp")
    monkeypatch.setattr(config, "SMTP_HOST", "smtp.example.com")
    mocker.patch("pensive.emailer.smtplib.SMTP", side_effect=smtplib.SMTPConnectError(421, "busy"))
    assert send_email("Digest", "<p>hi</p>", ["me@example.com"]) is False

def test_smtp_without_host_returns_false(monkeypatch):
    monkeypatch.setattr(config, "SEND_MODE", "smtp")
    monkeypatch.setattr(config, "SMTP_HOST", "")
    assert send_email("Digest", "<p>hi</p>", ["me@example.com"]) is False
