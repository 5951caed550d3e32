"""Unit tests for notification services."""
from __future__ import annotations

import smtplib
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from vault_rebalancer.config import EmailConfig, TelegramConfig
from vault_rebalancer.notifications.email import DEFAULT_SUBJECT, EmailNotifier
from vault_rebalancer.notifications.telegram import MAX_MESSAGE_LENGTH, TelegramNotifier, _render


def _mock_session(status: int) -> AsyncMock:
    mock_response = AsyncMock()
    mock_response.status = status
    mock_response.__aenter__ = AsyncMock(return_value=mock_response)
    mock_response.__aexit__ = AsyncMock(return_value=None)

    mock_session = AsyncMock()
    mock_session.post = MagicMock(return_value=mock_response)
    mock_session.__aenter__ = AsyncMock(return_value=mock_session)
    mock_session.__aexit__ = AsyncMock(return_value=None)
    return mock_session


# ---------------------------------------------------------------------------
# TelegramNotifier
# ---------------------------------------------------------------------------


@pytest.fixture()
def telegram_notifier() -> TelegramNotifier:
    return TelegramNotifier(
        TelegramConfig(
            enabled=True,
            alert_bot_token="alert-tok",
            log_bot_token="log-tok",
            chat_id="12345",
        )
    )


class TestRender:
    def test_escapes_html(self) -> None:
        assert _render("HF < 1.15 & falling") == "HF &lt; 1.15 &amp; falling"

    def test_subject_is_bold(self) -> None:
        assert _render("body", subject="Rebalance").startswith("<b>Rebalance</b>\n\n")

    def test_truncates_long_messages(self) -> None:
        assert len(_render("x" * 10_000)) == MAX_MESSAGE_LENGTH


class TestTelegramNotifier:
    @pytest.mark.asyncio
    async def test_send_alert_success(self, telegram_notifier: TelegramNotifier) -> None:
        mock_session = _mock_session(200)
        with patch("vault_rebalancer.notifications.telegram.aiohttp.ClientSession", return_value=mock_session):
            with patch("vault_rebalancer.notifications.telegram.aiohttp.TCPConnector"):
                result = await telegram_notifier.send_alert("rebalance VAULT-B", subject="Rebalance")

        assert result is True
        url = mock_session.post.call_args[0][0]
        payload = mock_session.post.call_args.kwargs["json"]
        assert "botalert-tok" in url
        assert payload["chat_id"] == "12345"
        assert payload["disable_notification"] is False
        assert "VAULT-B" in payload["text"]

    @pytest.mark.asyncio
    async def test_send_alert_failure(self, telegram_notifier: TelegramNotifier) -> None:
        with patch(
            "vault_rebalancer.notifications.telegram.aiohttp.ClientSession",
            return_value=_mock_session(403),
        ):
            with patch("vault_rebalancer.notifications.telegram.aiohttp.TCPConnector"):
                result = await telegram_notifier.send_alert("test alert")

        assert result is False

    @pytest.mark.asyncio
    async def test_send_log_uses_log_bot_silently(self, telegram_notifier: TelegramNotifier) -> None:
        mock_session = _mock_session(200)
        with patch("vault_rebalancer.notifications.telegram.aiohttp.ClientSession", return_value=mock_session):
            with patch("vault_rebalancer.notifications.telegram.aiohttp.TCPConnector"):
                result = await telegram_notifier.send_log("run summary")

        assert result is True
        assert "botlog-tok" in mock_session.post.call_args[0][0]
        assert mock_session.post.call_args.kwargs["json"]["disable_notification"] is True

    @pytest.mark.asyncio
    async def test_unconfigured_returns_false(self) -> None:
        notifier = TelegramNotifier(TelegramConfig(enabled=True))
        assert await notifier.send_alert("test") is False
        assert await notifier.send_log("test") is False


# ---------------------------------------------------------------------------
# EmailNotifier
# ---------------------------------------------------------------------------


@pytest.fixture()
def email_notifier() -> EmailNotifier:
    return EmailNotifier(
        EmailConfig(
            enabled=True,
            alert_email="test@example.com",
            smtp_server="smtp.example.com",
            smtp_port=587,
            sender_email="sender@example.com",
            sender_password="password123",
        )
    )


class TestEmailNotifier:
    @pytest.mark.asyncio
    async def test_send_alert_success(self, email_notifier: EmailNotifier) -> None:
        mock_smtp = MagicMock()
        with patch("vault_rebalancer.notifications.email.smtplib.SMTP", return_value=mock_smtp):
            result = await email_notifier.send_alert("test body", subject="Rebalance")
        assert result is True
        mock_smtp.starttls.assert_called_once()
        mock_smtp.login.assert_called_once_with("sender@example.com", "password123")
        mock_smtp.send_message.assert_called_once()
        assert mock_smtp.send_message.call_args[0][0]["Subject"] == "Rebalance"
        mock_smtp.quit.assert_called_once()

    @pytest.mark.asyncio
    async def test_default_subject(self, email_notifier: EmailNotifier) -> None:
        mock_smtp = MagicMock()
        with patch("vault_rebalancer.notifications.email.smtplib.SMTP", return_value=mock_smtp):
            await email_notifier.send_alert("test body")
        assert mock_smtp.send_message.call_args[0][0]["Subject"] == DEFAULT_SUBJECT

    @pytest.mark.asyncio
    async def test_connection_error(self, email_notifier: EmailNotifier) -> None:
        with patch(
            "vault_rebalancer.notifications.email.smtplib.SMTP",
            side_effect=ConnectionError("SMTP down"),
        ):
            result = await email_notifier.send_alert("test body", subject="Test")
        assert result is False

    @pytest.mark.asyncio
    async def test_login_failure_still_quits(self, email_notifier: EmailNotifier) -> None:
        mock_smtp = MagicMock()
        mock_smtp.login.side_effect = smtplib.SMTPAuthenticationError(535, b"bad credentials")
        with patch("vault_rebalancer.notifications.email.smtplib.SMTP", return_value=mock_smtp):
            result = await email_notifier.send_alert("test body")
        assert result is False
        mock_smtp.quit.assert_called_once()
        mock_smtp.send_message.assert_not_called()

    @pytest.mark.asyncio
    async def test_no_alert_email_returns_false(self) -> None:
        result = await EmailNotifier(EmailConfig(enabled=True)).send_alert("test")
        assert result is False

    @pytest.mark.asyncio
    async def test_no_credentials_returns_false(self) -> None:
        notifier = EmailNotifier(EmailConfig(enabled=True, alert_email="test@example.com"))
        assert await notifier.send_alert("test") is False

    @pytest.mark.asyncio
    async def test_send_log_is_noop(self, email_notifier: EmailNotifier) -> None:
        assert await email_notifier.send_log("test") is False
