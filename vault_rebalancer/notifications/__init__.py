"""Rebalance alert channels."""
from .email import DEFAULT_SUBJECT, EmailNotifier
from .telegram import TelegramNotifier

__all__ = ["DEFAULT_SUBJECT", "EmailNotifier", "TelegramNotifier"]
