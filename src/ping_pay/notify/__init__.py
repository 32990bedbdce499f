"""Recipient notification: a best-effort gateway and the Telegram bot behind it."""

from ping_pay.notify.gateway import MessageSender, NotificationGateway, NotificationResult
from ping_pay.notify.telegram import TelegramBot

__all__ = ["MessageSender", "NotificationGateway", "NotificationResult", "TelegramBot"]
