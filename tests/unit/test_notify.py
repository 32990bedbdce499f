"""Unit tests for the notification gateway and the Telegram bot."""
import json

import httpx
import pytest

from ping_pay.notify.gateway import NotificationGateway
from ping_pay.notify.telegram import TelegramBot

from tests.conftest import RecordingSender


class TestNotificationGateway:
    """Tests for NotificationGateway.notify_recipient."""

    async def test_delivers_to_registered_channel(self, ledger):
        sender = RecordingSender()
        gateway = NotificationGateway(ledger, sender, "https://pay.example/receive/")
        await gateway.register_channel("@Bob", 42)

        result = await gateway.notify_recipient("bob", "10", "tok123", sender_handle="alice")

        assert result.delivered is True
        assert result.claim_url == "https://pay.example/receive?token=tok123"
        chat_id, text = sender.messages[0]
        assert chat_id == 42
        assert "You received 10 USDC from @alice!" in text
        assert "https://pay.example/receive?token=tok123" in text

    async def test_unregistered_recipient(self, ledger):
        gateway = NotificationGateway(ledger, RecordingSender(), "https://pay.example/receive")
        result = await gateway.notify_recipient("bob", "10", "tok123")
        assert result.delivered is False
        assert result.reason == "recipient not reachable"

    async def test_send_failure_is_reported_not_raised(self, ledger):
        gateway = NotificationGateway(ledger, RecordingSender(fail=True), "https://pay.example/receive")
        await gateway.register_channel("bob", 42)
        result = await gateway.notify_recipient("bob", "10", "tok123")
        assert result.delivered is False
        assert "blocked" in result.reason

    async def test_no_sender_configured(self, ledger):
        gateway = NotificationGateway(ledger, None, "https://pay.example/receive")
        result = await gateway.notify_recipient("bob", "10", "tok123")
        assert result.to_dict() == {
            "delivered": False,
            "reason": "notifications disabled",
            "claimUrl": "https://pay.example/receive?token=tok123",
        }


class FakeTelegramAPI:
    """Records Bot API calls and replies with queued updates."""

    def __init__(self):
        self.calls: list[tuple[str, dict]] = []
        self.updates: list[dict] = []
        self.fail_send = False

    def handler(self, request: httpx.Request) -> httpx.Response:
        method = request.url.path.rsplit("/", 1)[-1]
        payload = json.loads(request.content or b"{}")
        self.calls.append((method, payload))
        if method == "getUpdates":
            updates, self.updates = self.updates, []
            return httpx.Response(200, json={"ok": True, "result": updates})
        if method == "sendMessage" and self.fail_send:
            return httpx.Response(403, json={"ok": False, "description": "Forbidden: bot was blocked by the user"})
        return httpx.Response(200, json={"ok": True, "result": {}})

    def sent(self) -> list[dict]:
        return [payload for method, payload in self.calls if method == "sendMessage"]


def _message(update_id: int, chat_id: int, username, text: str) -> dict:
    sender = {"id": chat_id}
    if username:
        sender["username"] = username
    return {"update_id": update_id, "message": {"chat": {"id": chat_id}, "from": sender, "text": text}}


@pytest.fixture
def api():
    return FakeTelegramAPI()


@pytest.fixture
def bot(api, ledger):
    client = httpx.AsyncClient(transport=httpx.MockTransport(api.handler))
    return TelegramBot("123:abc", ledger, poll_timeout=0, client=client)


class TestTelegramBot:
    """Tests for TelegramBot."""

    async def test_start_registers_and_welcomes(self, api, bot, ledger):
        api.updates = [_message(10, 555, "Bob", "/start")]
        assert await bot.poll_once() == 1

        channel = await ledger.get_channel("bob")
        assert channel.chat_id == 555
        assert api.sent()[0]["chat_id"] == 555
        assert "Welcome to PingPay, @Bob!" in api.sent()[0]["text"]

    async def test_offset_advances_past_handled_updates(self, api, bot):
        api.updates = [_message(10, 555, "bob", "hi"), _message(11, 556, "carol", "hi")]
        await bot.poll_once()
        await bot.poll_once()
        offsets = [payload["offset"] for method, payload in api.calls if method == "getUpdates"]
        assert offsets == [0, 12]

    async def test_any_message_registers_a_new_user(self, api, bot, ledger):
        api.updates = [_message(1, 777, "dave", "hello")]
        await bot.poll_once()
        assert (await ledger.get_channel("dave")).chat_id == 777
        assert api.sent() == []

    async def test_plain_message_does_not_overwrite_channel(self, api, bot, ledger):
        await ledger.save_channel("dave", 777)
        api.updates = [_message(1, 888, "dave", "hello")]
        await bot.poll_once()
        assert (await ledger.get_channel("dave")).chat_id == 777

    async def test_balance_command(self, api, bot):
        api.updates = [_message(1, 777, "dave", "/balance")]
        await bot.poll_once()
        assert "Receive page" in api.sent()[0]["text"]

    async def test_user_without_username_is_not_registered(self, api, bot, ledger):
        api.updates = [_message(1, 999, None, "/start")]
        await bot.poll_once()
        assert "Welcome to PingPay!" in api.sent()[0]["text"]

    async def test_send_message_raises_on_api_error(self, api, bot):
        api.fail_send = True
        with pytest.raises(RuntimeError, match="403"):
            await bot.send_message(555, "hi")

    async def test_bot_as_gateway_sender(self, api, bot, ledger):
        gateway = NotificationGateway(ledger, bot, "https://pay.example/receive")
        api.updates = [_message(1, 555, "bob", "/start")]
        await bot.poll_once()

        result = await gateway.notify_recipient("bob", "3", "tok")
        assert result.delivered is True
        assert api.sent()[-1]["chat_id"] == 555

        api.fail_send = True
        result = await gateway.notify_recipient("bob", "3", "tok")
        assert result.delivered is False
