"""Integration tests for the PingPay service object and the CLI."""
import asyncio

import pytest
from typer.testing import CliRunner

from ping_pay.cli.app import app
from ping_pay.config import PingPayConfig, TelegramConfig, get_data_dir, load_config
from ping_pay.interpreter import RegexInterpreter
from ping_pay.service import PingPay
from ping_pay.storage.database import Database

from tests.conftest import tx_hash

runner = CliRunner()


class TestService:
    """Tests for PingPay orchestration."""

    async def test_concurrent_confirms_all_see_confirmed(self, service, chain, sender):
        prepared = await service.prepare_transfer("bob", "10")
        await service.notifier.register_channel("bob", 42)
        chain.pay(tx_hash(1), prepared["recipientAddress"], "10")

        results = await asyncio.gather(
            *[service.confirm_transfer(prepared["id"], tx_hash(1)) for _ in range(3)]
        )

        assert {r["status"] for r in results} == {"confirmed"}
        assert sum(1 for r in results if r["notification"] is not None) == 1
        assert len(sender.messages) == 1

    async def test_expire_stale_ignores_fresh_transfers(self, service):
        await service.prepare_transfer("bob", "1")
        assert await service.expire_stale(hours=1) == []

    async def test_fail_transfer(self, service):
        prepared = await service.prepare_transfer("bob", "1")
        failed = await service.fail_transfer(prepared["id"], "sender cancelled")
        assert failed["status"] == "failed"

    async def test_received_lists_all_statuses(self, service, chain):
        first = await service.prepare_transfer("bob", "1")
        await service.prepare_transfer("bob", "2")
        chain.pay(tx_hash(1), first["recipientAddress"], "1")
        await service.confirm_transfer(first["id"], tx_hash(1))
        received = await service.list_transfers_received("bob")
        assert sorted(t["status"] for t in received) == ["confirmed", "pending"]

    async def test_start_connects_and_shutdown_closes(self, tmp_path, chain, sender):
        db = Database(tmp_path / "svc.db")
        svc = PingPay(PingPayConfig(), db, chain=chain, sender=sender, interpreter=RegexInterpreter())
        await svc.start()
        assert db.connected
        await svc.shutdown()
        assert not db.connected

    def test_bot_is_not_built_without_a_token(self, tmp_path, chain):
        config = PingPayConfig(telegram=TelegramConfig(enabled=True, bot_token="${TELEGRAM_BOT_TOKEN}"))
        svc = PingPay(config, Database(tmp_path / "svc.db"), chain=chain)
        assert svc.bot is None
        assert svc.notifier.sender is None

    def test_bot_is_built_with_a_token(self, tmp_path, chain):
        config = PingPayConfig(telegram=TelegramConfig(enabled=True, bot_token="123:abc"))
        svc = PingPay(config, Database(tmp_path / "svc.db"), chain=chain)
        assert svc.bot is not None
        assert svc.notifier.sender is svc.bot


class TestCli:
    """Tests for the ping-pay command line."""

    def test_init_writes_config(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        result = runner.invoke(app, ["init", "--network", "base", "--telegram"])
        assert result.exit_code == 0, result.output
        config = load_config(get_data_dir(tmp_path) / "config.yaml")
        assert config.network.name == "base"
        assert config.telegram.enabled is True

    def test_init_refuses_to_overwrite(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        runner.invoke(app, ["init"])
        result = runner.invoke(app, ["init"])
        assert result.exit_code == 1

    def test_init_unknown_network(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        result = runner.invoke(app, ["init", "--network", "dogechain"])
        assert result.exit_code == 1
        assert "Unknown network" in result.output

    def test_parse(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        result = runner.invoke(app, ["parse", "send 5 usdc to @Bob"])
        assert result.exit_code == 0, result.output
        assert "5 USDC" in result.output
        assert "@bob" in result.output

    def test_parse_failure(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        result = runner.invoke(app, ["parse", "hello"])
        assert result.exit_code == 1

    def test_show_missing_transfer(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        result = runner.invoke(app, ["transfers", "show", "nope"])
        assert result.exit_code == 1
        assert "NotFound" in result.output
