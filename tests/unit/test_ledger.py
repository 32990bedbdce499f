"""Unit tests for the SQLite-backed ledger store."""
import asyncio
from datetime import timedelta

import pytest

from ping_pay.errors import TransactionAlreadyUsed
from ping_pay.storage.models import TransferRecord, TransferStatus, WalletRecord, utcnow

ADDRESS_A = "0xAaAaAaAaAaAaAaAaAaAaAaAaAaAaAaAaAaAaAaAa"
ADDRESS_B = "0xbBbBBBBbbBBBbbbBbbBbbbbBBbBbbbbBbBbbBBbB"


async def _seed_wallet(ledger, handle="bob", address=ADDRESS_A):
    return await ledger.insert_wallet_if_absent(
        WalletRecord(handle=handle, address=address, private_key="0xkey-" + handle)
    )


async def _seed_transfer(ledger, handle="bob", address=ADDRESS_A, **kwargs):
    return await ledger.create_transfer(
        TransferRecord(recipient_handle=handle, recipient_address=address, amount="10", **kwargs)
    )


class TestWallets:
    """Tests for wallet persistence."""

    async def test_insert_and_lookup(self, ledger):
        await _seed_wallet(ledger)
        by_handle = await ledger.get_wallet_by_handle("bob")
        by_address = await ledger.get_wallet_by_address(ADDRESS_A.lower())
        assert by_handle.address == ADDRESS_A
        assert by_address.handle == "bob"
        assert by_handle.private_key == "0xkey-bob"

    async def test_second_insert_for_handle_keeps_first(self, ledger):
        first = await _seed_wallet(ledger, address=ADDRESS_A)
        second = await ledger.insert_wallet_if_absent(
            WalletRecord(handle="bob", address=ADDRESS_B, private_key="0xother")
        )
        assert second.address == first.address
        assert await ledger.get_wallet_by_address(ADDRESS_B) is None

    async def test_missing_wallet(self, ledger):
        assert await ledger.get_wallet_by_handle("nobody") is None


class TestTransfers:
    """Tests for transfer persistence and conditional transitions."""

    async def test_round_trip(self, ledger):
        await _seed_wallet(ledger)
        created = await _seed_transfer(ledger, sender_handle="alice")
        loaded = await ledger.get_transfer(created.id)
        assert loaded.status == TransferStatus.PENDING
        assert loaded.amount == "10"
        assert loaded.sender_handle == "alice"
        assert loaded.created_at == created.created_at

    async def test_claim_token_lookup_is_exact(self, ledger):
        await _seed_wallet(ledger)
        created = await _seed_transfer(ledger)
        assert (await ledger.get_transfer_by_claim_token(created.claim_token)).id == created.id
        assert await ledger.get_transfer_by_claim_token(created.claim_token[:-1]) is None
        assert await ledger.get_transfer_by_claim_token("") is None

    async def test_confirm_only_from_pending(self, ledger):
        await _seed_wallet(ledger)
        transfer = await _seed_transfer(ledger)
        assert await ledger.transition_to_confirmed(transfer.id, "0xaa", 7) is True
        assert await ledger.transition_to_confirmed(transfer.id, "0xbb", 8) is False

        loaded = await ledger.get_transfer(transfer.id)
        assert loaded.status == TransferStatus.CONFIRMED
        assert loaded.tx_hash == "0xaa"
        assert loaded.block_number == 7
        assert loaded.confirmed_at is not None

    async def test_concurrent_confirms_have_one_winner(self, ledger):
        await _seed_wallet(ledger)
        transfer = await _seed_transfer(ledger)
        results = await asyncio.gather(*[
            ledger.transition_to_confirmed(transfer.id, f"0x{i:02x}", i) for i in range(5)
        ])
        assert results.count(True) == 1

    async def test_tx_hash_attaches_to_one_transfer(self, ledger):
        await _seed_wallet(ledger)
        first = await _seed_transfer(ledger)
        second = await _seed_transfer(ledger)
        assert await ledger.transition_to_confirmed(first.id, "0xaa", 7) is True

        with pytest.raises(TransactionAlreadyUsed):
            await ledger.transition_to_confirmed(second.id, "0xaa", 7)

        assert (await ledger.get_transfer(second.id)).status == TransferStatus.PENDING
        assert (await ledger.get_transfer_by_tx_hash("0xAA")).id == first.id
        assert await ledger.transition_to_confirmed(second.id, "0xbb", 8) is True

    async def test_claim_only_from_confirmed(self, ledger):
        await _seed_wallet(ledger)
        transfer = await _seed_transfer(ledger)
        assert await ledger.transition_to_claimed(transfer.id) is False

        await ledger.transition_to_confirmed(transfer.id, "0xaa", 7)
        assert await ledger.transition_to_claimed(transfer.id) is True
        first = await ledger.get_transfer(transfer.id)
        assert await ledger.transition_to_claimed(transfer.id) is False
        second = await ledger.get_transfer(transfer.id)
        assert first.claimed_at == second.claimed_at

    async def test_fail_only_from_pending(self, ledger):
        await _seed_wallet(ledger)
        transfer = await _seed_transfer(ledger)
        await ledger.transition_to_confirmed(transfer.id, "0xaa", 7)
        assert await ledger.transition_to_failed(transfer.id, "operator") is False
        assert (await ledger.get_transfer(transfer.id)).status == TransferStatus.CONFIRMED

    async def test_listing_is_newest_first(self, ledger):
        await _seed_wallet(ledger)
        now = utcnow()
        old = await _seed_transfer(ledger, sender_address=ADDRESS_B, created_at=now - timedelta(minutes=5))
        new = await _seed_transfer(ledger, sender_address=ADDRESS_B, created_at=now)
        listed = await ledger.list_transfers_by_sender_address(ADDRESS_B.lower())
        assert [t.id for t in listed] == [new.id, old.id]

    async def test_recipient_listing_filters_by_status(self, ledger):
        await _seed_wallet(ledger)
        pending = await _seed_transfer(ledger)
        confirmed = await _seed_transfer(ledger)
        await ledger.transition_to_confirmed(confirmed.id, "0xaa", 1)

        only_confirmed = await ledger.list_transfers_for_recipient("bob", TransferStatus.CONFIRMED)
        everything = await ledger.list_transfers_for_recipient("bob")
        assert [t.id for t in only_confirmed] == [confirmed.id]
        assert {t.id for t in everything} == {pending.id, confirmed.id}

    async def test_stale_pending(self, ledger):
        await _seed_wallet(ledger)
        now = utcnow()
        stale = await _seed_transfer(ledger, created_at=now - timedelta(hours=48))
        await _seed_transfer(ledger, created_at=now)
        found = await ledger.list_stale_pending(now - timedelta(hours=24))
        assert [t.id for t in found] == [stale.id]


class TestChannels:
    """Tests for chat channel registration."""

    async def test_save_is_an_upsert(self, ledger):
        await ledger.save_channel("bob", 111)
        await ledger.save_channel("bob", 222)
        channel = await ledger.get_channel("bob")
        assert channel.chat_id == 222

    async def test_unknown_channel(self, ledger):
        assert await ledger.get_channel("nobody") is None


@pytest.mark.parametrize("status", list(TransferStatus))
def test_status_values_are_lowercase(status):
    assert status.value == status.value.lower()
