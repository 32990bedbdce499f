"""Unit tests for storage models and handle normalization."""
import pytest

from ping_pay.errors import InvalidHandle
from ping_pay.storage.models import TransferRecord, TransferStatus, WalletRecord, normalize_handle


class TestNormalizeHandle:
    """Tests for normalize_handle."""

    @pytest.mark.parametrize("raw", ["@Alice", "alice", "ALICE", "  @alice  "])
    def test_variants_collapse_to_one_handle(self, raw):
        assert normalize_handle(raw) == "alice"

    @pytest.mark.parametrize("raw", ["", "@", "bob smith", "bob-smith", "a" * 65, None])
    def test_rejects_unusable_handles(self, raw):
        with pytest.raises(InvalidHandle):
            normalize_handle(raw)


class TestTransferRecord:
    """Tests for TransferRecord defaults."""

    def test_defaults(self):
        record = TransferRecord(recipient_handle="bob", recipient_address="0xabc", amount="10")
        assert record.status == TransferStatus.PENDING
        assert record.tx_hash is None
        assert record.claimed_at is None

    def test_claim_tokens_are_unique_and_long(self):
        tokens = {
            TransferRecord(recipient_handle="bob", recipient_address="0xabc", amount="1").claim_token
            for _ in range(50)
        }
        assert len(tokens) == 50
        # 32 random bytes, URL-safe base64 without padding
        assert all(len(t) >= 43 for t in tokens)

    def test_summary_hides_claim_token(self):
        record = TransferRecord(recipient_handle="bob", recipient_address="0xabc", amount="1")
        summary = record.summary()
        assert "claim_token" not in summary
        assert summary["status"] == "pending"


class TestWalletRecord:
    """Tests for WalletRecord."""

    def test_private_key_is_not_dumped_or_repred(self):
        wallet = WalletRecord(handle="bob", address="0xabc", private_key="0xsecret")
        assert "private_key" not in wallet.model_dump()
        assert "0xsecret" not in repr(wallet)
