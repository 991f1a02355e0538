"""Tests for credits module."""

import json
from pathlib import Path

import pytest

from ex_remover.credits import (
    BALANCE_KEY,
    BONUS_FLAG_KEY,
    CreditLedger,
    JsonFileCreditStore,
    MemoryCreditStore,
)
from ex_remover.errors import CreditStoreError, InsufficientCredits


class TestOpen:
    """Tests for CreditLedger.open and the one-time bonus."""

    def test_fresh_install_gets_default_plus_bonus(self) -> None:
        """Test that a fresh store starts at default credits plus the bonus."""
        store = MemoryCreditStore()
        ledger = CreditLedger.open(store)
        assert ledger.balance == 6
        assert store.get(BALANCE_KEY) == "6"
        assert store.get(BONUS_FLAG_KEY) == "true"

    def test_bonus_applied_only_once(self) -> None:
        """Test that reopening does not grant the bonus again."""
        store = MemoryCreditStore()
        CreditLedger.open(store)
        ledger = CreditLedger.open(store)
        assert ledger.balance == 6

    def test_existing_balance_gets_bonus(self) -> None:
        """Test that a saved balance without the flag receives the bonus."""
        store = MemoryCreditStore({BALANCE_KEY: "10"})
        ledger = CreditLedger.open(store)
        assert ledger.balance == 13

    @pytest.mark.parametrize("raw", ["abc", "-4", ""])
    def test_invalid_balance_falls_back_to_default(self, raw: str) -> None:
        """Test that an unusable stored balance is repaired to the default."""
        store = MemoryCreditStore({BALANCE_KEY: raw, BONUS_FLAG_KEY: "true"})
        ledger = CreditLedger.open(store)
        assert ledger.balance == 3
        assert store.get(BALANCE_KEY) == "3"

    def test_custom_default_and_bonus(self) -> None:
        """Test that default and bonus amounts are configurable."""
        ledger = CreditLedger.open(MemoryCreditStore(), default=1, bonus=0)
        assert ledger.balance == 1

    def test_negative_balance_rejected(self) -> None:
        """Test that a ledger cannot be built with a negative balance."""
        with pytest.raises(ValueError):
            CreditLedger(MemoryCreditStore(), -1)


class TestReserveRefund:
    """Tests for reserve and refund."""

    def test_reserve_subtracts(self) -> None:
        """Test that reserve subtracts and persists."""
        store = MemoryCreditStore()
        ledger = CreditLedger(store, 3)
        ledger.reserve(3)
        assert ledger.balance == 0
        assert store.get(BALANCE_KEY) == "0"

    def test_reserve_insufficient_leaves_balance(self) -> None:
        """Test that an oversized reservation fails without mutation."""
        ledger = CreditLedger(MemoryCreditStore(), 3)
        with pytest.raises(InsufficientCredits) as exc_info:
            ledger.reserve(5)
        assert ledger.balance == 3
        assert exc_info.value.needed == 5
        assert exc_info.value.available == 3
        assert exc_info.value.shortfall == 2
        assert "only have 3" in str(exc_info.value)

    def test_reserve_zero(self) -> None:
        """Test that reserving nothing is allowed on an empty balance."""
        ledger = CreditLedger(MemoryCreditStore(), 0)
        ledger.reserve(0)
        assert ledger.balance == 0

    def test_negative_amounts_rejected(self) -> None:
        """Test that negative reserve/refund amounts are rejected."""
        ledger = CreditLedger(MemoryCreditStore(), 3)
        with pytest.raises(ValueError):
            ledger.reserve(-1)
        with pytest.raises(ValueError):
            ledger.refund(-1)
        assert ledger.balance == 3

    def test_refund_adds(self) -> None:
        """Test that refund adds credits back."""
        ledger = CreditLedger(MemoryCreditStore(), 0)
        ledger.refund(1)
        ledger.refund()
        assert ledger.balance == 2

    def test_can_afford(self) -> None:
        """Test the affordability check."""
        ledger = CreditLedger(MemoryCreditStore(), 2)
        assert ledger.can_afford(2)
        assert not ledger.can_afford(3)


class TestJsonFileCreditStore:
    """Tests for the JSON file store."""

    def test_round_trip_through_file(self, tmp_path: Path) -> None:
        """Test that the balance survives reopening from disk."""
        path = tmp_path / "nested" / "credits.json"
        ledger = CreditLedger.open(JsonFileCreditStore(path))
        ledger.reserve(2)

        reopened = CreditLedger.open(JsonFileCreditStore(path))
        assert reopened.balance == 4
        assert json.loads(path.read_text())[BONUS_FLAG_KEY] == "true"

    def test_malformed_file_is_an_error(self, tmp_path: Path) -> None:
        """Test that an unreadable file raises instead of reading as empty."""
        path = tmp_path / "credits.json"
        path.write_text("{not json")
        with pytest.raises(CreditStoreError):
            JsonFileCreditStore(path).get(BALANCE_KEY)

    def test_non_object_file_is_an_error(self, tmp_path: Path) -> None:
        """Test that a JSON file that is not an object is rejected."""
        path = tmp_path / "credits.json"
        path.write_text("[1, 2]")
        with pytest.raises(CreditStoreError):
            JsonFileCreditStore(path).get(BALANCE_KEY)

    def test_truncated_file_never_regrants_bonus(self, tmp_path: Path) -> None:
        """Test that a torn write cannot reset the balance or re-apply the bonus."""
        path = tmp_path / "credits.json"
        full = json.dumps({BALANCE_KEY: "0", BONUS_FLAG_KEY: "true"})
        path.write_text(full[:20])

        with pytest.raises(CreditStoreError):
            CreditLedger.open(JsonFileCreditStore(path))

        assert path.read_text() == full[:20]

    def test_set_replaces_file_atomically(self, tmp_path: Path) -> None:
        """Test that writes leave a complete file and no temporary files behind."""
        path = tmp_path / "credits.json"
        store = JsonFileCreditStore(path)
        store.set(BALANCE_KEY, "5")
        store.set(BONUS_FLAG_KEY, "true")

        assert json.loads(path.read_text()) == {BALANCE_KEY: "5", BONUS_FLAG_KEY: "true"}
        assert [p.name for p in tmp_path.iterdir()] == ["credits.json"]

    def test_failed_write_keeps_previous_file(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """Test that an interrupted write leaves the old balance readable."""
        path = tmp_path / "credits.json"
        store = JsonFileCreditStore(path)
        store.set(BALANCE_KEY, "4")

        def broken_replace(src: str, dst: str) -> None:
            raise OSError("disk full")

        monkeypatch.setattr("ex_remover.credits.os.replace", broken_replace)
        with pytest.raises(OSError):
            store.set(BALANCE_KEY, "3")

        assert json.loads(path.read_text()) == {BALANCE_KEY: "4"}
        assert [p.name for p in tmp_path.iterdir()] == ["credits.json"]
