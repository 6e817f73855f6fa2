"""Points ledger: append-only transactions with a derived balance."""

from __future__ import annotations

import json
import secrets
import sys
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Mapping, Optional

from .shop_catalog import DEFAULT_STICKER_ID, FREE_ITEM_IDS, get_shop_item
from .storage import write_json_atomic

EARN = "earn"
SPEND = "spend"


def _now_ms() -> float:
    return time.time() * 1000.0


@dataclass(frozen=True)
class Transaction:
    id: str
    kind: str
    amount: int
    timestamp_ms: float
    metadata: Mapping[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.kind,
            "amount": self.amount,
            "timestampMs": self.timestamp_ms,
            "metadata": dict(self.metadata),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Transaction":
        return cls(
            id=str(data["id"]),
            kind=str(data.get("type") or data.get("kind")),
            amount=int(data["amount"]),
            timestamp_ms=float(data.get("timestampMs", 0)),
            metadata=dict(data.get("metadata") or {}),
        )


@dataclass(frozen=True)
class Purchase:
    item_id: str
    purchased_at_ms: float
    tx_id: str


@dataclass(frozen=True)
class PurchaseResult:
    ok: bool
    reason: Optional[str] = None
    transaction: Optional[Transaction] = None


class Ledger:
    """Earn/spend history for one reader.

    Transaction ids are prefixed with the device id so ledgers written on
    different devices can be merged without collisions.
    """

    def __init__(self, device_id: str, *, clock: Callable[[], float] = _now_ms) -> None:
        self.device_id = device_id
        self.clock = clock
        self.transactions: Dict[str, Transaction] = {}
        self.purchases: Dict[str, Purchase] = {}
        self.equipped_sticker_id = DEFAULT_STICKER_ID

    def _new_id(self) -> str:
        return f"{self.device_id}-{int(self.clock())}-{secrets.token_hex(5)}"

    @property
    def balance(self) -> int:
        total = 0
        for tx in self.transactions.values():
            if tx.kind == EARN:
                total += tx.amount
            elif tx.kind == SPEND:
                total -= tx.amount
        return max(0, total)

    def earn(self, points: int, *, metadata: Optional[Mapping[str, Any]] = None) -> Transaction:
        if points <= 0:
            raise ValueError("Points must be positive")
        tx = Transaction(self._new_id(), EARN, int(points), self.clock(), dict(metadata or {}))
        self.transactions[tx.id] = tx
        return tx

    def spend(self, item_id: str, cost: int) -> PurchaseResult:
        if cost <= 0:
            raise ValueError("Cost must be positive")
        if self.balance < cost:
            return PurchaseResult(False, "insufficient_balance")
        if item_id in self.purchases:
            return PurchaseResult(False, "already_owned")
        tx = Transaction(self._new_id(), SPEND, int(cost), self.clock(), {"itemId": item_id})
        self.transactions[tx.id] = tx
        self.purchases[item_id] = Purchase(item_id, tx.timestamp_ms, tx.id)
        return PurchaseResult(True, transaction=tx)

    def purchase(self, item_id: str) -> PurchaseResult:
        item = get_shop_item(item_id)
        if item is None:
            return PurchaseResult(False, "unknown_item")
        if self.is_owned(item_id):
            return PurchaseResult(False, "already_owned")
        return self.spend(item_id, item.cost)

    def is_owned(self, item_id: str) -> bool:
        return item_id in FREE_ITEM_IDS or item_id in self.purchases

    def equip_sticker(self, item_id: str) -> bool:
        if not self.is_owned(item_id):
            return False
        self.equipped_sticker_id = item_id
        return True

    def merge(self, other: "Ledger") -> None:
        """Union another device's ledger into this one (idempotent)."""
        self.transactions.update(
            {tx_id: tx for tx_id, tx in other.transactions.items() if tx_id not in self.transactions}
        )
        for item_id, purchase in other.purchases.items():
            self.purchases.setdefault(item_id, purchase)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "transactionsById": {tx_id: tx.to_dict() for tx_id, tx in self.transactions.items()},
            "purchases": {
                item_id: {
                    "itemId": purchase.item_id,
                    "purchasedAtMs": purchase.purchased_at_ms,
                    "txId": purchase.tx_id,
                }
                for item_id, purchase in self.purchases.items()
            },
            "equippedStickerId": self.equipped_sticker_id,
        }

    @classmethod
    def from_dict(cls, device_id: str, data: Mapping[str, Any] | None, **kwargs) -> "Ledger":
        ledger = cls(device_id, **kwargs)
        if not isinstance(data, Mapping):
            return ledger
        for raw in (data.get("transactionsById") or {}).values():
            try:
                tx = Transaction.from_dict(raw)
            except (KeyError, TypeError, ValueError):
                continue
            if tx.kind in (EARN, SPEND) and tx.amount > 0:
                ledger.transactions[tx.id] = tx
        for item_id, raw in (data.get("purchases") or {}).items():
            if not isinstance(raw, Mapping):
                continue
            try:
                purchased_at = float(raw.get("purchasedAtMs", 0))
            except (TypeError, ValueError):
                continue
            ledger.purchases[str(item_id)] = Purchase(
                str(raw.get("itemId", item_id)), purchased_at, str(raw.get("txId", ""))
            )
        equipped = data.get("equippedStickerId")
        if isinstance(equipped, str) and ledger.is_owned(equipped):
            ledger.equipped_sticker_id = equipped
        return ledger


def load_ledger(path: Path | str, device_id: str) -> Ledger:
    path = Path(path)
    try:
        with path.open("r", encoding="utf-8") as handle:
            data = json.load(handle)
    except FileNotFoundError:
        return Ledger(device_id)
    except (OSError, json.JSONDecodeError, UnicodeDecodeError) as exc:
        print(f"[Ledger] Failed to read {path}: {exc}", file=sys.stderr)
        return Ledger(device_id)
    return Ledger.from_dict(device_id, data)


def save_ledger(ledger: Ledger, path: Path | str) -> None:
    try:
        write_json_atomic(path, ledger.to_dict())
    except OSError as exc:
        print(f"[Ledger] Failed to save ledger: {exc}", file=sys.stderr)
