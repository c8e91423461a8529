"""Typed records exchanged between the adapters, the dispatcher and the SL/TP engine.

Exchange payloads arrive as loosely typed JSON (numbers as strings, ints, floats).
``normalize_balance`` / ``normalize_position`` are the single place where those
payloads are turned into floats; adapters only describe which raw key feeds which
field.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, Mapping, Optional

from precision_utils import to_float

LONG = "LONG"
SHORT = "SHORT"


class FuturesAction(str, Enum):
    OPEN_LONG = "open_long"
    OPEN_SHORT = "open_short"
    CLOSE_LONG = "close_long"
    CLOSE_SHORT = "close_short"
    PARTIAL_CLOSE = "partial_close"


@dataclass
class OrderIntent:
    symbol: str
    action: FuturesAction
    position_size_usd: float = 0.0  # open_* only
    close_percentage: float = 0.0  # partial_close only
    leverage: int = 1
    stop_loss: float = 0.0
    take_profit: float = 0.0


@dataclass(frozen=True)
class Balance:
    wallet_balance: float
    available_balance: float
    unrealized_pnl: float

    def as_dict(self) -> Dict[str, float]:
        return {
            "totalWalletBalance": self.wallet_balance,
            "availableBalance": self.available_balance,
            "totalUnrealizedProfit": self.unrealized_pnl,
        }


@dataclass(frozen=True)
class Position:
    symbol: str
    position_amt: float  # signed: >0 long, <0 short
    entry_price: float
    mark_price: float
    unrealized_pnl: float
    leverage: float
    liquidation_price: float
    side: str  # "long" / "short"

    @property
    def position_side(self) -> str:
        return LONG if self.side == "long" else SHORT

    @property
    def abs_amount(self) -> float:
        return abs(self.position_amt)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "symbol": self.symbol,
            "positionAmt": self.position_amt,
            "entryPrice": self.entry_price,
            "markPrice": self.mark_price,
            "unRealizedProfit": self.unrealized_pnl,
            "leverage": self.leverage,
            "liquidationPrice": self.liquidation_price,
            "side": self.side,
        }


@dataclass
class SLTPCondition:
    symbol: str
    position_side: str  # LONG / SHORT
    quantity: float
    stop_loss_price: float = 0.0  # 0 = not set
    take_profit_price: float = 0.0  # 0 = not set
    active: bool = True

    @property
    def key(self) -> tuple[str, str]:
        return (self.symbol, self.position_side)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class OrderResult:
    order_id: str
    symbol: str
    status: str
    quantity: float
    price: Optional[float] = None
    client_order_id: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict, repr=False)

    def as_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "orderId": self.order_id,
            "symbol": self.symbol,
            "status": self.status,
            "quantity": self.quantity,
        }
        if self.price is not None:
            out["price"] = self.price
        if self.client_order_id:
            out["clientOrderId"] = self.client_order_id
        return out


@dataclass(frozen=True)
class TradeRecord:
    symbol: str
    side: str
    price: float
    quantity: float
    realized_pnl: float
    fee: float
    timestamp_ms: int
    order_id: str


@dataclass(frozen=True)
class AccountSummary:
    total_equity: float
    wallet_balance: float
    unrealized_pnl: float
    available_balance: float
    total_pnl: float
    total_pnl_pct: float
    initial_balance: float
    position_count: int
    margin_used: float
    margin_used_pct: float

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class BalanceFields:
    """Raw payload keys feeding each :class:`Balance` field."""

    wallet_balance: str
    available_balance: str
    unrealized_pnl: str


@dataclass(frozen=True)
class PositionFields:
    """Raw payload keys feeding each :class:`Position` field."""

    symbol: str
    position_amt: str
    entry_price: str
    mark_price: str
    unrealized_pnl: str
    leverage: str
    liquidation_price: str


def normalize_balance(raw: Mapping[str, Any], fields: BalanceFields) -> Balance:
    return Balance(
        wallet_balance=to_float(raw.get(fields.wallet_balance), fields.wallet_balance),
        available_balance=to_float(raw.get(fields.available_balance), fields.available_balance),
        unrealized_pnl=to_float(raw.get(fields.unrealized_pnl), fields.unrealized_pnl),
    )


def normalize_position(raw: Mapping[str, Any], fields: PositionFields) -> Optional[Position]:
    """Build a :class:`Position`; returns ``None`` for flat (zero amount) entries."""
    amount = to_float(raw.get(fields.position_amt), fields.position_amt)
    if amount == 0:
        return None
    return Position(
        symbol=str(raw.get(fields.symbol) or ""),
        position_amt=amount,
        entry_price=to_float(raw.get(fields.entry_price), fields.entry_price),
        mark_price=to_float(raw.get(fields.mark_price), fields.mark_price),
        unrealized_pnl=to_float(raw.get(fields.unrealized_pnl), fields.unrealized_pnl),
        leverage=to_float(raw.get(fields.leverage), fields.leverage),
        liquidation_price=to_float(raw.get(fields.liquidation_price), fields.liquidation_price),
        side="long" if amount > 0 else "short",
    )
