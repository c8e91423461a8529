"""USD notional / close percentage -> integer contract counts."""

from __future__ import annotations

import math

from trading.errors import InvalidPercent, InvalidSize, NoPosition


def calc_contracts(position_size_usd: float) -> int:
    """Contracts to open for ``position_size_usd`` (one contract per whole USD)."""
    if position_size_usd is None or not math.isfinite(position_size_usd) or position_size_usd <= 0:
        raise InvalidSize(f"position_size_usd must be > 0, got {position_size_usd!r}")
    contracts = int(math.floor(position_size_usd))
    if contracts < 1:
        raise InvalidSize(
            f"position_size_usd {position_size_usd:.2f} is too small to convert into contracts"
        )
    return contracts


def calc_partial_contracts(total_contracts: int, close_percent: float) -> int:
    """
    Contracts to close for a partial close of ``close_percent`` percent.

    Result is clamped to ``[1, total_contracts]``: a partial close always closes
    something and never more than the open position.
    """
    if total_contracts is None or total_contracts <= 0:
        raise NoPosition("no open position to partially close")
    if close_percent is None or not math.isfinite(close_percent) or close_percent <= 0 or close_percent > 100:
        raise InvalidPercent(f"close_percentage must be in (0, 100], got {close_percent!r}")

    close_contracts = int(math.floor(total_contracts * close_percent / 100))
    if close_contracts < 1:
        close_contracts = 1
    if close_contracts > total_contracts:
        close_contracts = total_contracts
    return close_contracts
