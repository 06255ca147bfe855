"""Grid buy/sell triggers and position sizing.

All functions are pure computation — no I/O, no database access.
"""


def should_buy(current_price: float, last_entry_price: float | None, drop_pct: float) -> bool:
    """Buy on the first entry, or once price falls drop_pct below the last entry."""
    if not last_entry_price:
        return True
    trigger_price = last_entry_price * (1 - drop_pct / 100)
    return current_price <= trigger_price


def should_sell(current_price: float, entry_price: float, profit_pct: float) -> bool:
    """Sell once price rises profit_pct above the entry."""
    target_price = entry_price * (1 + profit_pct / 100)
    return current_price >= target_price


def position_size(capital: float, buy_pct: float, price: float) -> float:
    """Base-asset amount bought with buy_pct of capital at price."""
    if price <= 0:
        return 0.0
    return capital * (buy_pct / 100) / price


def buy_levels(base_price: float, drop_pct: float, levels: int = 3) -> list[float]:
    """Next `levels` buy trigger prices below base_price."""
    return [base_price * (1 - drop_pct / 100 * i) for i in range(1, levels + 1)]
