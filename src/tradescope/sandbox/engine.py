"""Sandbox execution engine -- simulated fills against replayed prices.

Fills happen at the latest replayed close for the symbol, moved against
the trader by slippage (higher on buys, lower on sells), clamped to the
limit price for limit orders, and rounded to cents.

Each position tracks its cost basis in cents. The average cost is
cost_basis / quantity. A sell removes a pro-rata share of the cost basis,
or all of it when the position is closed. Realized P&L is proceeds minus
the removed basis, i.e. (fill - average_cost) * quantity. Summed over a
round trip it equals total proceeds minus total cost exactly, so balances
never drift.

CRITICAL: All monetary values use Decimal. Never use float.
"""

import asyncio
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from uuid import uuid4

from tradescope.logging import get_logger
from tradescope.models import OrderType, TradeAction
from tradescope.sandbox.models import (
    BalanceSnapshot,
    SandboxPosition,
    SandboxSession,
    SandboxSettings,
    SandboxTrade,
    SandboxTradeResult,
)

logger = get_logger(__name__)

_CENTS = Decimal("0.01")


def round_cents(value: Decimal) -> Decimal:
    return value.quantize(_CENTS, rounding=ROUND_HALF_UP)


def compute_fill_price(
    market_price: Decimal,
    action: TradeAction,
    settings: SandboxSettings,
    order_type: OrderType = OrderType.MARKET,
    limit_price: Decimal | None = None,
) -> Decimal:
    """Apply slippage and the limit clamp to a market price, rounded to cents."""
    price = market_price
    if settings.enable_slippage:
        slippage = market_price * settings.slippage_percentage / 100
        if action == TradeAction.BUY:
            price += slippage
        else:
            price -= slippage

    if order_type == OrderType.LIMIT and limit_price is not None:
        if action == TradeAction.BUY and price > limit_price:
            price = limit_price
        elif action == TradeAction.SELL and price < limit_price:
            price = limit_price

    return round_cents(price)


class SandboxExecutionEngine:
    """Cash, positions and the trade ledger for one sandbox session.

    Trades and price ticks are serialized by a single asyncio.Lock so a
    trade always fills against a consistent price snapshot.

    Args:
        session: The session whose balance this engine owns. Trades are
            stamped with ``session.current_time``.
    """

    def __init__(self, session: SandboxSession) -> None:
        self._session = session
        self._lock = asyncio.Lock()
        self._prices: dict[str, Decimal] = {}
        self._positions: dict[str, SandboxPosition] = {}
        self._trades: list[SandboxTrade] = []
        self._snapshots: list[BalanceSnapshot] = []

    @property
    def session(self) -> SandboxSession:
        return self._session

    @property
    def balance(self) -> Decimal:
        return self._session.current_balance

    @property
    def trades(self) -> list[SandboxTrade]:
        return list(self._trades)

    @property
    def snapshots(self) -> list[BalanceSnapshot]:
        return list(self._snapshots)

    def get_price(self, symbol: str) -> Decimal | None:
        return self._prices.get(symbol)

    def get_positions(self) -> list[SandboxPosition]:
        return sorted(self._positions.values(), key=lambda p: p.symbol)

    def get_position(self, symbol: str) -> SandboxPosition | None:
        return self._positions.get(symbol)

    def market_value(self) -> Decimal:
        return sum((p.market_value for p in self._positions.values()), Decimal("0"))

    def equity(self) -> Decimal:
        return self._session.current_balance + self.market_value()

    # ──────────────────────────────────────────────
    # Price ticks
    # ──────────────────────────────────────────────

    async def update_price(self, symbol: str, price: Decimal, timestamp: datetime) -> None:
        await self.update_prices({symbol: price}, timestamp)

    async def update_prices(self, prices: dict[str, Decimal], timestamp: datetime) -> None:
        """Mark positions to market and record a balance snapshot."""
        async with self._lock:
            for symbol, price in prices.items():
                self._prices[symbol] = price
                position = self._positions.get(symbol)
                if position is not None:
                    position.current_price = price
                    position.last_update_time = timestamp
            self._record_snapshot(timestamp)

    def _record_snapshot(self, timestamp: datetime) -> None:
        snapshot = BalanceSnapshot(
            timestamp=timestamp,
            cash=self._session.current_balance,
            equity=self.equity(),
        )
        if self._snapshots and self._snapshots[-1].timestamp == timestamp:
            self._snapshots[-1] = snapshot
        else:
            self._snapshots.append(snapshot)

    # ──────────────────────────────────────────────
    # Trading
    # ──────────────────────────────────────────────

    async def execute_trade(
        self,
        symbol: str,
        action: TradeAction,
        quantity: int,
        order_type: OrderType = OrderType.MARKET,
        limit_price: Decimal | None = None,
    ) -> SandboxTradeResult:
        """Fill a trade against the current replayed price.

        Invalid requests return a failed result and change nothing.
        """
        async with self._lock:
            session = self._session
            if not session.is_active:
                return SandboxTradeResult.rejected(
                    "Sandbox session is not active", session.current_balance
                )
            if quantity <= 0:
                return SandboxTradeResult.rejected(
                    "Quantity must be positive", session.current_balance
                )
            if order_type == OrderType.LIMIT and limit_price is None:
                return SandboxTradeResult.rejected(
                    "Limit price required for limit orders", session.current_balance
                )

            market_price = self._prices.get(symbol)
            if market_price is None:
                return SandboxTradeResult.rejected(
                    f"Quote not available for {symbol}", session.current_balance
                )

            settings = session.settings
            fill = compute_fill_price(market_price, action, settings, order_type, limit_price)
            gross = fill * quantity
            commission = settings.commission
            position = self._positions.get(symbol)
            held = position.quantity if position else 0

            if action == TradeAction.BUY:
                if gross + commission > session.current_balance:
                    return SandboxTradeResult.rejected(
                        "Insufficient funds", session.current_balance
                    )
                if held + quantity > settings.max_positions_per_symbol:
                    return SandboxTradeResult.rejected(
                        f"Position limit exceeded: max {settings.max_positions_per_symbol} "
                        f"shares of {symbol}",
                        session.current_balance,
                    )
                realized = None
                self._apply_buy(symbol, quantity, gross)
                session.current_balance -= gross + commission
            else:
                if position is None or held < quantity:
                    return SandboxTradeResult.rejected(
                        f"Insufficient shares: holding {held} {symbol}, requested {quantity}",
                        session.current_balance,
                    )
                realized = self._apply_sell(position, quantity, gross)
                session.current_balance += gross - commission

            trade = SandboxTrade(
                trade_id=f"sb_{uuid4().hex[:12]}",
                session_id=session.session_id,
                symbol=symbol,
                action=action,
                quantity=quantity,
                price=fill,
                gross_value=gross,
                commission=commission,
                executed_at=session.current_time,
                order_type=order_type,
                realized_pnl=realized,
            )
            self._trades.append(trade)
            self._record_snapshot(session.current_time)

            logger.info(
                "sandbox_trade_executed",
                session_id=session.session_id,
                trade_id=trade.trade_id,
                symbol=symbol,
                action=action.value,
                quantity=quantity,
                fill_price=str(fill),
                realized_pnl=str(realized) if realized is not None else None,
                balance=str(session.current_balance),
            )

            return SandboxTradeResult(
                success=True,
                trade_id=trade.trade_id,
                execution_price=fill,
                execution_time=session.current_time,
                slippage=abs(fill - market_price),
                commission=commission,
                total_cost=gross + commission,
                new_balance=session.current_balance,
            )

    def _apply_buy(self, symbol: str, quantity: int, gross: Decimal) -> None:
        now = self._session.current_time
        position = self._positions.get(symbol)
        if position is None:
            self._positions[symbol] = SandboxPosition(
                symbol=symbol,
                quantity=quantity,
                cost_basis=gross,
                current_price=self._prices[symbol],
                first_purchase_time=now,
                last_update_time=now,
            )
            return
        position.quantity += quantity
        position.cost_basis += gross
        position.last_update_time = now

    def _apply_sell(self, position: SandboxPosition, quantity: int, gross: Decimal) -> Decimal:
        if quantity == position.quantity:
            removed = position.cost_basis
        else:
            removed = round_cents(position.cost_basis * quantity / position.quantity)

        realized = gross - removed
        position.quantity -= quantity
        position.cost_basis -= removed
        position.last_update_time = self._session.current_time
        if position.quantity == 0:
            del self._positions[position.symbol]
        return realized
