"""
Fee/tax netting - channel-segmented revenue figures for one set of orders.

Pure functions over Order values: no IO, no mutation, safe to call
concurrently. All arithmetic is Decimal; totals are folded from per-channel
buckets with an associative, commutative `+`, so input order never changes
the result.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from functools import reduce
from typing import Iterable, Mapping

from .entity import Order, OrderPaymentStatus, Platform, ZERO


@dataclass(frozen=True)
class ChannelTotals:
    gross: Decimal = ZERO
    ticket_count: int = 0
    order_count: int = 0
    marketplace_fee: Decimal = ZERO
    processor_fee: Decimal = ZERO
    tax_withholding_a: Decimal = ZERO
    tax_withholding_b: Decimal = ZERO
    refunded: Decimal = ZERO

    @property
    def net(self) -> Decimal:
        return (
            self.gross
            - self.marketplace_fee
            - self.processor_fee
            - self.tax_withholding_a
            - self.tax_withholding_b
        )

    @property
    def net_after_refunds(self) -> Decimal:
        return self.net - self.refunded

    def __add__(self, other: "ChannelTotals") -> "ChannelTotals":
        if not isinstance(other, ChannelTotals):
            return NotImplemented
        return ChannelTotals(
            gross=self.gross + other.gross,
            ticket_count=self.ticket_count + other.ticket_count,
            order_count=self.order_count + other.order_count,
            marketplace_fee=self.marketplace_fee + other.marketplace_fee,
            processor_fee=self.processor_fee + other.processor_fee,
            tax_withholding_a=self.tax_withholding_a + other.tax_withholding_a,
            tax_withholding_b=self.tax_withholding_b + other.tax_withholding_b,
            refunded=self.refunded + other.refunded,
        )

    @classmethod
    def of(cls, order: Order) -> "ChannelTotals":
        refunded = order.total_amount if order.payment_status == OrderPaymentStatus.REFUNDED else ZERO
        return cls(
            gross=order.total_amount,
            ticket_count=order.ticket_count,
            order_count=1,
            marketplace_fee=order.marketplace_fee,
            processor_fee=order.processor_fee,
            tax_withholding_a=order.tax_withholding_a,
            tax_withholding_b=order.tax_withholding_b,
            refunded=refunded,
        )


@dataclass(frozen=True)
class FinancialSummary:
    by_channel: Mapping[Platform, ChannelTotals]
    include_refunded: bool
    total: ChannelTotals = field(default_factory=ChannelTotals)

    def channel(self, platform: Platform) -> ChannelTotals:
        return self.by_channel.get(Platform(platform), ChannelTotals())

    @property
    def gateway_gross(self) -> Decimal:
        """Gross held by the payment processor (gateway + in-app)"""
        return self.channel(Platform.GATEWAY).gross + self.channel(Platform.IN_APP).gross

    @property
    def cash_gross(self) -> Decimal:
        return self.channel(Platform.CASH).gross


def _counted_statuses(include_refunded: bool) -> frozenset[OrderPaymentStatus]:
    if include_refunded:
        return frozenset({OrderPaymentStatus.PAID, OrderPaymentStatus.REFUNDED})
    return frozenset({OrderPaymentStatus.PAID})


def compute_financial_summary(orders: Iterable[Order], *, include_refunded: bool) -> FinancialSummary:
    """
    Aggregate gross, ticket counts, fees, withholdings and net per channel.

    include_refunded=False (live dashboards): only paid orders count.
    include_refunded=True (historical audit): refunded orders count as sales
    and their total is reported again as a `refunded` line, so
    `net_after_refunds` shows what the organization actually keeps.
    """
    counted = _counted_statuses(include_refunded)
    buckets: dict[Platform, ChannelTotals] = {p: ChannelTotals() for p in Platform}
    for order in orders:
        if order.payment_status not in counted:
            continue
        buckets[order.platform] = buckets[order.platform] + ChannelTotals.of(order)

    total = reduce(lambda acc, t: acc + t, buckets.values(), ChannelTotals())
    return FinancialSummary(by_channel=buckets, include_refunded=include_refunded, total=total)
