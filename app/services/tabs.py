# app/services/tabs.py
"""
Assignment of orders to the operator's queues ("tabs").

Pending, Kiosk, PDV, Rejected and Receivables are pairwise disjoint for a
given deployment mode: an order lands in at most one of them. Precedence
is Rejected > Receivables > channel tabs, and every channel predicate
excludes what a higher tab already claims.

All is a separate, filtered view of fully confirmed orders.
"""
from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from typing import Callable, Iterable

from app.core.timeutils import as_utc, local_date, utcnow
from app.models.order import Order
from app.schemas.view_state import AllTabFilters
from app.services.classifier import Channel, ONLINE_CHANNELS, classify_order


class Tab(str, Enum):
    PENDING = "pending"
    KIOSK = "kiosk"
    POINT_OF_SALE = "pdv"
    REJECTED = "rejected"
    RECEIVABLES = "receivables"
    ALL = "all"


class DeploymentMode(str, Enum):
    PARTNER_SITE = "partner_site"
    ONLINE_MENU = "online_menu"


# Which online channel feeds the Pending tab in each mode
PRIMARY_ONLINE_CHANNEL: dict[DeploymentMode, Channel] = {
    DeploymentMode.PARTNER_SITE: Channel.PARTNER_SITE,
    DeploymentMode.ONLINE_MENU: Channel.ONLINE_MENU,
}

# Evaluation order for primary_tab(); also the precedence order
DISJOINT_TABS: tuple[Tab, ...] = (
    Tab.REJECTED,
    Tab.RECEIVABLES,
    Tab.PENDING,
    Tab.KIOSK,
    Tab.POINT_OF_SALE,
)


@dataclass(frozen=True)
class TabContext:
    mode: DeploymentMode
    now: datetime


Predicate = Callable[[Order, Channel, TabContext], bool]


# ---------------------------------------------------------------------------
# Order-level facts
# ---------------------------------------------------------------------------


def is_fully_confirmed(order: Order) -> bool:
    return order.status in ("completed", "ready") and order.payment_status == "paid"


def is_rejected(order: Order) -> bool:
    return order.status == "cancelled" and bool((order.rejection_reason or "").strip())


def is_open_receivable(order: Order) -> bool:
    return (
        bool(order.is_credit_sale)
        and order.credit_received_at is None
        and order.payment_status != "cancelled"
    )


def is_held_for_release(order: Order, now: datetime) -> bool:
    """Orders taken while the store was closed stay hidden until release_at."""
    if not order.queued_until_next_open:
        return False
    if order.release_at is None:
        return True
    return as_utc(order.release_at) > as_utc(now)


def _claimed_elsewhere(order: Order) -> bool:
    return is_rejected(order) or is_open_receivable(order)


# ---------------------------------------------------------------------------
# Predicate table
# ---------------------------------------------------------------------------


def _pending(order: Order, channel: Channel, ctx: TabContext) -> bool:
    return (
        channel == PRIMARY_ONLINE_CHANNEL[ctx.mode]
        and not is_fully_confirmed(order)
        and not _claimed_elsewhere(order)
        and not is_held_for_release(order, ctx.now)
    )


def _kiosk(order: Order, channel: Channel, ctx: TabContext) -> bool:
    return channel == Channel.KIOSK and not _claimed_elsewhere(order)


def _point_of_sale(order: Order, channel: Channel, ctx: TabContext) -> bool:
    return (
        channel == Channel.POINT_OF_SALE
        and (order.status == "pending" or order.payment_status == "pending")
        and not _claimed_elsewhere(order)
    )


def _rejected(order: Order, channel: Channel, ctx: TabContext) -> bool:
    return is_rejected(order)


def _receivables(order: Order, channel: Channel, ctx: TabContext) -> bool:
    return is_open_receivable(order) and not is_rejected(order)


# One table for every deployment mode; the mode only changes which
# channel _pending treats as primary.
TAB_PREDICATES: dict[Tab, Predicate] = {
    Tab.REJECTED: _rejected,
    Tab.RECEIVABLES: _receivables,
    Tab.PENDING: _pending,
    Tab.KIOSK: _kiosk,
    Tab.POINT_OF_SALE: _point_of_sale,
}


# ---------------------------------------------------------------------------
# Search (order number, customer name, phone)
# ---------------------------------------------------------------------------


def matches_search(order: Order, term: str | None) -> bool:
    if not term:
        return True
    needle = term.strip().lower()
    if not needle:
        return True
    return (
        needle in (order.order_number or "").lower()
        or needle in (order.customer_name or "").lower()
        or term.strip() in (order.customer_phone or "")
    )


# ---------------------------------------------------------------------------
# Partitioner
# ---------------------------------------------------------------------------


class TabPartitioner:
    """
    Pure tab assignment for one establishment configuration.

    Holds only configuration (mode, partner patterns, timezone), so the
    same instance can be reused across requests. Running it twice on an
    unchanged snapshot gives the same assignment.
    """

    def __init__(
        self,
        mode: DeploymentMode | str,
        partner_patterns: Iterable[str] = (),
        tz_name: str = "America/Sao_Paulo",
    ):
        self.mode = DeploymentMode(mode)
        self.partner_patterns = tuple(partner_patterns)
        self.tz_name = tz_name

    def classify(self, order: Order) -> Channel:
        return classify_order(order, self.partner_patterns)

    def _context(self, now: datetime | None) -> TabContext:
        return TabContext(mode=self.mode, now=now or utcnow())

    def in_tab(self, order: Order, tab: Tab, now: datetime | None = None) -> bool:
        if tab == Tab.ALL:
            raise ValueError("The All tab needs filters; use list_all()")
        return TAB_PREDICATES[tab](order, self.classify(order), self._context(now))

    def primary_tab(self, order: Order, now: datetime | None = None) -> Tab | None:
        """The single disjoint tab this order belongs to, or None."""
        channel = self.classify(order)
        ctx = self._context(now)
        for tab in DISJOINT_TABS:
            if TAB_PREDICATES[tab](order, channel, ctx):
                return tab
        return None

    def tabs_for(self, order: Order, now: datetime | None = None) -> list[Tab]:
        """Every disjoint tab whose predicate accepts the order (at most one)."""
        channel = self.classify(order)
        ctx = self._context(now)
        return [tab for tab in DISJOINT_TABS if TAB_PREDICATES[tab](order, channel, ctx)]

    def partition(
        self,
        orders: Iterable[Order],
        now: datetime | None = None,
    ) -> dict[Tab, list[Order]]:
        ctx = self._context(now)
        result: dict[Tab, list[Order]] = {tab: [] for tab in DISJOINT_TABS}
        for order in orders:
            channel = self.classify(order)
            for tab in DISJOINT_TABS:
                if TAB_PREDICATES[tab](order, channel, ctx):
                    result[tab].append(order)
                    break
        return result

    # ----- All tab -----

    def is_site_order(self, order: Order) -> bool:
        return self.classify(order) in ONLINE_CHANNELS

    def list_all(
        self,
        orders: Iterable[Order],
        filters: AllTabFilters | None = None,
        today: date | None = None,
    ) -> list[Order]:
        filters = filters or AllTabFilters()
        if not filters.show_pdv and not filters.show_site:
            return []

        day = filters.day or today or local_date(utcnow(), self.tz_name)
        result: list[Order] = []
        for order in orders:
            if not is_fully_confirmed(order) or is_open_receivable(order):
                continue
            if local_date(order.created_at, self.tz_name) != day:
                continue
            if filters.payment_method and (order.payment_method or "").lower() != filters.payment_method:
                continue
            if filters.delivery_only and order.order_type != "delivery":
                continue
            if filters.show_pdv != filters.show_site:
                site = self.is_site_order(order)
                if filters.show_site and not site:
                    continue
                if filters.show_pdv and site:
                    continue
            result.append(order)
        return result

    # ----- Listing entry point -----

    def list_tab(
        self,
        orders: Iterable[Order],
        tab: Tab | str,
        search: str | None = None,
        filters: AllTabFilters | None = None,
        now: datetime | None = None,
    ) -> list[Order]:
        tab = Tab(tab)
        now = now or utcnow()
        if tab == Tab.ALL:
            selected = self.list_all(orders, filters, today=local_date(now, self.tz_name))
        else:
            ctx = self._context(now)
            predicate = TAB_PREDICATES[tab]
            selected = [o for o in orders if predicate(o, self.classify(o), ctx)]
        return [o for o in selected if matches_search(o, search)]

    def counts(self, orders: Iterable[Order], now: datetime | None = None) -> dict[Tab, int]:
        return {tab: len(items) for tab, items in self.partition(orders, now).items()}
