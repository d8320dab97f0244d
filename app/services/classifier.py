# app/services/classifier.py
"""
Channel classification from an order's provenance tags.

Intakes disagree on how they label orders (channel="online",
origin="site", origin="totem", a bare source_domain ...), so the
channel is derived here instead of being trusted from any single field.

Rules, first match wins:
  1. source_domain matches a partner-site pattern  -> PARTNER_SITE
  2. channel/origin says kiosk                     -> KIOSK
  3. channel/origin says online, or any domain     -> ONLINE_MENU
  4. everything else                               -> POINT_OF_SALE
"""
from enum import Enum
from fnmatch import fnmatch
from typing import Iterable, Protocol


class Channel(str, Enum):
    PARTNER_SITE = "partner_site"
    ONLINE_MENU = "online_menu"
    KIOSK = "kiosk"
    POINT_OF_SALE = "point_of_sale"


ONLINE_CHANNELS = frozenset({Channel.PARTNER_SITE, Channel.ONLINE_MENU})

KIOSK_TAGS = frozenset({"kiosk", "totem", "autoatendimento", "self_service"})
ONLINE_TAGS = frozenset(
    {"online", "site", "cardapio_online", "cardapio", "menu", "delivery_online", "web"}
)


class HasProvenance(Protocol):
    channel: str | None
    origin: str | None
    source_domain: str | None


def _norm(value: str | None) -> str:
    return (value or "").strip().lower()


def matches_partner_domain(source_domain: str | None, patterns: Iterable[str]) -> bool:
    """
    True when the domain matches one of the partner patterns.

    Patterns containing glob characters ("*.parceiro.com") use fnmatch;
    plain patterns match as a substring so "parceiro.com" also covers
    "loja.parceiro.com/checkout".
    """
    domain = _norm(source_domain)
    if not domain:
        return False
    for raw in patterns:
        pattern = _norm(raw)
        if not pattern:
            continue
        if any(ch in pattern for ch in "*?["):
            if fnmatch(domain, pattern):
                return True
        elif pattern in domain:
            return True
    return False


def classify_channel(
    channel: str | None,
    origin: str | None,
    source_domain: str | None,
    partner_patterns: Iterable[str] = (),
) -> Channel:
    if matches_partner_domain(source_domain, partner_patterns):
        return Channel.PARTNER_SITE

    tags = {_norm(channel), _norm(origin)}
    if tags & KIOSK_TAGS:
        return Channel.KIOSK
    if tags & ONLINE_TAGS or _norm(source_domain):
        return Channel.ONLINE_MENU
    return Channel.POINT_OF_SALE


def classify_order(order: HasProvenance, partner_patterns: Iterable[str] = ()) -> Channel:
    """Classify anything carrying channel/origin/source_domain attributes."""
    return classify_channel(
        order.channel,
        order.origin,
        order.source_domain,
        partner_patterns,
    )
