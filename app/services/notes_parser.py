# app/services/notes_parser.py
"""
Line-item reconstruction from order text.

Online intakes do not always persist structured items; what survives is
the text they wrote into orders.notes (bracketed tokens from the partner
site, WhatsApp-style lines from older menus). This module turns that text,
or the stored order_items rows, into canonical priced lines for receipts.

Strategies run in a fixed order and the first one that yields at least
one item wins outright:

  BRACKETED     "[2x X-Burger - R$ 20,00 Obs: sem cebola]"
  LEGACY_LINES  "2x X-Burger - R$ 20,00" one item per line
  STORED_ITEMS  persisted order_items (+ addons)
  FALLBACK      one pseudo-item priced at the order total

Nothing here raises on malformed text; tokens that do not parse are
skipped.
"""
import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Iterable, Protocol

from app.services.classifier import Channel

logger = logging.getLogger(__name__)

MAX_QUANTITY = 1000


class Strategy(str, Enum):
    BRACKETED = "bracketed"
    LEGACY_LINES = "legacy_lines"
    STORED_ITEMS = "stored_items"
    FALLBACK = "fallback"


@dataclass
class ParsedItem:
    name: str
    quantity: int
    unit_price: float
    total_price: float
    notes: str | None = None


@dataclass
class ParseResult:
    items: list[ParsedItem]
    strategy: Strategy
    # item count produced by every strategy that ran, in order
    attempts: dict[str, int] = field(default_factory=dict)


class StoredItem(Protocol):
    product_name: str | None
    quantity: int
    unit_price: float
    total_price: float
    notes: str | None
    customizations: list[dict]


FALLBACK_NAMES: dict[Channel, str] = {
    Channel.PARTNER_SITE: "Pedido Site",
    Channel.ONLINE_MENU: "Pedido Online",
    Channel.KIOSK: "Pedido Totem",
    Channel.POINT_OF_SALE: "Pedido PDV",
}

# Products whose sauces are fixed; a "Molhos:" label under them is noise
ACCOMPANIMENT_KEYWORDS = (
    "batata",
    "fritas",
    "frango no pote",
    "frango pote",
    "acompanhamento",
    "cebolas empanadas",
    "mini chickens",
)

# Words that only show up in already-rendered receipt / checkout text
FINANCIAL_KEYWORDS = frozenset(
    {
        "subtotal", "total", "entrega", "taxa", "frete", "delivery",
        "pagamento", "dinheiro", "pix", "cartao", "cartão", "credito",
        "crédito", "debito", "débito", "troco", "desconto", "valor",
        "cliente", "endereco", "endereço", "telefone", "celular", "bairro",
        "rua", "avenida", "numero", "número", "complemento", "referencia",
        "referência", "cep", "retirada", "payment", "address", "customer",
        "phone",
    }
)

STOPWORDS = frozenset(
    {
        "sem", "com", "para", "pra", "por", "mais", "dos", "das", "que",
        "uma", "obs", "observação", "observacao", "molho", "molhos",
        "the", "and", "with",
    }
)


# ---------------------------------------------------------------------------
# Regexes
# ---------------------------------------------------------------------------

_MARKER_WORDS = r"(?:Obs|Observa[çc][ãa]o|Molhos?|Adicionais)"
_NOTE_MARKER = re.compile(_MARKER_WORDS + r"\s*:", re.IGNORECASE)
_NOTE_LINE_START = re.compile(
    r"^(?:" + _MARKER_WORDS + r"\s*:|Trio\s*:|Sem\s+molho\b)", re.IGNORECASE
)
_MARKER_ONLY = re.compile(
    r"^(?:(?:Obs|Observa[çc][ãa]o|Molhos?|Adicionais|Trio)\s*:\s*)+$", re.IGNORECASE
)
_OBS_PREFIXES = re.compile(r"^(?:Obs\s*:\s*)+", re.IGNORECASE)
_OBS_BEFORE_MARKER = re.compile(
    r"^Obs:\s*(?=(?:Molhos?|Observa[çc][ãa]o|Adicionais|Trio)\s*:)", re.IGNORECASE
)
_MOLHO_LABEL = re.compile(r"^Molhos?\s*:", re.IGNORECASE)
_NOTE_LABEL = re.compile(r"^(?:" + _MARKER_WORDS + r"|Trio)\s*:", re.IGNORECASE)
_TRIO_LABEL = re.compile(r"^Trio\s*:", re.IGNORECASE)
_ADDONS_LABEL = re.compile(r"^Adicionais\s*:\s*", re.IGNORECASE)
_OPTION_LABEL = re.compile(r"^Op[çc][ãa]o\s*:", re.IGNORECASE)
_ADDON_LINE = re.compile(r"^\d+\s*x\s", re.IGNORECASE)

_BRACKET_TOKEN = re.compile(r"\[([^\[\]]*)\]")
_QTY_PREFIX = re.compile(r"^\s*(\d+)\s*x\s+(.*)$", re.IGNORECASE | re.DOTALL)
_PRICE = re.compile(r"R\$\s*(\d[\d.,]*)", re.IGNORECASE)
_TRIO_IN_NAME = re.compile(r"\+\s*Trio[^(]*\(([^)]+)\)", re.IGNORECASE)

_LINE_DASH = re.compile(
    r"^(\d+)\s*x\s+(.+?)\s*[-–]\s*R\$\s*(\d[\d.,]*)\s*(.*)$", re.IGNORECASE
)
_LINE_BARE = re.compile(r"^(\d+)\s*x\s+(.+?)\s+R\$\s*(\d[\d.,]*)\s*(.*)$", re.IGNORECASE)

_WORD = re.compile(r"[a-zà-ÿ]{3,}", re.IGNORECASE)


# ---------------------------------------------------------------------------
# Prices
# ---------------------------------------------------------------------------


def parse_price(raw: Any) -> float | None:
    """
    Parse a BRL amount.

    With a comma present the comma is the decimal separator and dots are
    thousands separators ("R$ 1.234,56" -> 1234.56); otherwise the value
    is read as a plain decimal ("23.50" -> 23.5). Returns None when no
    number can be read.
    """
    if raw is None:
        return None
    if isinstance(raw, (int, float)):
        return round(float(raw), 2)
    text = str(raw).strip()
    match = re.search(r"\d[\d.,]*", text)
    if not match:
        return None
    number = match.group(0).rstrip(".,")
    if "," in number:
        number = number.replace(".", "").replace(",", ".")
    try:
        return round(float(number), 2)
    except ValueError:
        return None


def _valid_quantity(raw: str) -> int | None:
    try:
        qty = int(raw)
    except (TypeError, ValueError):
        return None
    if qty <= 0 or qty > MAX_QUANTITY:
        return None
    return qty


# ---------------------------------------------------------------------------
# Notes cleanup (idempotent)
# ---------------------------------------------------------------------------


def is_accompaniment(name: str | None) -> bool:
    lowered = (name or "").lower()
    return any(keyword in lowered for keyword in ACCOMPANIMENT_KEYWORDS)


def _clean_line(line: str, accompaniment: bool) -> str | None:
    line = line.strip()
    if not line:
        return None
    if _OBS_PREFIXES.match(line):
        line = _OBS_PREFIXES.sub("Obs: ", line).strip()
    line = _OBS_BEFORE_MARKER.sub("", line).strip()
    if not line or _MARKER_ONLY.match(line):
        return None
    if accompaniment and _MOLHO_LABEL.match(line):
        return None
    if accompaniment and line.startswith("Obs: ") and _OPTION_LABEL.match(line[5:]):
        return line[5:]
    if _NOTE_LABEL.match(line) or _ADDON_LINE.match(line):
        return line
    if accompaniment and _OPTION_LABEL.match(line):
        return line
    return f"Obs: {line}"


def _split_addons(raw: str) -> list[str]:
    """'sem sal | Adicionais: bacon' -> ['sem sal', 'Adicionais: bacon']"""
    if "|" not in raw or "adicionais" not in raw.lower():
        return [raw]
    parts = [p.strip() for p in raw.split("|") if p.strip()]
    addons = [p for p in parts if "adicionais:" in p.lower()]
    rest = [p for p in parts if "adicionais:" not in p.lower()]
    return ([" | ".join(rest)] if rest else []) + addons


def _normalise_addons(line: str) -> str | None:
    index = line.lower().find("adicionais:")
    value = line[index + len("adicionais:"):].strip()
    return f"Adicionais: {value}" if value else None


def looks_financial(text: str) -> bool:
    """More than half of the significant words are checkout/logistics words."""
    words = [w.lower() for w in _WORD.findall(text)]
    significant = [w for w in words if w not in STOPWORDS]
    if not significant:
        return False
    hits = sum(1 for w in significant if w in FINANCIAL_KEYWORDS)
    return hits * 2 > len(significant)


def clean_item_notes(notes: str | None, item_name: str | None = None) -> str | None:
    """
    Normalise an item's notes.

    - repeated "Obs:" prefixes collapse to one
    - "Obs:" directly in front of another marker is dropped
    - free text without a label is printed as "Obs: ..."
    - lines holding only a marker are dropped, as are duplicate lines
    - accompaniment products lose "Molhos:" lines
    - "Adicionais:" parts are split out of "|"-joined text
    - Trio lines come first, then add-ons, then everything else
    - the whole note is discarded when it reads like receipt totals or
      customer/address data

    clean_item_notes(clean_item_notes(x, n), n) == clean_item_notes(x, n)
    """
    if not notes or not notes.strip():
        return None

    accompaniment = is_accompaniment(item_name)
    seen: set[str] = set()
    trio: list[str] = []
    addons: list[str] = []
    others: list[str] = []
    for raw in notes.replace("\r", "\n").split("\n"):
        for piece in _split_addons(raw):
            if "adicionais:" in piece.lower():
                line, group = _normalise_addons(piece), addons
            else:
                line = _clean_line(piece, accompaniment)
                group = trio if line and _TRIO_LABEL.match(line) else others
            if line is None:
                continue
            key = line.lower()
            if key in seen:
                continue
            seen.add(key)
            group.append(line)

    lines = trio + addons + others
    if not lines:
        return None
    cleaned = "\n".join(lines)
    if looks_financial(cleaned):
        return None
    return cleaned


# ---------------------------------------------------------------------------
# Tokenizers
# ---------------------------------------------------------------------------


def tokenize_brackets(text: str | None) -> list[str]:
    """Contents of every [...] group, in order."""
    if not text:
        return []
    return [token.strip() for token in _BRACKET_TOKEN.findall(text) if token.strip()]


def tokenize_lines(text: str | None) -> list[str]:
    """Non-empty lines with WhatsApp bold markers removed from the edges."""
    if not text:
        return []
    lines = []
    for raw in text.replace("\r", "\n").split("\n"):
        line = raw.strip().strip("*").strip()
        if line:
            lines.append(line)
    return lines


# ---------------------------------------------------------------------------
# Shared name / notes handling
# ---------------------------------------------------------------------------


def _split_name_and_notes(name: str, notes: str | None) -> tuple[str, list[str]]:
    """Move any marker text out of the name and pull "+ Trio (X)" into a note."""
    extra: list[str] = []
    name = name.replace("*", "")

    marker = _NOTE_MARKER.search(name)
    if marker:
        extra.append(name[marker.start():].strip())
        name = name[: marker.start()]

    trio = _TRIO_IN_NAME.search(name)
    if trio:
        extra.insert(0, f"Trio: {trio.group(1).strip()}")
        name = _TRIO_IN_NAME.sub("", name)

    name = re.sub(r"^[\s\-–:|]+|[\s\-–:|]+$", "", name)
    name = re.sub(r"\s{2,}", " ", name)

    if notes and notes.strip():
        extra.append(notes.strip())
    return name, extra


def _build_item(qty: int, name: str, total: float, note_parts: list[str]) -> ParsedItem | None:
    if not name or total is None or total < 0:
        return None
    notes = clean_item_notes("\n".join(note_parts), name) if note_parts else None
    return ParsedItem(
        name=name,
        quantity=qty,
        unit_price=round(total / qty, 2),
        total_price=round(total, 2),
        notes=notes,
    )


# ---------------------------------------------------------------------------
# Strategy A: bracketed tokens
# ---------------------------------------------------------------------------


def parse_bracket_token(token: str) -> ParsedItem | None:
    match = _QTY_PREFIX.match(token.replace("*", ""))
    if not match:
        return None
    qty = _valid_quantity(match.group(1))
    if qty is None:
        return None
    rest = match.group(2).strip()

    marker = _NOTE_MARKER.search(rest)
    head = rest[: marker.start()] if marker else rest
    notes = rest[marker.start():] if marker else ""

    prices = list(_PRICE.finditer(head))
    if prices:
        price = prices[-1]
        total = parse_price(price.group(1))
        head = head[: price.start()] + head[price.end():]
    else:
        # price written after the notes: "[1x X Obs: bem passado - R$ 10,00]"
        prices = list(_PRICE.finditer(notes))
        if not prices:
            return None
        price = prices[-1]
        total = parse_price(price.group(1))
        notes = notes[: price.start()] + notes[price.end():]
        notes = re.sub(r"[\s\-–|]+$", "", notes)

    if total is None:
        return None

    name, note_parts = _split_name_and_notes(head, notes)
    return _build_item(qty, name, total, note_parts)


def parse_bracketed(text: str | None) -> list[ParsedItem]:
    items = []
    for token in tokenize_brackets(text):
        item = parse_bracket_token(token)
        if item is not None:
            items.append(item)
    return items


# ---------------------------------------------------------------------------
# Strategy B: legacy one-item-per-line notation
# ---------------------------------------------------------------------------


def _match_item_line(line: str) -> re.Match | None:
    return _LINE_DASH.match(line) or _LINE_BARE.match(line)


def _trailing_notes(trailing: str) -> str:
    trailing = trailing.strip()
    if not trailing:
        return ""
    if _NOTE_LINE_START.match(trailing):
        return trailing
    marker = _NOTE_MARKER.search(trailing)
    if marker:
        return trailing[marker.start():].strip()
    sem_molho = re.search(r"Sem\s+molho\b.*", trailing, re.IGNORECASE)
    return sem_molho.group(0).strip() if sem_molho else ""


def parse_legacy_lines(text: str | None) -> list[ParsedItem]:
    lines = tokenize_lines(text)
    items: list[ParsedItem] = []
    i = 0
    while i < len(lines):
        match = _match_item_line(lines[i])
        i += 1
        if not match:
            continue
        qty = _valid_quantity(match.group(1))
        total = parse_price(match.group(3))
        if qty is None or total is None:
            continue

        notes = _trailing_notes(match.group(4) or "")
        # a note on the following line belongs to this item
        while i < len(lines) and _NOTE_LINE_START.match(lines[i]) and not _match_item_line(lines[i]):
            notes = f"{notes}\n{lines[i]}" if notes else lines[i]
            i += 1

        name, note_parts = _split_name_and_notes(match.group(2), notes)
        item = _build_item(qty, name, total, note_parts)
        if item is not None:
            items.append(item)
    return items


# ---------------------------------------------------------------------------
# Strategy C: stored order_items
# ---------------------------------------------------------------------------


def render_addon(addon: dict) -> str | None:
    name = str(addon.get("name") or "").strip()
    if not name:
        return None
    qty = _valid_quantity(addon.get("quantity") or 1) or 1
    price = parse_price(addon.get("price", addon.get("unit_price"))) or 0.0
    return f"{qty}x {name} - R$ {price * qty:.2f}"


def from_stored_items(stored: Iterable[StoredItem] | None) -> list[ParsedItem]:
    items: list[ParsedItem] = []
    for row in stored or []:
        qty = _valid_quantity(getattr(row, "quantity", 0))
        if qty is None:
            continue
        name = (getattr(row, "product_name", None) or "Item").strip() or "Item"
        unit = parse_price(getattr(row, "unit_price", None)) or 0.0
        total = parse_price(getattr(row, "total_price", None)) or round(unit * qty, 2)

        free_text = (getattr(row, "notes", None) or "").strip()
        parts: list[str] = []
        for addon in getattr(row, "customizations", None) or []:
            if not isinstance(addon, dict):
                continue
            rendered = render_addon(addon)
            if rendered and rendered.lower() not in free_text.lower():
                parts.append(rendered)
        if free_text:
            parts.append(free_text)

        items.append(
            ParsedItem(
                name=name,
                quantity=qty,
                unit_price=round(total / qty, 2) if total else unit,
                total_price=round(total, 2),
                notes=clean_item_notes("\n".join(parts), name) if parts else None,
            )
        )
    return items


# ---------------------------------------------------------------------------
# Cascade
# ---------------------------------------------------------------------------


@dataclass
class ParseInput:
    text: str | None
    stored_items: list[Any]
    total_amount: float
    channel: Channel


STRATEGIES: list[tuple[Strategy, Callable[[ParseInput], list[ParsedItem]]]] = [
    (Strategy.BRACKETED, lambda data: parse_bracketed(data.text)),
    (Strategy.LEGACY_LINES, lambda data: parse_legacy_lines(data.text)),
    (Strategy.STORED_ITEMS, lambda data: from_stored_items(data.stored_items)),
]


def fallback_item(total_amount: float, channel: Channel) -> ParsedItem:
    total = round(float(total_amount or 0.0), 2)
    return ParsedItem(
        name=FALLBACK_NAMES.get(channel, "Pedido"),
        quantity=1,
        unit_price=total,
        total_price=total,
        notes=None,
    )


def reconstruct_items(
    text: str | None,
    stored_items: Iterable[Any] | None = None,
    total_amount: float = 0.0,
    channel: Channel = Channel.POINT_OF_SALE,
) -> ParseResult:
    """Run the strategies in order and return the first non-empty result."""
    data = ParseInput(
        text=text,
        stored_items=list(stored_items or []),
        total_amount=total_amount,
        channel=channel,
    )
    attempts: dict[str, int] = {}
    for strategy, run in STRATEGIES:
        try:
            items = run(data)
        except Exception:
            logger.warning("Notes strategy %s crashed; skipping", strategy.value, exc_info=True)
            items = []
        attempts[strategy.value] = len(items)
        if items:
            logger.debug("Items reconstructed via %s (%d items)", strategy.value, len(items))
            return ParseResult(items=items, strategy=strategy, attempts=attempts)

    attempts[Strategy.FALLBACK.value] = 1
    logger.debug("No strategy produced items; using fallback line")
    return ParseResult(
        items=[fallback_item(total_amount, channel)],
        strategy=Strategy.FALLBACK,
        attempts=attempts,
    )


# ---------------------------------------------------------------------------
# Order-level instructions
# ---------------------------------------------------------------------------

_INSTRUCTIONS_MARKER = re.compile(
    r"(?:Instru[çc][õo]es\s+do\s+Pedido|Order\s+instructions)\s*:\s*", re.IGNORECASE
)
_PHONE = re.compile(r"\(?\b\d{2}\)?\s*9?\d{4}[-\s]?\d{4}\b")
_PHONE_LABELLED = re.compile(r"(?:Tel|Telefone|Fone|Celular|Phone)\s*:?\s*[\d()\s+-]*", re.IGNORECASE)
_LABEL_LINE = re.compile(
    r"^(?:Cliente|Nome|Endere[çc]o|Bairro|Rua|CEP|Complemento|Refer[êe]ncia|"
    r"Telefone|Tel|Fone|Celular|Pagamento|Forma\s+de\s+pagamento|M[ée]todo\s+de\s+pagamento|"
    r"Subtotal|Total|Taxa(?:\s+de\s+entrega)?|Entrega|Frete|Desconto|Troco|Tipo|"
    r"Pedido|Data|Hor[áa]rio)\b\s*[:#-]?",
    re.IGNORECASE,
)
_NOISE_LINE = re.compile(
    r"^(?:ol[áa]|oi|bom\s+dia|boa\s+tarde|boa\s+noite)\b|gostaria\s+de\s+(?:fazer|pedir)|"
    r"^itens?\s*:?$|^resumo\b|^obrigad[oa]",
    re.IGNORECASE,
)
_SERVICE_PHRASES = [
    re.compile(p, re.IGNORECASE)
    for p in (
        r"Forma\s+de\s+consumo[/:]?\s*embalagem[:\s]*",
        r"Forma\s+de\s+embalagem[:\s]*",
        r"Forma\s+de\s+consumo[:\s]*",
        r"comer\s+no\s+(?:local|estabelecimento)",
        r"embalar\s+(?:para|pra)\s+levar",
        r"\bembalar\b",
        r"\b(?:para|pra)\s+levar\b",
    )
]
_BARE_SERVICE = re.compile(
    r"^(?:comer\s+no\s+(?:local|estabelecimento)|embalar(?:\s+(?:para|pra)\s+levar)?|"
    r"(?:para|pra)\s+levar|retirada(?:\s+no\s+local)?|delivery|entrega|balc[ãa]o|"
    r"dine[\s_-]?in|takeout|counter|consumo\s+no\s+local)[.!\s]*$",
    re.IGNORECASE,
)

MIN_INSTRUCTION_CHARS = 4


def _strip_contact_and_service(text: str) -> str:
    text = _PHONE_LABELLED.sub(" ", text)
    text = _PHONE.sub(" ", text)
    for pattern in _SERVICE_PHRASES:
        text = pattern.sub(" ", text)
    return text


def _finish_instructions(text: str) -> str | None:
    lines = [re.sub(r"\s{2,}", " ", line).strip(" \t-–|:,;") for line in text.split("\n")]
    lines = [line for line in lines if line]
    result = "\n".join(lines).strip()
    if len(re.sub(r"\s", "", result)) < MIN_INSTRUCTION_CHARS:
        return None
    if _BARE_SERVICE.match(result):
        return None
    return result


def extract_general_instructions(text: str | None) -> str | None:
    """
    Order-wide instructions, independent of per-item notes.

    An explicit "Instruções do Pedido:" marker wins; otherwise every
    recognised structured section is removed and the remainder is used.
    """
    if not text or not text.strip():
        return None
    plain = text.replace("\r", "\n").replace("*", "")

    marker = _INSTRUCTIONS_MARKER.search(plain)
    if marker:
        body = re.split(r"\n\s*\n", plain[marker.end():], maxsplit=1)[0]
        return _finish_instructions(_strip_contact_and_service(body))

    remaining = _BRACKET_TOKEN.sub("\n", plain)
    kept: list[str] = []
    after_item = False
    for raw in remaining.split("\n"):
        line = raw.strip()
        if not line:
            after_item = False
            continue
        if _match_item_line(line) or _PRICE.search(line):
            after_item = True
            continue
        if after_item and _NOTE_LINE_START.match(line):
            continue
        after_item = False
        if _LABEL_LINE.match(line) or _NOISE_LINE.search(line):
            continue
        kept.append(line)

    return _finish_instructions(_strip_contact_and_service("\n".join(kept)))
