"""Order-detail field extraction.

The live page is read once per order (``page.content()``) and everything else
runs against that snapshot, so the same functions are driven by recorded HTML
in tests. Label lookups go through an ordered tuple of strategies because the
portal renders the same field with different markup depending on the view.
"""

from __future__ import annotations

import re
from typing import Callable, Iterable, List, Optional, Sequence

from bs4 import BeautifulSoup, Tag
from playwright.async_api import Page

from order_watch.models import Order, is_valid_order_id

from . import selectors

_NON_CONTENT_TAGS = ("script", "style", "noscript", "template")
_CURRENCY_PATTERN = re.compile(r"[¥￥]\s*([0-9][0-9,]*)")

LabelStrategy = Callable[[BeautifulSoup, str], Optional[str]]


def parse_document(html: str) -> BeautifulSoup:
    soup = BeautifulSoup(html or "", "html.parser")
    for tag in soup(list(_NON_CONTENT_TAGS)):
        tag.decompose()
    return soup


def _text(tag: Tag | None) -> str:
    if tag is None:
        return ""
    return " ".join(tag.get_text(" ").split())


def _compact(text: str) -> str:
    return "".join(text.split())


def _non_empty(value: str | None) -> str | None:
    if value is None:
        return None
    stripped = value.strip()
    return stripped or None


def _remove_first(text: str, phrases: Iterable[str]) -> str:
    for phrase in phrases:
        text = text.replace(phrase, "", 1)
    return text.strip()


def innermost_containing(soup: BeautifulSoup | Tag, phrase: str) -> List[Tag]:
    """Elements whose text contains ``phrase`` but none of whose children do."""

    matches: List[Tag] = []
    for tag in soup.find_all(True):
        if phrase not in tag.get_text():
            continue
        if any(phrase in child.get_text() for child in tag.find_all(True, recursive=False)):
            continue
        matches.append(tag)
    return matches


# ── Label strategies ─────────────────────────────────────────────────────────


def value_from_definition_list(soup: BeautifulSoup, label: str) -> str | None:
    for dl in soup.find_all("dl"):
        dt = dl.find("dt")
        dd = dl.find("dd")
        if dt is not None and dd is not None and label in dt.get_text():
            value = _non_empty(_text(dd))
            if value:
                return value
    return None


def value_from_table_cells(soup: BeautifulSoup, label: str) -> str | None:
    for table in soup.find_all("table"):
        for row in table.find_all("tr"):
            for cell in row.find_all(["td", "th"]):
                if label not in cell.get_text():
                    continue
                next_cell = cell.find_next_sibling()
                if next_cell is not None:
                    value = _non_empty(_text(next_cell))
                    if value:
                        return value
    return None


def value_from_term_sibling(soup: BeautifulSoup, label: str) -> str | None:
    for dt in soup.find_all("dt"):
        if label not in dt.get_text():
            continue
        sibling = dt.find_next_sibling()
        if sibling is not None and sibling.name == "dd":
            value = _non_empty(_text(sibling))
            if value:
                return value
    return None


def value_from_parent_text(soup: BeautifulSoup, label: str) -> str | None:
    for element in innermost_containing(soup, label):
        parent = element.parent
        if parent is None or parent.name == "[document]":
            continue
        value = _non_empty(_remove_first(_text(parent), [label]))
        if value:
            return value
    return None


LABEL_STRATEGIES: Sequence[LabelStrategy] = (
    value_from_definition_list,
    value_from_table_cells,
    value_from_term_sibling,
    value_from_parent_text,
)


def find_value_by_label(
    soup: BeautifulSoup,
    label: str,
    strategies: Sequence[LabelStrategy] = LABEL_STRATEGIES,
) -> str | None:
    for strategy in strategies:
        value = strategy(soup, label)
        if value:
            return value
    return None


# ── Section helpers ──────────────────────────────────────────────────────────


def _fieldset_containing(soup: BeautifulSoup, phrases: Sequence[str]) -> Tag | None:
    for fieldset in soup.find_all("fieldset"):
        text = fieldset.get_text()
        if any(phrase in text for phrase in phrases):
            return fieldset
    return None


def parse_amount(text: str, label: str = selectors.LABEL_TOTAL) -> int | None:
    """Yen amount following the last ``label`` in ``text``."""

    position = text.rfind(label)
    if position < 0:
        return None
    match = _CURRENCY_PATTERN.search(text, position)
    if not match:
        return None
    digits = match.group(1).replace(",", "")
    try:
        return int(digits)
    except ValueError:
        return None


def extract_total_amount(soup: BeautifulSoup) -> int:
    fieldset = _fieldset_containing(soup, selectors.ITEMS_SECTION_LABELS)
    if fieldset is not None:
        # Several "total" lines may exist; the last one is the tax-inclusive total.
        for div in reversed(fieldset.find_all("div")):
            amount = parse_amount(div.get_text(" "))
            if amount is not None:
                return amount

    for element in reversed(innermost_containing(soup, selectors.LABEL_TOTAL)):
        for candidate in (element, element.parent):
            if candidate is None or candidate.name == "[document]":
                continue
            amount = parse_amount(candidate.get_text(" "))
            if amount is not None:
                return amount
    return 0


def _mentions_utensils(text: str) -> bool:
    compact = _compact(text)
    return any(_compact(variant) in compact for variant in selectors.UTENSILS_PHRASE_VARIANTS)


def has_utensils_request(soup: BeautifulSoup) -> bool:
    items_table = soup.select_one(selectors.ORDER_ITEMS_TABLE)
    if items_table is not None and _mentions_utensils(items_table.get_text()):
        return True
    return _mentions_utensils(soup.get_text())


def tag_utensils(items: str | None) -> str:
    text = items or ""
    if selectors.UTENSILS_PHRASE in text:
        return text
    return f"{text} {selectors.UTENSILS_PHRASE}".strip()


def extract_items(soup: BeautifulSoup) -> str | None:
    labels = selectors.ITEMS_SECTION_LABELS
    fieldset = _fieldset_containing(soup, labels)
    if fieldset is not None:
        items = _non_empty(_remove_first(_text(fieldset), labels))
        if items:
            return items

    for label in labels:
        for element in innermost_containing(soup, label):
            container = element.find_parent(["fieldset", "dl", "section", "div"])
            if container is None:
                continue
            items = _non_empty(_remove_first(_text(container), labels))
            if items:
                return items

    for label in labels:
        items = find_value_by_label(soup, label)
        if items:
            return items
    return None


def extract_notes(soup: BeautifulSoup) -> str | None:
    label = selectors.LABEL_REMARKS
    fieldset = _fieldset_containing(soup, [label])
    if fieldset is not None:
        notes = _non_empty(_remove_first(_text(fieldset), [label]))
        if notes:
            return notes

    for element in innermost_containing(soup, label):
        parent = element.parent
        if parent is None or parent.name == "[document]":
            continue
        notes = _non_empty(_remove_first(_text(parent), [label]))
        if notes:
            return notes
    return None


# ── Order assembly ───────────────────────────────────────────────────────────


def extract_order_fields(
    html: str,
    *,
    status: str | None = None,
    list_order_time: str | None = None,
) -> Order | None:
    """Build an :class:`Order` from a detail-page snapshot.

    Returns ``None`` when the order ID cannot be resolved (or is the portal's
    ``-`` placeholder); every other field degrades to ``None``/``0``.
    """

    soup = parse_document(html)
    order_id = find_value_by_label(soup, selectors.LABEL_ORDER_ID)
    if not is_valid_order_id(order_id):
        return None

    items = extract_items(soup)
    if has_utensils_request(soup):
        items = tag_utensils(items)

    def lookup(label: str) -> str | None:
        return find_value_by_label(soup, label)

    return Order(
        order_id=order_id.strip(),
        order_time=lookup(selectors.LABEL_ORDER_TIME) or _non_empty(list_order_time),
        status=_non_empty(status),
        delivery_time=lookup(selectors.LABEL_DELIVERY_TIME)
        or lookup(selectors.LABEL_DELIVERY_TIME_FALLBACK),
        payment_method=lookup(selectors.LABEL_PAYMENT_METHOD),
        visit_count=lookup(selectors.LABEL_VISIT_COUNT),
        customer_name=lookup(selectors.LABEL_CUSTOMER_NAME),
        customer_phone=lookup(selectors.LABEL_CUSTOMER_PHONE),
        receipt_name=lookup(selectors.LABEL_RECEIPT_NAME),
        waiting_time=lookup(selectors.LABEL_WAITING_TIME),
        address=lookup(selectors.LABEL_ADDRESS),
        items=items,
        notes=extract_notes(soup),
        total_amount=extract_total_amount(soup),
    )


async def extract_order_detail(
    page: Page,
    *,
    status: str | None = None,
    list_order_time: str | None = None,
) -> Order | None:
    html = await page.content()
    return extract_order_fields(html, status=status, list_order_time=list_order_time)
