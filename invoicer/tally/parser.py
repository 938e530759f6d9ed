"""Response parsing for the Tally XML interface.

Tally's response layout differs between releases (TallyPrime vs ERP 9, report
vs collection exports), so every extractor is an ordered list of
``ShapeMatcher`` entries tried in sequence. The first matcher whose predicate
accepts the document does the extraction; when none matches, the parser logs a
warning and degrades to an empty result instead of failing.
"""

import logging
import re
import xml.etree.ElementTree as ET
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Generic, TypeVar

from invoicer.tally.errors import UnrecognizedResponseShape
from invoicer.tally.schema import (
    Company,
    Customer,
    ImportAck,
    TaxBreakdown,
    TaxRecomputation,
    state_code_for,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

ERROR_TAGS = ("LINEERROR", "ERROR")
ACK_TAGS = ("CREATED", "ALTERED")
SUCCESS_MARKER = "1"

SAME_STATE_TAX_KEYS = ("CGST", "SGST", "UTGST")
CROSS_STATE_TAX_KEY = "IGST"
RATE_TAGS = ("RATEOFINVOICETAX", "GSTRATE", "TAXRATE")

# Tally emits character references for control characters that XML 1.0 forbids
_CHAR_REF = re.compile(r"&#(x[0-9a-fA-F]+|[0-9]+);")
_INVALID_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f]")
_XML_DECLARATION = re.compile(r"^\s*<\?xml[^>]*\?>")


@dataclass(frozen=True)
class ShapeMatcher(Generic[T]):
    """One known response layout: a predicate and the extractor for it."""

    name: str
    matches: Callable[[ET.Element], bool]
    extract: Callable[[ET.Element], T]


def dispatch(root: ET.Element, matchers: Iterable[ShapeMatcher[T]], kind: str) -> T:
    """Run the first matcher that recognizes the document.

    Raises:
        UnrecognizedResponseShape: If no matcher accepts the document
    """
    tried: list[str] = []
    for matcher in matchers:
        tried.append(matcher.name)
        if matcher.matches(root):
            logger.debug(f"{kind} response matched shape '{matcher.name}'")
            return matcher.extract(root)
    raise UnrecognizedResponseShape(kind, tried)


def _drop_invalid_ref(match: re.Match[str]) -> str:
    raw = match.group(1)
    code = int(raw[1:], 16) if raw.startswith("x") else int(raw)
    return match.group(0) if code in (0x9, 0xA, 0xD) or code >= 0x20 else ""


def parse_document(text: str) -> ET.Element:
    """Parse a response body into an element tree.

    Malformed text degrades to an empty ENVELOPE so callers see "nothing
    recognizable" rather than a parser exception.
    """
    cleaned = _INVALID_CHARS.sub("", _CHAR_REF.sub(_drop_invalid_ref, text or ""))
    if not cleaned.strip():
        return ET.Element("ENVELOPE")
    try:
        return ET.fromstring(cleaned)
    except ET.ParseError:
        pass

    # Some exports return sibling fragments without a single root element
    fragment = _XML_DECLARATION.sub("", cleaned)
    try:
        return ET.fromstring(f"<ENVELOPE>{fragment}</ENVELOPE>")
    except ET.ParseError as e:
        logger.warning(f"Unparseable Tally response ({e}); treating as empty document")
        return ET.Element("ENVELOPE")


def _text(node: ET.Element | None) -> str:
    if node is None:
        return ""
    return "".join(node.itertext()).strip()


def _child_text(node: ET.Element, *tags: str) -> str:
    for tag in tags:
        value = _text(node.find(f".//{tag}"))
        if value:
            return value
    return ""


def _decimal(value: str) -> Decimal | None:
    cleaned = value.replace(",", "").strip()
    if not cleaned:
        return None
    try:
        return Decimal(cleaned)
    except InvalidOperation:
        # Rates come back as "9%" or "500.00/NOS"
        match = re.match(r"-?\d+(?:\.\d+)?", cleaned)
        return Decimal(match.group(0)) if match else None


def _has(tag: str) -> Callable[[ET.Element], bool]:
    return lambda root: root.find(f".//{tag}") is not None


def has_error_marker(root: ET.Element) -> bool:
    """True when any error marker node is present, even an empty one."""
    return any(node.tag in ERROR_TAGS for node in root.iter())


def error_messages(root: ET.Element) -> list[str]:
    """Non-empty texts of the error markers in the document, in document order."""
    return [_text(node) for node in root.iter() if node.tag in ERROR_TAGS and _text(node)]


# --- Companies ---------------------------------------------------------------


def _nested_companies(root: ET.Element) -> list[Company]:
    companies: list[Company] = []
    for node in root.iter("COMPANY"):
        name = _text(node.find("NAME")) or node.get("NAME", "").strip()
        if not name:
            continue
        company_id = _text(node.find("ID")) or name
        companies.append(Company(id=company_id, name=name))
    return companies


def _flat_companies(root: ET.Element) -> list[Company]:
    names = [_text(node) for node in root.iter() if node.tag in ("COMPANYNAME", "NAME")]
    return [Company(id=name, name=name) for name in names if name]


def _has_nested_company(root: ET.Element) -> bool:
    return any(
        node.find("NAME") is not None or node.get("NAME") for node in root.iter("COMPANY")
    )


COMPANY_SHAPES: list[ShapeMatcher[list[Company]]] = [
    ShapeMatcher("company-nodes", _has_nested_company, _nested_companies),
    ShapeMatcher(
        "company-name-list",
        lambda root: _has("COMPANYNAME")(root) or _has("NAME")(root),
        _flat_companies,
    ),
]


def parse_companies(root: ET.Element) -> list[Company]:
    """Companies listed in a "List of Companies" export.

    Returns an empty list when no known layout matches; the caller decides
    whether that means "no company loaded" or "not connected".
    """
    try:
        return dispatch(root, COMPANY_SHAPES, "company list")
    except UnrecognizedResponseShape as e:
        logger.warning(str(e))
        return []


# --- Customer lookup ---------------------------------------------------------


def _ledger_name(node: ET.Element) -> str:
    return node.get("NAME", "").strip() or _child_text(node, "NAME")


def _address_lines(node: ET.Element) -> list[str]:
    address_nodes = list(node.iter("ADDRESS"))
    lines: list[str] = []
    for address in address_nodes:
        # Older exports put the whole address in one node, newline separated
        lines.extend(part.strip() for part in _text(address).splitlines())
    return [line for line in lines if line]


def _customer_from_fields(node: ET.Element, name: str, company: str) -> Customer:
    lines = _address_lines(node)
    if len(lines) == 2:
        # Ledgers created without a second street line carry [line1, city]
        lines.insert(1, "")
    remainder = ", ".join(lines[3:])
    explicit_state = _child_text(node, "LEDSTATENAME", "STATENAME")
    phone = _child_text(node, "LEDGERPHONE")
    mobile = _child_text(node, "LEDGERMOBILE")
    return Customer(
        id=name,
        name=name,
        contact_person=_child_text(node, "LEDGERCONTACT") or None,
        phone_number=phone or mobile or None,
        mobile=mobile or None,
        email=_child_text(node, "EMAIL") or None,
        address_line1=lines[0] if lines else name,
        address_line2=lines[1] if len(lines) > 1 and lines[1] else None,
        city=lines[2] if len(lines) > 2 else "",
        state=state_code_for(explicit_state or remainder),
        pincode=_child_text(node, "PINCODE"),
        gstin=_child_text(node, "PARTYGSTIN", "GSTIN") or None,
        ledger_name=name,
        company_id=company,
    )


def customer_shapes(search_name: str, company: str) -> list[ShapeMatcher[Customer]]:
    """Known ledger-export layouts for a lookup of ``search_name``."""
    wanted = search_name.strip().casefold()

    def matching_ledger(root: ET.Element) -> ET.Element | None:
        for node in root.iter("LEDGER"):
            if _ledger_name(node).casefold() == wanted:
                return node
        return None

    def ledger_node(root: ET.Element) -> Customer:
        node = matching_ledger(root)
        if node is None:
            raise UnrecognizedResponseShape("customer", ["ledger-node"])
        return _customer_from_fields(node, _ledger_name(node), company)

    def flat_fields_match(root: ET.Element) -> bool:
        if root.find(".//LEDGER") is not None:
            return False
        return _child_text(root, "NAME").casefold() == wanted

    def flat_fields(root: ET.Element) -> Customer:
        return _customer_from_fields(root, _child_text(root, "NAME"), company)

    return [
        ShapeMatcher("ledger-node", lambda root: matching_ledger(root) is not None, ledger_node),
        ShapeMatcher("flat-fields", flat_fields_match, flat_fields),
    ]


def parse_customer(root: ET.Element, search_name: str, company: str) -> Customer | None:
    """The ledger matching ``search_name``, or None when Tally has no such ledger.

    "Not found" is a normal outcome, not an error.
    """
    try:
        return dispatch(root, customer_shapes(search_name, company), "customer")
    except UnrecognizedResponseShape:
        logger.info(f"No ledger named '{search_name}' in company '{company}'")
        return None


# --- Import acknowledgement --------------------------------------------------


def _ack_marker(root: ET.Element) -> str | None:
    for tag in ACK_TAGS:
        node = root.find(f".//{tag}")
        if node is not None and _text(node) == SUCCESS_MARKER:
            return tag
    return None


def _voucher_number(root: ET.Element) -> str | None:
    return _child_text(root, "VOUCHERNUMBER") or None


def _ack_rejected(root: ET.Element) -> ImportAck:
    return ImportAck(
        success=False,
        voucher_number=_voucher_number(root),
        errors=error_messages(root),
    )


def _ack_accepted(root: ET.Element) -> ImportAck:
    return ImportAck(success=True, marker=_ack_marker(root), voucher_number=_voucher_number(root))


ACK_SHAPES: list[ShapeMatcher[ImportAck]] = [
    # An error marker wins even when a success marker is also present
    ShapeMatcher("error-marker", has_error_marker, _ack_rejected),
    ShapeMatcher("success-marker", lambda root: _ack_marker(root) is not None, _ack_accepted),
]


def parse_import_ack(root: ET.Element) -> ImportAck:
    """Outcome of an Import Data request.

    Success requires a CREATED or ALTERED marker equal to "1" and no error
    marker anywhere in the document.
    """
    try:
        return dispatch(root, ACK_SHAPES, "import acknowledgement")
    except UnrecognizedResponseShape as e:
        logger.warning(str(e))
        return ImportAck(success=False, voucher_number=_voucher_number(root))


# --- Tax recomputation -------------------------------------------------------


def _find_voucher(root: ET.Element, voucher_number: str | None) -> ET.Element | None:
    vouchers = list(root.iter("VOUCHER"))
    if voucher_number:
        for voucher in vouchers:
            if _child_text(voucher, "VOUCHERNUMBER") == voucher_number:
                return voucher
    return vouchers[0] if len(vouchers) == 1 else None


def _ledger_entries(voucher: ET.Element) -> list[ET.Element]:
    return [
        node
        for node in voucher.iter()
        if node.tag in ("ALLLEDGERENTRIES.LIST", "LEDGERENTRIES.LIST")
    ]


def _inventory_subtotal(voucher: ET.Element) -> Decimal | None:
    amounts = [
        _decimal(_text(entry.find("AMOUNT")))
        for entry in voucher.iter()
        if entry.tag in ("ALLINVENTORYENTRIES.LIST", "INVENTORYENTRIES.LIST")
    ]
    present = [abs(a) for a in amounts if a is not None]
    return sum(present, Decimal("0")) if present else None


class _TaxBucket:
    def __init__(self) -> None:
        self.amount = Decimal("0")
        self.rate: Decimal | None = None
        self.seen = False

    def add(self, amount: Decimal, rate: Decimal | None) -> None:
        self.amount += amount
        self.rate = self.rate if self.rate is not None else rate
        self.seen = True

    def effective_rate(self, subtotal: Decimal) -> Decimal | None:
        if self.rate is not None:
            return self.rate
        if subtotal == 0:
            return None
        return (self.amount / subtotal * 100).quantize(Decimal("0.01"))


def recomputation_extractor(
    voucher_number: str | None,
    customer_ledger: str,
    fallback_subtotal: Decimal,
) -> Callable[[ET.Element], TaxRecomputation | None]:
    """Build the extractor that reads Tally's tax figures off a voucher."""

    def extract(root: ET.Element) -> TaxRecomputation | None:
        voucher = _find_voucher(root, voucher_number)
        if voucher is None:
            return None

        subtotal = _inventory_subtotal(voucher)
        if subtotal is None:
            subtotal = fallback_subtotal

        buckets = {key: _TaxBucket() for key in ("CGST", "SGST", "IGST")}
        party_total: Decimal | None = None
        for entry in _ledger_entries(voucher):
            ledger = _child_text(entry, "LEDGERNAME")
            amount = _decimal(_child_text(entry, "AMOUNT"))
            if amount is None:
                continue
            if ledger.casefold() == customer_ledger.casefold():
                party_total = abs(amount)
                continue
            upper = ledger.upper()
            rate = _decimal(_child_text(entry, *RATE_TAGS))
            if CROSS_STATE_TAX_KEY in upper:
                buckets["IGST"].add(abs(amount), rate)
            elif "CGST" in upper:
                buckets["CGST"].add(abs(amount), rate)
            elif any(key in upper for key in SAME_STATE_TAX_KEYS):
                buckets["SGST"].add(abs(amount), rate)

        same_state = buckets["CGST"].seen or buckets["SGST"].seen
        if same_state and buckets["IGST"].seen:
            logger.warning(
                "Voucher carries both CGST/SGST and IGST entries; ignoring recomputed taxes"
            )
            return None

        if buckets["IGST"].seen:
            tax = TaxBreakdown(
                igst_rate=buckets["IGST"].effective_rate(subtotal),
                igst_amount=buckets["IGST"].amount,
            )
        elif same_state:
            tax = TaxBreakdown(
                cgst_rate=buckets["CGST"].effective_rate(subtotal),
                cgst_amount=buckets["CGST"].amount,
                sgst_rate=buckets["SGST"].effective_rate(subtotal),
                sgst_amount=buckets["SGST"].amount,
            )
        else:
            tax = TaxBreakdown()

        total = party_total if party_total is not None else subtotal + tax.total
        return TaxRecomputation(
            voucher_number=_child_text(voucher, "VOUCHERNUMBER") or voucher_number,
            subtotal=subtotal,
            tax=tax,
            total_amount=total,
        )

    return extract


def parse_tax_recomputation(
    root: ET.Element,
    voucher_number: str | None,
    customer_ledger: str,
    fallback_subtotal: Decimal,
) -> TaxRecomputation | None:
    """Tax figures Tally stored on a voucher, or None when none can be read.

    Ledger entries are bucketed by name: CGST, SGST/UTGST (same state) and
    IGST (inter-state), case-insensitively. Missing rates are derived from the
    amount and subtotal; a missing party entry makes the total subtotal + taxes.
    """
    shapes: list[ShapeMatcher[TaxRecomputation | None]] = [
        ShapeMatcher(
            "voucher-node",
            _has("VOUCHER"),
            recomputation_extractor(voucher_number, customer_ledger, fallback_subtotal),
        ),
    ]
    try:
        return dispatch(root, shapes, "voucher")
    except UnrecognizedResponseShape as e:
        logger.warning(str(e))
        return None
