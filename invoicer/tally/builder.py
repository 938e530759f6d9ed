"""Request documents for the Tally XML interface.

Every builder is a pure function returning the XML text to POST. Documents
are assembled with ElementTree, so reserved characters in names and addresses
are escaped by the serializer.

Tally distinguishes requests by the TALLYREQUEST header:
- "Export Data" reads (company list, ledger lookup, voucher fetch)
- "Import Data" writes (ledger creation, voucher creation)
"""

import logging
import xml.etree.ElementTree as ET
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal

from pydantic import BaseModel

from invoicer.shared.config import Settings
from invoicer.tally.schema import (
    SUNDRY_DEBTORS,
    Customer,
    CustomerDraft,
    Invoice,
    InvoiceDraft,
    InvoiceLineItem,
    TaxBreakdown,
    state_name_for,
)
from invoicer.tally.tax import calculate_gst

logger = logging.getLogger(__name__)

EXPORT_DATA = "Export Data"
IMPORT_DATA = "Import Data"
XML_FORMAT = "$$SysName:XML"
CUSTOMER_FETCH_FIELDS = (
    "NAME",
    "ADDRESS",
    "PINCODE",
    "LEDGERPHONE",
    "EMAIL",
    "PARTYGSTIN",
    "PARENT",
    "LEDSTATENAME",
    "LEDGERMOBILE",
)
DEFAULT_COUNTRY = "India"
VOUCHER_VIEW = "Invoice Voucher View"
_PAISE = Decimal("0.01")


class InvoiceRequest(BaseModel):
    """A voucher import document and the invoice it describes."""

    document: str
    invoice: Invoice


def format_amount(value: Decimal) -> str:
    """Two-decimal rendering used for every amount sent to Tally."""
    return str(value.quantize(_PAISE, rounding=ROUND_HALF_UP))


def format_tally_date(value: date) -> str:
    """Tally's positional YYYYMMDD date."""
    return value.strftime("%Y%m%d")


def _add(parent: ET.Element, tag: str, text: str | None = None, **attrib: str) -> ET.Element:
    element = ET.SubElement(parent, tag, attrib)
    if text is not None:
        element.text = text
    return element


def _envelope(request: str) -> tuple[ET.Element, ET.Element]:
    envelope = ET.Element("ENVELOPE")
    header = _add(envelope, "HEADER")
    _add(header, "TALLYREQUEST", request)
    body = _add(envelope, "BODY")
    return envelope, body


def _request_desc(parent: ET.Element, report: str) -> tuple[ET.Element, ET.Element]:
    desc = _add(parent, "REQUESTDESC")
    _add(desc, "REPORTNAME", report)
    static = _add(desc, "STATICVARIABLES")
    return desc, static


def _serialize(envelope: ET.Element) -> str:
    return ET.tostring(envelope, encoding="unicode")


def build_list_companies() -> str:
    """Export request for the companies currently loaded in Tally."""
    envelope, body = _envelope(EXPORT_DATA)
    export = _add(body, "EXPORTDATA")
    _, static = _request_desc(export, "List of Companies")
    _add(static, "SVEXPORTFORMAT", XML_FORMAT)
    return _serialize(envelope)


def build_find_customer(name: str, company: str) -> str:
    """Export request for a single ledger filtered by name.

    Args:
        name: Ledger name to look up
        company: Tally company to search in

    Returns:
        XML request text
    """
    envelope, body = _envelope(EXPORT_DATA)
    export = _add(body, "EXPORTDATA")
    desc, static = _request_desc(export, "Ledger")
    _add(static, "SVCURRENTCOMPANY", company)
    _add(static, "SVEXPORTFORMAT", XML_FORMAT)
    _add(static, "MASTERTYPE", "Ledger")
    _add(static, "FETCHLIST", ", ".join(CUSTOMER_FETCH_FIELDS))
    filter_node = _add(desc, "FILTER")
    _add(filter_node, "NAME", name)
    return _serialize(envelope)


def _import_envelope(company: str, report: str = "All Masters") -> tuple[ET.Element, ET.Element]:
    envelope, body = _envelope(IMPORT_DATA)
    import_data = _add(body, "IMPORTDATA")
    _, static = _request_desc(import_data, report)
    _add(static, "SVCURRENTCOMPANY", company)
    request_data = _add(import_data, "REQUESTDATA")
    message = _add(request_data, "TALLYMESSAGE", **{"xmlns:UDF": "TallyUDF"})
    return envelope, message


def build_create_customer(draft: CustomerDraft, company: str) -> str:
    """Import request creating a customer ledger under Sundry Debtors.

    The GST registration type follows the presence of a GSTIN: Regular when
    one is given, Unregistered otherwise.
    """
    envelope, message = _import_envelope(company)
    ledger = _add(message, "LEDGER", NAME=draft.name, RESERVEDNAME="")

    address_list = _add(ledger, "ADDRESS.LIST", TYPE="String")
    for line in (draft.address_line1, draft.address_line2, draft.city):
        if line:
            _add(address_list, "ADDRESS", line)

    _add(ledger, "MAILINGNAME", draft.name)
    _add(ledger, "PARENT", SUNDRY_DEBTORS)
    _add(ledger, "COUNTRYNAME", DEFAULT_COUNTRY)
    _add(ledger, "LEDSTATENAME", state_name_for(draft.state))
    _add(ledger, "PINCODE", draft.pincode)
    _add(ledger, "LEDGERCONTACT", draft.contact_person or "")
    _add(ledger, "LEDGERPHONE", draft.phone_number or "")
    _add(ledger, "LEDGERMOBILE", draft.mobile or "")
    _add(ledger, "EMAIL", draft.email or "")
    _add(ledger, "PARTYGSTIN", draft.gstin or "")
    _add(ledger, "GSTREGISTRATIONTYPE", "Regular" if draft.gstin else "Unregistered")
    _add(ledger, "ISBILLWISEON", "Yes")
    _add(ledger, "OPENINGBALANCE", "0")
    return _serialize(envelope)


def _ledger_entry(parent: ET.Element, ledger: str, amount: str, deemed_positive: bool) -> None:
    entry = _add(parent, "ALLLEDGERENTRIES.LIST")
    _add(entry, "LEDGERNAME", ledger)
    _add(entry, "ISDEEMEDPOSITIVE", "Yes" if deemed_positive else "No")
    _add(entry, "AMOUNT", amount)


def _inventory_entry(parent: ET.Element, item: InvoiceLineItem, sales_ledger: str) -> None:
    entry = _add(parent, "ALLINVENTORYENTRIES.LIST")
    _add(entry, "STOCKITEMNAME", item.item_name)
    for flag in (
        "ISDEEMEDPOSITIVE",
        "ISLASTDEEMEDPOSITIVE",
        "ISAUTONEGATE",
        "ISCUSTOMSCLEARANCE",
        "ISCOSTTRACKING",
        "ISBATCHWISEON",
        "ISORDERLINESTATUS",
        "ISSCRAP",
    ):
        _add(entry, flag, "No")
    _add(entry, "RATE", f"{format_amount(item.rate)}/{item.unit}")
    _add(entry, "AMOUNT", format_amount(item.amount))
    _add(entry, "ACTUALQTY", f"{item.quantity} {item.unit}")
    _add(entry, "BILLEDQTY", f"{item.quantity} {item.unit}")

    allocation = _add(entry, "ACCOUNTINGALLOCATIONS.LIST")
    _add(allocation, "LEDGERNAME", sales_ledger)
    _add(allocation, "ISDEEMEDPOSITIVE", "No")
    _add(allocation, "AMOUNT", format_amount(item.amount))


def _to_paise(value: Decimal | None) -> Decimal | None:
    return None if value is None else value.quantize(_PAISE, rounding=ROUND_HALF_UP)


def _posted_tax(tax: TaxBreakdown) -> TaxBreakdown:
    """Tax with each component rounded to paise, as it is posted to Tally."""
    return tax.model_copy(
        update={
            "cgst_amount": _to_paise(tax.cgst_amount),
            "sgst_amount": _to_paise(tax.sgst_amount),
            "igst_amount": _to_paise(tax.igst_amount),
        }
    )


def _tax_lines(tax: TaxBreakdown) -> list[tuple[str, str]]:
    lines = [
        ("CGST", tax.cgst_amount),
        ("SGST", tax.sgst_amount),
        ("IGST", tax.igst_amount),
    ]
    return [(ledger, format_amount(amount)) for ledger, amount in lines if amount and amount > 0]


def _party_amount(items: list[InvoiceLineItem], tax: TaxBreakdown) -> str:
    """Sum of the credits exactly as serialized, so the voucher always balances."""
    credits = [Decimal(format_amount(item.amount)) for item in items]
    credits.extend(Decimal(amount) for _, amount in _tax_lines(tax))
    return format_amount(sum(credits, Decimal("0")))


def build_create_invoice(
    draft: InvoiceDraft,
    customer: Customer,
    company: str,
    settings: Settings,
    now: datetime | None = None,
) -> InvoiceRequest:
    """Import request creating a Sales voucher, plus the invoice it describes.

    Line amounts, subtotal and (in explicit tax mode) GST are computed here.
    GST components are rounded to paise before posting and the party debit is
    the sum of the serialized credits, so the voucher balances. In deferred tax mode no tax ledger entries are posted and Tally is left to
    apply its own GST configuration.

    Args:
        draft: Validated invoice input
        customer: Party ledger being invoiced
        company: Tally company name
        settings: Tax mode, rate, seller state and default sales ledger
        now: Clock used for provisional identifiers (defaults to current time)

    Returns:
        InvoiceRequest with the XML document and provisional invoice
    """
    now = now or datetime.now()
    stamp = int(now.timestamp() * 1000)

    items = [
        InvoiceLineItem.from_draft(line, item_id=f"item_{stamp}_{index}")
        for index, line in enumerate(draft.items)
    ]
    subtotal = sum((item.amount for item in items), Decimal("0"))

    if settings.tax_mode == "explicit":
        tax = _posted_tax(
            calculate_gst(subtotal, customer.state, settings.seller_state, settings.gst_rate)
        )
    else:
        tax = TaxBreakdown()

    # Placeholder only; Tally assigns the number of record when auto-numbering is on
    voucher_number = f"API-{stamp}"
    invoice = Invoice.assemble(
        invoice_id=f"tally_inv_{voucher_number}_{stamp}",
        number=voucher_number,
        draft=draft,
        customer=customer,
        company_id=company,
        items=items,
        tax=tax,
    )

    sales_ledger = customer.credit_account or settings.default_sales_ledger
    tally_date = format_tally_date(draft.invoice_date)
    state_name = state_name_for(customer.state) if customer.state else ""

    envelope, message = _import_envelope(company, report="Vouchers")
    voucher = _add(
        message, "VOUCHER", VCHTYPE="Sales", ACTION="Create", OBJVIEW=VOUCHER_VIEW
    )
    _add(voucher, "DATE", tally_date)
    _add(voucher, "GUID", f"api-guid-{stamp}")
    _add(voucher, "NARRATION", f"Sales Invoice created via API for {customer.name}")
    _add(voucher, "VOUCHERTYPENAME", "Sales")
    _add(voucher, "VOUCHERNUMBER", voucher_number)
    _add(voucher, "PARTYLEDGERNAME", customer.ledger_name)
    _add(voucher, "FBTPAYMENTTYPE", "Default")
    _add(voucher, "PERSISTEDVIEW", VOUCHER_VIEW)
    _add(voucher, "PLACEOFSUPPLY", state_name)
    _add(voucher, "CONSIGNEEGSTIN", customer.gstin or "")
    _add(voucher, "CONSIGNEEMAILINGNAME", customer.name)
    _add(voucher, "CONSIGNEESTATE", state_name)
    if draft.due_date is not None:
        _add(voucher, "BASICDUEDATEOFPYMT", format_tally_date(draft.due_date))

    # Party ledger is debited with the total of the credits below
    _ledger_entry(
        voucher,
        customer.ledger_name,
        f"-{_party_amount(items, tax)}",
        deemed_positive=True,
    )
    for item in items:
        _inventory_entry(voucher, item, sales_ledger)
    for ledger, amount in _tax_lines(tax):
        _ledger_entry(voucher, ledger, amount, deemed_positive=False)

    for flag, value in (
        ("EFFECTIVEDATE", tally_date),
        ("ISOPTIONAL", "No"),
        ("ISCANCELLED", "No"),
        ("ISPOSTDATED", "No"),
        ("ISINVOICE", "Yes"),
        ("ISDELETED", "No"),
        ("ASORIGINAL", "Yes"),
    ):
        _add(voucher, flag, value)

    logger.debug(
        f"Built sales voucher {voucher_number} for {customer.name}: "
        f"subtotal={format_amount(subtotal)} tax_mode={settings.tax_mode}"
    )
    return InvoiceRequest(document=_serialize(envelope), invoice=invoice)


def build_fetch_voucher(voucher_number: str, company: str, voucher_date: date) -> str:
    """Export request reading back one Sales voucher by number.

    Used after creation to pick up the figures Tally actually stored.
    """
    tally_date = format_tally_date(voucher_date)
    envelope, body = _envelope(EXPORT_DATA)
    export = _add(body, "EXPORTDATA")
    desc, static = _request_desc(export, "Voucher Register")
    _add(static, "SVCURRENTCOMPANY", company)
    _add(static, "SVEXPORTFORMAT", XML_FORMAT)
    _add(static, "SVFROMDATE", tally_date)
    _add(static, "SVTODATE", tally_date)
    _add(static, "VOUCHERTYPENAME", "Sales")
    filter_node = _add(desc, "FILTER")
    _add(filter_node, "VOUCHERNUMBER", voucher_number)
    return _serialize(envelope)
