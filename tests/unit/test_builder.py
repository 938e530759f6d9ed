"""Unit tests for Tally request builders.

Tests cover:
- Request headers and report names
- Escaping of reserved characters in user input
- Sales voucher amounts, dates and tax entries
"""

import xml.etree.ElementTree as ET
from datetime import UTC, date, datetime
from decimal import Decimal

import pytest

from invoicer.shared.config import Settings
from invoicer.tally.builder import (
    build_create_customer,
    build_create_invoice,
    build_fetch_voucher,
    build_find_customer,
    build_list_companies,
    format_amount,
    format_tally_date,
)
from invoicer.tally.schema import Customer, CustomerDraft, InvoiceDraft, LineItemDraft

NOW = datetime(2024, 4, 1, tzinfo=UTC)
STAMP = "1711929600000"


@pytest.fixture
def settings() -> Settings:
    return Settings(_env_file=None, tax_mode="explicit", gst_rate=Decimal("0.18"), seller_state="MH")


@pytest.fixture
def customer() -> Customer:
    return Customer(
        id="Acme Retail",
        name="Acme Retail",
        state="MH",
        gstin="27AAPFU0939F1ZV",
        ledger_name="Acme Retail",
        credit_account="Sales - Domestic",
        company_id="Demo Co",
    )


@pytest.fixture
def draft() -> InvoiceDraft:
    return InvoiceDraft(
        invoice_date=date(2024, 4, 1),
        due_date=date(2024, 5, 1),
        items=[
            LineItemDraft(item_name="Widget", quantity=Decimal("2"), unit="NOS", rate=Decimal("300")),
            LineItemDraft(item_name="Gadget", quantity=Decimal("4"), unit="NOS", rate=Decimal("100")),
        ],
    )


def _customer_draft(**overrides: str) -> CustomerDraft:
    data = {
        "name": "Acme Retail",
        "address_line1": "12 Market Road",
        "city": "Pune",
        "state": "MH",
        "pincode": "411001",
        "credit_account": "Sales",
    }
    data.update(overrides)
    return CustomerDraft(**data)


def test_format_helpers() -> None:
    assert format_tally_date(date(2024, 4, 1)) == "20240401"
    assert format_amount(Decimal("1180")) == "1180.00"
    assert format_amount(Decimal("0.005")) == "0.01"


class TestExportRequests:
    """Read requests use the Export Data header."""

    def test_list_companies(self) -> None:
        root = ET.fromstring(build_list_companies())

        assert root.findtext("HEADER/TALLYREQUEST") == "Export Data"
        assert root.findtext(".//REPORTNAME") == "List of Companies"
        assert root.findtext(".//SVEXPORTFORMAT") == "$$SysName:XML"

    def test_find_customer(self) -> None:
        root = ET.fromstring(build_find_customer("Acme Retail", "Demo Co"))

        assert root.findtext("HEADER/TALLYREQUEST") == "Export Data"
        assert root.findtext(".//SVCURRENTCOMPANY") == "Demo Co"
        assert root.findtext(".//FILTER/NAME") == "Acme Retail"
        assert "PARTYGSTIN" in root.findtext(".//FETCHLIST", "")

    def test_find_customer_escapes_name(self) -> None:
        document = build_find_customer("Smith & Sons <Pvt>", "R&D Co")

        assert "Smith &amp; Sons &lt;Pvt&gt;" in document
        assert "R&amp;D Co" in document
        assert ET.fromstring(document).findtext(".//FILTER/NAME") == "Smith & Sons <Pvt>"

    def test_fetch_voucher(self) -> None:
        root = ET.fromstring(build_fetch_voucher("42", "Demo Co", date(2024, 4, 1)))

        assert root.findtext(".//REPORTNAME") == "Voucher Register"
        assert root.findtext(".//SVFROMDATE") == "20240401"
        assert root.findtext(".//SVTODATE") == "20240401"
        assert root.findtext(".//FILTER/VOUCHERNUMBER") == "42"


class TestCreateCustomer:
    """Ledger creation under Sundry Debtors."""

    def test_ledger_fields(self) -> None:
        root = ET.fromstring(
            build_create_customer(_customer_draft(gstin="27AAPFU0939F1ZV"), "Demo Co")
        )
        ledger = root.find(".//LEDGER")

        assert root.findtext("HEADER/TALLYREQUEST") == "Import Data"
        assert ledger is not None
        assert ledger.get("NAME") == "Acme Retail"
        assert ledger.findtext("PARENT") == "Sundry Debtors"
        assert ledger.findtext("LEDSTATENAME") == "Maharashtra"
        assert ledger.findtext("PINCODE") == "411001"
        assert ledger.findtext("GSTREGISTRATIONTYPE") == "Regular"
        assert [a.text for a in ledger.iter("ADDRESS")] == ["12 Market Road", "Pune"]

    def test_unregistered_without_gstin(self) -> None:
        root = ET.fromstring(build_create_customer(_customer_draft(), "Demo Co"))

        assert root.findtext(".//GSTREGISTRATIONTYPE") == "Unregistered"

    def test_reserved_characters_are_escaped(self) -> None:
        document = build_create_customer(
            _customer_draft(name='Smith & "Sons"', address_line1="Shop <3>, Main St"),
            "Demo Co",
        )

        assert 'NAME="Smith &amp; &quot;Sons&quot;"' in document
        assert "Shop &lt;3&gt;, Main St" in document
        ledger = ET.fromstring(document).find(".//LEDGER")
        assert ledger is not None
        assert ledger.findtext("MAILINGNAME") == 'Smith & "Sons"'


class TestCreateInvoice:
    """Sales voucher import and the provisional invoice."""

    def test_provisional_number_and_ids(
        self, draft: InvoiceDraft, customer: Customer, settings: Settings
    ) -> None:
        request = build_create_invoice(draft, customer, "Demo Co", settings, now=NOW)

        assert request.invoice.invoice_number == f"API-{STAMP}"
        assert request.invoice.id == f"tally_inv_API-{STAMP}_{STAMP}"
        assert request.invoice.number_confirmed is False
        assert [item.id for item in request.invoice.items] == [f"item_{STAMP}_0", f"item_{STAMP}_1"]

    def test_voucher_document(
        self, draft: InvoiceDraft, customer: Customer, settings: Settings
    ) -> None:
        request = build_create_invoice(draft, customer, "Demo Co", settings, now=NOW)
        root = ET.fromstring(request.document)
        voucher = root.find(".//VOUCHER")

        assert root.findtext("HEADER/TALLYREQUEST") == "Import Data"
        assert root.findtext(".//REPORTNAME") == "Vouchers"
        assert voucher is not None
        assert voucher.get("VCHTYPE") == "Sales"
        assert voucher.findtext("DATE") == "20240401"
        assert voucher.findtext("BASICDUEDATEOFPYMT") == "20240501"
        assert voucher.findtext("VOUCHERNUMBER") == f"API-{STAMP}"
        assert voucher.findtext("PARTYLEDGERNAME") == "Acme Retail"

        inventory = voucher.findall("ALLINVENTORYENTRIES.LIST")
        assert [e.findtext("AMOUNT") for e in inventory] == ["600.00", "400.00"]
        assert inventory[0].findtext("RATE") == "300.00/NOS"
        assert inventory[0].findtext("ACTUALQTY") == "2 NOS"
        assert inventory[0].findtext("ACCOUNTINGALLOCATIONS.LIST/LEDGERNAME") == "Sales - Domestic"

    def test_same_state_tax_entries(
        self, draft: InvoiceDraft, customer: Customer, settings: Settings
    ) -> None:
        request = build_create_invoice(draft, customer, "Demo Co", settings, now=NOW)
        entries = {
            e.findtext("LEDGERNAME"): e.findtext("AMOUNT")
            for e in ET.fromstring(request.document).iter("ALLLEDGERENTRIES.LIST")
        }

        assert entries == {"Acme Retail": "-1180.00", "CGST": "90.00", "SGST": "90.00"}
        assert request.invoice.subtotal == Decimal("1000")
        assert request.invoice.total_amount == Decimal("1180")

    def test_inter_state_uses_igst(
        self, draft: InvoiceDraft, customer: Customer, settings: Settings
    ) -> None:
        other_state = customer.model_copy(update={"state": "KA"})

        request = build_create_invoice(draft, other_state, "Demo Co", settings, now=NOW)
        ledgers = [
            e.findtext("LEDGERNAME")
            for e in ET.fromstring(request.document).iter("ALLLEDGERENTRIES.LIST")
        ]

        assert ledgers == ["Acme Retail", "IGST"]
        assert request.invoice.tax.igst_amount == Decimal("180.00")

    def test_deferred_mode_omits_tax_entries(
        self, draft: InvoiceDraft, customer: Customer
    ) -> None:
        settings = Settings(_env_file=None, tax_mode="deferred")

        request = build_create_invoice(draft, customer, "Demo Co", settings, now=NOW)
        ledgers = [
            e.findtext("LEDGERNAME")
            for e in ET.fromstring(request.document).iter("ALLLEDGERENTRIES.LIST")
        ]

        assert ledgers == ["Acme Retail"]
        assert request.invoice.tax.is_empty
        assert request.invoice.total_amount == request.invoice.subtotal

    def test_default_sales_ledger_when_no_credit_account(
        self, draft: InvoiceDraft, customer: Customer, settings: Settings
    ) -> None:
        no_account = customer.model_copy(update={"credit_account": ""})

        request = build_create_invoice(draft, no_account, "Demo Co", settings, now=NOW)
        root = ET.fromstring(request.document)

        assert root.findtext(".//ACCOUNTINGALLOCATIONS.LIST/LEDGERNAME") == "Sales"

    def test_no_due_date(self, customer: Customer, settings: Settings) -> None:
        draft = InvoiceDraft(
            invoice_date=date(2024, 4, 1),
            items=[LineItemDraft(item_name="A", quantity=Decimal("1"), unit="NOS", rate=Decimal("1"))],
        )

        request = build_create_invoice(draft, customer, "Demo Co", settings, now=NOW)

        assert "BASICDUEDATEOFPYMT" not in request.document

    @pytest.mark.parametrize(
        ("quantity", "rate", "state"),
        [
            ("1", "10.05", "MH"),
            ("3", "3.33", "KA"),
            ("1.5", "3.33", "MH"),
            ("7", "0.15", "MH"),
        ],
    )
    def test_voucher_debits_equal_credits(
        self, customer: Customer, settings: Settings, quantity: str, rate: str, state: str
    ) -> None:
        draft = InvoiceDraft(
            invoice_date=date(2024, 4, 1),
            items=[
                LineItemDraft(
                    item_name="Widget", quantity=Decimal(quantity), unit="NOS", rate=Decimal(rate)
                )
            ],
        )

        request = build_create_invoice(
            draft, customer.model_copy(update={"state": state}), "Demo Co", settings, now=NOW
        )
        root = ET.fromstring(request.document)
        ledger_amounts = [
            Decimal(e.findtext("AMOUNT", "0")) for e in root.iter("ALLLEDGERENTRIES.LIST")
        ]
        inventory_amounts = [
            Decimal(e.findtext("AMOUNT", "0")) for e in root.iter("ALLINVENTORYENTRIES.LIST")
        ]

        party_debit = -ledger_amounts[0]
        assert party_debit == sum(ledger_amounts[1:]) + sum(inventory_amounts)

    def test_posted_total_matches_invoice_total(
        self, customer: Customer, settings: Settings
    ) -> None:
        draft = InvoiceDraft(
            invoice_date=date(2024, 4, 1),
            items=[
                LineItemDraft(item_name="Widget", quantity=Decimal("1"), unit="NOS", rate=Decimal("10.05"))
            ],
        )

        request = build_create_invoice(draft, customer, "Demo Co", settings, now=NOW)
        party = ET.fromstring(request.document).find(".//ALLLEDGERENTRIES.LIST")

        assert party is not None
        assert party.findtext("AMOUNT") == "-11.85"
        assert request.invoice.tax.cgst_amount == Decimal("0.90")
        assert request.invoice.total_amount == Decimal("11.85")
        assert request.invoice.amount_in_words == "ELEVEN AND EIGHTY-FIVE PAISE ONLY"
