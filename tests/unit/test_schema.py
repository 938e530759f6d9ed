"""Unit tests for customer and invoice models.

Tests cover:
- Input validation that must happen before any request is built
- Invoice totals invariants
- State code mapping
"""

from datetime import date
from decimal import Decimal
from typing import Any

import pytest
from pydantic import ValidationError

from invoicer.tally.schema import (
    Customer,
    CustomerDraft,
    ImportAck,
    Invoice,
    InvoiceDraft,
    InvoiceLineItem,
    LineItemDraft,
    TaxBreakdown,
    state_code_for,
    state_name_for,
)


@pytest.fixture
def customer_input() -> dict[str, Any]:
    """Valid customer form input."""
    return {
        "name": "Acme Retail",
        "phone_number": "022-5550100",
        "email": "accounts@acme.example",
        "address_line1": "12 Market Road",
        "address_line2": "",
        "city": "Pune",
        "state": "MH",
        "pincode": "411001",
        "gstin": "27aapfu0939f1zv",
        "credit_account": "Sales - Domestic",
    }


class TestCustomerDraft:
    """Customer input validation."""

    def test_valid_input(self, customer_input: dict[str, Any]) -> None:
        draft = CustomerDraft(**customer_input)

        assert draft.gstin == "27AAPFU0939F1ZV"
        assert draft.address_line2 is None

    @pytest.mark.parametrize(
        ("field", "value"),
        [
            ("name", "A"),
            ("address_line1", "ab"),
            ("city", ""),
            ("state", ""),
            ("pincode", "41100"),
            ("pincode", "41100A"),
            ("gstin", "27AAPFU0939F1Z"),
            ("email", "not-an-email"),
            ("credit_account", ""),
        ],
    )
    def test_invalid_field(self, customer_input: dict[str, Any], field: str, value: str) -> None:
        customer_input[field] = value

        with pytest.raises(ValidationError) as exc_info:
            CustomerDraft(**customer_input)

        assert field in str(exc_info.value)

    def test_blank_optional_fields_become_none(self, customer_input: dict[str, Any]) -> None:
        customer_input.update(gstin="", email="  ", phone_number="")

        draft = CustomerDraft(**customer_input)

        assert draft.gstin is None
        assert draft.email is None
        assert draft.phone_number is None

    def test_state_name_is_normalized_to_code(self, customer_input: dict[str, Any]) -> None:
        customer_input["state"] = "Karnataka"

        assert CustomerDraft(**customer_input).state == "KA"

    def test_customer_from_draft(self, customer_input: dict[str, Any]) -> None:
        customer = Customer.from_draft(CustomerDraft(**customer_input), "Demo Co")

        assert customer.id == "Acme Retail"
        assert customer.ledger_name == "Acme Retail"
        assert customer.group == "Sundry Debtors"
        assert customer.company_id == "Demo Co"
        assert customer.credit_account == "Sales - Domestic"


class TestLineItems:
    """Invoice line validation."""

    def test_quantity_must_be_positive(self) -> None:
        with pytest.raises(ValidationError):
            LineItemDraft(item_name="Widget", quantity=Decimal("0"), unit="NOS", rate=Decimal("1"))

    def test_rate_must_be_non_negative(self) -> None:
        with pytest.raises(ValidationError):
            LineItemDraft(item_name="Widget", quantity=Decimal("1"), unit="NOS", rate=Decimal("-1"))

    def test_amount_is_quantity_times_rate(self) -> None:
        draft = LineItemDraft(
            item_name="Widget", quantity=Decimal("2.5"), unit="KGS", rate=Decimal("40")
        )

        item = InvoiceLineItem.from_draft(draft, "item_1")

        assert item.amount == Decimal("100.0")

    def test_invoice_needs_at_least_one_item(self) -> None:
        with pytest.raises(ValidationError):
            InvoiceDraft(invoice_date=date(2024, 4, 1), items=[])

    def test_due_date_not_before_invoice_date(self) -> None:
        item = LineItemDraft(item_name="Widget", quantity=Decimal("1"), unit="NOS", rate=Decimal("1"))

        with pytest.raises(ValidationError, match="Due date"):
            InvoiceDraft(invoice_date=date(2024, 4, 2), due_date=date(2024, 4, 1), items=[item])


class TestTaxBreakdown:
    """Mutually exclusive tax fields."""

    def test_split_and_igst_cannot_coexist(self) -> None:
        with pytest.raises(ValidationError):
            TaxBreakdown(cgst_amount=Decimal("9"), igst_amount=Decimal("18"))

    def test_empty_breakdown_totals_zero(self) -> None:
        assert TaxBreakdown().total == 0
        assert TaxBreakdown().is_empty


class TestInvoiceInvariants:
    """Subtotal and total consistency."""

    @pytest.fixture
    def customer(self) -> Customer:
        return Customer(id="Acme", name="Acme", ledger_name="Acme", company_id="Demo Co")

    @pytest.fixture
    def draft(self) -> InvoiceDraft:
        return InvoiceDraft(
            invoice_date=date(2024, 4, 1),
            items=[
                LineItemDraft(item_name="A", quantity=Decimal("2"), unit="NOS", rate=Decimal("300")),
                LineItemDraft(item_name="B", quantity=Decimal("4"), unit="NOS", rate=Decimal("100")),
            ],
        )

    def _assemble(self, draft: InvoiceDraft, customer: Customer, tax: TaxBreakdown) -> Invoice:
        items = [InvoiceLineItem.from_draft(line, f"item_{i}") for i, line in enumerate(draft.items)]
        return Invoice.assemble(
            invoice_id="inv-1",
            number="API-1",
            draft=draft,
            customer=customer,
            company_id="Demo Co",
            items=items,
            tax=tax,
        )

    def test_assemble_computes_totals(self, draft: InvoiceDraft, customer: Customer) -> None:
        tax = TaxBreakdown(igst_rate=Decimal("18"), igst_amount=Decimal("180"))

        invoice = self._assemble(draft, customer, tax)

        assert invoice.subtotal == Decimal("1000")
        assert invoice.total_amount == Decimal("1180")
        assert invoice.amount_in_words == "ONE THOUSAND ONE HUNDRED AND EIGHTY ONLY"
        assert invoice.number_confirmed is False
        assert invoice.provisional_number == "API-1"

    def test_inconsistent_total_is_rejected(self, draft: InvoiceDraft, customer: Customer) -> None:
        invoice = self._assemble(draft, customer, TaxBreakdown())
        data = invoice.model_dump()
        data["total_amount"] = Decimal("999")

        with pytest.raises(ValidationError, match="Total must equal"):
            Invoice(**data)

    def test_revise_confirms_number_and_recomputes_total(
        self, draft: InvoiceDraft, customer: Customer
    ) -> None:
        invoice = self._assemble(draft, customer, TaxBreakdown())
        tax = TaxBreakdown(
            cgst_rate=Decimal("9"),
            cgst_amount=Decimal("90"),
            sgst_rate=Decimal("9"),
            sgst_amount=Decimal("90"),
        )

        revised = invoice.revise(invoice_number="42", tax=tax)

        assert revised.invoice_number == "42"
        assert revised.provisional_number == "API-1"
        assert revised.number_confirmed is True
        assert revised.total_amount == Decimal("1180")
        assert invoice.total_amount == Decimal("1000")


def test_import_ack_error_detail() -> None:
    assert ImportAck(success=False).error == "No details provided."
    assert ImportAck(success=False, errors=["a", "b"]).error == "a, b"


def test_state_code_mapping() -> None:
    assert state_code_for("Maharashtra") == "MH"
    assert state_code_for(" tamil nadu ") == "TN"
    assert state_code_for("ka") == "KA"
    assert state_code_for("Atlantis") == "Atlantis"
    assert state_code_for(None) == ""
    assert state_name_for("MH") == "Maharashtra"
