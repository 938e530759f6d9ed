"""Customer and invoice models exchanged with Tally.

Drafts (``CustomerDraft``, ``LineItemDraft``, ``InvoiceDraft``) carry operator
input and validate it before any request is built. Records (``Customer``,
``Invoice``) are what the gateway hands back.
"""

import re
from datetime import date
from decimal import Decimal
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from invoicer.tally.words import amount_to_words

SUNDRY_DEBTORS = "Sundry Debtors"
NO_ERROR_DETAILS = "No details provided."

GSTIN_PATTERN = re.compile(r"^[0-9]{2}[A-Z]{5}[0-9]{4}[A-Z][1-9A-Z]Z[0-9A-Z]$")
EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

STATE_CODES: dict[str, str] = {
    "AN": "Andaman and Nicobar Islands",
    "AP": "Andhra Pradesh",
    "AR": "Arunachal Pradesh",
    "AS": "Assam",
    "BR": "Bihar",
    "CH": "Chandigarh",
    "CT": "Chhattisgarh",
    "DN": "Dadra and Nagar Haveli and Daman and Diu",
    "DL": "Delhi",
    "GA": "Goa",
    "GJ": "Gujarat",
    "HR": "Haryana",
    "HP": "Himachal Pradesh",
    "JK": "Jammu and Kashmir",
    "JH": "Jharkhand",
    "KA": "Karnataka",
    "KL": "Kerala",
    "LA": "Ladakh",
    "LD": "Lakshadweep",
    "MP": "Madhya Pradesh",
    "MH": "Maharashtra",
    "MN": "Manipur",
    "ML": "Meghalaya",
    "MZ": "Mizoram",
    "NL": "Nagaland",
    "OR": "Odisha",
    "PY": "Puducherry",
    "PB": "Punjab",
    "RJ": "Rajasthan",
    "SK": "Sikkim",
    "TN": "Tamil Nadu",
    "TG": "Telangana",
    "TR": "Tripura",
    "UP": "Uttar Pradesh",
    "UT": "Uttarakhand",
    "WB": "West Bengal",
}

UNIT_CODES: dict[str, str] = {
    "NOS": "Numbers",
    "PCS": "Pieces",
    "KGS": "Kilograms",
    "LTR": "Litres",
    "MTR": "Meters",
    "BOX": "Box",
    "SET": "Sets",
}

CREDIT_ACCOUNTS: dict[str, str] = {
    "sales_domestic": "Sales - Domestic",
    "sales_export": "Sales - Export",
    "service_income": "Service Income",
    "other_income_indirect": "Other Indirect Income",
}


def state_code_for(value: str | None) -> str:
    """Map a state name (as Tally stores it) or code to its two-letter code.

    Unknown values are returned stripped but otherwise unchanged.
    """
    if not value:
        return ""
    cleaned = value.strip()
    if cleaned.upper() in STATE_CODES:
        return cleaned.upper()
    for code, name in STATE_CODES.items():
        if name.lower() == cleaned.lower():
            return code
    return cleaned


def state_name_for(code: str) -> str:
    """Full state name for a code; Tally masters store names, not codes."""
    return STATE_CODES.get(code.upper(), code)


class Company(BaseModel):
    """A company loaded in Tally."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., description="Company identifier (usually the display name)")
    name: str = Field(..., description="Company display name")


class CustomerDraft(BaseModel):
    """Operator input for a new customer ledger."""

    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(..., min_length=2, description="Legal name, also used as ledger name")
    contact_person: str | None = None
    phone_number: str | None = None
    mobile: str | None = None
    email: str | None = None
    address_line1: str = Field(..., min_length=3)
    address_line2: str | None = None
    city: str = Field(..., min_length=2)
    state: str = Field(..., min_length=1, description="Two-letter state code, e.g. MH")
    pincode: str = Field(..., pattern=r"^\d{6}$", description="Six digit postal code")
    gstin: str | None = Field(None, description="GST registration number")
    credit_account: str = Field(..., min_length=1, description="Revenue ledger for invoices")

    @field_validator(
        "contact_person",
        "phone_number",
        "mobile",
        "email",
        "address_line2",
        "gstin",
        mode="before",
    )
    @classmethod
    def _blank_to_none(cls, value: str | None) -> str | None:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("email")
    @classmethod
    def _check_email(cls, value: str | None) -> str | None:
        if value is not None and not EMAIL_PATTERN.match(value):
            raise ValueError("Invalid email address.")
        return value

    @field_validator("gstin")
    @classmethod
    def _check_gstin(cls, value: str | None) -> str | None:
        if value is None:
            return None
        value = value.upper()
        if not GSTIN_PATTERN.match(value):
            raise ValueError("Invalid GSTIN format.")
        return value

    @field_validator("state")
    @classmethod
    def _normalize_state(cls, value: str) -> str:
        return state_code_for(value)


class Customer(BaseModel):
    """A customer ledger as known to Tally."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    contact_person: str | None = None
    phone_number: str | None = None
    mobile: str | None = None
    email: str | None = None
    address_line1: str = ""
    address_line2: str | None = None
    city: str = ""
    state: str = Field("", description="Two-letter state code when known")
    pincode: str = ""
    gstin: str | None = None
    ledger_name: str
    group: Literal["Sundry Debtors"] = SUNDRY_DEBTORS
    credit_account: str = ""
    company_id: str

    @classmethod
    def from_draft(cls, draft: CustomerDraft, company_id: str) -> "Customer":
        """Build the record Tally holds after a successful ledger import.

        Tally assigns its own GUID; the ledger name doubles as identifier.
        """
        return cls(
            id=draft.name,
            ledger_name=draft.name,
            company_id=company_id,
            **draft.model_dump(),
        )


class LineItemDraft(BaseModel):
    """Operator input for one invoice line."""

    model_config = ConfigDict(str_strip_whitespace=True)

    item_name: str = Field(..., min_length=1, description="Stock item name or description")
    hsn_sac: str | None = Field(None, description="HSN/SAC classification code")
    quantity: Decimal = Field(..., gt=0)
    unit: str = Field(..., min_length=1, description="Unit of measure, e.g. NOS")
    rate: Decimal = Field(..., ge=0)


class InvoiceLineItem(BaseModel):
    """A priced invoice line."""

    id: str
    item_name: str
    hsn_sac: str | None = None
    quantity: Decimal
    unit: str
    rate: Decimal
    amount: Decimal

    @model_validator(mode="after")
    def _check_amount(self) -> "InvoiceLineItem":
        if self.amount != self.quantity * self.rate:
            raise ValueError("Line amount must equal quantity x rate")
        return self

    @classmethod
    def from_draft(cls, draft: LineItemDraft, item_id: str) -> "InvoiceLineItem":
        return cls(id=item_id, amount=draft.quantity * draft.rate, **draft.model_dump())


class InvoiceDraft(BaseModel):
    """Operator input for a sales invoice."""

    invoice_date: date
    due_date: date | None = None
    items: list[LineItemDraft] = Field(..., min_length=1)

    @model_validator(mode="after")
    def _check_due_date(self) -> "InvoiceDraft":
        if self.due_date is not None and self.due_date < self.invoice_date:
            raise ValueError("Due date cannot be before the invoice date")
        return self


class TaxBreakdown(BaseModel):
    """GST on an invoice: CGST+SGST (same state) or IGST (inter-state).

    Rates are percentages, amounts are currency.
    """

    cgst_rate: Decimal | None = None
    cgst_amount: Decimal | None = None
    sgst_rate: Decimal | None = None
    sgst_amount: Decimal | None = None
    igst_rate: Decimal | None = None
    igst_amount: Decimal | None = None

    @model_validator(mode="after")
    def _check_exclusive(self) -> "TaxBreakdown":
        split = self.cgst_amount is not None or self.sgst_amount is not None
        if split and self.igst_amount is not None:
            raise ValueError("CGST/SGST and IGST cannot both be populated")
        return self

    @property
    def is_split(self) -> bool:
        return self.cgst_amount is not None or self.sgst_amount is not None

    @property
    def is_empty(self) -> bool:
        return not self.is_split and self.igst_amount is None

    @property
    def total(self) -> Decimal:
        amounts = (self.cgst_amount, self.sgst_amount, self.igst_amount)
        return sum((a for a in amounts if a is not None), Decimal("0"))


_REVISED_FIELDS = {
    "invoice_number",
    "number_confirmed",
    "tax",
    "total_amount",
    "amount_in_words",
    "customer",
    "items",
}


class Invoice(BaseModel):
    """A sales voucher created in Tally.

    ``provisional_number`` is the client-generated correlation key sent with
    the import. ``invoice_number`` is only authoritative once
    ``number_confirmed`` is set from Tally's own response.
    """

    id: str
    invoice_number: str
    provisional_number: str
    number_confirmed: bool = False
    invoice_date: date
    due_date: date | None = None
    customer: Customer
    company_id: str
    items: list[InvoiceLineItem]
    subtotal: Decimal
    tax: TaxBreakdown = Field(default_factory=TaxBreakdown)
    total_amount: Decimal
    amount_in_words: str
    voucher_type: Literal["Sales"] = "Sales"

    @model_validator(mode="after")
    def _check_totals(self) -> "Invoice":
        if self.subtotal != sum((item.amount for item in self.items), Decimal("0")):
            raise ValueError("Subtotal must equal the sum of line amounts")
        if self.total_amount != self.subtotal + self.tax.total:
            raise ValueError("Total must equal subtotal plus taxes")
        return self

    @classmethod
    def assemble(
        cls,
        *,
        invoice_id: str,
        number: str,
        draft: InvoiceDraft,
        customer: Customer,
        company_id: str,
        items: list[InvoiceLineItem],
        tax: TaxBreakdown,
    ) -> "Invoice":
        """Build an invoice whose subtotal, total and words follow from its parts."""
        subtotal = sum((item.amount for item in items), Decimal("0"))
        total = subtotal + tax.total
        return cls(
            id=invoice_id,
            invoice_number=number,
            provisional_number=number,
            invoice_date=draft.invoice_date,
            due_date=draft.due_date,
            customer=customer,
            company_id=company_id,
            items=items,
            subtotal=subtotal,
            tax=tax,
            total_amount=total,
            amount_in_words=amount_to_words(total),
        )

    def revise(
        self,
        *,
        invoice_number: str | None = None,
        tax: TaxBreakdown | None = None,
    ) -> "Invoice":
        """Copy with a confirmed number and/or Tally's recomputed taxes."""
        new_tax = tax if tax is not None else self.tax
        total = self.subtotal + new_tax.total
        return Invoice(
            **self.model_dump(exclude=_REVISED_FIELDS),
            customer=self.customer,
            items=self.items,
            invoice_number=invoice_number or self.invoice_number,
            number_confirmed=self.number_confirmed or invoice_number is not None,
            tax=new_tax,
            total_amount=total,
            amount_in_words=amount_to_words(total),
        )


class ImportAck(BaseModel):
    """Outcome of an Import Data request."""

    success: bool
    marker: str | None = Field(None, description="CREATED or ALTERED when the marker was 1")
    voucher_number: str | None = None
    errors: list[str] = Field(default_factory=list)

    @property
    def error(self) -> str:
        return ", ".join(self.errors) if self.errors else NO_ERROR_DETAILS


class TaxRecomputation(BaseModel):
    """Tax figures read back from a voucher after Tally recomputed it."""

    voucher_number: str | None = None
    subtotal: Decimal
    tax: TaxBreakdown
    total_amount: Decimal
