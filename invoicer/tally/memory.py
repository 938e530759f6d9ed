"""In-memory accounting backend for running without Tally.

The repository is an ordinary object handed to ``DemoGateway`` at
construction, so each gateway (and each test) owns its own data.
"""

import logging
from collections.abc import Iterable

from invoicer.shared.config import Settings
from invoicer.tally.base import AccountingGateway
from invoicer.tally.builder import build_create_invoice
from invoicer.tally.errors import TallyDomainError
from invoicer.tally.schema import Company, Customer, CustomerDraft, Invoice, InvoiceDraft
from invoicer.tally.tax import calculate_gst

logger = logging.getLogger(__name__)

SAMPLE_COMPANIES = (
    Company(id="Demo Traders Pvt Ltd", name="Demo Traders Pvt Ltd"),
    Company(id="Sample Exports LLP", name="Sample Exports LLP"),
)


class InMemoryLedgerRepository:
    """Companies, customer ledgers and sales vouchers held in memory."""

    def __init__(self, companies: Iterable[Company] = ()) -> None:
        self.companies: dict[str, Company] = {company.id: company for company in companies}
        self._customers: dict[str, dict[str, Customer]] = {}
        self._invoices: dict[str, list[Invoice]] = {}
        self._voucher_sequence: dict[str, int] = {}

    @classmethod
    def with_sample_data(cls) -> "InMemoryLedgerRepository":
        return cls(SAMPLE_COMPANIES)

    def has_company(self, company: str) -> bool:
        return company in self.companies

    def get_customer(self, company: str, name: str) -> Customer | None:
        return self._customers.get(company, {}).get(name.strip().casefold())

    def save_customer(self, customer: Customer) -> None:
        ledgers = self._customers.setdefault(customer.company_id, {})
        ledgers[customer.ledger_name.casefold()] = customer

    def next_voucher_number(self, company: str) -> str:
        self._voucher_sequence[company] = self._voucher_sequence.get(company, 0) + 1
        return str(self._voucher_sequence[company])

    def save_invoice(self, invoice: Invoice) -> None:
        self._invoices.setdefault(invoice.company_id, []).append(invoice)

    def invoices_for(self, company: str) -> list[Invoice]:
        return list(self._invoices.get(company, []))


class DemoGateway(AccountingGateway):
    """Accounting gateway that answers from an in-memory repository.

    Behaves like a Tally company with auto-numbered Sales vouchers and GST
    computed by the engine, including in deferred tax mode.
    """

    def __init__(
        self, settings: Settings, repository: InMemoryLedgerRepository | None = None
    ) -> None:
        super().__init__(settings)
        self.repository = repository or InMemoryLedgerRepository.with_sample_data()

    @property
    def gateway_name(self) -> str:
        return "demo"

    def is_available(self) -> bool:
        return True

    def _require_company(self, company: str) -> None:
        if not self.repository.has_company(company):
            raise TallyDomainError(f"Company '{company}' is not loaded")

    def list_companies(self) -> list[Company]:
        return list(self.repository.companies.values())

    def find_customer(self, name: str, company: str) -> Customer | None:
        self._require_company(company)
        return self.repository.get_customer(company, name)

    def create_customer(self, draft: CustomerDraft, company: str) -> Customer:
        self._require_company(company)
        if self.repository.get_customer(company, draft.name) is not None:
            raise TallyDomainError(f"Ledger '{draft.name}' already exists")

        customer = Customer.from_draft(draft, company)
        self.repository.save_customer(customer)
        logger.info(f"[demo] Created ledger '{customer.name}' in '{company}'")
        return customer

    def create_invoice(self, draft: InvoiceDraft, customer: Customer, company: str) -> Invoice:
        self._require_company(company)
        if self.repository.get_customer(company, customer.ledger_name) is None:
            raise TallyDomainError(f"Ledger '{customer.ledger_name}' does not exist")

        invoice = build_create_invoice(draft, customer, company, self.settings).invoice
        tax = calculate_gst(
            invoice.subtotal, customer.state, self.settings.seller_state, self.settings.gst_rate
        )
        invoice = invoice.revise(
            invoice_number=self.repository.next_voucher_number(company), tax=tax
        )
        self.repository.save_invoice(invoice)
        logger.info(f"[demo] Created Sales voucher {invoice.invoice_number} for '{customer.name}'")
        return invoice
