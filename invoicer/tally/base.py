"""Abstract base class for accounting gateways.

Enables switching between the live Tally connection and the in-memory demo
backend while keeping one interface for the API layer and tests.

Design follows existing patterns:
- Pydantic BaseModel records for results (see schema.py)
- ABC for interface enforcement
- Settings injection at construction time
"""

from abc import ABC, abstractmethod

from invoicer.shared.config import Settings
from invoicer.tally.schema import Company, Customer, CustomerDraft, Invoice, InvoiceDraft


class AccountingGateway(ABC):
    """Abstract base class for the accounting system behind the invoicer.

    Each operation issues at most one request per call (plus, for invoices,
    one follow-up read after a successful import). Nothing is retried
    automatically; a failed call raises a ``TallyError`` subclass and the
    operator decides whether to try again.
    """

    def __init__(self, settings: Settings) -> None:
        """Initialize gateway with settings.

        Args:
            settings: Application settings
        """
        self.settings = settings

    @abstractmethod
    def list_companies(self) -> list[Company]:
        """List companies currently loaded in the accounting system.

        Returns:
            Companies, possibly empty when none is loaded
        """

    @abstractmethod
    def find_customer(self, name: str, company: str) -> Customer | None:
        """Look up a customer ledger by name.

        Args:
            name: Ledger name to search for
            company: Company identifier

        Returns:
            The customer, or None when no such ledger exists
        """

    @abstractmethod
    def create_customer(self, draft: CustomerDraft, company: str) -> Customer:
        """Create a customer ledger under Sundry Debtors.

        Args:
            draft: Validated customer input
            company: Company identifier

        Returns:
            The created customer
        """

    @abstractmethod
    def create_invoice(self, draft: InvoiceDraft, customer: Customer, company: str) -> Invoice:
        """Create a Sales voucher for a customer.

        Args:
            draft: Validated invoice input
            customer: Party being invoiced
            company: Company identifier

        Returns:
            The created invoice
        """

    @abstractmethod
    def is_available(self) -> bool:
        """Check if the backend can currently serve requests.

        Returns:
            True if the gateway is usable, False otherwise
        """

    @property
    @abstractmethod
    def gateway_name(self) -> str:
        """Get gateway name for logging/metrics.

        Returns:
            Gateway identifier (e.g., 'tally', 'demo')
        """
