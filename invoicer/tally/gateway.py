"""Tally gateway speaking the XML-over-HTTP interface.

TallyPrime (and Tally.ERP 9) expose a single POST endpoint, by default on
localhost:9000, that accepts an ENVELOPE document and answers with another.
One request is sent per call; retries are left to the operator.

See: https://help.tallysolutions.com/integration-with-tallyprime/
"""

import logging
import xml.etree.ElementTree as ET
from decimal import Decimal
from enum import Enum

import httpx

from invoicer.shared.config import Settings
from invoicer.tally.base import AccountingGateway
from invoicer.tally.builder import (
    build_create_customer,
    build_create_invoice,
    build_fetch_voucher,
    build_find_customer,
    build_list_companies,
)
from invoicer.tally.errors import (
    TallyConnectivityError,
    TallyDomainError,
    TallyError,
    TallyTransportError,
)
from invoicer.tally.parser import (
    error_messages,
    has_error_marker,
    parse_companies,
    parse_customer,
    parse_document,
    parse_import_ack,
    parse_tax_recomputation,
)
from invoicer.tally.schema import (
    NO_ERROR_DETAILS,
    Company,
    Customer,
    CustomerDraft,
    Invoice,
    InvoiceDraft,
)

logger = logging.getLogger(__name__)

XML_HEADERS = {"Content-Type": "application/xml; charset=utf-8"}
_CENT = Decimal("0.01")


class GatewayState(str, Enum):
    """Lifecycle of the most recent request."""

    IDLE = "idle"
    SENDING = "sending"
    SUCCESS = "success"
    FAILED = "failed"


class TallyGateway(AccountingGateway):
    """Accounting gateway backed by a running Tally instance."""

    def __init__(self, settings: Settings, client: httpx.Client | None = None) -> None:
        """Initialize Tally gateway.

        Args:
            settings: Application settings
            client: Optional preconfigured HTTP client
        """
        super().__init__(settings)
        self._base_url = settings.tally_base_url
        self._client = client or httpx.Client(timeout=settings.tally_timeout_seconds)
        self.state = GatewayState.IDLE
        self.last_error: TallyError | None = None

    @property
    def gateway_name(self) -> str:
        """Get gateway name for logging/metrics.

        Returns:
            Gateway identifier 'tally'
        """
        return "tally"

    def is_available(self) -> bool:
        """Check if Tally answers a company list request.

        Returns:
            True if Tally responded without an error
        """
        try:
            self.send(build_list_companies())
            return True
        except TallyError:
            return False

    def close(self) -> None:
        """Release the underlying HTTP connection pool."""
        self._client.close()

    def send(self, document: str) -> ET.Element:
        """POST one request document and return the parsed response.

        Args:
            document: XML request text

        Returns:
            Root element of the response document

        Raises:
            TallyConnectivityError: If Tally cannot be reached
            TallyTransportError: On a non-success HTTP status
            TallyDomainError: If the response carries an error marker
        """
        self.state = GatewayState.SENDING
        try:
            root = self._round_trip(document)
        except TallyError as e:
            self.state = GatewayState.FAILED
            self.last_error = e
            raise
        self.state = GatewayState.SUCCESS
        self.last_error = None
        return root

    def _round_trip(self, document: str) -> ET.Element:
        try:
            response = self._client.post(
                self._base_url,
                content=document.encode("utf-8"),
                headers=XML_HEADERS,
            )
        except (httpx.ConnectError, httpx.ConnectTimeout) as e:
            logger.error(f"Cannot reach Tally at {self._base_url}: {e}")
            raise TallyConnectivityError(self._base_url, str(e) or type(e).__name__) from e
        except httpx.TransportError as e:
            logger.error(f"Tally request to {self._base_url} failed in transport: {e}")
            raise TallyTransportError(None, str(e) or type(e).__name__) from e

        if not response.is_success:
            logger.error(
                f"Tally API request failed: {response.status_code} {response.reason_phrase}"
            )
            raise TallyTransportError(response.status_code, response.text)

        root = parse_document(response.text)
        if has_error_marker(root):
            message = ", ".join(error_messages(root)) or NO_ERROR_DETAILS
            logger.error(f"Tally returned an error: {message}")
            raise TallyDomainError(message)
        return root

    def list_companies(self) -> list[Company]:
        companies = parse_companies(self.send(build_list_companies()))
        if not companies:
            logger.warning("No companies found in Tally response; is a company loaded?")
        return companies

    def find_customer(self, name: str, company: str) -> Customer | None:
        root = self.send(build_find_customer(name, company))
        return parse_customer(root, name, company)

    def create_customer(self, draft: CustomerDraft, company: str) -> Customer:
        ack = parse_import_ack(self.send(build_create_customer(draft, company)))
        if not ack.success:
            raise TallyDomainError(f"Tally failed to create customer. {ack.error}")

        logger.info(f"Created ledger '{draft.name}' in company '{company}'")
        return Customer.from_draft(draft, company)

    def create_invoice(self, draft: InvoiceDraft, customer: Customer, company: str) -> Invoice:
        """Import a Sales voucher, then read it back for Tally's own figures.

        The read-back only happens after the import succeeded, and its failure
        never fails the invoice: the provisional figures are returned instead.
        """
        request = build_create_invoice(draft, customer, company, self.settings)
        ack = parse_import_ack(self.send(request.document))
        if not ack.success:
            raise TallyDomainError(f"Tally failed to generate invoice. {ack.error}")

        invoice = request.invoice
        if ack.voucher_number:
            invoice = invoice.revise(invoice_number=ack.voucher_number)
        logger.info(
            f"Created Sales voucher {invoice.invoice_number} for '{customer.name}' "
            f"in '{company}' (confirmed={invoice.number_confirmed})"
        )

        if self.settings.recompute_taxes:
            invoice = self._reconcile(invoice, customer, company)
        return invoice

    def _reconcile(self, invoice: Invoice, customer: Customer, company: str) -> Invoice:
        document = build_fetch_voucher(invoice.invoice_number, company, invoice.invoice_date)
        try:
            root = self.send(document)
        except TallyError as e:
            logger.warning(f"Could not read back voucher {invoice.invoice_number}: {e}")
            return invoice

        recomputed = parse_tax_recomputation(
            root, invoice.invoice_number, customer.ledger_name, invoice.subtotal
        )
        if recomputed is None:
            return invoice

        revised = invoice.revise(
            invoice_number=recomputed.voucher_number,
            tax=None if recomputed.tax.is_empty else recomputed.tax,
        )
        if recomputed.total_amount.quantize(_CENT) != revised.total_amount.quantize(_CENT):
            logger.warning(
                f"Voucher {revised.invoice_number} total in Tally ({recomputed.total_amount}) "
                f"differs from invoice total ({revised.total_amount})"
            )
        return revised
