"""FastAPI application driving the invoicing workflow.

One endpoint per wizard step:
1. List the companies loaded in Tally
2. Find a customer ledger (or learn that it does not exist)
3. Create the customer ledger when needed
4. Create the Sales invoice

Health, readiness and Prometheus endpoints follow the usual layout.

Based on FastAPI best practices:
https://fastapi.tiangolo.com/
"""

import logging
import time
from collections.abc import Iterator
from contextlib import contextmanager

from fastapi import FastAPI, HTTPException, Query, Request, Response, status
from pydantic import BaseModel

from invoicer.api import metrics
from invoicer.shared.config import get_settings
from invoicer.tally.errors import TallyConnectivityError, TallyDomainError, TallyTransportError
from invoicer.tally.factory import create_accounting_gateway
from invoicer.tally.schema import (
    CREDIT_ACCOUNTS,
    STATE_CODES,
    UNIT_CODES,
    Company,
    Customer,
    CustomerDraft,
    Invoice,
    InvoiceDraft,
)

settings = get_settings()

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)

logger = logging.getLogger(__name__)

app = FastAPI(
    title="Tally Invoicer",
    description="Customer lookup and sales invoice creation against TallyPrime",
    version=settings.service_version,
)

gateway = create_accounting_gateway(settings)

NO_COMPANIES_WARNING = (
    "No companies found. Ensure Tally is running with a company loaded, "
    "and that its XML interface is enabled on the configured port."
)


@app.middleware("http")
async def metrics_middleware(request: Request, call_next):  # type: ignore[no-untyped-def]
    """Middleware to collect request metrics.

    Tracks:
    - Request count by method, endpoint, and status
    - Request duration by method and endpoint
    """
    # Skip metrics for /metrics endpoint itself
    if request.url.path == "/metrics":
        return await call_next(request)

    start_time = time.time()
    response = await call_next(request)
    duration = time.time() - start_time

    metrics.http_requests_total.labels(
        method=request.method,
        endpoint=request.url.path,
        status=response.status_code,
    ).inc()

    metrics.http_request_duration_seconds.labels(
        method=request.method,
        endpoint=request.url.path,
    ).observe(duration)

    return response


@contextmanager
def accounting_call(operation: str) -> Iterator[None]:
    """Time one gateway operation and map its failures to HTTP errors.

    - unreachable backend: 503 with remediation text
    - non-success transport status: 502
    - rejected by the accounting system: 409
    """
    start_time = time.time()
    outcome = "error"
    try:
        yield
        outcome = "success"
    except TallyConnectivityError as e:
        outcome = "unreachable"
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e)) from e
    except TallyTransportError as e:
        outcome = "transport_error"
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(e)) from e
    except TallyDomainError as e:
        outcome = "rejected"
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=e.message) from e
    finally:
        metrics.accounting_requests_total.labels(operation=operation, status=outcome).inc()
        metrics.accounting_request_duration_seconds.labels(operation=operation).observe(
            time.time() - start_time
        )


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    version: str
    service: str
    backend: str


class ReadinessResponse(BaseModel):
    """Readiness check response."""

    ready: bool


class CompaniesResponse(BaseModel):
    """Companies loaded in the accounting system."""

    companies: list[Company]
    warning: str | None = None


class CustomerLookupResponse(BaseModel):
    """Result of a customer search; ``found`` is false when no ledger matches."""

    found: bool
    customer: Customer | None = None


class ReferenceDataResponse(BaseModel):
    """Code tables for populating customer and invoice forms."""

    states: dict[str, str]
    units: dict[str, str]
    credit_accounts: dict[str, str]


class InvoiceCreateRequest(InvoiceDraft):
    """Invoice input together with the customer chosen in the previous step."""

    customer: Customer


@app.get("/health", response_model=HealthResponse, tags=["Health"])
def health_check() -> HealthResponse:
    """Health check endpoint for liveness checks."""
    return HealthResponse(
        status="healthy",
        version=settings.service_version,
        service=settings.service_name,
        backend=gateway.gateway_name,
    )


@app.get("/ready", response_model=ReadinessResponse, tags=["Health"])
def readiness_check() -> ReadinessResponse:
    """Readiness check: the accounting backend answers requests."""
    return ReadinessResponse(ready=gateway.is_available())


@app.get("/metrics", tags=["Monitoring"])
def get_metrics() -> Response:
    """Prometheus metrics endpoint."""
    metrics_data, content_type = metrics.get_metrics()
    return Response(content=metrics_data, media_type=content_type)


@app.get("/api/v1/reference", response_model=ReferenceDataResponse, tags=["Reference"])
def reference_data() -> ReferenceDataResponse:
    """State, unit and credit account codes accepted by the create endpoints."""
    return ReferenceDataResponse(
        states=STATE_CODES,
        units=UNIT_CODES,
        credit_accounts=CREDIT_ACCOUNTS,
    )


@app.get("/api/v1/companies", response_model=CompaniesResponse, tags=["Companies"])
def list_companies() -> CompaniesResponse:
    """List companies loaded in Tally.

    An empty list with a warning means Tally answered but no company was
    recognized; an unreachable Tally is a 503 instead.
    """
    with accounting_call("list_companies"):
        companies = gateway.list_companies()

    return CompaniesResponse(
        companies=companies,
        warning=None if companies else NO_COMPANIES_WARNING,
    )


@app.get(
    "/api/v1/companies/{company}/customers",
    response_model=CustomerLookupResponse,
    tags=["Customers"],
)
def find_customer(
    company: str,
    name: str = Query(..., min_length=1, description="Customer ledger name"),
) -> CustomerLookupResponse:
    """Search for a customer ledger by name."""
    with accounting_call("find_customer"):
        customer = gateway.find_customer(name.strip(), company)

    return CustomerLookupResponse(found=customer is not None, customer=customer)


@app.post(
    "/api/v1/companies/{company}/customers",
    response_model=Customer,
    status_code=status.HTTP_201_CREATED,
    tags=["Customers"],
)
def create_customer(company: str, draft: CustomerDraft) -> Customer:
    """Create a customer ledger under Sundry Debtors.

    Input is validated before anything is sent to Tally (422 on failure).
    """
    with accounting_call("create_customer"):
        return gateway.create_customer(draft, company)


@app.post(
    "/api/v1/companies/{company}/invoices",
    response_model=Invoice,
    status_code=status.HTTP_201_CREATED,
    tags=["Invoices"],
)
def create_invoice(company: str, request: InvoiceCreateRequest) -> Invoice:
    """Create a Sales invoice for a customer found or created earlier.

    ``invoice_number`` is Tally's number when ``number_confirmed`` is true;
    otherwise it is the provisional number sent with the import.
    """
    if request.customer.company_id != company:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=(
                f"Customer '{request.customer.name}' belongs to company "
                f"'{request.customer.company_id}', not '{company}'"
            ),
        )

    draft = InvoiceDraft(
        invoice_date=request.invoice_date,
        due_date=request.due_date,
        items=request.items,
    )
    with accounting_call("create_invoice"):
        invoice = gateway.create_invoice(draft, request.customer, company)

    metrics.invoice_total_amount.observe(float(invoice.total_amount))
    return invoice
