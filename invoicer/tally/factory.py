"""Backend selection: the live Tally connection or the in-memory demo.

The backend name comes from ``Settings.accounting_backend``; the demo backend
may be handed a prepared repository (tests, local demos).
"""

import logging

from invoicer.shared.config import Settings
from invoicer.tally.base import AccountingGateway
from invoicer.tally.gateway import TallyGateway
from invoicer.tally.memory import DemoGateway, InMemoryLedgerRepository

logger = logging.getLogger(__name__)


class GatewayRegistry:
    """Backend names mapped to their gateway classes."""

    _gateways: dict[str, type[AccountingGateway]] = {
        "tally": TallyGateway,
        "demo": DemoGateway,
    }

    @classmethod
    def get_gateway_class(cls, name: str) -> type[AccountingGateway]:
        """Get gateway class by name.

        Raises:
            ValueError: If the backend is not registered
        """
        if name not in cls._gateways:
            available = ", ".join(cls._gateways.keys())
            raise ValueError(
                f"Unknown accounting backend: '{name}'. Available backends: {available}"
            )
        return cls._gateways[name]


def create_accounting_gateway(
    settings: Settings, repository: InMemoryLedgerRepository | None = None
) -> AccountingGateway:
    """Factory function to create the gateway configured in settings.

    Args:
        settings: Application settings with accounting_backend field
        repository: In-memory data for the demo backend (a fresh sample
            repository is created when omitted)

    Returns:
        Configured accounting gateway

    Raises:
        ValueError: If the backend is unknown, or a repository is given for a
            backend that does not use one

    Example:
        >>> settings = Settings(accounting_backend="demo")
        >>> gateway = create_accounting_gateway(settings)
        >>> gateway.list_companies()
    """
    backend = settings.accounting_backend
    gateway_class = GatewayRegistry.get_gateway_class(backend)

    if repository is not None:
        if not issubclass(gateway_class, DemoGateway):
            raise ValueError(f"Accounting backend '{backend}' does not use an in-memory repository")
        gateway: AccountingGateway = gateway_class(settings, repository=repository)
    else:
        gateway = gateway_class(settings)

    if not gateway.is_available():
        logger.warning(
            f"Accounting backend '{backend}' is not reachable at startup. "
            f"Check that Tally is running at {settings.tally_base_url}."
        )

    logger.info(f"Created accounting gateway: {backend}")
    return gateway
