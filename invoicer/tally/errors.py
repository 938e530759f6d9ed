"""Error taxonomy for the Tally integration.

Input validation is handled by the pydantic draft models in
``invoicer.tally.schema`` and surfaces as ``pydantic.ValidationError`` before
any request is built. Everything below is raised at or after the network call.
"""


class TallyError(Exception):
    """Base class for accounting gateway failures."""


class TallyConnectivityError(TallyError):
    """Raised when the Tally server cannot be reached at all."""

    def __init__(self, base_url: str, reason: str) -> None:
        self.base_url = base_url
        self.reason = reason
        super().__init__(
            f"Failed to connect to Tally at {base_url} ({reason}). "
            "Check that TallyPrime is running with a company loaded, "
            "that it is listening on the expected port (Help > Settings > Connectivity, "
            "default 9000), and that no firewall or private-network/cross-origin "
            "restriction is blocking the connection."
        )


class TallyTransportError(TallyError):
    """Raised when Tally answers with a non-success HTTP status."""

    def __init__(self, status_code: int | None, body: str) -> None:
        self.status_code = status_code
        self.body = body
        super().__init__(f"Tally request failed with status {status_code}. Response: {body}")


class TallyDomainError(TallyError):
    """Raised when Tally rejects an operation with an error marker."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Tally error: {message}")


class UnrecognizedResponseShape(TallyError):
    """Raised by the shape dispatcher when no known response layout matches.

    The parser catches it and degrades to an empty result, because the
    response schema differs between Tally releases.
    """

    def __init__(self, kind: str, tried: list[str]) -> None:
        self.kind = kind
        self.tried = tried
        super().__init__(f"No recognizable {kind} shape in response (tried: {', '.join(tried)})")
