"""Exceptions for delivery transports."""


class TransportError(Exception):
    """Base exception for delivery transport errors."""

    def __init__(self, message: str, destination: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.destination = destination

    def __str__(self) -> str:
        if self.destination:
            return f"{self.message} (destination: {self.destination})"
        return self.message


class TransportNotConfiguredError(TransportError):
    """Raised when credentials are missing or rejected."""
    pass


class DeliveryRejectedError(TransportError):
    """Raised when the remote API refuses a specific delivery."""

    def __init__(
        self,
        message: str,
        destination: str | None = None,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message, destination)
        self.status_code = status_code

    def __str__(self) -> str:
        parts = [super().__str__()]
        if self.status_code is not None:
            parts.append(f"(status: {self.status_code})")
        return " ".join(parts)
