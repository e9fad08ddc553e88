"""Exception types shared by the pipeline, the oracles and the web app."""

from __future__ import annotations

from typing import Optional


class AwningError(Exception):
    """Base class for all errors raised by this service."""


class RequestValidationError(AwningError):
    """Client input is missing, malformed or out of range. Maps to HTTP 400."""


class ImageDecodeError(RequestValidationError):
    """A data-URI or base64 payload could not be decoded into an image."""


class OracleError(AwningError):
    """An image or evaluation oracle call failed at the transport/HTTP level."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.message = message
        self.status_code = status_code
        super().__init__(message)


class PlacementExhaustedError(AwningError):
    """Every placement attempt failed to produce a usable candidate."""

    def __init__(self, message: str = "No valid placement variations generated"):
        self.message = message
        super().__init__(message)


class NotificationError(AwningError):
    """Sending a customer email failed."""
