"""
Errors raised by the vendor clients.

Route handlers translate these into HTTP responses; the clients themselves never
import FastAPI.
"""
from typing import Any, Optional


class VendorError(Exception):
    """Base class for failures talking to Razorpay or Digio."""

    def __init__(
        self,
        vendor: str,
        message: str,
        *,
        status_code: Optional[int] = None,
        body: Any = None,
    ):
        super().__init__(message)
        self.vendor = vendor
        self.message = message
        self.status_code = status_code
        self.body = body

    def diagnostic(self) -> dict:
        """Detail that may be shown to developers, never to production users."""
        info = {"vendor": self.vendor, "message": self.message}
        if self.status_code is not None:
            info["status_code"] = self.status_code
        if self.body is not None:
            info["body"] = self.body
        return info


class VendorNotConfigured(VendorError):
    """Credentials for the vendor are missing from the environment."""


class VendorUnavailable(VendorError):
    """The vendor could not be reached (DNS, TLS, connection reset...)."""


class VendorTimeout(VendorError):
    """The vendor did not answer within the configured timeout."""


class VendorResponseError(VendorError):
    """The vendor answered with a non-2xx status."""


class MalformedVendorResponse(VendorError):
    """The vendor answered 2xx but the body is missing required fields."""
