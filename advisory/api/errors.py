from fastapi import HTTPException, status

from advisory.core.exceptions import (
    MalformedVendorResponse,
    VendorError,
    VendorNotConfigured,
    VendorResponseError,
    VendorTimeout,
    VendorUnavailable,
)


def vendor_http_exception(
    exc: VendorError,
    message: str,
    response_error_status: int = status.HTTP_502_BAD_GATEWAY,
) -> HTTPException:
    """
    Translate a vendor client failure into an HTTPException.

    `message` is what users see when the vendor answered with an error;
    `response_error_status` is the status used in that case. The vendor's own
    message travels under "error", which the app-wide handler only exposes when
    error details are enabled.
    """
    if isinstance(exc, VendorNotConfigured):
        code, text = status.HTTP_503_SERVICE_UNAVAILABLE, exc.message
    elif isinstance(exc, VendorTimeout):
        code, text = status.HTTP_504_GATEWAY_TIMEOUT, exc.message
    elif isinstance(exc, VendorUnavailable):
        code, text = status.HTTP_502_BAD_GATEWAY, exc.message.split(":")[0]
    elif isinstance(exc, MalformedVendorResponse):
        code, text = status.HTTP_502_BAD_GATEWAY, exc.message
    elif isinstance(exc, VendorResponseError):
        code, text = response_error_status, message
    else:
        code, text = status.HTTP_502_BAD_GATEWAY, message
    return HTTPException(status_code=code, detail={"message": text, "error": exc.diagnostic()})
