"""Client-side error taxonomy.

HTTP error bodies (``{"detail", "code"}``) are mapped back onto the same
failure classes the server raises, so controllers can decide what to
surface and what to degrade silently.
"""

from __future__ import annotations

import httpx


class ClientError(Exception):
    """Base class for every error raised by the client library."""


class ApiError(ClientError):
    def __init__(self, detail: str, code: str = "", status_code: int = 0) -> None:
        self.detail = detail
        self.code = code
        self.status_code = status_code
        super().__init__(detail)


class NotFound(ApiError):
    pass


class PermissionDenied(ApiError):
    pass


class InvalidTransition(ApiError):
    """The state machine rejected the change; the order is unchanged."""


class RetryIneligible(ApiError):
    """The order cannot take a new payment attempt; ``detail`` says why."""


class PaymentVerificationFailure(ApiError):
    """The processor could not vouch for the payment.

    The order stays Payment Pending and the buyer has to choose between
    retrying and cancelling.
    """


class OrderExpired(ApiError):
    """The payment arrived after the order expired; a refund is on its way."""


class ServiceUnavailable(ApiError):
    """The API, or a processor/carrier behind it, could not be reached."""


class ChannelDisconnected(ClientError):
    """The push connection dropped or could not be opened."""


_BY_CODE = {
    "not_found": NotFound,
    "not_participant": PermissionDenied,
    "action_not_allowed": PermissionDenied,
    "invalid_transition": InvalidTransition,
    "retry_ineligible": RetryIneligible,
    "payment_verification_failed": PaymentVerificationFailure,
    "order_expired": OrderExpired,
    "gateway_unavailable": ServiceUnavailable,
    "carrier_unavailable": ServiceUnavailable,
    "shipment_not_created": ServiceUnavailable,
}

_BY_STATUS = {
    401: PermissionDenied,
    403: PermissionDenied,
    404: NotFound,
    402: PaymentVerificationFailure,
    503: ServiceUnavailable,
}


def error_from_response(response: httpx.Response) -> ApiError:
    try:
        body = response.json()
    except ValueError:
        body = {}
    if not isinstance(body, dict):
        body = {}
    code = str(body.get("code", ""))
    detail = str(body.get("detail") or response.reason_phrase or "Request failed.")
    error_class = _BY_CODE.get(code) or _BY_STATUS.get(response.status_code, ApiError)
    return error_class(detail, code=code, status_code=response.status_code)
