"""Error types raised by the Payments domain.

Every error carries a stable machine-readable ``code`` and the HTTP status
it maps to. The API layer renders them as ``{"error": code, "detail": msg}``.
"""


class PaymentError(Exception):
    code = "payment_error"
    status_code = 400

    def __init__(self, message: str = "", **context):
        super().__init__(message or self.__class__.__doc__ or self.code)
        self.message = message or self.__class__.__doc__ or self.code
        self.context = context


class InvalidRequest(PaymentError):
    """Invalid request"""

    code = "invalid_request"


class AuthorizationError(PaymentError):
    """Not authorized to act on this resource"""

    code = "forbidden"
    status_code = 403


class NotFoundError(PaymentError):
    """Resource not found"""

    code = "not_found"
    status_code = 404


class ConflictError(PaymentError):
    """Operation conflicts with the current state"""

    code = "conflict"


class AlreadyInProgress(ConflictError):
    """A payment is already in progress for this booking"""

    code = "already_in_progress"


class AlreadyProcessed(ConflictError):
    """This request has already been processed"""

    code = "already_processed"


class DuplicateRefundRequest(ConflictError):
    """A refund request is already pending for this lease"""

    code = "duplicate_refund_request"


class PolicyError(PaymentError):
    """Operation is not allowed by the refund policy"""

    code = "policy_violation"


class RefundWindowExpired(PolicyError):
    """Refund window has expired"""

    code = "refund_window_expired"


class GatewayUnavailable(PaymentError):
    """Payment service unavailable"""

    code = "gateway_unavailable"
    status_code = 503


class GatewayRejected(PaymentError):
    """Payment gateway rejected the request"""

    code = "gateway_rejected"


class SignatureInvalid(PaymentError):
    """Webhook signature verification failed"""

    code = "signature_invalid"


class InvalidTransition(PaymentError):
    """Payment state transition is not allowed"""

    code = "invalid_transition"

    def __init__(self, message: str = "", current_state: str | None = None, target_state: str | None = None, **context):
        if not message and current_state and target_state:
            message = f"Cannot transition payment from {current_state} to {target_state}"
        super().__init__(message, **context)
        self.current_state = current_state
        self.target_state = target_state
