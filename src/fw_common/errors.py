"""Unified error codes and custom exceptions.

Every error carries a numeric code, a stable machine-readable ``error`` string
and the HTTP status it maps to.

Error code ranges:
  1xxx: Auth / actor
  2xxx: Job
  3xxx: Matching
  4xxx: Payment
  5xxx: Wallet / payout
  6xxx: Dispute
  9xxx: System
"""


class AppError(Exception):
    """Base application error."""

    def __init__(
        self,
        code: int,
        message: str,
        http_status: int = 500,
        error: str = "INTERNAL",
    ) -> None:
        self.code = code
        self.message = message
        self.http_status = http_status
        self.error = error
        super().__init__(message)


# --- 1xxx: Auth / actor ---

class AuthenticationError(AppError):
    def __init__(self) -> None:
        super().__init__(1001, "Invalid or expired token", 401, "UNAUTHORIZED")


class ForbiddenError(AppError):
    def __init__(self, detail: str = "Action not permitted for this role") -> None:
        super().__init__(1002, detail, 403, "FORBIDDEN")


class NotAssignedError(AppError):
    def __init__(self, job_id: str) -> None:
        super().__init__(1003, f"Fundi is not assigned to job {job_id}", 403, "NOT_ASSIGNED")


# --- 2xxx: Job ---

class JobNotFoundError(AppError):
    def __init__(self, job_id: str) -> None:
        super().__init__(2001, f"Job not found: {job_id}", 404, "NOT_FOUND")


class InvalidTransitionError(AppError):
    def __init__(self, from_status: str, to_status: str) -> None:
        super().__init__(
            2002,
            f"Cannot move job from {from_status} to {to_status}",
            409,
            "INVALID_TRANSITION",
        )


class ScopeChangeNotFoundError(AppError):
    def __init__(self, job_id: str) -> None:
        super().__init__(2003, f"No pending scope change for job {job_id}", 404, "NOT_FOUND")


# --- 3xxx: Matching ---

class OfferNotFoundError(AppError):
    def __init__(self, job_id: str, fundi_id: str) -> None:
        super().__init__(
            3001, f"No open offer for fundi {fundi_id} on job {job_id}", 404, "NOT_FOUND"
        )


# --- 4xxx: Payment ---

class InvalidAmountError(AppError):
    def __init__(self, detail: str) -> None:
        super().__init__(4001, f"Invalid amount: {detail}", 422, "INVALID_AMOUNT")


class TransactionNotFoundError(AppError):
    def __init__(self, transaction_id: str) -> None:
        super().__init__(4002, f"Transaction not found: {transaction_id}", 404, "NOT_FOUND")


class GatewayError(AppError):
    def __init__(self, detail: str) -> None:
        super().__init__(4003, f"Payment gateway error: {detail}", 502, "GATEWAY_ERROR")


class InvalidSignatureError(AppError):
    def __init__(self) -> None:
        super().__init__(4004, "Callback signature verification failed", 401, "INVALID_SIGNATURE")


class InvalidPaymentStateError(AppError):
    def __init__(self, detail: str) -> None:
        super().__init__(4005, detail, 422, "INVALID_STATE")


# --- 5xxx: Wallet / payout ---

class InsufficientBalanceError(AppError):
    def __init__(self, required: int, available: int) -> None:
        super().__init__(
            5001,
            f"Insufficient balance: required {required} TZS, available {available} TZS",
            422,
            "INSUFFICIENT_BALANCE",
        )


class PayoutNotFoundError(AppError):
    def __init__(self, payout_id: str) -> None:
        super().__init__(5002, f"Payout not found: {payout_id}", 404, "NOT_FOUND")


# --- 6xxx: Dispute ---

class DisputeNotFoundError(AppError):
    def __init__(self, dispute_id: str) -> None:
        super().__init__(6001, f"Dispute not found: {dispute_id}", 404, "NOT_FOUND")


class AlreadyResolvedError(AppError):
    def __init__(self, dispute_id: str, status: str) -> None:
        super().__init__(
            6002, f"Dispute {dispute_id} is already {status}", 409, "ALREADY_RESOLVED"
        )


# --- 9xxx: System ---

class DuplicateRequestError(AppError):
    def __init__(self, detail: str) -> None:
        super().__init__(9001, detail, 409, "DUPLICATE_REQUEST")


class InternalError(AppError):
    def __init__(self, detail: str = "Internal server error") -> None:
        super().__init__(9002, detail, 500, "INTERNAL")


class InvalidRequestError(AppError):
    def __init__(self, detail: str) -> None:
        super().__init__(9003, detail, 422, "INVALID_REQUEST")
