"""API error classes.

Every failure in the credential subsystem surfaces as one of these typed
exceptions. Services raise them; the FastAPI exception handler in
``wildauth.main`` maps them to the standard error envelope.

Identity errors (credentials, tokens, codes) deliberately carry generic
messages. The specific reason is logged server-side by the raising service,
never returned to the caller.
"""


class APIError(Exception):
    """Base class for API errors.

    All API errors have a code, message, and HTTP status.
    Subclasses set default status_code.

    Attributes:
        code: Machine-readable error code (e.g., "RATE_LIMITED").
        message: Human-readable error message.
        status_code: HTTP status code to return.
        details: Optional list of additional error details.
        headers: Optional extra response headers (e.g., Retry-After).
    """

    def __init__(
        self,
        code: str,
        message: str,
        status_code: int = 500,
        details: list[dict] | None = None,
        headers: dict[str, str] | None = None,
    ) -> None:
        self.code = code
        self.message = message
        self.status_code = status_code
        self.details = details
        self.headers = headers
        super().__init__(message)


class ValidationError(APIError):
    """Field validation failed (400).

    Raised before any store is touched: malformed email, empty fields,
    unknown purpose.
    """

    def __init__(
        self,
        message: str,
        details: list[dict] | None = None,
    ) -> None:
        super().__init__(
            code="VALIDATION_ERROR",
            message=message,
            status_code=400,
            details=details,
        )


class WeakPasswordError(APIError):
    """Password does not satisfy the strength policy (400).

    Args:
        failures: Every rule the password failed, in policy order.
    """

    def __init__(self, failures: list[str]) -> None:
        self.failures = failures
        super().__init__(
            code="WEAK_PASSWORD",
            message="Password does not meet strength requirements",
            status_code=400,
            details=[{"rule": failure} for failure in failures],
        )


class InvalidCredentialsError(APIError):
    """Login rejected (401).

    Same message whether the account is unknown, inactive, or the password
    is wrong.
    """

    def __init__(self) -> None:
        super().__init__(
            code="INVALID_CREDENTIALS",
            message="Invalid username or password",
            status_code=401,
        )


class TokenInvalidError(APIError):
    """Bearer token is malformed, tampered, or of the wrong class (401)."""

    def __init__(self) -> None:
        super().__init__(
            code="TOKEN_INVALID",
            message="Invalid token",
            status_code=401,
        )


class TokenExpiredError(APIError):
    """Bearer token signature is valid but the token has expired (401).

    Distinct from TokenInvalidError so clients know to refresh.
    """

    def __init__(self) -> None:
        super().__init__(
            code="TOKEN_EXPIRED",
            message="Token has expired",
            status_code=401,
        )


class InvalidOrExpiredCodeError(APIError):
    """Verification code wrong, expired, superseded, or already used (400)."""

    def __init__(self) -> None:
        super().__init__(
            code="INVALID_OR_EXPIRED_CODE",
            message="Verification code is invalid or has expired",
            status_code=400,
        )


class TokenInvalidOrExpiredError(APIError):
    """Password reset token unknown, expired, or already used (400)."""

    def __init__(self) -> None:
        super().__init__(
            code="TOKEN_INVALID_OR_EXPIRED",
            message="Reset token is invalid or has expired",
            status_code=400,
        )


class RateLimitedError(APIError):
    """Action requested again inside its cooldown window (429).

    Args:
        retry_after_seconds: Seconds until the next request is allowed.
    """

    def __init__(self, retry_after_seconds: int) -> None:
        self.retry_after_seconds = retry_after_seconds
        super().__init__(
            code="RATE_LIMITED",
            message=f"Too many requests. Try again in {retry_after_seconds} seconds.",
            status_code=429,
            details=[{"retry_after_seconds": retry_after_seconds}],
            headers={"Retry-After": str(retry_after_seconds)},
        )


class ConflictError(APIError):
    """Duplicate or conflicting resource (409).

    Accepts custom code for specific conflict types.
    """

    def __init__(
        self,
        code: str,
        message: str,
        details: list[dict] | None = None,
    ) -> None:
        super().__init__(
            code=code,
            message=message,
            status_code=409,
            details=details,
        )


class EmailAlreadyRegisteredError(ConflictError):
    """An account already uses this email address (409)."""

    def __init__(self) -> None:
        super().__init__(
            code="EMAIL_ALREADY_REGISTERED",
            message="Email already registered",
        )


class UsernameTakenError(ConflictError):
    """An account already uses this username (409)."""

    def __init__(self) -> None:
        super().__init__(
            code="USERNAME_TAKEN",
            message="Username already taken",
        )


class DeliveryFailedError(APIError):
    """Email could not be delivered (503).

    Retryable. Whatever was issued before delivery (code or reset token)
    stays valid.
    """

    def __init__(self) -> None:
        super().__init__(
            code="DELIVERY_FAILED",
            message="Email delivery failed. Please try again shortly.",
            status_code=503,
        )
