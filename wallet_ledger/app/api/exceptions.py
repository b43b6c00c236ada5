from __future__ import annotations

from typing import Any

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from ..core.errors import (
    AccountNotFoundError,
    AuthenticationMismatchError,
    DuplicateEventError,
    InsufficientBalanceError,
    InvalidStateTransitionError,
    LedgerError,
    NotEligibleError,
    PermissionDeniedError,
    PinLockedError,
    ProviderError,
    ProviderRejectedError,
    ProviderTimeoutError,
    ProviderUnavailableError,
    ValidationError,
    WebhookSignatureError,
    WrongPinError,
)


def error_body(exc: Exception, **extra: Any) -> dict[str, Any]:
    return {"success": False, "error": str(exc), **extra}


PROVIDER_STATUS = {
    ProviderUnavailableError: 503,
    ProviderTimeoutError: 504,
    ProviderRejectedError: 502,
}


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(ValidationError)
    async def validation_error_handler(request: Request, exc: ValidationError) -> JSONResponse:
        return JSONResponse(status_code=400, content=error_body(exc))

    @app.exception_handler(AccountNotFoundError)
    async def account_not_found_handler(
        request: Request, exc: AccountNotFoundError
    ) -> JSONResponse:
        return JSONResponse(status_code=404, content=error_body(exc))

    @app.exception_handler(InsufficientBalanceError)
    async def insufficient_balance_handler(
        request: Request, exc: InsufficientBalanceError
    ) -> JSONResponse:
        return JSONResponse(
            status_code=402,
            content=error_body(exc, category="insufficient_balance"),
        )

    @app.exception_handler(ProviderError)
    async def provider_error_handler(request: Request, exc: ProviderError) -> JSONResponse:
        extra: dict[str, Any] = {"category": exc.category}
        if exc.transaction_id is not None:
            extra["transactionId"] = str(exc.transaction_id)
        return JSONResponse(
            status_code=PROVIDER_STATUS.get(type(exc), 502),
            content=error_body(exc, **extra),
        )

    @app.exception_handler(WrongPinError)
    async def wrong_pin_handler(request: Request, exc: WrongPinError) -> JSONResponse:
        return JSONResponse(
            status_code=400,
            content=error_body(exc, attemptsRemaining=exc.attempts_remaining),
        )

    @app.exception_handler(PinLockedError)
    async def pin_locked_handler(request: Request, exc: PinLockedError) -> JSONResponse:
        return JSONResponse(
            status_code=423,
            content=error_body(exc, isLocked=True, minutesRemaining=exc.minutes_remaining),
        )

    @app.exception_handler(NotEligibleError)
    async def not_eligible_handler(request: Request, exc: NotEligibleError) -> JSONResponse:
        return JSONResponse(status_code=409, content=error_body(exc))

    @app.exception_handler(PermissionDeniedError)
    async def permission_denied_handler(
        request: Request, exc: PermissionDeniedError
    ) -> JSONResponse:
        return JSONResponse(status_code=403, content=error_body(exc))

    @app.exception_handler(InvalidStateTransitionError)
    async def invalid_state_handler(
        request: Request, exc: InvalidStateTransitionError
    ) -> JSONResponse:
        return JSONResponse(status_code=409, content=error_body(exc))

    @app.exception_handler(DuplicateEventError)
    async def duplicate_event_handler(request: Request, exc: DuplicateEventError) -> JSONResponse:
        return JSONResponse(status_code=409, content=error_body(exc))

    @app.exception_handler(WebhookSignatureError)
    async def webhook_signature_handler(
        request: Request, exc: WebhookSignatureError
    ) -> JSONResponse:
        return JSONResponse(status_code=401, content=error_body(exc))

    @app.exception_handler(AuthenticationMismatchError)
    async def authentication_mismatch_handler(
        request: Request, exc: AuthenticationMismatchError
    ) -> JSONResponse:
        return JSONResponse(status_code=500, content=error_body(exc))

    @app.exception_handler(LedgerError)
    async def ledger_error_handler(request: Request, exc: LedgerError) -> JSONResponse:
        return JSONResponse(status_code=500, content=error_body(exc))
