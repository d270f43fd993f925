import logging
from fastapi.exceptions import RequestValidationError
from fastapi import Request, HTTPException
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class LendingError(Exception):
    """Base for every failure the lending core surfaces to its caller."""

    status_code = 400
    code = "lending_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFoundError(LendingError):
    status_code = 404
    code = "not_found"


class InvalidStateError(LendingError):
    status_code = 409
    code = "invalid_state"


class LimitExceededError(LendingError):
    status_code = 409
    code = "limit_exceeded"


class NoCopiesAvailableError(LendingError):
    status_code = 409
    code = "no_copies_available"


class DuplicateFineError(LendingError):
    status_code = 409
    code = "duplicate_fine"


# Fine transition guards
class AlreadyPaidError(InvalidStateError):
    code = "already_paid"


class FineCancelledError(InvalidStateError):
    code = "fine_cancelled"


class AlreadyCancelledError(InvalidStateError):
    code = "already_cancelled"


class CannotCancelPaidError(InvalidStateError):
    code = "cannot_cancel_paid"


class NotPaidError(InvalidStateError):
    code = "not_paid"


class InvalidAmountError(LendingError):
    status_code = 422
    code = "invalid_amount"


class CollaboratorUnavailableError(LendingError):
    """A downstream service call failed or timed out."""

    status_code = 503
    code = "collaborator_unavailable"


def register_exception_handlers(app):
    @app.exception_handler(LendingError)
    async def lending_exception_handler(request: Request, exc: LendingError):
        logger.info("Lending error", extra={"status_code": exc.status_code, "code": exc.code})
        return JSONResponse({"error": exc.message, "code": exc.code}, status_code=exc.status_code)

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        logger.info("HTTP exception", extra={"status_code": exc.status_code})
        return JSONResponse({"error": exc.detail}, status_code=exc.status_code)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        logger.info("Validation error", extra={"errors": exc.errors()})
        return JSONResponse({"error": "Validation error", "details": jsonable_encoder(exc.errors())}, status_code=422)

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception):
        logger.exception("Unhandled exception")
        return JSONResponse({"error": "Internal server error"}, status_code=500)
