from fastapi import HTTPException, Request

from app.errors import (
    BatchPartialFailure,
    InvalidTransition,
    MissingInventory,
    MutationFailure,
    NotFoundError,
    StockLedgerError,
)

ACTING_USER_HEADER = 'x-acting-user'

_STATUS_BY_ERROR: list[tuple[type[StockLedgerError], int]] = [
    (NotFoundError, 404),
    (MissingInventory, 409),
    (InvalidTransition, 409),
    (BatchPartialFailure, 409),
    (MutationFailure, 500),
]


def get_client_ip(request: Request) -> str | None:
    forwarded_for = request.headers.get('x-forwarded-for')
    if forwarded_for:
        return forwarded_for.split(',')[0].strip()
    if request.client:
        return request.client.host
    return None


def get_acting_user_id(request: Request) -> str | None:
    value = (request.headers.get(ACTING_USER_HEADER) or '').strip()
    return value or None


def http_error(exc: StockLedgerError) -> HTTPException:
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return HTTPException(status_code=status_code, detail=exc.to_dict())
    return HTTPException(status_code=400, detail=exc.to_dict())
