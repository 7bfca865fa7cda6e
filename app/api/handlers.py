"""
HTTP handlers for deposit, withdrawal, status and manual sweeps.

Every handler obtains a YieldDepositService from the application's
service factory, so each request runs in its own database session.
"""

from typing import Any

from aiohttp import web
from loguru import logger
from pydantic import ValidationError

from app.api.keys import SERVICE_FACTORY_KEY, SWEEPER_KEY
from app.api.schemas import (
    DepositRequest,
    WithdrawRequest,
    receipt_to_json,
    status_to_json,
    summary_to_json,
    sweep_to_json,
    withdrawal_to_json,
)
from app.utils.exceptions import (
    DepositNotFoundError,
    DepositOwnershipError,
    InvalidInputError,
    InvalidStateTransitionError,
    PersistenceError,
    UserNotFoundError,
    YieldServiceError,
)


# Checked in order, subclasses first
ERROR_STATUS: tuple[tuple[type[YieldServiceError], int], ...] = (
    (InvalidInputError, 400),
    (DepositOwnershipError, 403),
    (DepositNotFoundError, 404),
    (UserNotFoundError, 404),
    (InvalidStateTransitionError, 409),
    (PersistenceError, 503),
)


def error_response(error: YieldServiceError) -> web.Response:
    """
    Build the explicit error result for a service error.

    Args:
        error: Raised service error

    Returns:
        JSON response {success: false, error, code}
    """
    status = 500
    for error_type, error_status in ERROR_STATUS:
        if isinstance(error, error_type):
            status = error_status
            break

    return web.json_response(
        {"success": False, "error": str(error), "code": error.code},
        status=status,
    )


@web.middleware
async def error_middleware(request: web.Request, handler: Any) -> web.StreamResponse:
    """Turn service errors into JSON error results."""
    try:
        return await handler(request)
    except YieldServiceError as e:
        if isinstance(e, PersistenceError):
            logger.error(f"{request.method} {request.path} failed: {e}")
        else:
            logger.info(f"{request.method} {request.path} rejected: {e}")
        return error_response(e)


async def _read_json(request: web.Request) -> Any:
    try:
        return await request.json()
    except ValueError as e:
        raise InvalidInputError("Request body must be valid JSON") from e


def _validation_message(error: ValidationError) -> str:
    first = error.errors()[0]
    field = ".".join(str(part) for part in first["loc"]) or "body"
    return f"{field}: {first['msg']}"


async def deposit_handler(request: web.Request) -> web.Response:
    """POST /api/deposit"""
    body = await _read_json(request)
    try:
        payload = DepositRequest.model_validate(body)
    except ValidationError as e:
        raise InvalidInputError(_validation_message(e)) from e

    async with request.app[SERVICE_FACTORY_KEY]() as service:
        receipt = await service.deposit(
            payload.user_address, payload.amount, payload.token
        )

    return web.json_response(receipt_to_json(receipt))


async def withdraw_handler(request: web.Request) -> web.Response:
    """POST /api/withdraw"""
    body = await _read_json(request)
    try:
        payload = WithdrawRequest.model_validate(body)
    except ValidationError as e:
        raise InvalidInputError(_validation_message(e)) from e

    async with request.app[SERVICE_FACTORY_KEY]() as service:
        result = await service.withdraw(
            payload.deposit_id, user_address=payload.user_address
        )

    return web.json_response(withdrawal_to_json(result))


async def status_handler(request: web.Request) -> web.Response:
    """GET /api/deposits/{deposit_id}"""
    raw_id = request.match_info["deposit_id"]
    if not (raw_id.isascii() and raw_id.isdigit()):
        raise InvalidInputError(f"Invalid deposit id: {raw_id!r}")

    async with request.app[SERVICE_FACTORY_KEY]() as service:
        status = await service.status(int(raw_id))

    return web.json_response(status_to_json(status))


async def user_summary_handler(request: web.Request) -> web.Response:
    """GET /api/user/{address}"""
    async with request.app[SERVICE_FACTORY_KEY]() as service:
        summary = await service.get_user_summary(request.match_info["address"])

    return web.json_response(summary_to_json(summary))


async def run_accrual_handler(request: web.Request) -> web.Response:
    """POST /api/accrual/run"""
    sweeper = request.app.get(SWEEPER_KEY)
    if sweeper is None:
        return web.json_response(
            {
                "success": False,
                "error": "Accrual sweeper not configured",
                "code": "sweeper_unavailable",
            },
            status=503,
        )

    result = await sweeper.run_sweep()
    return web.json_response(sweep_to_json(result))
