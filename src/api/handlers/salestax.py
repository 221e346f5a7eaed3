"""Sales-tax calculation handler.

``POST /salestax`` with ``{"amount": 100}`` returns the tax due at the
configured rate. Every failure is answered with an ``ErrorResponse`` and
counted on ``http.errors.total`` under one of these error kinds:

- ``method_not_allowed``: anything other than POST (405)
- ``invalid_request_body``: body is not a JSON object with a finite amount (400)
- ``invalid_input``: negative amount or tax rate (400)
- ``encoding_error``: the result has no JSON number representation (500)
"""

import pydantic
from fastapi import status
from loguru import logger
from starlette.requests import Request
from starlette.responses import Response
from starlette.routing import request_response
from starlette.types import ASGIApp

from src.api.middleware.observability import record_error
from src.api.schemas.errors import ErrorResponse
from src.api.schemas.salestax import SalesTaxRequest, SalesTaxResponse
from src.api.utils.responses import ORJSONResponse
from src.core.constants import DEFAULT_TAX_RATE
from src.core.exceptions import ErrorCode, HandlerError
from src.core.metrics import MetricsRegistry
from src.core.observability import current_trace_id

HANDLER_NAME = "salestax"


def _error_response(exc: HandlerError) -> Response:
    body = ErrorResponse(
        error_code=exc.error_code,
        message=exc.message,
        details=exc.context or None,
        trace_id=current_trace_id(),
    )
    headers = (
        {"Allow": "POST"}
        if exc.status_code == status.HTTP_405_METHOD_NOT_ALLOWED
        else None
    )
    return ORJSONResponse(
        status_code=exc.status_code,
        content=body.model_dump(mode="json"),
        headers=headers,
    )


def calculate_sales_tax(amount: float, tax_rate: float) -> SalesTaxResponse:
    """Compute tax and total for an amount.

    Args:
        amount: Pre-tax amount.
        tax_rate: Tax rate in percent.

    Returns:
        SalesTaxResponse: The computed amounts.

    Raises:
        HandlerError: If the amount or the rate is negative, or if the result
            overflows to a value that cannot be encoded as a JSON number.
    """
    if amount < 0 or tax_rate < 0:
        raise HandlerError(
            "invalid_input",
            "Amount and tax rate must be non-negative",
            status.HTTP_400_BAD_REQUEST,
        )

    tax_amount = amount * (tax_rate / 100)
    try:
        return SalesTaxResponse(
            amount=amount,
            tax_rate=tax_rate,
            tax_amount=tax_amount,
            total_amount=amount + tax_amount,
        )
    except pydantic.ValidationError as e:
        raise HandlerError(
            "encoding_error",
            "Failed to encode response",
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            error_code=ErrorCode.INTERNAL_ERROR,
            cause=e,
        ) from e


async def _parse_request(request: Request) -> SalesTaxRequest:
    if request.method != "POST":
        raise HandlerError(
            "method_not_allowed",
            "Method not allowed",
            status.HTTP_405_METHOD_NOT_ALLOWED,
            error_code=ErrorCode.METHOD_NOT_ALLOWED,
        )

    try:
        return SalesTaxRequest.model_validate_json(await request.body())
    except pydantic.ValidationError as e:
        raise HandlerError(
            "invalid_request_body",
            "Invalid request body",
            status.HTTP_400_BAD_REQUEST,
            cause=e,
        ) from e


def create_salestax_handler(
    registry: MetricsRegistry,
    *,
    tax_rate: float = DEFAULT_TAX_RATE,
    handler_name: str = HANDLER_NAME,
) -> ASGIApp:
    """Build the sales-tax ASGI handler.

    Args:
        registry: Metrics registry receiving handler error events.
        tax_rate: Tax rate in percent.
        handler_name: Value of the ``handler`` attribute on error events.

    Returns:
        ASGIApp: The handler, ready to be wrapped by the middlewares.
    """

    async def salestax(request: Request) -> Response:
        try:
            payload = await _parse_request(request)
            result = calculate_sales_tax(payload.amount, tax_rate)
        except HandlerError as exc:
            record_error(registry, handler_name, exc.error_kind)
            level = (
                "ERROR"
                if exc.status_code >= status.HTTP_500_INTERNAL_SERVER_ERROR
                else "INFO"
            )
            logger.log(
                level,
                "Rejected sales tax request: {}",
                exc.message,
                error_kind=exc.error_kind,
                status_code=exc.status_code,
            )
            return _error_response(exc)

        return ORJSONResponse(content=result)

    return request_response(salestax)
