
from typing import Any, Dict, Optional
from fastapi import FastAPI, HTTPException, Request,status
from fastapi.exceptions import RequestValidationError
from cardshop.__init__ import logger
from cardshop.common.utils import build_error, json_error
from cardshop.common.constants import request_id_ctx


class ShopError(Exception):
    """Base for domain errors. Each subclass maps to one http status and error code."""

    status_code: int = status.HTTP_400_BAD_REQUEST
    code: str = "SHOP_ERROR"
    default_message: str = "request failed"

    def __init__(self, message: Optional[str] = None, **details: Any):
        self.message = message or self.default_message
        self.details = details
        super().__init__(self.message)

    def to_details(self) -> Dict[str, Any]:
        return {"message": self.message, **self.details}


class OutOfStock(ShopError):
    status_code = status.HTTP_409_CONFLICT
    code = "OUT_OF_STOCK"
    default_message = "insufficient stock"


class InvalidStateTransition(ShopError):
    status_code = status.HTTP_409_CONFLICT
    code = "INVALID_STATE_TRANSITION"
    default_message = "order state does not allow this operation"


class GatewaySignatureInvalid(ShopError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "GATEWAY_SIGNATURE_INVALID"
    default_message = "invalid gateway signature"


class GatewayAmountMismatch(ShopError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "GATEWAY_AMOUNT_MISMATCH"
    default_message = "paid amount does not match order amount"


class GatewayUnavailable(ShopError):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    code = "GATEWAY_UNAVAILABLE"
    default_message = "payment gateway unavailable, please try again"


class GatewayRefundFailed(ShopError):
    status_code = status.HTTP_502_BAD_GATEWAY
    code = "GATEWAY_REFUND_FAILED"
    default_message = "gateway refund failed"


class InsufficientPoints(ShopError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "INSUFFICIENT_POINTS"
    default_message = "insufficient points"


class PurchaseLimitExceeded(ShopError):
    status_code = status.HTTP_409_CONFLICT
    code = "PURCHASE_LIMIT_EXCEEDED"
    default_message = "purchase limit exceeded"


class RefundAlreadyRequested(ShopError):
    status_code = status.HTTP_409_CONFLICT
    code = "REFUND_ALREADY_REQUESTED"
    default_message = "a refund request is already pending"


class NotFound(ShopError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "NOT_FOUND"
    default_message = "not found"


class ValidationFailed(ShopError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "VALIDATION_FAILED"
    default_message = "invalid request"


async def fallback_handler(request: Request, exc: Exception):

    rid = request_id_ctx.get(None)
    body = {"message": "Internal Server Error "}

    logger.error(
        "unexpected.exception",
        extra={
            "path": request.url.path,
            "method": request.method,
            "request_id": rid,
        },
        exc_info=exc,
    )

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    payload = build_error(code="SERVER_ERROR", details=body, request_id=rid)
    return json_error(payload, status_code=status_code)


async def shop_exception_handler(request: Request, exc: ShopError):
    rid = request_id_ctx.get(None)
    log = logger.warning if exc.status_code < 500 else logger.error
    log(
        "shop.error",
        extra={
            "code": exc.code,
            "path": request.url.path,
            "method": request.method,
            "request_id": rid,
        },
    )

    payload = build_error(code=exc.code, details=exc.to_details(), request_id=rid)
    return json_error(payload, status_code=exc.status_code)


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    rid = request_id_ctx.get(None)
    logger.warning(
        "request.validation_failed",
        extra={
            "errors": exc.errors(),
            "path": request.url.path,
            "request_id": rid,
        },
    )

    payload = build_error(code="UNPROCESSABLE_ENTITY", details={"message":"invalid request"}, request_id=rid)
    return json_error(payload, status_code=status.HTTP_422_UNPROCESSABLE_ENTITY)


async def http_exception_handler(request: Request, exc: HTTPException):

    rid = request_id_ctx.get(None)

    error_code = f"HTTP_{exc.status_code}"
    payload = build_error(code=error_code, details={"message":exc.detail}, request_id=rid)
    return json_error(payload, status_code=exc.status_code)


def register_all_exceptions(app: FastAPI):

    app.add_exception_handler(
        Exception, # catch all unidentified/unhandled exceptions
        fallback_handler
    )

    app.add_exception_handler(
        ShopError,
        shop_exception_handler
    )

    app.add_exception_handler(
        RequestValidationError,
        validation_exception_handler
    )

    app.add_exception_handler(
        HTTPException,
        http_exception_handler
    )
