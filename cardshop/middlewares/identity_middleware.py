from fastapi import Request, status
from starlette.middleware.base import BaseHTTPMiddleware
from cardshop.common.constants import request_id_ctx
from cardshop.common.utils import build_error, json_error
from cardshop.middlewares.constants import USER_ID_HEADER, logger


class UserIdentityMiddleware(BaseHTTPMiddleware):
    """Exposes the buyer resolved by the upstream auth layer as `request.state.user_id`.

    Guests have no header and get None.
    """

    async def dispatch(self, request: Request, call_next):
        raw = request.headers.get(USER_ID_HEADER)
        request.state.user_id = None
        if raw:
            try:
                request.state.user_id = int(raw)
            except ValueError:
                logger.warning("identity.middleware.bad_header", extra={"path": request.url.path})
                payload = build_error(code="INVALID_AUTH", details={"message": f"invalid {USER_ID_HEADER} header"},
                                      request_id=request_id_ctx.get(None))
                return json_error(payload, status_code=status.HTTP_400_BAD_REQUEST)

        return await call_next(request)
