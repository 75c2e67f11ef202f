import hmac
from typing import Optional
from fastapi import Header, HTTPException, Request, status
from cardshop.config.admin_config import admin_config
from cardshop.middlewares.constants import ADMIN_SECRET_HEADER, logger


def current_user_id(request: Request) -> Optional[int]:
    return getattr(request.state, "user_id", None)


def require_user_id(request: Request) -> int:
    user_id = current_user_id(request)
    if user_id is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="login required")
    return user_id


def require_admin(request: Request,
                  x_admin_secret: Optional[str] = Header(default=None, alias=ADMIN_SECRET_HEADER)) -> None:
    secret = admin_config.ADMIN_SECRET
    if not secret:
        # only a dev setup may run the admin surface without a secret
        if admin_config.ENV == "dev":
            return
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="admin access is not configured")

    if not x_admin_secret or not hmac.compare_digest(x_admin_secret, secret):
        logger.warning("admin.auth.failed", extra={"path": request.url.path})
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="admin access denied")
