from cardshop.common.logging_setup import get_logger

logger = get_logger("cardshop.middlewares")

USER_ID_HEADER = "X-User-Id"
ADMIN_SECRET_HEADER = "X-Admin-Secret"
