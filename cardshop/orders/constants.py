from cardshop.common.logging_setup import get_logger

logger = get_logger("cardshop.orders")

MIN_ORDER_QUANTITY = 1
ORDER_NO_PREFIX = "O"
