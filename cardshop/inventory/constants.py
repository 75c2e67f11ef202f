from cardshop.common.logging_setup import get_logger

logger = get_logger("cardshop.inventory")

MAX_CARD_LENGTH = 500
