import logging

logger = logging.getLogger("cardshop")
