from fastapi import Request
from cardshop.payments.epay_client import EpayClient, epay_client


def get_gateway(request: Request) -> EpayClient:
    return getattr(request.app.state, "epay_client", None) or epay_client
