"""Client for the epay-compatible credit gateway.

Three calls (create payment, query order, refund) plus the md5 signature shared by
outgoing requests and incoming notifications. Transport failures and timeouts surface
as GatewayUnavailable: the outcome is unknown, never "failed".
"""
import hashlib
import hmac
from typing import Any, Dict, Mapping, Optional
import httpx
from cardshop.api import version_prefix
from cardshop.common.circuit_breaker import CircuitBreaker
from cardshop.common.custom_exceptions import GatewayUnavailable, ValidationFailed
from cardshop.common.retries import retry_with_circuit
from cardshop.config.settings import config_settings
from cardshop.payments.constants import REFUND_DONE_MARKERS, logger
from cardshop.payments.types import GatewayQueryResult, GatewayRefundResult, PaymentRedirect

MAX_NAME_LENGTH = 64


def _to_int(value: Any, default: int = -1) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _to_float(value: Any) -> Optional[float]:
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def sign_string(params: Mapping[str, Any]) -> str:
    """Sorted `k=v` pairs joined by `&`, without sign/sign_type and empty values."""
    filtered = {
        k: v for k, v in params.items()
        if k not in ("sign", "sign_type") and v is not None and v != ""
    }
    return "&".join(f"{k}={filtered[k]}" for k in sorted(filtered))


def make_sign(params: Mapping[str, Any], key: str) -> str:
    return hashlib.md5((sign_string(params) + key).encode("utf-8")).hexdigest().lower()


class EpayClient:

    def __init__(
        self,
        pid: str,
        key: str,
        base_url: str,
        notify_url: str = "",
        return_url: str = "",
        timeout: float = 60.0,
        proxy: Optional[str] = None,
        query_attempts: int = 2,
        circuit: Optional[CircuitBreaker] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.pid = pid
        self.key = key
        self.base_url = base_url.rstrip("/")
        self.notify_url = notify_url
        self.return_url = return_url
        self.timeout = timeout
        self.proxy = proxy
        self.circuit = circuit or CircuitBreaker(name="epay", failure_threshold=5, recovery_timeout=30.0)
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

        # queries are read-only and safe to repeat; payment creation and refunds are not
        self._query = retry_with_circuit(circuit=self.circuit, attempts=max(1, query_attempts))(self._send)
        self._send_once = retry_with_circuit(circuit=self.circuit, attempts=1)(self._send)

    @property
    def configured(self) -> bool:
        return bool(self.pid and self.key)

    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            kwargs: Dict[str, Any] = {"timeout": self.timeout, "follow_redirects": False}
            if self._transport is not None:
                kwargs["transport"] = self._transport
            elif self.proxy:
                kwargs["proxy"] = self.proxy
            self._client = httpx.AsyncClient(**kwargs)
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _send(self, method: str, url: str, **kwargs) -> httpx.Response:
        return await self._http().request(method, url, **kwargs)

    def sign(self, params: Mapping[str, Any]) -> str:
        return make_sign(params, self.key)

    def verify_webhook_signature(self, params: Mapping[str, Any]) -> bool:
        received = params.get("sign")
        if not received:
            return False
        expected = self.sign(params)
        return hmac.compare_digest(expected, str(received).lower())

    def _require_config(self) -> None:
        if not self.configured:
            raise GatewayUnavailable("payment gateway is not configured (EPAY_PID / EPAY_KEY)")

    async def create_payment(self, out_trade_no: str, name: str, money: float,
                             notify_url: Optional[str] = None, return_url: Optional[str] = None) -> PaymentRedirect:
        """Submit a payment; the gateway answers with a 302 to its confirmation page."""
        self._require_config()
        if money is None or round(float(money), 2) <= 0:
            raise ValidationFailed("amount must be greater than 0")

        params = {
            "pid": self.pid,
            "type": "epay",
            "out_trade_no": out_trade_no,
            "name": str(name)[:MAX_NAME_LENGTH],
            "money": f"{float(money):.2f}",
            "notify_url": notify_url or self.notify_url,
            "return_url": return_url or self.return_url,
            "sign_type": "MD5",
        }
        params["sign"] = self.sign(params)

        try:
            resp = await self._send_once("POST", f"{self.base_url}/pay/submit.php", data=params)
        except httpx.HTTPError as exc:
            logger.warning("epay.create.transport_error", extra={"out_trade_no": out_trade_no, "error": str(exc)})
            raise GatewayUnavailable("payment gateway unreachable, please try again") from exc

        location = resp.headers.get("location")
        if resp.status_code == 302 and location:
            return PaymentRedirect(redirect_url=location, out_trade_no=out_trade_no)

        try:
            body = resp.json()
        except ValueError:
            body = {}
        message = (body or {}).get("error_msg") or f"payment creation failed: {resp.status_code}"
        logger.warning("epay.create.rejected", extra={"out_trade_no": out_trade_no, "status_code": resp.status_code})
        raise GatewayUnavailable(message, gateway_status=resp.status_code)

    async def query_order(self, out_trade_no: str) -> GatewayQueryResult:
        self._require_config()
        params = {"act": "order", "pid": self.pid, "key": self.key, "out_trade_no": out_trade_no}
        try:
            resp = await self._query("GET", f"{self.base_url}/api.php", params=params)
        except httpx.HTTPError as exc:
            logger.warning("epay.query.transport_error", extra={"out_trade_no": out_trade_no, "error": str(exc)})
            raise GatewayUnavailable("payment gateway unreachable, please try again") from exc

        if resp.status_code == 404:
            # gateway answers 404 for orders it does not know (or already closed)
            return GatewayQueryResult(code=-1, status=0, msg="order not found on gateway")

        try:
            body = resp.json()
        except ValueError as exc:
            raise GatewayUnavailable("unreadable gateway response") from exc
        if not isinstance(body, dict):
            raise GatewayUnavailable("unreadable gateway response")

        return GatewayQueryResult(
            code=_to_int(body.get("code")),
            status=_to_int(body.get("status"), default=0),
            money=_to_float(body.get("money")),
            trade_no=body.get("trade_no"),
            msg=body.get("msg"),
            raw=body,
        )

    async def refund(self, trade_no: str, money: float) -> GatewayRefundResult:
        """Full refund of a gateway trade."""
        self._require_config()
        data = {"pid": self.pid, "key": self.key, "trade_no": trade_no, "money": f"{float(money):.2f}"}
        try:
            resp = await self._send_once("POST", f"{self.base_url}/api.php", data=data)
        except httpx.HTTPError as exc:
            logger.warning("epay.refund.transport_error", extra={"trade_no": trade_no, "error": str(exc)})
            raise GatewayUnavailable("payment gateway unreachable, please try again") from exc

        try:
            body = resp.json()
        except ValueError:
            body = {"code": -1, "msg": resp.text or "unreadable refund response"}
        if not isinstance(body, dict):
            body = {"code": -1, "msg": str(body)}

        code = _to_int(body.get("code"))
        msg = str(body.get("msg") or "")
        success = code == 1 or any(marker in msg for marker in REFUND_DONE_MARKERS)
        return GatewayRefundResult(success=success, code=code, msg=msg, raw=body)


def build_epay_client(**overrides) -> EpayClient:
    opts = dict(
        pid=config_settings.EPAY_PID,
        key=config_settings.EPAY_KEY,
        base_url=config_settings.EPAY_BASE_URL,
        notify_url=config_settings.EPAY_NOTIFY_URL or f"{config_settings.BASE_URL.rstrip('/')}{version_prefix}/pay/notify",
        return_url=config_settings.EPAY_RETURN_URL,
        timeout=config_settings.EPAY_REQUEST_TIMEOUT,
        proxy=config_settings.EPAY_HTTP_PROXY,
        query_attempts=config_settings.EPAY_QUERY_ATTEMPTS,
    )
    opts.update(overrides)
    return EpayClient(**opts)


epay_client = build_epay_client()
