"""
ZenoPay API client with timeout handling and error classification.

Implements:
- Mobile money payment initiation
- Order status queries
- Distinct errors for timeouts, unreachable gateway and explicit rejections

The client never retries; callers own the retry policy.
"""
import time
from typing import Any, Dict, Optional

import httpx
import structlog

from smm_panel.config import Settings
from smm_panel.monitoring.metrics import metrics

from .zenopay_schemas import InitiatePaymentRequest, InitiateResponse, parse_initiate_response

logger = structlog.get_logger(__name__)


class GatewayError(Exception):
    """Base exception for payment gateway errors."""

    retryable = False

    def __init__(self, message: str, original_error: Optional[Exception] = None):
        """
        Initialize gateway error.

        Args:
            message: Error message
            original_error: Underlying httpx exception, if any
        """
        super().__init__(message)
        self.original_error = original_error


class GatewayUnavailable(GatewayError):
    """The gateway could not be reached or answered with a server error."""

    retryable = True


class GatewayTimeout(GatewayUnavailable):
    """The gateway did not answer within the request timeout."""


class GatewayRejected(GatewayError):
    """The gateway answered but refused the request."""

    def __init__(
        self,
        message: str,
        response: Optional[Dict[str, Any]] = None,
        original_error: Optional[Exception] = None,
    ):
        super().__init__(message, original_error)
        self.response = response or {}


class ZenoPayClient:
    """
    Thin async wrapper around the ZenoPay HTTP API.

    One instance is built at startup with its API key, endpoints and
    timeouts, then shared by the request handlers.
    """

    def __init__(
        self,
        api_key: str,
        pay_url: str,
        status_url: str,
        initiate_timeout: float = 90.0,
        status_timeout: float = 120.0,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        """
        Initialize ZenoPay client.

        Args:
            api_key: Secret sent in the x-api-key header
            pay_url: Payment initiation endpoint
            status_url: Order status endpoint
            initiate_timeout: Timeout for initiation calls (seconds)
            status_timeout: Timeout for status queries (seconds)
            http_client: Optional pre-built httpx client (tests inject one)
        """
        self.api_key = api_key
        self.pay_url = pay_url
        self.status_url = status_url
        self.initiate_timeout = initiate_timeout
        self.status_timeout = status_timeout
        self._owns_client = http_client is None
        self.http_client = http_client or httpx.AsyncClient()

        logger.info(
            "zenopay_client_initialized",
            pay_url=pay_url,
            initiate_timeout=initiate_timeout,
            status_timeout=status_timeout,
        )

    @classmethod
    def from_settings(
        cls, settings: Settings, http_client: Optional[httpx.AsyncClient] = None
    ) -> "ZenoPayClient":
        return cls(
            api_key=settings.zeno_api_key,
            pay_url=settings.zeno_pay_url,
            status_url=settings.zeno_status_url,
            initiate_timeout=settings.zeno_initiate_timeout,
            status_timeout=settings.zeno_status_timeout,
            http_client=http_client,
        )

    @property
    def _headers(self) -> Dict[str, str]:
        return {"Content-Type": "application/json", "x-api-key": self.api_key}

    async def _send(
        self, operation: str, method: str, url: str, timeout: float, **kwargs: Any
    ) -> Any:
        """
        Send a request and decode the JSON body.

        Raises:
            GatewayTimeout: If the request timed out
            GatewayUnavailable: On connection errors, 5xx or undecodable bodies
            GatewayRejected: On 4xx answers
        """
        start_time = time.time()
        try:
            response = await self.http_client.request(
                method, url, headers=self._headers, timeout=timeout, **kwargs
            )
        except httpx.TimeoutException as e:
            metrics.record_gateway_call(operation, "timeout", time.time() - start_time)
            logger.error("zenopay_request_timeout", operation=operation, timeout=timeout)
            raise GatewayTimeout(
                f"Payment gateway timed out after {timeout:.0f}s", original_error=e
            ) from e
        except httpx.RequestError as e:
            metrics.record_gateway_call(operation, "unreachable", time.time() - start_time)
            logger.error("zenopay_request_failed", operation=operation, error=str(e))
            raise GatewayUnavailable(
                f"Payment gateway unreachable: {e}", original_error=e
            ) from e

        duration = time.time() - start_time
        try:
            body = response.json()
        except ValueError as e:
            body = None
            decode_error: Optional[Exception] = e
        else:
            decode_error = None

        if response.status_code >= 500:
            metrics.record_gateway_call(operation, "server_error", duration)
            logger.error(
                "zenopay_server_error",
                operation=operation,
                status_code=response.status_code,
            )
            raise GatewayUnavailable(
                f"Payment gateway error (HTTP {response.status_code})"
            )

        if response.status_code >= 400:
            metrics.record_gateway_call(operation, "rejected", duration)
            message = body.get("message") if isinstance(body, dict) else None
            logger.warning(
                "zenopay_client_error",
                operation=operation,
                status_code=response.status_code,
                message=message,
            )
            raise GatewayRejected(
                message or f"Payment gateway rejected the request (HTTP {response.status_code})",
                response=body if isinstance(body, dict) else None,
            )

        if decode_error is not None:
            metrics.record_gateway_call(operation, "invalid_body", duration)
            logger.error("zenopay_invalid_body", operation=operation, error=str(decode_error))
            raise GatewayUnavailable(
                "Payment gateway returned an unreadable response", original_error=decode_error
            )

        metrics.record_gateway_call(operation, "ok", duration)
        return body

    async def initiate(self, request: InitiatePaymentRequest) -> InitiateResponse:
        """
        Start a mobile money payment.

        A 200 answer is not enough: the body's ``status`` must equal
        ``"success"``.

        Args:
            request: Payment details

        Returns:
            InitiateResponse: Parsed gateway answer

        Raises:
            GatewayTimeout: If the gateway did not answer in time
            GatewayUnavailable: If the gateway could not be reached
            GatewayRejected: If the gateway refused the payment
        """
        logger.info(
            "initiating_payment",
            order_id=request.order_id,
            amount=str(request.amount),
        )

        body = await self._send(
            "initiate",
            "POST",
            self.pay_url,
            self.initiate_timeout,
            json=request.to_payload(),
        )
        response = parse_initiate_response(body)

        if not response.is_success:
            logger.warning(
                "payment_initiation_rejected",
                order_id=request.order_id,
                gateway_status=response.status,
                message=response.message,
            )
            raise GatewayRejected(
                response.message or "Payment gateway did not accept the payment",
                response=body if isinstance(body, dict) else None,
            )

        logger.info(
            "payment_initiation_accepted",
            order_id=request.order_id,
            gateway_order_id=response.order_id,
        )
        return response

    async def query_status(self, order_id: str) -> Any:
        """
        Fetch the gateway's view of an order.

        The shape of the answer varies; use ``extract_status_entry`` on it.

        Args:
            order_id: Order id sent at initiation

        Returns:
            Decoded JSON body

        Raises:
            GatewayTimeout: If the gateway did not answer in time
            GatewayUnavailable: If the gateway could not be reached
            GatewayRejected: If the gateway refused the query
        """
        logger.info("querying_order_status", order_id=order_id)
        return await self._send(
            "query_status",
            "GET",
            self.status_url,
            self.status_timeout,
            params={"order_id": order_id},
        )

    async def close(self) -> None:
        """Close the underlying HTTP client if this instance created it."""
        if self._owns_client:
            await self.http_client.aclose()
