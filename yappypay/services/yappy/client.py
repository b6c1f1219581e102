"""HTTP transport for the Yappy QR API.

One `YappyClient` is owned by each flow (or injected by the host); there is no
process-wide singleton. Non-2xx responses are turned into `VendorError` with
the vendor's `code`, transport failures into `NetworkError`.
"""

import json
from time import perf_counter
from typing import Any

import httpx

from yappypay.common.config import settings
from yappypay.common.errors import (
    ERROR_MISSING_REQUIRED_FIELDS,
    NetworkError,
    VendorError,
    describe_error,
)
from yappypay.common.logging import logger, mask
from yappypay.common.metrics import yappy_request_duration_seconds, yappy_requests_total
from yappypay.services.yappy.schemas import Credentials

SECRET_HEADERS = {"api-key", "secret-key", "authorization"}


class TransportResponse:
    """Status code plus decoded JSON body of a 2xx response."""

    def __init__(self, status_code: int, body: dict[str, Any]) -> None:
        self.status_code = status_code
        self.body = body

    def field(self, *names: str) -> Any:
        """First non-empty value for `names`, looked up in `body` then at the root."""

        nested = self.body.get("body")
        scopes = [nested] if isinstance(nested, dict) else []
        scopes.append(self.body)
        for scope in scopes:
            for name in names:
                value = scope.get(name)
                if value not in (None, ""):
                    return value
        return None


def _headers_for_log(headers: dict[str, str]) -> dict[str, str]:
    return {key: mask(value) if key.lower() in SECRET_HEADERS else value for key, value in headers.items()}


def _endpoint_label(path: str) -> str:
    # Collapse transaction ids so metric cardinality stays bounded.
    if path.startswith("/transaction/"):
        return "/transaction/{id}"
    return path


class YappyClient:
    """Thin async wrapper over `httpx.AsyncClient` bound to one set of credentials."""

    def __init__(
        self,
        credentials: Credentials,
        http_client: httpx.AsyncClient | None = None,
        timeout: float | None = None,
    ) -> None:
        self.credentials = credentials
        self._owns_client = http_client is None
        self._http = http_client or httpx.AsyncClient(
            timeout=httpx.Timeout(timeout or settings.http_timeout_seconds)
        )

    async def __aenter__(self) -> "YappyClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._http.aclose()

    def _headers(self, token: str | None, with_body: bool) -> dict[str, str]:
        headers = {
            "Accept": "application/json",
            "Cache-Control": "no-cache",
            "api-key": self.credentials.api_key,
            "secret-key": self.credentials.secret_key,
        }
        if with_body:
            headers["Content-Type"] = "application/json; charset=utf-8"
        if token:
            headers["Authorization"] = f"Bearer {token}"
        return headers

    async def request(
        self,
        method: str,
        path: str,
        token: str | None = None,
        body: dict[str, Any] | None = None,
    ) -> TransportResponse:
        """Send one request and return the decoded 2xx body."""

        url = f"{self.credentials.base_url}{path}"
        headers = self._headers(token, with_body=body is not None)
        endpoint = _endpoint_label(path)
        logger.info("yappy_request method=%s url=%s headers=%s", method, url, _headers_for_log(headers))
        if body is not None:
            logger.debug("yappy_request_body %s", json.dumps(body))

        start = perf_counter()
        try:
            resp = await self._http.request(method, url, headers=headers, json=body)
        except httpx.RequestError as exc:
            yappy_requests_total.labels(endpoint=endpoint, method=method, status_code="network_error").inc()
            logger.error("yappy_network_error method=%s url=%s error=%r", method, url, exc)
            raise NetworkError(f"{method} {url} failed: {exc}") from exc
        finally:
            yappy_request_duration_seconds.labels(endpoint=endpoint, method=method).observe(
                max(0.0, perf_counter() - start)
            )

        yappy_requests_total.labels(endpoint=endpoint, method=method, status_code=str(resp.status_code)).inc()
        logger.info("yappy_response method=%s url=%s status_code=%s", method, url, resp.status_code)

        if resp.is_success:
            return TransportResponse(resp.status_code, self._decode(resp, method, url))
        raise self._vendor_error(resp, body)

    def _decode(self, resp: httpx.Response, method: str, url: str) -> dict[str, Any]:
        if not resp.content:
            return {}
        try:
            payload = resp.json()
        except ValueError as exc:
            raise VendorError("", f"{method} {url} returned non-JSON body: {resp.text[:200]}", resp.status_code) from exc
        if not isinstance(payload, dict):
            raise VendorError("", f"{method} {url} returned unexpected JSON: {resp.text[:200]}", resp.status_code)
        return payload

    def _vendor_error(self, resp: httpx.Response, sent_body: dict[str, Any] | None) -> VendorError:
        try:
            payload = resp.json()
        except ValueError:
            payload = None
        if not isinstance(payload, dict):
            logger.error("yappy_error status_code=%s body=%s", resp.status_code, resp.text[:200])
            return VendorError("", f"Yappy API {resp.status_code}: {resp.text[:200]}", resp.status_code)

        # Errors come either flat or wrapped as {"status": {"code", "description"}}.
        status = payload.get("status") if isinstance(payload.get("status"), dict) else {}
        code = str(payload.get("code") or status.get("code") or "")
        message = str(payload.get("message") or status.get("description") or "Unknown error")
        if not code:
            logger.error("yappy_error status_code=%s message=%s", resp.status_code, message)
            return VendorError("", f"Yappy API {resp.status_code}: {message}", resp.status_code)

        description = describe_error(code)
        logger.error("yappy_error code=%s message=%s description=%s", code, message, description)
        if code == ERROR_MISSING_REQUIRED_FIELDS:
            logger.error("yappy_error_request_body %s", json.dumps(sent_body) if sent_body is not None else "<none>")
        return VendorError(code, f"{message} ({description})", resp.status_code)

    async def get_transaction(self, token: str, transaction_id: str) -> TransportResponse:
        """`GET /transaction/{id}`."""

        return await self.request("GET", f"/transaction/{transaction_id}", token=token)

    async def void_transaction(self, token: str, transaction_id: str) -> TransportResponse:
        """`PUT /transaction/{id}` with an empty body voids a pending charge."""

        return await self.request("PUT", f"/transaction/{transaction_id}", token=token, body={})
