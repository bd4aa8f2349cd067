"""HTTP client for the Acumatica contract-based REST API."""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any
from urllib.parse import quote

import httpx

from app.config import settings
from app.metrics import record_erp_request

if TYPE_CHECKING:
    from app.services.acumatica.credentials import AcumaticaCredentials

logger = logging.getLogger(__name__)

SESSION_LIMIT_MARKERS = ("concurrent api logins", "api login limit", "login limit")

SESSION_LIMIT_REMEDIATION = (
    "Acumatica has reached its API login limit. Go to System Monitor (SM201010) > "
    "Active Users and terminate stale API sessions, or restart the application from "
    "Apply Updates, then retry the sync."
)


class AcumaticaError(Exception):
    """Base exception for Acumatica client errors."""

    def __init__(self, message: str, status_code: int | None = None, response: Any = None):
        super().__init__(message)
        self.status_code = status_code
        self.response = response


class AcumaticaAuthError(AcumaticaError):
    """Login rejected or session cookie no longer accepted (401/403)."""


class AcumaticaNotFoundError(AcumaticaError):
    """Entity or endpoint not found (404)."""


class AcumaticaTransientError(AcumaticaError):
    """Retryable upstream failure (5xx, 408, 429, timeouts, network errors)."""


class UpstreamFormatError(AcumaticaError):
    """Body was HTML or otherwise not JSON; usually an expired session or error page."""


class SessionLimitReached(AcumaticaAuthError):
    """The ERP refused a login because its concurrent API session limit is used up."""

    def __init__(self, message: str, status_code: int | None = None, response: Any = None):
        super().__init__(message, status_code=status_code, response=response)
        self.remediation = SESSION_LIMIT_REMEDIATION


class ConfigurationError(Exception):
    """No usable credentials, or credentials missing required fields."""


def is_transient_status(status_code: int | None) -> bool:
    if status_code is None:
        return True
    if status_code in {408, 429}:
        return True
    return 500 <= status_code <= 599


def is_retryable_login_error(exc: Exception) -> bool:
    return isinstance(exc, AcumaticaTransientError)


def _looks_like_html(response: httpx.Response) -> bool:
    content_type = response.headers.get("content-type", "")
    if "html" in content_type.lower():
        return True
    return response.text.lstrip().startswith("<")


def extract_session_cookie(response: httpx.Response) -> str:
    """Join every Set-Cookie name=value pair into one Cookie header value."""
    pairs = []
    for raw in response.headers.get_list("set-cookie"):
        pair = raw.split(";", 1)[0].strip()
        if pair:
            pairs.append(pair)
    return "; ".join(pairs)


class AcumaticaClient:
    """
    Thin wrapper over httpx for one Acumatica tenant.

    Session handling lives in ``AcumaticaSessionManager``; every data call here
    takes the cookie string explicitly.
    """

    ENDPOINT_NAME = "Default"

    def __init__(
        self,
        base_url: str,
        api_version: str | None = None,
        timeout: float | None = None,
        detail_timeout: float | None = None,
        transport: httpx.BaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_version = api_version or settings.acumatica_api_version
        self.timeout = timeout or settings.acumatica_timeout_seconds
        self.detail_timeout = detail_timeout or settings.acumatica_detail_timeout_seconds
        self._transport = transport
        self._client: httpx.Client | None = None

    @classmethod
    def from_credentials(cls, credentials: AcumaticaCredentials, **kwargs) -> AcumaticaClient:
        return cls(credentials.base_url, **kwargs)

    def _get_client(self) -> httpx.Client:
        if self._client is None:
            self._client = httpx.Client(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self._transport,
                headers={
                    "Content-Type": "application/json",
                    "Accept": "application/json",
                    "User-Agent": "acumatica-sync/1.0",
                },
            )
        return self._client

    def close(self):
        if self._client:
            self._client.close()
            self._client = None

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.close()

    def entity_path(self, entity: str, *keys: str) -> str:
        path = f"/entity/{self.ENDPOINT_NAME}/{self.api_version}/{entity}"
        for key in keys:
            path += "/" + quote(str(key), safe="")
        return path

    def file_url(self, file_id: str) -> str:
        return f"{self.base_url}/(W(2))/Frames/GetFile.ashx?fileID={file_id}"

    # ------------------------------------------------------------------
    # Auth
    # ------------------------------------------------------------------

    def login(self, credentials: AcumaticaCredentials) -> str:
        body: dict[str, str] = {"name": credentials.username, "password": credentials.password}
        if credentials.company:
            body["company"] = credentials.company
        if credentials.branch:
            body["branch"] = credentials.branch

        try:
            response = self._get_client().post("/entity/auth/login", json=body)
        except httpx.TimeoutException as exc:
            record_erp_request("login", "timeout")
            raise AcumaticaTransientError(f"Login timed out: {exc}") from exc
        except httpx.TransportError as exc:
            record_erp_request("login", "network_error")
            raise AcumaticaTransientError(f"Login network error: {exc}") from exc

        if response.status_code >= 400:
            text = response.text or ""
            lowered = text.lower()
            if any(marker in lowered for marker in SESSION_LIMIT_MARKERS):
                record_erp_request("login", "session_limit")
                raise SessionLimitReached(
                    "Acumatica API login limit reached",
                    status_code=response.status_code,
                    response=text[:500],
                )
            record_erp_request("login", "error")
            if is_transient_status(response.status_code):
                raise AcumaticaTransientError(
                    f"Login failed ({response.status_code})",
                    status_code=response.status_code,
                    response=text[:500],
                )
            raise AcumaticaAuthError(
                f"Login failed ({response.status_code}): {text[:200]}",
                status_code=response.status_code,
                response=text[:500],
            )

        cookie = extract_session_cookie(response)
        if not cookie:
            record_erp_request("login", "no_cookie")
            raise AcumaticaAuthError("Login succeeded but no session cookies were returned")
        record_erp_request("login", "ok")
        return cookie

    def logout(self, cookie: str) -> bool:
        """Best-effort logout; never raises."""
        try:
            response = self._get_client().post("/entity/auth/logout", headers={"Cookie": cookie})
        except httpx.HTTPError as exc:
            logger.warning("acumatica_logout_failed error=%s", exc)
            record_erp_request("logout", "error")
            return False
        ok = response.status_code < 400
        record_erp_request("logout", "ok" if ok else "error")
        return ok

    # ------------------------------------------------------------------
    # Data
    # ------------------------------------------------------------------

    def _handle_response(self, response: httpx.Response, operation: str) -> Any:
        status = response.status_code
        if status in (401, 403):
            record_erp_request(operation, "auth_error")
            raise AcumaticaAuthError(f"Session rejected ({status})", status_code=status)
        if status == 404:
            record_erp_request(operation, "not_found")
            raise AcumaticaNotFoundError("Resource not found", status_code=404, response=response.text[:500])
        if status >= 400:
            record_erp_request(operation, "error")
            logger.warning("acumatica_api_error operation=%s status=%s", operation, status)
            error_cls = AcumaticaTransientError if is_transient_status(status) else AcumaticaError
            raise error_cls(
                f"API error ({status}): {response.text[:200]}",
                status_code=status,
                response=response.text[:500],
            )
        if not response.content:
            record_erp_request(operation, "ok")
            return None
        if _looks_like_html(response):
            record_erp_request(operation, "html")
            raise UpstreamFormatError(
                "Received HTML instead of JSON; the session may have expired",
                status_code=status,
                response=response.text[:500],
            )
        try:
            data = response.json()
        except json.JSONDecodeError as exc:
            record_erp_request(operation, "bad_json")
            raise UpstreamFormatError(
                f"Response body is not valid JSON: {exc}",
                status_code=status,
                response=response.text[:500],
            ) from exc
        record_erp_request(operation, "ok")
        return data

    def _get(self, path: str, cookie: str, params: dict | None, timeout: float | None, operation: str) -> Any:
        try:
            response = self._get_client().get(
                path,
                params=params,
                headers={"Cookie": cookie},
                timeout=timeout or self.timeout,
            )
        except httpx.TimeoutException as exc:
            record_erp_request(operation, "timeout")
            raise AcumaticaTransientError(f"Request timed out: {path}") from exc
        except httpx.TransportError as exc:
            record_erp_request(operation, "network_error")
            raise AcumaticaTransientError(f"Network error: {exc}") from exc
        return self._handle_response(response, operation)

    def get_list(
        self,
        entity: str,
        cookie: str,
        params: dict | None = None,
        timeout: float | None = None,
    ) -> list[dict]:
        data = self._get(self.entity_path(entity), cookie, params, timeout, f"list_{entity.lower()}")
        if data is None:
            return []
        if not isinstance(data, list):
            raise UpstreamFormatError(f"Expected a list of {entity} records, got {type(data).__name__}")
        return data

    def get_detail(
        self,
        entity: str,
        keys: list[str],
        cookie: str,
        params: dict | None = None,
    ) -> dict | None:
        data = self._get(
            self.entity_path(entity, *keys),
            cookie,
            params,
            self.detail_timeout,
            f"detail_{entity.lower()}",
        )
        if data is not None and not isinstance(data, dict):
            raise UpstreamFormatError(f"Expected a single {entity} record, got {type(data).__name__}")
        return data
