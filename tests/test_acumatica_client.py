"""Tests for the Acumatica HTTP client (httpx MockTransport, no network)."""

import json

import httpx
import pytest

from app.services.acumatica.client import (
    AcumaticaAuthError,
    AcumaticaClient,
    AcumaticaError,
    AcumaticaNotFoundError,
    AcumaticaTransientError,
    SessionLimitReached,
    UpstreamFormatError,
    is_transient_status,
)
from app.services.acumatica.credentials import AcumaticaCredentials

CREDS = AcumaticaCredentials.build("erp.example.com", "sync-user", "secret", "Acme", "HQ")


def _client(handler) -> AcumaticaClient:
    return AcumaticaClient(
        "https://erp.example.com",
        api_version="24.200.001",
        transport=httpx.MockTransport(handler),
    )


class TestLogin:
    def test_joins_session_cookies(self):
        seen = {}

        def handler(request):
            seen["path"] = request.url.path
            seen["body"] = json.loads(request.content)
            return httpx.Response(
                204,
                headers=[
                    ("set-cookie", "ASP.NET_SessionId=abc; path=/; HttpOnly"),
                    ("set-cookie", ".ASPXAUTH=xyz; path=/"),
                ],
            )

        cookie = _client(handler).login(CREDS)

        assert cookie == "ASP.NET_SessionId=abc; .ASPXAUTH=xyz"
        assert seen["path"] == "/entity/auth/login"
        assert seen["body"] == {"name": "sync-user", "password": "secret", "company": "Acme", "branch": "HQ"}

    def test_session_limit_is_distinguished(self):
        def handler(request):
            return httpx.Response(500, text="You have exceeded the API Login Limit for this instance")

        with pytest.raises(SessionLimitReached) as excinfo:
            _client(handler).login(CREDS)
        assert "SM201010" in excinfo.value.remediation

    def test_concurrent_logins_marker(self):
        def handler(request):
            return httpx.Response(401, text="The number of concurrent API logins has been exceeded")

        with pytest.raises(SessionLimitReached):
            _client(handler).login(CREDS)

    def test_bad_credentials(self):
        def handler(request):
            return httpx.Response(401, text="Invalid credentials")

        with pytest.raises(AcumaticaAuthError) as excinfo:
            _client(handler).login(CREDS)
        assert not isinstance(excinfo.value, SessionLimitReached)

    def test_server_error_is_transient(self):
        def handler(request):
            return httpx.Response(503, text="Service unavailable")

        with pytest.raises(AcumaticaTransientError):
            _client(handler).login(CREDS)

    def test_missing_cookie(self):
        def handler(request):
            return httpx.Response(204)

        with pytest.raises(AcumaticaAuthError):
            _client(handler).login(CREDS)

    def test_network_error_is_transient(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(AcumaticaTransientError):
            _client(handler).login(CREDS)


class TestDataCalls:
    def test_get_list_sends_cookie_and_params(self):
        seen = {}

        def handler(request):
            seen["cookie"] = request.headers.get("cookie")
            seen["path"] = request.url.path
            seen["filter"] = request.url.params.get("$filter")
            return httpx.Response(200, json=[{"ReferenceNbr": {"value": "000001"}}])

        records = _client(handler).get_list("Invoice", "sid=1", params={"$filter": "Status eq 'Open'"})

        assert records == [{"ReferenceNbr": {"value": "000001"}}]
        assert seen["cookie"] == "sid=1"
        assert seen["path"] == "/entity/Default/24.200.001/Invoice"
        assert seen["filter"] == "Status eq 'Open'"

    def test_empty_list_is_not_an_error(self):
        assert _client(lambda request: httpx.Response(200, json=[])).get_list("Invoice", "sid=1") == []

    def test_html_body_raises_format_error(self):
        def handler(request):
            return httpx.Response(200, text="<html><body>Login</body></html>", headers={"content-type": "text/html"})

        with pytest.raises(UpstreamFormatError):
            _client(handler).get_list("Invoice", "sid=1")

    def test_invalid_json_raises_format_error(self):
        def handler(request):
            return httpx.Response(200, text="{not json", headers={"content-type": "application/json"})

        with pytest.raises(UpstreamFormatError):
            _client(handler).get_list("Invoice", "sid=1")

    def test_unauthorized(self):
        with pytest.raises(AcumaticaAuthError) as excinfo:
            _client(lambda request: httpx.Response(401)).get_list("Invoice", "sid=1")
        assert excinfo.value.status_code == 401

    def test_not_found(self):
        with pytest.raises(AcumaticaNotFoundError):
            _client(lambda request: httpx.Response(404, text="missing")).get_detail(
                "Payment", ["Payment", "000001"], "sid=1"
            )

    def test_client_error_is_not_transient(self):
        with pytest.raises(AcumaticaError) as excinfo:
            _client(lambda request: httpx.Response(400, text="bad filter")).get_list("Invoice", "sid=1")
        assert not isinstance(excinfo.value, AcumaticaTransientError)

    def test_timeout_is_transient(self):
        def handler(request):
            raise httpx.ReadTimeout("slow", request=request)

        with pytest.raises(AcumaticaTransientError):
            _client(handler).get_detail("Payment", ["Payment", "000001"], "sid=1")

    def test_detail_path_quotes_keys(self):
        seen = {}

        def handler(request):
            seen["raw_path"] = request.url.raw_path.decode()
            return httpx.Response(200, json={"ReferenceNbr": {"value": "000001"}})

        _client(handler).get_detail("Payment", ["Voided Payment", "000001"], "sid=1", params={"$expand": "files"})

        assert seen["raw_path"].startswith("/entity/Default/24.200.001/Payment/Voided%20Payment/000001")


def test_logout_never_raises():
    def handler(request):
        raise httpx.ConnectError("down", request=request)

    assert _client(handler).logout("sid=1") is False


def test_file_url():
    client = AcumaticaClient("https://erp.example.com/")
    assert client.file_url("f-1") == "https://erp.example.com/(W(2))/Frames/GetFile.ashx?fileID=f-1"


@pytest.mark.parametrize(
    ("status", "expected"),
    [(500, True), (503, True), (408, True), (429, True), (400, False), (401, False), (404, False)],
)
def test_is_transient_status(status, expected):
    assert is_transient_status(status) is expected
