"""voice.diagnostics and voice.smokeTest Tests (httpx.MockTransport)."""

import httpx
import pytest

from ops_tools.adapters.probe import ProbeClient
from ops_tools.executor import ExecuteRequest
from ops_tools.tools.voice_diagnostics import VoiceDiagnosticsTool, classify
from ops_tools.tools.voice_smoke_test import VoiceSmokeTestTool

CTX = {"request_id": "req_voice", "actor": "api", "mode": "execute", "dry_run": False}
KEYS = {"OPENAI_API_KEY": "sk-openai-test", "ELEVENLABS_API_KEY": "el-test"}


def probe_for(handler) -> ProbeClient:
    return ProbeClient(timeout=1.0, transport=httpx.MockTransport(handler))


# ============================================================================
# voice.diagnostics
# ============================================================================


def test_classify():
    assert classify(204) == ("healthy", "OK")
    assert classify(403)[0] == "auth_error"
    assert classify(502) == ("unhealthy", "Server error: 502")
    assert classify(404) == ("degraded", "Unexpected status: 404")


@pytest.mark.asyncio
async def test_diagnostics_mixed_results():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen[request.url.host] = request.headers
        statuses = {"api.vapi.ai": 200, "api.openai.com": 401, "api.elevenlabs.io": 500}
        return httpx.Response(statuses[request.url.host])

    tool = VoiceDiagnosticsTool(probe_for(handler), api_keys=KEYS)
    result = await tool.execute(CTX, {"businessId": "acme"})

    by_target = {r["target"]: r for r in result["results"]}
    assert by_target["vapi_api"]["status"] == "healthy"
    assert by_target["openai_api"]["status"] == "auth_error"
    assert by_target["elevenlabs_api"]["status"] == "unhealthy"
    assert result["overallStatus"] == "degraded"
    assert result["statusReason"] == "1/3 service(s) unhealthy"
    assert result["summary"]["healthy"] == 1
    assert result["ok"] is True

    assert seen["api.openai.com"]["Authorization"] == "Bearer sk-openai-test"
    assert seen["api.elevenlabs.io"]["xi-api-key"] == "el-test"


@pytest.mark.asyncio
async def test_diagnostics_missing_keys_skip_targets():
    tool = VoiceDiagnosticsTool(probe_for(lambda request: httpx.Response(200)), api_keys={})

    result = await tool.execute(CTX, {})

    statuses = [r["status"] for r in result["results"]]
    assert statuses == ["healthy", "skipped", "skipped"]
    assert result["overallStatus"] == "healthy"
    assert result["results"][1]["reason"] == "Missing environment variable: OPENAI_API_KEY"


@pytest.mark.asyncio
async def test_diagnostics_all_timeouts_is_critical():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("timed out", request=request)

    tool = VoiceDiagnosticsTool(probe_for(handler), api_keys=KEYS)
    result = await tool.execute(CTX, {"timeoutMs": 250})

    assert [r["status"] for r in result["results"]] == ["timeout", "timeout", "timeout"]
    assert result["results"][0]["reason"] == "Request timed out after 250ms"
    assert result["overallStatus"] == "critical"


@pytest.mark.asyncio
async def test_diagnostics_dns_failure():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("[Errno -2] Name or service not known", request=request)

    targets = [{"name": "custom", "url": "https://voice.invalid/health", "type": "health"}]
    result = await VoiceDiagnosticsTool(probe_for(handler)).execute(CTX, {"targets": targets})

    assert result["results"][0]["status"] == "dns_error"
    assert result["overallStatus"] == "critical"


@pytest.mark.asyncio
async def test_diagnostics_all_skipped_is_unknown():
    targets = [{"name": "openai_api", "url": "https://api.openai.com/v1/models", "type": "auth", "requiresKey": "OPENAI_API_KEY"}]
    result = await VoiceDiagnosticsTool(probe_for(lambda request: httpx.Response(200))).execute(CTX, {"targets": targets})

    assert result["overallStatus"] == "unknown"


@pytest.mark.asyncio
async def test_diagnostics_rejects_malformed_targets():
    calls = []
    tool = VoiceDiagnosticsTool(probe_for(lambda request: calls.append(request) or httpx.Response(200)))

    result = await tool.execute(
        CTX, {"targets": ["https://x.test", {"name": "no_url"}, {"name": "ftp", "url": "ftp://x.test", "type": "tcp"}]}
    )

    assert result["ok"] is False
    assert result["error"]["code"] == "VALIDATION_ERROR"
    assert result["error"]["errors"] == [
        "targets[0] must be an object",
        "targets[1].url must be an http(s) URL",
        "targets[2].url must be an http(s) URL",
        "targets[2].type must be one of: health, auth, ping",
    ]
    assert calls == []


@pytest.mark.asyncio
async def test_malformed_targets_are_not_an_internal_error(plane):
    request = ExecuteRequest.from_body(
        {"tool": "voice.diagnostics", "requestId": "req_bad_targets", "args": {"targets": ["https://x.test"]}}
    )

    outcome = await plane.executor.run(request)

    assert outcome.status_code == 200
    assert outcome.body["ok"] is False
    assert outcome.body["error"]["code"] == "VALIDATION_ERROR"


# ============================================================================
# voice.smokeTest
# ============================================================================


@pytest.mark.asyncio
async def test_smoke_test_accepts_auth_gated_endpoints():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200 if request.url.path == "/api/health" else 401)

    tool = VoiceSmokeTestTool(probe_for(handler), "https://app.example.test/")
    result = await tool.execute(CTX, {"businessId": "acme"})

    assert result["ok"] is True
    assert result["passed"] == result["total"] == 4
    assert result["checks"][0]["details"] is None
    assert result["checks"][1]["details"] == "Endpoint reachable (auth required)"


@pytest.mark.asyncio
async def test_smoke_test_reports_failures():
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/api/health":
            raise httpx.ConnectError("Connection refused", request=request)
        return httpx.Response(500)

    result = await VoiceSmokeTestTool(probe_for(handler), "https://app.example.test").execute(CTX, {"businessId": "acme"})

    assert result["ok"] is False
    assert result["passed"] == 0
    assert result["checks"][0]["details"] == "Connection refused"
    assert result["checks"][1]["details"] == "HTTP 500"
    assert result["summary"] == "0/4 checks passed"
