"""
Attestation Bridge against a mocked credit bureau.
"""
import asyncio
import json

import httpx
import pytest
from structlog.testing import capture_logs

from chaincredit.attestation.bridge import AttestationBridge
from chaincredit.attestation.proof import verify_attestation
from chaincredit.attestation.source import PAYLOAD_FIELDS, AttestationState, SourceConfig
from chaincredit.errors import SchemaMismatch, SourceUnavailable, ValidationError

from conftest import BUREAU_URL, bureau_document, bureau_transport

SUBJECT = "0x000000000000000000000000000000000000dEaD"
PARAMS = {"ssn": "123-45-6789"}


def bridge_for(transport: httpx.MockTransport, timeout: float = 2.0, **source_kw) -> AttestationBridge:
    source = SourceConfig(url=BUREAU_URL, **source_kw)
    return AttestationBridge(source, client=httpx.AsyncClient(transport=transport), timeout=timeout)


@pytest.mark.asyncio
async def test_complete_attestation():
    result = await bridge_for(bureau_transport()).request_attestation(SUBJECT, PARAMS)

    assert result.subject == SUBJECT
    assert list(result.payload) == list(PAYLOAD_FIELDS)
    assert result.payload["creditScore"] == 720
    assert result.credit_score == 720
    assert verify_attestation(result)
    assert result.request["state"] == "Complete"
    assert [h["state"] for h in result.request["history"]] == [
        "Created", "APICalled", "Transformed", "ProofGenerated", "Complete",
    ]


@pytest.mark.asyncio
async def test_request_is_rendered_from_descriptor():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["method"] = request.method
        seen["url"] = str(request.url)
        seen["auth"] = request.headers.get("Authorization")
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json=bureau_document())

    bridge = bridge_for(
        httpx.MockTransport(handler),
        headers={"Content-Type": "application/json", "Authorization": "Bearer k-123"},
    )
    result = await bridge.request_attestation(SUBJECT, PARAMS)

    assert seen == {"method": "POST", "url": BUREAU_URL, "auth": "Bearer k-123", "body": {"ssn": "123-45-6789"}}
    # Credentials and PII never leave the bridge in the result
    assert "headers" not in result.request
    assert "body" not in result.request


@pytest.mark.asyncio
async def test_alternate_path_and_timestamp_normalisation():
    document = bureau_document(timestamp=1_700_000_000_123)
    credit = document["creditData"]
    credit["creditHistory"] = credit.pop("creditHistoryLength")

    result = await bridge_for(bureau_transport(document)).request_attestation(SUBJECT, PARAMS)

    assert result.payload["creditHistoryLength"] == 8
    assert result.payload["timestamp"] == 1_700_000_000


@pytest.mark.asyncio
async def test_iso_timestamp_accepted():
    document = bureau_document(timestamp="2023-11-14T22:13:20Z")
    result = await bridge_for(bureau_transport(document)).request_attestation(SUBJECT, PARAMS)
    assert result.payload["timestamp"] == 1_700_000_000


@pytest.mark.asyncio
async def test_missing_field_is_schema_mismatch():
    document = bureau_document()
    del document["creditData"]["delinquencies"]

    with pytest.raises(SchemaMismatch) as exc:
        await bridge_for(bureau_transport(document)).request_attestation(SUBJECT, PARAMS)
    assert exc.value.fields == ["delinquencies"]
    assert exc.value.to_dict()["fields"] == ["delinquencies"]


@pytest.mark.asyncio
async def test_invalid_value_is_schema_mismatch():
    document = bureau_document(creditScore=-5)
    with pytest.raises(SchemaMismatch) as exc:
        await bridge_for(bureau_transport(document)).request_attestation(SUBJECT, PARAMS)
    assert exc.value.fields == ["creditScore"]


@pytest.mark.asyncio
async def test_non_json_body_is_schema_mismatch():
    transport = httpx.MockTransport(lambda request: httpx.Response(200, content=b"<html>maintenance</html>"))
    with pytest.raises(SchemaMismatch):
        await bridge_for(transport).request_attestation(SUBJECT, PARAMS)


@pytest.mark.asyncio
async def test_http_error_is_source_unavailable():
    with pytest.raises(SourceUnavailable) as exc:
        await bridge_for(bureau_transport(status=503)).request_attestation(SUBJECT, PARAMS)
    assert "503" in exc.value.reason


@pytest.mark.asyncio
async def test_transport_timeout_is_source_unavailable():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("read timed out", request=request)

    with pytest.raises(SourceUnavailable):
        await bridge_for(httpx.MockTransport(handler)).request_attestation(SUBJECT, PARAMS)


@pytest.mark.asyncio
async def test_slow_source_is_bounded():
    async def handler(request: httpx.Request) -> httpx.Response:
        await asyncio.sleep(2)
        return httpx.Response(200, json=bureau_document())

    with pytest.raises(SourceUnavailable) as exc:
        await bridge_for(httpx.MockTransport(handler), timeout=0.05).request_attestation(SUBJECT, PARAMS)
    assert "timed out" in exc.value.reason


@pytest.mark.asyncio
async def test_source_called_once_no_retry():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(500)

    with pytest.raises(SourceUnavailable):
        await bridge_for(httpx.MockTransport(handler)).request_attestation(SUBJECT, PARAMS)
    assert len(calls) == 1


@pytest.mark.asyncio
async def test_missing_source_parameter():
    with pytest.raises(ValidationError):
        await bridge_for(bureau_transport()).request_attestation(SUBJECT, {})


@pytest.mark.asyncio
async def test_same_source_data_same_payload_fresh_proof():
    bridge = bridge_for(bureau_transport())
    first = await bridge.request_attestation(SUBJECT, PARAMS)
    second = await bridge.request_attestation(SUBJECT, PARAMS)

    assert first.payload == second.payload
    assert first.encoded_payload == second.encoded_payload
    assert first.proof.payload_hash == second.proof.payload_hash
    assert first.request_id != second.request_id
    assert first.proof.commitment_root != second.proof.commitment_root


def test_state_machine_rejects_skips_and_reopening():
    request = SourceConfig(url=BUREAU_URL).build_request(SUBJECT, PARAMS)
    assert request.state is AttestationState.CREATED

    with pytest.raises(RuntimeError):
        request.advance(AttestationState.TRANSFORMED)

    request.fail("source_unavailable")
    assert request.state is AttestationState.FAILED
    with pytest.raises(RuntimeError):
        request.advance(AttestationState.API_CALLED)


def test_transform_must_cover_schema():
    with pytest.raises(ValueError):
        SourceConfig(url=BUREAU_URL, transform={"creditScore": ["creditData.creditScore"]})


@pytest.mark.asyncio
@pytest.mark.parametrize("value", [2 ** 256, 10 ** 80, 1e80])
async def test_value_beyond_uint256_is_schema_mismatch(value):
    document = bureau_document(creditScore=value)
    with pytest.raises(SchemaMismatch) as exc:
        await bridge_for(bureau_transport(document)).request_attestation(SUBJECT, PARAMS)
    assert exc.value.fields == ["creditScore"]


@pytest.mark.asyncio
@pytest.mark.parametrize("field,value", [("creditScore", True), ("delinquencies", False), ("accountsOpen", "5"), ("timestamp", True)])
async def test_non_integer_values_are_schema_mismatch(field, value):
    document = bureau_document(**{field: value})
    with pytest.raises(SchemaMismatch) as exc:
        await bridge_for(bureau_transport(document)).request_attestation(SUBJECT, PARAMS)
    assert exc.value.fields == [field]


@pytest.mark.asyncio
async def test_failed_request_is_marked_failed():
    with capture_logs() as logs:
        with pytest.raises(SchemaMismatch):
            await bridge_for(bureau_transport(bureau_document(creditScore=2 ** 256))).request_attestation(SUBJECT, PARAMS)
    states = [e["state"] for e in logs if e["event"] == "attestation_state"]
    assert states == ["Created", "APICalled", "Failed"]
    assert logs[-1]["error"] == "schema_mismatch"
