"""
ChainCredit — Attestation Bridge
Web2 JSON in, verifiable on-chain-consumable payload out.

    request_attestation(subject, params)
        Created         render the declarative descriptor
        APICalled       one HTTP call, bounded by `timeout`, never retried
        Transformed     parse -> project -> validate into CreditPayload
        ProofGenerated  abi-encode, keccak, commitment tree, provenance ids
        Complete        immutable AttestationResult

Any failure moves the request to Failed and re-raises the named error:
SourceUnavailable for transport trouble, SchemaMismatch for contract drift.
The caller decides whether to try again.
"""
import asyncio
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import httpx
import structlog

from chaincredit.attestation.proof import (
    AttestationResult,
    encode_payload,
    generate_proof,
    to_hex,
    verify_attestation,
)
from chaincredit.attestation.source import AttestationRequest, AttestationState, SourceConfig
from chaincredit.attestation.transform import transform_response
from chaincredit.errors import CreditEngineError, SourceUnavailable

logger = structlog.get_logger()


class AttestationBridge:

    def __init__(
        self,
        source: SourceConfig,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 10.0,
    ):
        self.source = source
        self._client = client
        self._timeout = timeout

    async def request_attestation(self, subject: str, source_parameters: Dict[str, Any]) -> AttestationResult:
        request = self.source.build_request(subject, source_parameters)
        logger.info(
            "attestation_state",
            request_id=request.request_id,
            subject=subject,
            source=request.source_id,
            state=request.state.value,
        )

        try:
            raw = await self._call_source(request)
            self._advance(request, AttestationState.API_CALLED)

            payload = transform_response(raw, request.transform)
            self._advance(request, AttestationState.TRANSFORMED)

            encoded = encode_payload(payload)
            proof = generate_proof(request.request_id, encoded)
            self._advance(request, AttestationState.PROOF_GENERATED)

            self._advance(request, AttestationState.COMPLETE)
        except CreditEngineError as e:
            request.fail(e.code)
            logger.warning(
                "attestation_state",
                request_id=request.request_id,
                state=request.state.value,
                error=e.code,
                detail=str(e),
            )
            raise

        result = AttestationResult(
            request_id=request.request_id,
            subject=subject,
            payload=payload.ordered(),
            proof=proof,
            encoded_payload=to_hex(encoded),
            completed_at=datetime.now(timezone.utc).isoformat(),
            request=request.summary(),
        )
        logger.info(
            "attestation_complete",
            request_id=result.request_id,
            credit_score=result.credit_score,
            payload_hash=proof.payload_hash,
        )
        return result

    def _advance(self, request: AttestationRequest, to: AttestationState) -> None:
        request.advance(to)
        logger.info("attestation_state", request_id=request.request_id, state=to.value)

    async def _call_source(self, request: AttestationRequest) -> bytes:
        try:
            return await asyncio.wait_for(self._fetch(request), timeout=self._timeout)
        except asyncio.TimeoutError:
            raise SourceUnavailable(request.url, f"timed out after {self._timeout}s")

    async def _fetch(self, request: AttestationRequest) -> bytes:
        if self._client is not None:
            return await self._send(self._client, request)
        async with httpx.AsyncClient(timeout=httpx.Timeout(self._timeout, connect=5.0)) as client:
            return await self._send(client, request)

    async def _send(self, client: httpx.AsyncClient, request: AttestationRequest) -> bytes:
        try:
            response = await client.request(
                request.method,
                request.url,
                headers=request.headers,
                params=request.query or None,
                json=request.body,
            )
            response.raise_for_status()
        except httpx.TimeoutException:
            raise SourceUnavailable(request.url, f"timed out after {self._timeout}s")
        except httpx.HTTPStatusError as e:
            raise SourceUnavailable(request.url, f"HTTP {e.response.status_code}")
        except httpx.HTTPError as e:
            raise SourceUnavailable(request.url, str(e) or type(e).__name__)
        return response.content

    @staticmethod
    def verify(result: AttestationResult) -> bool:
        return verify_attestation(result)
