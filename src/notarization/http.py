"""HTTP notarization sink: posts record hashes to the blockchain-integration service.

Request body:  {"recordId", "recordType", "payloadHash"}
Response body: {"transactionHash", "recordedAt"?}
"""

from __future__ import annotations

import logging

import httpx

from src.errors import NotarizationError
from src.notarization.base import NotarizationReceipt

logger = logging.getLogger(__name__)


class HttpNotarizationSink:
    """NotarizationSink backed by a remote HTTP endpoint.

    A client can be injected (tests use httpx.MockTransport); otherwise a
    short-lived client is opened per submission.
    """

    def __init__(
        self,
        url: str,
        *,
        timeout: float = 10.0,
        record_type: str = "IMPACT_METRIC",
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._url = url
        self._timeout = timeout
        self._record_type = record_type
        self._client = client

    async def submit(
        self, record_id: str, payload_hash: str, *, correlation_id: str,
    ) -> NotarizationReceipt:
        body = {
            "recordId": record_id,
            "recordType": self._record_type,
            "payloadHash": payload_hash,
        }
        headers = {"X-Request-ID": correlation_id}
        try:
            if self._client is not None:
                resp = await self._client.post(self._url, json=body, headers=headers)
            else:
                async with httpx.AsyncClient(timeout=self._timeout) as client:
                    resp = await client.post(self._url, json=body, headers=headers)
            resp.raise_for_status()
            data = resp.json()
        except httpx.HTTPStatusError as exc:
            raise NotarizationError(
                f"Notarization service returned {exc.response.status_code} "
                f"for record {record_id}"
            ) from exc
        except (httpx.HTTPError, ValueError) as exc:
            raise NotarizationError(
                f"Notarization request failed for record {record_id}: {exc}"
            ) from exc

        tx_hash = data.get("transactionHash") if isinstance(data, dict) else None
        if not tx_hash:
            raise NotarizationError(
                f"Notarization response for record {record_id} has no transactionHash"
            )
        receipt_fields = {
            "record_id": record_id,
            "payload_hash": payload_hash,
            "transaction_hash": tx_hash,
        }
        if data.get("recordedAt"):
            receipt_fields["recorded_at"] = data["recordedAt"]
        logger.debug("Notarized record %s as %s", record_id, tx_hash)
        return NotarizationReceipt.model_validate(receipt_fields)
