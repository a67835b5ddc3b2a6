"""In-process notarization sink for dev and tests."""

from __future__ import annotations

import hashlib

from src.errors import NotarizationError
from src.notarization.base import NotarizationReceipt


class InMemoryNotarizationSink:
    """Records every submission and returns a deterministic transaction hash.

    Set ``fail`` to make every submission raise NotarizationError.
    """

    def __init__(self, *, fail: bool = False) -> None:
        self.fail = fail
        self.submissions: list[NotarizationReceipt] = []

    async def submit(
        self, record_id: str, payload_hash: str, *, correlation_id: str,
    ) -> NotarizationReceipt:
        if self.fail:
            raise NotarizationError(f"Notarization rejected for record {record_id}")
        digest = hashlib.sha256(f"{record_id}:{payload_hash}".encode("utf-8")).hexdigest()
        receipt = NotarizationReceipt(
            record_id=record_id,
            payload_hash=payload_hash,
            transaction_hash=f"0x{digest}",
        )
        self.submissions.append(receipt)
        return receipt
