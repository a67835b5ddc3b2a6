"""Fire-and-forget notarization of finalized records.

A NotarizationSink takes a record id plus a payload hash and returns an
opaque receipt. Failures are logged and never reach the ingestion caller.
"""
