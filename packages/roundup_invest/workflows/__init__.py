"""End-to-end workflows composing ingestion, resolution and the ledger."""
