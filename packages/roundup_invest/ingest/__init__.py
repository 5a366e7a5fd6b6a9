"""Ingestion adapters: bulk CSV, bank feed, receipts and mapping imports.

Each adapter turns its source format into
:class:`roundup_invest.models.CanonicalPurchase` values (or mapping rows) and
reports malformed input as ``ValueError``/``BatchAbortedError``; none of them
touch the database.
"""
