"""roundup_invest: round-up resolution and order queuing pipeline.

Importable entry points live in :mod:`roundup_invest.api`; the console
interface is :mod:`roundup_invest.cli`.
"""
