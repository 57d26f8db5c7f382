"""
upkeep_kernel -- Shared infrastructure for the upkeep packages.

Provides structured logging, the typed exception hierarchy, the injected
clock and scan signal, the SQLAlchemy declarative base and engine, the
persisted event log, and role-based access control.

Architecture:
    upkeep_kernel is the lowest layer.  It MUST NOT import from
    upkeep_jobs, upkeep_funding, upkeep_config, or scripts.
"""
