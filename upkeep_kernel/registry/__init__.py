"""
upkeep_kernel.registry -- The job registry collaborator.

``JobRegistryClient`` is the interface managers and watchdogs program
against.  ``LocalJobRegistry`` is a SQLAlchemy-backed implementation that
shares the caller's transaction.
"""

from upkeep_kernel.registry.client import JobRegistryClient
from upkeep_kernel.registry.local import LocalJobRegistry

__all__ = [
    "JobRegistryClient",
    "LocalJobRegistry",
]
