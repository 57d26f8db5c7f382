"""
JobRegistryClient protocol.

Contract:
    Thin, synchronous, authoritative interface to the external job
    scheduling service.  Every call either succeeds or raises a
    ``JobRegistryError`` subclass; callers propagate those as fatal.

    - ``register()`` creates a job with a gas budget and initial funds,
      returning its opaque identifier.
    - ``cancel()`` stops the job; funds become reclaimable only after the
      registry's finality delay.
    - ``withdraw()`` reclaims a cancelled job's balance once eligible,
      raising ``JobNotWithdrawableError`` before that.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Protocol, runtime_checkable


@runtime_checkable
class JobRegistryClient(Protocol):

    def register(self, target: str, gas_limit: int, funding_amount: Decimal) -> int: ...

    def cancel(self, job_id: int) -> None: ...

    def withdraw(self, job_id: int) -> Decimal: ...

    def get_balance(self, job_id: int) -> Decimal: ...

    def get_min_balance(self, job_id: int) -> Decimal: ...

    def fund(self, job_id: int, amount: Decimal) -> None: ...
