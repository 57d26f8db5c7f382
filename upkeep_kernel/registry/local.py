"""
LocalJobRegistry -- database-backed JobRegistryClient.

Contract:
    Stores jobs in ``registry_jobs`` inside the caller's session, so a
    manager call that fails after registering a job rolls the registration
    back too.  Used by tests, dry runs and the CLI.

Invariants enforced:
    - Job ids are allocated monotonically from 1.
    - ``withdraw()`` succeeds only for cancelled jobs whose cancellation is
      at least ``finality_delay_seconds`` old (by the injected Clock).
    - ``fund()`` rejects cancelled and withdrawn jobs.
"""

from __future__ import annotations

from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from upkeep_kernel.domain.clock import Clock, SystemClock
from upkeep_kernel.exceptions import (
    InvalidAmountError,
    JobNotActiveError,
    JobNotFoundError,
    JobNotWithdrawableError,
)
from upkeep_kernel.logging_config import get_logger
from upkeep_kernel.models.registry import RegistryJobModel

logger = get_logger("registry.local")

ACTIVE = "active"
CANCELLED = "cancelled"
WITHDRAWN = "withdrawn"


class LocalJobRegistry:
    """In-database job registry with a cancellation finality delay."""

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        finality_delay_seconds: int = 600,
        default_min_balance: Decimal = Decimal("0.1"),
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._finality_delay = finality_delay_seconds
        self._default_min_balance = default_min_balance

    @property
    def finality_delay_seconds(self) -> int:
        return self._finality_delay

    # -------------------------------------------------------------------------
    # JobRegistryClient
    # -------------------------------------------------------------------------

    def register(self, target: str, gas_limit: int, funding_amount: Decimal) -> int:
        if funding_amount < 0:
            raise InvalidAmountError(funding_amount)
        next_id = (
            self._session.execute(
                select(func.max(RegistryJobModel.job_id))
            ).scalar_one_or_none()
            or 0
        ) + 1
        self._session.add(
            RegistryJobModel(
                job_id=next_id,
                target=target,
                gas_limit=gas_limit,
                balance=funding_amount,
                min_balance=self._default_min_balance,
                total_spent=Decimal("0"),
                state=ACTIVE,
            )
        )
        self._session.flush()
        logger.info(
            "registry_job_registered",
            extra={"job_id": next_id, "target": target, "gas_limit": gas_limit},
        )
        return next_id

    def cancel(self, job_id: int) -> None:
        job = self._load(job_id)
        if job.state != ACTIVE:
            raise JobNotActiveError(job_id, job.state)
        job.state = CANCELLED
        job.cancelled_ts = self._clock.timestamp()
        self._session.flush()
        logger.info("registry_job_cancelled", extra={"job_id": job_id})

    def withdraw(self, job_id: int) -> Decimal:
        job = self._load(job_id)
        if job.state != CANCELLED:
            raise JobNotWithdrawableError(job_id, f"job is {job.state}")
        elapsed = self._clock.timestamp() - (job.cancelled_ts or 0)
        if elapsed < self._finality_delay:
            raise JobNotWithdrawableError(
                job_id,
                f"finality delay not elapsed ({elapsed}s of {self._finality_delay}s)",
            )
        amount = job.balance
        job.balance = Decimal("0")
        job.state = WITHDRAWN
        self._session.flush()
        logger.info(
            "registry_job_withdrawn",
            extra={"job_id": job_id, "amount": amount},
        )
        return amount

    def get_balance(self, job_id: int) -> Decimal:
        return self._load(job_id).balance

    def get_min_balance(self, job_id: int) -> Decimal:
        return self._load(job_id).min_balance

    def fund(self, job_id: int, amount: Decimal) -> None:
        if amount <= 0:
            raise InvalidAmountError(amount)
        job = self._load(job_id)
        if job.state != ACTIVE:
            raise JobNotActiveError(job_id, job.state)
        job.balance = job.balance + amount
        self._session.flush()

    # -------------------------------------------------------------------------
    # Local extensions (simulation and inspection)
    # -------------------------------------------------------------------------

    def set_min_balance(self, job_id: int, amount: Decimal) -> None:
        self._load(job_id).min_balance = amount
        self._session.flush()

    def debit(self, job_id: int, amount: Decimal) -> Decimal:
        """Charge execution cost against a job; returns the new balance."""
        job = self._load(job_id)
        charged = min(amount, job.balance)
        job.balance = job.balance - charged
        job.total_spent = job.total_spent + charged
        self._session.flush()
        return job.balance

    def get_state(self, job_id: int) -> str:
        return self._load(job_id).state

    def _load(self, job_id: int) -> RegistryJobModel:
        job = self._session.execute(
            select(RegistryJobModel).where(RegistryJobModel.job_id == job_id)
        ).scalar_one_or_none()
        if job is None:
            raise JobNotFoundError(job_id)
        return job
