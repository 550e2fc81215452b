"""Per-company document number allocation.

The counter lives on ``companies.next_document_number``. Allocation is a
single ``UPDATE ... SET n = n + 1 RETURNING n`` on the company's own row, so
the write lock is per company and held only until the surrounding
transaction commits. The document insert shares that transaction: a failed
unit of work rolls the increment back with it, so a number is never handed
out without a persisted document behind it. Gaps remain possible (e.g. a
document deleted later); duplicates are rejected by the unique constraint.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional, TypeVar

from sqlalchemy import update
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from contractor_platform.app.config import get_settings
from contractor_platform.domain.models import Company
from contractor_platform.services.errors import NotFoundError

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Substrings of driver errors that mean "another writer got there first"
_CONTENTION_MARKERS = (
    "database is locked",
    "database table is locked",
    "could not serialize",
    "deadlock detected",
    "lock timeout",
)
_UNIQUE_MARKERS = (
    "uq_project_documents_company_number",
    "project_documents.document_number",
)


class DocumentNumberingError(Exception):
    """Raised when a number could not be allocated after all retries.

    Callers should treat this as retryable (HTTP 503).
    """

    def __init__(self, company_id: str, attempts: int):
        self.company_id = company_id
        self.attempts = attempts
        super().__init__(
            f"Could not allocate a document number for company {company_id} "
            f"after {attempts} attempts"
        )


def is_numbering_conflict(exc: Exception) -> bool:
    """True if ``exc`` is lock contention or a duplicate document number."""
    message = str(getattr(exc, "orig", None) or exc).lower()
    if isinstance(exc, IntegrityError):
        return any(marker in message for marker in _UNIQUE_MARKERS)
    if isinstance(exc, (OperationalError, DBAPIError)):
        return any(marker in message for marker in _CONTENTION_MARKERS)
    return False


class DocumentNumberAllocator:
    """Issues sequential per-company document numbers."""

    def __init__(
        self,
        session: AsyncSession,
        max_retries: Optional[int] = None,
        backoff_seconds: Optional[float] = None,
    ):
        settings = get_settings()
        self.session = session
        self.max_retries = max_retries if max_retries is not None else settings.numbering_max_retries
        self.backoff_seconds = (
            backoff_seconds if backoff_seconds is not None else settings.numbering_backoff_seconds
        )

    async def allocate(self, company_id: str) -> int:
        """Advance the company counter and return the value it held.

        Runs inside the caller's transaction; the caller commits.

        Raises:
            NotFoundError: company does not exist.
        """
        stmt = (
            update(Company)
            .where(Company.id == company_id)
            .values(next_document_number=Company.next_document_number + 1)
            .returning(Company.next_document_number)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        new_value = result.scalar_one_or_none()
        if new_value is None:
            raise NotFoundError("Company", company_id)
        return new_value - 1

    async def run(self, company_id: str, persist: Callable[[int], Awaitable[T]]) -> T:
        """Allocate a number, hand it to ``persist`` and commit both together.

        On lock contention or a duplicate number the whole unit is rolled
        back and retried with linear backoff.

        Raises:
            DocumentNumberingError: retries exhausted.
        """
        attempts = max(1, self.max_retries)
        for attempt in range(1, attempts + 1):
            try:
                number = await self.allocate(company_id)
                result = await persist(number)
                await self.session.commit()
                logger.info("Allocated document number %d for company %s", number, company_id)
                return result
            except (OperationalError, IntegrityError, DBAPIError) as exc:
                await self.session.rollback()
                if not is_numbering_conflict(exc):
                    raise
                wait = self.backoff_seconds * attempt
                logger.warning(
                    "Document numbering conflict for company %s, retrying in %.2fs (attempt %d/%d): %s",
                    company_id, wait, attempt, attempts, exc,
                )
                await asyncio.sleep(wait)
            except Exception:
                await self.session.rollback()
                raise

        raise DocumentNumberingError(company_id, attempts)
