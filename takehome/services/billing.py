from __future__ import annotations

import logging
from typing import Protocol

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from takehome.auth import Account
from takehome.core.config import settings
from takehome.core.error_handling import SubmissionLimitError
from takehome.db.models.assessment import Assessment
from takehome.db.models.submission import Submission

logger = logging.getLogger("submissions")


class SubmissionAllowance(Protocol):
    async def check(self, session: AsyncSession, account: Account) -> None:
        """Raise SubmissionLimitError when the account may not invite another candidate."""
        ...


async def count_account_submissions(session: AsyncSession, account_id: int) -> int:
    result = await session.execute(
        select(func.count(Submission.id))
        .join(Assessment, Assessment.id == Submission.assessment_id)
        .where(Assessment.account_id == account_id)
    )
    return int(result.scalar_one())


class FreeTierAllowance:
    """Accounts without an active subscription get a fixed number of submissions."""

    def __init__(self, limit: int) -> None:
        self.limit = limit

    async def check(self, session: AsyncSession, account: Account) -> None:
        if account.has_active_subscription or self.limit <= 0:
            return
        used = await count_account_submissions(session, account.id)
        if used >= self.limit:
            logger.info(
                "Submission limit reached",
                extra={"account_id": account.id, "limit": self.limit, "used": used},
            )
            raise SubmissionLimitError(limit=self.limit, used=used)


def get_submission_allowance() -> SubmissionAllowance:
    return FreeTierAllowance(settings.free_tier_submission_limit)
