from __future__ import annotations

import secrets
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from takehome.core.error_handling import NotFoundError
from takehome.db.models.submission import Submission


def mint_token() -> str:
    """Return a fresh 64-character hex capability token (32 random bytes)."""
    return secrets.token_hex(32)


async def resolve(session: AsyncSession, token: Optional[str]) -> Submission:
    """Map a candidate token to its submission. Read-only."""
    if not token:
        raise NotFoundError("Submission")
    submission = (
        await session.execute(select(Submission).where(Submission.token == token))
    ).scalar_one_or_none()
    if submission is None:
        # Never echo the token back; it is the candidate's credential
        raise NotFoundError("Submission")
    return submission
