import asyncio

from sqlalchemy import select

from takehome.auth import Account, issue_account_token
from takehome.db.models.assessment import Assessment
from takehome.db.session import async_session_factory
from takehome.services import submission_lifecycle as lifecycle
from takehome.services.billing import FreeTierAllowance

DEMO_ACCOUNT_ID = 1
DEMO_TITLE = "Demo: URL shortener service"


async def main() -> None:
    account = Account(id=DEMO_ACCOUNT_ID, subscription_status="active")
    async with async_session_factory() as session:
        result = await session.execute(
            select(Assessment).filter_by(account_id=DEMO_ACCOUNT_ID, title=DEMO_TITLE)
        )
        assessment = result.scalar_one_or_none()
        if assessment is None:
            assessment = Assessment(
                account_id=DEMO_ACCOUNT_ID,
                title=DEMO_TITLE,
                description=(
                    "Build a small HTTP service that shortens URLs and redirects to the original. "
                    "Persist links, count visits and include tests."
                ),
                time_limit_minutes=90,
                num_interview_questions=2,
            )
            session.add(assessment)
            await session.commit()
            print("assessment created")
        else:
            print("assessment exists")

        submission = await lifecycle.create_submission(
            session,
            account,
            assessment_id=assessment.id,
            candidate_name="Demo Candidate",
            candidate_email="candidate@example.com",
            allowance=FreeTierAllowance(0),
        )
        print("share link:", lifecycle.share_link(submission.token))
        print("employer token:", issue_account_token(DEMO_ACCOUNT_ID, "active"))


if __name__ == "__main__":
    asyncio.run(main())
