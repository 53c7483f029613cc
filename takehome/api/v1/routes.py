from fastapi import APIRouter

from .interviews import employer_router as interviews_employer_router
from .interviews import router as interviews_router
from .submissions import employer_router as submissions_employer_router
from .submissions import router as submissions_router
from .webhooks import router as webhooks_router

router = APIRouter()

router.include_router(submissions_router)
router.include_router(submissions_employer_router)
router.include_router(interviews_router)
router.include_router(interviews_employer_router)
router.include_router(webhooks_router)
