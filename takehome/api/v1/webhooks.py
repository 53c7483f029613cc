import logging

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from takehome.core.config import settings
from takehome.core.error_handling import ReplayDetectedError, SignatureInvalidError, WebhookConfigurationError
from takehome.core.metrics import collector
from takehome.db.session import get_session
from takehome.services import interview_orchestrator, webhook_verifier
from takehome.services.llm_client import TextGenerator, get_text_generator

router = APIRouter(prefix="/webhooks", tags=["webhooks"])
logger = logging.getLogger("webhooks")


@router.post("/elevenlabs")
async def elevenlabs_webhook(
    request: Request,
    session: AsyncSession = Depends(get_session),
    generator: TextGenerator = Depends(get_text_generator),
):
    """Post-call webhook from ElevenLabs. The provider owns retries; failures are never retried here."""
    secret = settings.elevenlabs_webhook_secret
    if not secret:
        logger.error("ELEVENLABS_WEBHOOK_SECRET not configured")
        raise WebhookConfigurationError()

    # Raw bytes: the signature covers the body exactly as sent
    raw_body = await request.body()
    try:
        payload = webhook_verifier.verify(
            raw_body,
            request.headers.get(webhook_verifier.SIGNATURE_HEADER),
            secret,
            tolerance_seconds=settings.webhook_tolerance_seconds,
        )
    except ReplayDetectedError as exc:
        collector.increment_counter("webhook_rejected_replay")
        logger.warning("Webhook rejected: stale timestamp", extra={"details": exc.details})
        raise
    except SignatureInvalidError as exc:
        collector.increment_counter("webhook_rejected_signature")
        logger.warning("Webhook rejected: bad signature", extra={"reason": exc.message})
        raise

    collector.increment_counter("webhook_accepted")
    callback = webhook_verifier.parse_provider_callback(payload)
    logger.info(
        "Webhook verified",
        extra={
            "event_type": callback.event_type,
            "conversation_id": callback.conversation_id,
            "submission_id": callback.submission_id,
            "turns": len(callback.turns),
        },
    )
    return await interview_orchestrator.ingest_provider_callback(session, callback, generator)
