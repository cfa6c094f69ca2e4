"""Payment provider webhook routes"""
import logging

from fastapi import APIRouter, Depends, Request
from starlette.concurrency import run_in_threadpool
from sqlalchemy.orm import Session

from toolsblog.core.config import settings
from toolsblog.db.redis import Cache, get_cache
from toolsblog.db.session import get_db
from toolsblog.services.providers.registry import ProviderRegistry, get_providers
from toolsblog.services.reconciliation_service import ReconciliationService

router = APIRouter(prefix=f"{settings.API_PREFIX}/webhooks", tags=["webhooks"])
logger = logging.getLogger(__name__)


@router.post("/{provider}")
async def provider_webhook(
    provider: str,
    request: Request,
    db: Session = Depends(get_db),
    cache: Cache = Depends(get_cache),
    providers: ProviderRegistry = Depends(get_providers),
):
    """Handle a provider webhook delivery.

    200 for processed, duplicate, discarded and ignored events. Signature
    failures are 400. Any failure applying a known subscription's event
    propagates to the exception handlers (5xx) so the provider redelivers.

    Note: the body is read raw, signature verification needs the exact bytes.
    """
    payload = await request.body()
    service = ReconciliationService(db, cache, providers)
    return await run_in_threadpool(service.handle_webhook, provider, payload, request.headers)
