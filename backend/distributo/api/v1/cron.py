"""Cron trigger for the scheduled-post sweep."""
import hmac
import logging

from fastapi import APIRouter, Depends, Request, Response
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from distributo.config import settings
from distributo.dependencies import get_session_factory, get_x_client
from distributo.errors import Unauthorized
from distributo.integrations.x.client import XClient
from distributo.middleware.metrics import record_sweep
from distributo.schemas.cron import SweepReport
from distributo.services import scheduler_service

logger = logging.getLogger(__name__)

router = APIRouter()


def verify_cron_secret(request: Request) -> None:
    """Require ``Authorization: Bearer <CRON_SECRET>`` in production.

    Outside production unauthenticated sweeps are allowed for local testing.
    """
    header = request.headers.get("authorization", "")
    expected = f"Bearer {settings.CRON_SECRET}"
    if settings.CRON_SECRET and hmac.compare_digest(header.encode(), expected.encode()):
        return
    if settings.is_production:
        logger.warning("Rejected cron trigger from %s", request.client.host if request.client else "unknown")
        raise Unauthorized()


# GET|POST /cron/post-scheduled
@router.api_route(
    "/post-scheduled",
    methods=["GET", "POST"],
    response_model=SweepReport,
    dependencies=[Depends(verify_cron_secret)],
)
async def post_scheduled(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    x_client: XClient = Depends(get_x_client),
):
    report = await scheduler_service.run_sweep(session_factory, x_client)
    record_sweep(report)
    return report


# HEAD /cron/post-scheduled: liveness
@router.head("/post-scheduled")
async def post_scheduled_head():
    return Response(status_code=200)
