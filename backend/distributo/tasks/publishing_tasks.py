"""Publishing tasks, routed to the critical queue.

Beat-driven counterparts of the HTTP cron trigger: the scheduled-post sweep
and proactive refresh of tokens that are about to expire.
"""
import asyncio
from datetime import timedelta

from distributo.tasks.celery_app import celery_app


async def _sweep() -> dict:
    from distributo.database import async_session_factory
    from distributo.integrations.x.client import XClient
    from distributo.services.scheduler_service import run_sweep

    async with XClient() as x_client:
        report = await run_sweep(async_session_factory, x_client)
    return report.model_dump(mode="json", by_alias=True)


async def _refresh_expiring() -> dict[str, int]:
    from distributo.database import async_session_factory
    from distributo.integrations.x.client import XClient
    from distributo.services.token_service import refresh_expiring_accounts

    async with async_session_factory() as db, XClient() as x_client:
        return await refresh_expiring_accounts(db, x_client, window=timedelta(hours=24))


@celery_app.task(name="distributo.tasks.publishing_tasks.sweep_scheduled_posts")
def sweep_scheduled_posts():
    """Periodic task: publish due scheduled posts."""
    return asyncio.run(_sweep())


@celery_app.task(name="distributo.tasks.publishing_tasks.refresh_expiring_tokens")
def refresh_expiring_tokens():
    """Periodic task (hourly): refresh tokens expiring within 24 hours."""
    return asyncio.run(_refresh_expiring())
