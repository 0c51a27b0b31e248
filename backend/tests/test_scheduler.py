"""Scheduled-post sweep tests."""
from datetime import datetime, timedelta, timezone

import httpx
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from distributo.config import settings
from distributo.models.api_usage import ApiUsage
from distributo.models.connected_account import ConnectedAccount
from distributo.models.post import Post, PostStatus
from distributo.services import publish_service, scheduler_service, usage_service
from distributo.utils.helpers import as_utc


async def _get_post(session_factory, post_id) -> Post:
    async with session_factory() as db:
        return await db.get(Post, post_id)


async def test_sweep_with_nothing_due(session_factory, x_client, fake_x):
    report = await scheduler_service.run_sweep(session_factory, x_client)

    assert report.success is True
    assert report.processed == 0
    assert report.results == []
    assert fake_x.requests == []


async def test_expired_token_refreshed_then_posted(
    session_factory, x_client, fake_x, make_profile, make_account, make_post,
):
    profile = await make_profile()
    await make_account(profile.id, expires_in=timedelta(minutes=-30), username="alice")
    post = await make_post(profile.id, content="Scheduled hello")

    report = await scheduler_service.run_sweep(session_factory, x_client)

    assert report.processed == 1
    assert report.succeeded == 1
    assert fake_x.token_grants() == ["refresh_token"]
    assert len(fake_x.calls("/tweets")) == 1
    assert fake_x.calls("/tweets")[0].headers["authorization"] == "Bearer access-2"

    result = report.results[0]
    assert result.status == "posted"
    assert result.external_url == f"https://x.com/alice/status/{result.external_id}"

    stored = await _get_post(session_factory, post.id)
    assert stored.status == PostStatus.POSTED
    assert stored.external_id == result.external_id
    assert stored.external_url == result.external_url
    assert stored.posted_at is not None
    assert stored.error_message is None

    async with session_factory() as db:
        account = (await db.execute(select(ConnectedAccount))).scalar_one()
        assert account.access_token == "access-2"
        assert account.refresh_token == "refresh-2"
        assert account.last_used_at is not None
        usage = (await db.execute(select(ApiUsage))).scalar_one()
        assert usage.count == 1


async def test_missing_refresh_token_requeues_with_reconnect_message(
    session_factory, x_client, fake_x, make_profile, make_account, make_post,
):
    profile = await make_profile()
    await make_account(profile.id, expires_in=timedelta(minutes=-30), refresh_token=None)
    post = await make_post(profile.id)

    report = await scheduler_service.run_sweep(session_factory, x_client)

    assert report.failed == 1
    assert report.results[0].status == "retrying"
    assert fake_x.calls("/tweets") == []
    assert fake_x.calls("/oauth2/token") == []

    stored = await _get_post(session_factory, post.id)
    assert stored.status == PostStatus.SCHEDULED
    assert stored.retry_count == 1
    assert "reconnect" in stored.error_message.lower()


async def test_post_without_account(session_factory, x_client, fake_x, make_profile, make_post):
    profile = await make_profile()
    post = await make_post(profile.id)

    report = await scheduler_service.run_sweep(session_factory, x_client)

    assert report.results[0].status == "retrying"
    stored = await _get_post(session_factory, post.id)
    assert stored.status == PostStatus.SCHEDULED
    assert "reconnect" in stored.error_message.lower()
    assert fake_x.requests == []


async def test_post_fails_for_good_at_attempt_cap(
    session_factory, x_client, fake_x, make_profile, make_account, make_post,
):
    profile = await make_profile()
    await make_account(profile.id)
    fake_x.post_response = (403, {"detail": "You are not permitted to perform this action."})
    post = await make_post(profile.id, retry_count=settings.PUBLISH_MAX_ATTEMPTS - 1)

    report = await scheduler_service.run_sweep(session_factory, x_client)

    assert report.results[0].status == "failed"
    assert report.results[0].retry_count == settings.PUBLISH_MAX_ATTEMPTS
    stored = await _get_post(session_factory, post.id)
    assert stored.status == PostStatus.FAILED
    assert stored.retry_count == settings.PUBLISH_MAX_ATTEMPTS
    assert stored.error_message == "You are not permitted to perform this action."

    # Terminal posts are never picked up again.
    fake_x.post_response = None
    report = await scheduler_service.run_sweep(session_factory, x_client)
    assert report.processed == 0
    assert len(fake_x.calls("/tweets")) == 1


async def test_retries_until_cap(session_factory, x_client, fake_x, make_profile, make_account, make_post):
    profile = await make_profile()
    await make_account(profile.id)
    fake_x.post_response = (503, {"title": "Service Unavailable"})
    post = await make_post(profile.id)

    statuses = []
    for _ in range(settings.PUBLISH_MAX_ATTEMPTS + 1):
        report = await scheduler_service.run_sweep(session_factory, x_client)
        statuses.extend(r.status for r in report.results)

    assert statuses == ["retrying"] * (settings.PUBLISH_MAX_ATTEMPTS - 1) + ["failed"]
    stored = await _get_post(session_factory, post.id)
    assert stored.status == PostStatus.FAILED
    assert stored.error_message == "Service Unavailable"


async def test_one_failure_does_not_stop_the_batch(
    session_factory, x_client, fake_x, make_profile, make_account, make_post,
):
    connected = await make_profile()
    orphan = await make_profile()
    await make_account(connected.id, username="carol")
    now = datetime.now(timezone.utc)
    failing = await make_post(orphan.id, scheduled_at=now - timedelta(minutes=10))
    ok = await make_post(connected.id, scheduled_at=now - timedelta(minutes=5))

    report = await scheduler_service.run_sweep(session_factory, x_client)

    assert report.processed == 2
    assert report.succeeded == 1
    assert report.failed == 1
    assert [r.id for r in report.results] == [failing.id, ok.id]
    assert (await _get_post(session_factory, ok.id)).status == PostStatus.POSTED
    assert (await _get_post(session_factory, failing.id)).status == PostStatus.SCHEDULED


async def test_sweep_processes_earliest_first_up_to_batch_size(
    session_factory, x_client, fake_x, make_profile, make_account, make_post, monkeypatch,
):
    monkeypatch.setattr(settings, "SCHEDULER_BATCH_SIZE", 3)
    profile = await make_profile()
    await make_account(profile.id)
    now = datetime.now(timezone.utc)
    posts = [
        await make_post(profile.id, content=f"post {i}", scheduled_at=now - timedelta(minutes=i))
        for i in range(1, 6)
    ]

    report = await scheduler_service.run_sweep(session_factory, x_client)

    assert report.processed == 3
    expected = [p.id for p in sorted(posts, key=lambda p: p.scheduled_at)[:3]]
    assert [r.id for r in report.results] == expected
    remaining = [p for p in posts if p.id not in expected]
    for post in remaining:
        assert (await _get_post(session_factory, post.id)).status == PostStatus.SCHEDULED


async def test_future_and_draft_posts_are_ignored(
    session_factory, x_client, fake_x, make_profile, make_account, make_post,
):
    profile = await make_profile()
    await make_account(profile.id)
    await make_post(profile.id, scheduled_at=datetime.now(timezone.utc) + timedelta(hours=1))
    await make_post(profile.id, status=PostStatus.DRAFT)
    await make_post(profile.id, status=PostStatus.POSTED)

    report = await scheduler_service.run_sweep(session_factory, x_client)

    assert report.processed == 0
    assert fake_x.requests == []


async def test_claim_is_exclusive(session_factory, make_profile, make_post):
    profile = await make_profile()
    post = await make_post(profile.id)

    async with session_factory() as db:
        assert await scheduler_service.claim_post(db, post.id) is True
    async with session_factory() as db:
        assert await scheduler_service.claim_post(db, post.id) is False

    assert (await _get_post(session_factory, post.id)).status == PostStatus.POSTING


async def test_already_claimed_post_is_skipped(session_factory, x_client, fake_x, make_profile, make_account, make_post):
    profile = await make_profile()
    await make_account(profile.id)
    post = await make_post(profile.id)
    async with session_factory() as db:
        await scheduler_service.claim_post(db, post.id)

    async with session_factory() as db:
        result = await scheduler_service.process_post(db, x_client, post.id)

    assert result.status == "skipped"
    assert fake_x.requests == []


async def test_long_error_message_is_truncated(session_factory, make_profile, make_post):
    profile = await make_profile()
    post = await make_post(profile.id)

    async with session_factory() as db:
        result = await scheduler_service.record_failure(db, post.id, "x" * 5000)

    assert result.status == "retrying"
    stored = await _get_post(session_factory, post.id)
    assert len(stored.error_message) == scheduler_service.MAX_ERROR_LENGTH


async def test_report_serializes_camel_case(session_factory, x_client, make_profile, make_account, make_post):
    profile = await make_profile()
    await make_account(profile.id)
    await make_post(profile.id)
    before = datetime.now(timezone.utc)

    report = await scheduler_service.run_sweep(session_factory, x_client)
    data = report.model_dump(mode="json", by_alias=True)

    assert set(data) == {"success", "processed", "succeeded", "failed", "skipped", "results", "timestamp", "durationMs"}
    assert "externalUrl" in data["results"][0]
    assert as_utc(report.timestamp) >= before


async def test_refresh_rejection_requeues_with_reconnect_message(
    session_factory, x_client, fake_x, make_profile, make_account, make_post,
):
    fake_x.refresh_response = (400, {"error": "invalid_request", "error_description": "Value passed for the token was invalid."})
    profile = await make_profile()
    await make_account(profile.id, expires_in=timedelta(minutes=-30))
    post = await make_post(profile.id)

    report = await scheduler_service.run_sweep(session_factory, x_client)

    assert report.results[0].status == "retrying"
    assert fake_x.calls("/tweets") == []
    stored = await _get_post(session_factory, post.id)
    assert stored.status == PostStatus.SCHEDULED
    assert stored.error_message.startswith("Value passed for the token was invalid.")
    assert "reconnect" in stored.error_message.lower()


async def test_usage_failure_after_publish_never_reposts(
    session_factory, x_client, fake_x, make_profile, make_account, make_post, monkeypatch,
):
    async def broken_record_post(*args, **kwargs):
        raise IntegrityError("INSERT INTO api_usage", {}, Exception("uq_api_usage_period"))

    monkeypatch.setattr(usage_service, "record_post", broken_record_post)
    profile = await make_profile()
    await make_account(profile.id)
    post = await make_post(profile.id)

    first = await scheduler_service.run_sweep(session_factory, x_client)
    second = await scheduler_service.run_sweep(session_factory, x_client)

    assert first.results[0].status == "posted"
    assert second.processed == 0
    assert len(fake_x.calls("/tweets")) == 1
    stored = await _get_post(session_factory, post.id)
    assert stored.status == PostStatus.POSTED
    assert stored.external_id == first.results[0].external_id


async def test_unexpected_error_is_isolated_and_requeued(
    session_factory, x_client, fake_x, make_profile, make_account, make_post, monkeypatch,
):
    real_publish = publish_service.publish

    async def flaky_publish(x_client, access_token, content, username, reply_to_id=None):
        if content == "boom":
            raise RuntimeError("unexpected")
        return await real_publish(x_client, access_token, content, username, reply_to_id=reply_to_id)

    monkeypatch.setattr(publish_service, "publish", flaky_publish)
    profile = await make_profile()
    await make_account(profile.id)
    now = datetime.now(timezone.utc)
    before = await make_post(profile.id, content="first", scheduled_at=now - timedelta(minutes=15))
    broken = await make_post(profile.id, content="boom", scheduled_at=now - timedelta(minutes=10))
    after = await make_post(profile.id, content="last", scheduled_at=now - timedelta(minutes=5))

    report = await scheduler_service.run_sweep(session_factory, x_client)

    assert [r.status for r in report.results] == ["posted", "retrying", "posted"]
    assert (await _get_post(session_factory, before.id)).status == PostStatus.POSTED
    assert (await _get_post(session_factory, after.id)).status == PostStatus.POSTED
    stored = await _get_post(session_factory, broken.id)
    assert stored.status == PostStatus.SCHEDULED
    assert stored.retry_count == 1
    assert "unexpected" in stored.error_message

    async with session_factory() as db:
        posting = (await db.execute(select(Post).where(Post.status == PostStatus.POSTING))).scalars().all()
    assert posting == []


async def test_publish_timeout_requeues(session_factory, x_client, fake_x, make_profile, make_account, make_post):
    profile = await make_profile()
    await make_account(profile.id)
    fake_x.post_error = httpx.ReadTimeout("timed out")
    post = await make_post(profile.id)

    report = await scheduler_service.run_sweep(session_factory, x_client)

    assert report.results[0].status == "retrying"
    stored = await _get_post(session_factory, post.id)
    assert stored.status == PostStatus.SCHEDULED
    assert stored.retry_count == 1
    assert stored.error_message == "X API request timed out"


async def test_refresh_timeout_requeues_without_reconnect_message(
    session_factory, x_client, fake_x, make_profile, make_account, make_post,
):
    profile = await make_profile()
    await make_account(profile.id, expires_in=timedelta(minutes=-30))
    fake_x.refresh_error = httpx.ReadTimeout("timed out")
    post = await make_post(profile.id)

    report = await scheduler_service.run_sweep(session_factory, x_client)

    assert report.results[0].status == "retrying"
    assert fake_x.calls("/tweets") == []
    stored = await _get_post(session_factory, post.id)
    assert stored.status == PostStatus.SCHEDULED
    assert stored.retry_count == 1
    assert "reconnect" not in stored.error_message.lower()

    # The next sweep refreshes and posts once X answers again.
    fake_x.refresh_error = None
    report = await scheduler_service.run_sweep(session_factory, x_client)
    assert report.results[0].status == "posted"
    assert len(fake_x.calls("/tweets")) == 1
