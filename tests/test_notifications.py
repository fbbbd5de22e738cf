"""
Tests for notifications: the store, the dispatcher triggers and rate limiting.

These tests verify:
1. PREFERENCES: Disabled types are skipped, digests are queued
2. TRIGGERS: Each domain event reaches the right recipients
3. EMAIL: Immediate delivery is best-effort and never fails the trigger
4. RATE LIMIT: Fixed window per user
"""

from datetime import timedelta

import httpx
import pytest
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from delphi_panels.core.errors import InvalidArgument, NotFound, RateLimited
from delphi_panels.core.rate_limit import FixedWindowRateLimiter
from delphi_panels.models import (
    EmailDigestQueue,
    EmailFrequency,
    FeedbackType,
    Notification,
    NotificationType,
    utcnow,
)
from delphi_panels.services.consensus import ConsensusMetrics
from delphi_panels.services.email_service import EmailConfig, EmailService
from delphi_panels.services.events import TopicCreated, dispatch_event
from delphi_panels.services.feedback_store import FeedbackStore, SubmitFeedbackInput
from delphi_panels.services.invitations import InvitationService
from delphi_panels.services.notification_dispatcher import NotificationDispatcher
from delphi_panels.services.notifications import NotificationService
from delphi_panels.services.round_engine import RoundEngine


def email_service(handler) -> EmailService:
    return EmailService(
        config=EmailConfig(api_key="SG.test-key"),
        transport=httpx.MockTransport(handler),
    )


async def notifications_for(session: AsyncSession, user_id: str) -> list[Notification]:
    result = await session.execute(select(Notification).where(Notification.user_id == user_id))
    return list(result.scalars().all())


# =============================================================================
# TEST: NOTIFICATION STORE
# =============================================================================


class TestNotificationService:
    """Tests for notification records and preferences."""

    async def test_defaults_when_no_preferences_stored(self, session: AsyncSession):
        prefs = await NotificationService(session).get_preferences("someone")

        assert prefs.email is True
        assert prefs.email_frequency == EmailFrequency.IMMEDIATE
        assert prefs.allows(NotificationType.NEW_FEEDBACK)
        assert prefs.browser_notifications is False

    async def test_update_preferences_merges(self, session: AsyncSession):
        service = NotificationService(session)

        await service.update_preferences("u1", {"email_frequency": "weekly"})
        prefs = await service.update_preferences("u1", {"new_feedback": False})

        assert prefs.email_frequency == EmailFrequency.WEEKLY
        assert prefs.new_feedback is False
        assert prefs.round_closed is True

    async def test_update_preferences_rejects_unknown_fields(self, session: AsyncSession):
        with pytest.raises(InvalidArgument):
            await NotificationService(session).update_preferences("u1", {"carrier_pigeon": True})

    async def test_read_tracking(self, session: AsyncSession):
        service = NotificationService(session)
        first = await service.create("u1", NotificationType.ROUND_CLOSED, "Round 1 closed", "Done", {"topicId": "t"})
        await service.create("u1", NotificationType.ROUND_CLOSED, "Round 2 closed", "Done", {"topicId": "t"})

        assert await service.unread_count("u1") == 2

        await service.mark_as_read(first.id, "u1")
        assert await service.unread_count("u1") == 1

        assert await service.mark_all_as_read("u1") == 1
        assert await service.unread_count("u1") == 0

    async def test_mark_as_read_hides_other_users_notifications(self, session: AsyncSession):
        service = NotificationService(session)
        notification = await service.create("u1", NotificationType.INVITATION, "Hi", "Join", {"panelId": "p"})

        with pytest.raises(NotFound):
            await service.mark_as_read(notification.id, "u2")

    async def test_delete_old(self, session: AsyncSession):
        service = NotificationService(session)
        stale = await service.create("u1", NotificationType.NEW_FEEDBACK, "Old", "Old", {"topicId": "t"})
        await service.create("u1", NotificationType.NEW_FEEDBACK, "New", "New", {"topicId": "t"})
        await session.execute(
            update(Notification)
            .where(Notification.id == stale.id)
            .values(created_at=utcnow() - timedelta(days=45))
        )

        deleted = await service.delete_old("u1", days_old=30)

        assert deleted == 1
        remaining = await service.list_for_user("u1")
        assert [n.title for n in remaining] == ["New"]


# =============================================================================
# TEST: DISPATCHER
# =============================================================================


class TestNotificationDispatcher:
    """Tests for the notification triggers."""

    async def test_topic_created_notifies_experts(self, session: AsyncSession, topic, users):
        dispatcher = NotificationDispatcher(session)

        created = await dispatcher.on_topic_created(topic.id)

        assert {n.user_id for n in created} == {users["expert1"].id, users["expert2"].id}
        assert all(n.type == NotificationType.TOPIC_ASSIGNED for n in created)
        assert created[0].data == {"topicId": topic.id, "panelId": topic.panel_id}

    async def test_disabled_type_is_skipped(self, session: AsyncSession, topic, users):
        await NotificationService(session).update_preferences(users["expert1"].id, {"topic_assigned": False})

        created = await NotificationDispatcher(session).on_topic_created(topic.id)

        assert {n.user_id for n in created} == {users["expert2"].id}
        assert await notifications_for(session, users["expert1"].id) == []

    async def test_digest_users_are_queued(self, session: AsyncSession, topic, users):
        await NotificationService(session).update_preferences(
            users["expert1"].id, {"email_frequency": "daily"}
        )

        await NotificationDispatcher(session).on_topic_created(topic.id)

        result = await session.execute(select(EmailDigestQueue))
        queued = result.scalars().all()
        assert len(queued) == 1
        assert queued[0].user_id == users["expert1"].id
        assert queued[0].email == "one@example.com"
        assert queued[0].frequency == EmailFrequency.DAILY
        assert queued[0].data["topicId"] == topic.id
        # The in-app record exists regardless of email frequency
        assert len(await notifications_for(session, users["expert1"].id)) == 1

    async def test_immediate_email_is_sent(self, session: AsyncSession, topic, users):
        sent: list[dict] = []

        def handler(request: httpx.Request) -> httpx.Response:
            sent.append({"auth": request.headers["Authorization"], "body": request.content})
            return httpx.Response(202)

        await NotificationDispatcher(session, email_service=email_service(handler)).on_topic_created(topic.id)

        assert len(sent) == 2
        assert sent[0]["auth"] == "Bearer SG.test-key"

    async def test_email_failure_keeps_notification(self, session: AsyncSession, topic, users):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(500, text="boom")

        created = await NotificationDispatcher(
            session, email_service=email_service(handler)
        ).on_topic_created(topic.id)

        assert len(created) == 2

    async def test_feedback_notifies_topic_creator(self, session: AsyncSession, topic, users, fake_summarizer):
        await RoundEngine(session, summarizer=fake_summarizer).open_initial_round(topic.id)
        store = FeedbackStore(session)
        by_expert = await store.submit_feedback(
            topic.id, SubmitFeedbackInput(type=FeedbackType.IDEA, content="Idea"), users["expert1"].id
        )
        by_creator = await store.submit_feedback(
            topic.id, SubmitFeedbackInput(type=FeedbackType.IDEA, content="Mine"), users["admin"].id
        )
        dispatcher = NotificationDispatcher(session)

        created = await dispatcher.on_feedback_created(by_expert.feedback.id)
        skipped = await dispatcher.on_feedback_created(by_creator.feedback.id)

        assert [n.user_id for n in created] == [users["admin"].id]
        assert created[0].data["feedbackId"] == by_expert.feedback.id
        assert skipped == []

    async def test_round_closed_and_consensus(self, session: AsyncSession, topic, users, fake_summarizer):
        engine = RoundEngine(session, summarizer=fake_summarizer)
        await engine.open_initial_round(topic.id)
        result = await engine.close_round(topic.id, 1)
        dispatcher = NotificationDispatcher(session)

        closed = await dispatcher.on_round_closed(result.round.id)
        reached = await dispatcher.on_consensus_reached(
            result.round.id,
            ConsensusMetrics(consensus_level=80, total_feedback=3, total_participants=2),
        )
        below = await dispatcher.on_consensus_reached(
            result.round.id,
            ConsensusMetrics(consensus_level=40, total_feedback=3, total_participants=2),
        )

        assert {n.user_id for n in closed} == {users["expert1"].id, users["expert2"].id}
        assert closed[0].title == "Round 1 closed"
        assert {n.user_id for n in reached} == {u.id for k, u in users.items() if k != "outsider"}
        assert reached[0].data["consensusLevel"] == 80
        assert below == []

    async def test_invitation_notifies_registered_user(self, session: AsyncSession, panel, users):
        invitation = await InvitationService(session).create_invitation(
            panel.id, "OUT@example.com", invited_by=users["admin"].id, invited_by_name="Ada Admin"
        )

        created = await NotificationDispatcher(session).on_invitation_created(invitation.id)

        assert [n.user_id for n in created] == [users["outsider"].id]
        assert created[0].type == NotificationType.INVITATION
        assert created[0].data == {"panelId": panel.id, "invitationId": invitation.id}

    async def test_dispatch_event_runs_in_its_own_session(self, session: AsyncSession, topic, users):
        await dispatch_event(TopicCreated(topic_id=topic.id))

        assert len(await notifications_for(session, users["expert1"].id)) == 1

    async def test_dispatch_event_swallows_missing_records(self, session: AsyncSession):
        await dispatch_event(TopicCreated(topic_id="missing-topic"))

        result = await session.execute(select(Notification))
        assert result.scalars().all() == []


# =============================================================================
# TEST: RATE LIMITER
# =============================================================================


class TestFixedWindowRateLimiter:
    """Tests for the per-user fixed window."""

    def test_limit_within_window(self):
        now = [0.0]
        limiter = FixedWindowRateLimiter(limit=3, window_seconds=60, clock=lambda: now[0])

        for _ in range(3):
            limiter.check("u1")

        with pytest.raises(RateLimited):
            limiter.check("u1")

        # Other users have their own window
        limiter.check("u2")

    def test_window_resets(self):
        now = [0.0]
        limiter = FixedWindowRateLimiter(limit=1, window_seconds=60, clock=lambda: now[0])
        limiter.check("u1")

        now[0] = 61.0
        limiter.check("u1")

        with pytest.raises(RateLimited):
            limiter.check("u1")
