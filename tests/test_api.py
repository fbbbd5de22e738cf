"""
API tests through the ASGI app.

These tests verify:
1. AUTH: Missing tokens are 401 with the error taxonomy body
2. FLOW: Topic -> round -> anonymous feedback -> close with consensus
3. NOTIFICATIONS: Rate limit, tagged-union validation, preferences
4. INVITATIONS: Expired invitations stay marked after a failed accept
"""

from datetime import timedelta

import pytest
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from delphi_panels.models import (
    Feedback,
    InvitationStatus,
    Notification,
    NotificationType,
    PanelInvitation,
    utcnow,
)

API = "/api/v1"


# =============================================================================
# TEST: BASICS
# =============================================================================


class TestBasics:
    async def test_health(self, client):
        response = await client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    async def test_missing_token_is_unauthenticated(self, client):
        response = await client.get(f"{API}/notifications")

        assert response.status_code == 401
        assert response.json()["error"] == "unauthenticated"

    async def test_invalid_token_is_unauthenticated(self, client):
        response = await client.get(
            f"{API}/notifications", headers={"Authorization": "Bearer not-a-token"}
        )

        assert response.status_code == 401

    async def test_create_panel_uses_camel_case(self, client, users, auth_headers):
        response = await client.post(
            f"{API}/panels",
            json={"name": "Health panel", "expertIds": [users["expert1"].id]},
            headers=auth_headers(users["admin"].id),
        )

        assert response.status_code == 201
        body = response.json()
        assert body["adminIds"] == [users["admin"].id]
        assert body["expertIds"] == [users["expert1"].id]
        assert body["status"] == "active"


# =============================================================================
# TEST: TOPIC FLOW
# =============================================================================


class TestTopicFlow:
    """End-to-end topic lifecycle over HTTP."""

    async def _create_topic(self, client, panel, users, auth_headers) -> dict:
        response = await client.post(
            f"{API}/topics",
            json={"panelId": panel.id, "title": "Carbon tax", "question": "Revenue neutral?"},
            headers=auth_headers(users["admin"].id),
        )
        assert response.status_code == 201
        return response.json()

    async def test_create_topic_notifies_experts(self, client, session: AsyncSession, panel, users, auth_headers):
        topic = await self._create_topic(client, panel, users, auth_headers)

        assert topic["status"] == "draft"
        assert topic["roundNumber"] == 0

        result = await session.execute(select(Notification).where(Notification.type == NotificationType.TOPIC_ASSIGNED))
        assert {n.user_id for n in result.scalars().all()} == {users["expert1"].id, users["expert2"].id}

    async def test_expert_cannot_create_topic(self, client, panel, users, auth_headers):
        response = await client.post(
            f"{API}/topics",
            json={"panelId": panel.id, "title": "Nope"},
            headers=auth_headers(users["expert1"].id),
        )

        assert response.status_code == 403
        assert response.json()["error"] == "permission_denied"

    async def test_round_and_anonymous_feedback(self, client, session: AsyncSession, panel, users, auth_headers):
        topic = await self._create_topic(client, panel, users, auth_headers)
        admin = auth_headers(users["admin"].id)
        expert1 = auth_headers(users["expert1"].id)
        expert2 = auth_headers(users["expert2"].id)

        opened = await client.post(f"{API}/topics/{topic['id']}/rounds/initial", headers=admin)
        assert opened.status_code == 201
        assert opened.json()["roundNumber"] == 1

        again = await client.post(f"{API}/topics/{topic['id']}/rounds/initial", headers=admin)
        assert again.status_code == 409
        assert again.json()["error"] == "failed_precondition"

        submitted = await client.post(
            f"{API}/topics/{topic['id']}/feedback",
            json={"type": "idea", "content": "Dividend", "expertId": users["expert2"].id},
            headers=expert1,
        )
        assert submitted.status_code == 201
        feedback = submitted.json()
        assert feedback["isMine"] is True
        assert feedback["roundNumber"] == 1
        assert "expertId" not in feedback

        stored = await session.get(Feedback, feedback["id"])
        assert stored.expert_id == users["expert1"].id

        rated = await client.put(
            f"{API}/feedback/{feedback['id']}/agreement", json={"level": 2}, headers=expert2
        )
        assert rated.status_code == 200
        assert rated.json()["myAgreement"] == 2
        assert rated.json()["isMine"] is False

        out_of_range = await client.put(
            f"{API}/feedback/{feedback['id']}/agreement", json={"level": 3}, headers=expert2
        )
        assert out_of_range.status_code == 400
        assert out_of_range.json()["error"] == "invalid_argument"

        listed = await client.get(f"{API}/feedback", params={"topicId": topic["id"]}, headers=expert2)
        assert listed.status_code == 200
        assert [f["id"] for f in listed.json()] == [feedback["id"]]
        assert users["expert1"].id not in listed.text

        closed = await client.post(f"{API}/topics/{topic['id']}/rounds/1/close", headers=admin)
        assert closed.status_code == 200
        body = closed.json()
        assert body["round"]["status"] == "completed"
        assert body["round"]["summary"].startswith("1 feedback items")
        assert body["consensus"]["consensusLevel"] == 100
        assert body["consensus"]["totalFeedback"] == 1

        closed_again = await client.post(f"{API}/topics/{topic['id']}/rounds/1/close", headers=admin)
        assert closed_again.status_code == 409

        late = await client.post(
            f"{API}/topics/{topic['id']}/feedback",
            json={"type": "idea", "content": "Too late"},
            headers=expert1,
        )
        assert late.status_code == 409

    async def test_invalid_feedback_type_is_400(self, client, panel, users, auth_headers):
        topic = await self._create_topic(client, panel, users, auth_headers)
        await client.post(f"{API}/topics/{topic['id']}/rounds/initial", headers=auth_headers(users["admin"].id))

        response = await client.post(
            f"{API}/topics/{topic['id']}/feedback",
            json={"type": "rant", "content": "Hmm"},
            headers=auth_headers(users["expert1"].id),
        )

        assert response.status_code == 400
        assert response.json()["error"] == "invalid_argument"

    async def test_ai_extract_unconfigured_is_unavailable(self, client, users, auth_headers):
        response = await client.post(
            f"{API}/ai/extract-topic",
            json={"rawText": "We should fix onboarding"},
            headers=auth_headers(users["admin"].id),
        )

        assert response.status_code == 503
        assert response.json()["error"] == "unavailable"


# =============================================================================
# TEST: NOTIFICATIONS
# =============================================================================


class TestNotificationsApi:
    """Tests for the notification endpoints."""

    def payload(self, user_id: str, **overrides) -> dict:
        body = {
            "userId": user_id,
            "type": "new_feedback",
            "title": "New feedback",
            "message": "Someone replied",
            "data": {"topicId": "topic-1"},
        }
        body.update(overrides)
        return body

    async def test_create_notification(self, client, users, auth_headers):
        headers = auth_headers(users["admin"].id)

        created = await client.post(f"{API}/notifications", json=self.payload(users["expert1"].id), headers=headers)
        assert created.status_code == 201
        assert created.json()["id"]

        mine = await client.get(f"{API}/notifications", headers=auth_headers(users["expert1"].id))
        assert [n["id"] for n in mine.json()] == [created.json()["id"]]
        assert mine.json()[0]["data"] == {"topicId": "topic-1"}

    async def test_topic_types_require_topic_id(self, client, users, auth_headers):
        response = await client.post(
            f"{API}/notifications",
            json=self.payload(users["expert1"].id, data={"panelId": "p1"}),
            headers=auth_headers(users["admin"].id),
        )

        assert response.status_code == 400
        body = response.json()
        assert body["error"] == "invalid_argument"
        assert body["details"]

    async def test_invitation_requires_panel_id(self, client, users, auth_headers):
        headers = auth_headers(users["admin"].id)

        bad = await client.post(
            f"{API}/notifications",
            json=self.payload(users["expert1"].id, type="invitation", data={"topicId": "t"}),
            headers=headers,
        )
        good = await client.post(
            f"{API}/notifications",
            json=self.payload(users["expert1"].id, type="invitation", data={"panelId": "p1"}),
            headers=headers,
        )

        assert bad.status_code == 400
        assert good.status_code == 201

    async def test_unknown_type_is_rejected(self, client, users, auth_headers):
        response = await client.post(
            f"{API}/notifications",
            json=self.payload(users["expert1"].id, type="party"),
            headers=auth_headers(users["admin"].id),
        )

        assert response.status_code == 400

    async def test_rate_limit(self, client, users, auth_headers):
        headers = auth_headers(users["admin"].id)

        for _ in range(10):
            response = await client.post(f"{API}/notifications", json=self.payload(users["expert1"].id), headers=headers)
            assert response.status_code == 201

        limited = await client.post(f"{API}/notifications", json=self.payload(users["expert1"].id), headers=headers)
        assert limited.status_code == 429
        assert limited.json()["error"] == "rate_limited"

        # The limit is per caller
        other = await client.post(
            f"{API}/notifications",
            json=self.payload(users["admin"].id),
            headers=auth_headers(users["expert2"].id),
        )
        assert other.status_code == 201

    async def test_unread_count_and_read_all(self, client, users, auth_headers):
        sender = auth_headers(users["admin"].id)
        reader = auth_headers(users["expert1"].id)
        for _ in range(2):
            await client.post(f"{API}/notifications", json=self.payload(users["expert1"].id), headers=sender)

        count = await client.get(f"{API}/notifications/unread-count", headers=reader)
        assert count.json() == {"count": 2}

        marked = await client.post(f"{API}/notifications/read-all", headers=reader)
        assert marked.status_code == 200

        count = await client.get(f"{API}/notifications/unread-count", headers=reader)
        assert count.json() == {"count": 0}

    async def test_preferences_round_trip(self, client, users, auth_headers):
        headers = auth_headers(users["expert1"].id)

        defaults = await client.get(f"{API}/notifications/preferences", headers=headers)
        assert defaults.json()["emailFrequency"] == "immediate"

        updated = await client.put(
            f"{API}/notifications/preferences",
            json={"emailFrequency": "daily", "newFeedback": False},
            headers=headers,
        )
        assert updated.status_code == 200
        assert updated.json()["emailFrequency"] == "daily"
        assert updated.json()["newFeedback"] is False
        assert updated.json()["roundClosed"] is True

        unknown = await client.put(
            f"{API}/notifications/preferences", json={"pigeon": True}, headers=headers
        )
        assert unknown.status_code == 400


# =============================================================================
# TEST: INVITATIONS
# =============================================================================


class TestInvitationsApi:
    """Tests for the invitation endpoints."""

    async def _invite(self, client, panel, users, auth_headers, email: str) -> dict:
        response = await client.post(
            f"{API}/panels/{panel.id}/invitations",
            json={"emails": [email]},
            headers=auth_headers(users["admin"].id),
        )
        assert response.status_code == 201
        return response.json()["sent"][0]

    async def test_token_lookup_is_public(self, client, session: AsyncSession, panel, users, auth_headers):
        invitation = await self._invite(client, panel, users, auth_headers, "out@example.com")
        stored = await session.get(PanelInvitation, invitation["id"])

        response = await client.get(f"{API}/invitations/token/{stored.token}")

        assert response.status_code == 200
        assert response.json()["panelName"] == panel.name

    async def test_accept_joins_panel(self, client, panel, users, auth_headers):
        invitation = await self._invite(client, panel, users, auth_headers, "out@example.com")

        accepted = await client.post(
            f"{API}/invitations/{invitation['id']}/accept",
            headers=auth_headers(users["outsider"].id),
        )

        assert accepted.status_code == 200
        assert accepted.json()["status"] == "accepted"

        fetched = await client.get(f"{API}/panels/{panel.id}", headers=auth_headers(users["outsider"].id))
        assert users["outsider"].id in fetched.json()["expertIds"]

    async def test_expired_accept_keeps_expired_mark(self, client, session: AsyncSession, panel, users, auth_headers):
        invitation = await self._invite(client, panel, users, auth_headers, "out@example.com")
        await session.execute(
            update(PanelInvitation)
            .where(PanelInvitation.id == invitation["id"])
            .values(expires_at=utcnow() - timedelta(days=1))
        )
        await session.commit()

        response = await client.post(
            f"{API}/invitations/{invitation['id']}/accept",
            headers=auth_headers(users["outsider"].id),
        )

        assert response.status_code == 409
        session.expire_all()
        stored = await session.get(PanelInvitation, invitation["id"])
        assert stored.status == InvitationStatus.EXPIRED

    async def test_send_email_unconfigured_is_unavailable(self, client, panel, users, auth_headers):
        invitation = await self._invite(client, panel, users, auth_headers, "out@example.com")

        response = await client.post(
            f"{API}/invitations/{invitation['id']}/send-email",
            headers=auth_headers(users["admin"].id),
        )

        assert response.status_code == 503

    @pytest.mark.parametrize("user_key", ["expert1", "outsider"])
    async def test_only_admins_list_invitations(self, client, panel, users, auth_headers, user_key):
        response = await client.get(
            f"{API}/panels/{panel.id}/invitations",
            headers=auth_headers(users[user_key].id),
        )

        assert response.status_code == 403
