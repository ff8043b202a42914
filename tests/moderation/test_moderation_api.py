"""API tests for the moderation endpoints."""

import uuid

import pytest

from arcade_chat.modules.moderation.models import UserRole


PREFIX = "/api/v1/moderation"


class TestModerationApi:

    @pytest.mark.asyncio
    async def test_timeout_then_read_state_and_history(self, client, make_profile):
        moderator = await make_profile(UserRole.MODERATOR)
        target = await make_profile(UserRole.USER)

        response = await client.post(
            f"{PREFIX}/users/{target.user_id}/actions",
            json={
                "actor_id": str(moderator.user_id),
                "action": "timeout",
                "reason": "spam",
                "duration_minutes": 60,
            },
        )
        assert response.status_code == 201
        assert response.json()["action"] == "timeout"
        assert response.json()["duration_minutes"] == 60

        state = (await client.get(f"{PREFIX}/users/{target.user_id}/ban-state")).json()
        assert state["is_suspended"] is True
        assert state["effectively_suspended"] is True

        history = (await client.get(f"{PREFIX}/users/{target.user_id}/history")).json()
        assert len(history) == 1

    @pytest.mark.asyncio
    async def test_validation_error_names_the_field(self, client, make_profile):
        moderator = await make_profile(UserRole.MODERATOR)
        target = await make_profile(UserRole.USER)

        response = await client.post(
            f"{PREFIX}/users/{target.user_id}/actions",
            json={"actor_id": str(moderator.user_id), "action": "timeout", "reason": "spam"},
        )

        assert response.status_code == 422
        assert response.json()["detail"]["field"] == "duration_minutes"

    @pytest.mark.asyncio
    async def test_oversized_timeout_is_a_field_error(self, client, make_profile):
        moderator = await make_profile(UserRole.MODERATOR)
        target = await make_profile(UserRole.USER)

        response = await client.post(
            f"{PREFIX}/users/{target.user_id}/actions",
            json={
                "actor_id": str(moderator.user_id),
                "action": "timeout",
                "reason": "spam",
                "duration_minutes": 10**10,
            },
        )
        history = await client.get(f"{PREFIX}/users/{target.user_id}/history")

        assert response.status_code == 422
        assert response.json()["detail"]["field"] == "duration_minutes"
        assert history.json() == []

    @pytest.mark.asyncio
    async def test_non_staff_actor_is_forbidden(self, client, make_profile):
        actor = await make_profile(UserRole.USER)
        target = await make_profile(UserRole.USER)

        response = await client.post(
            f"{PREFIX}/users/{target.user_id}/actions",
            json={"actor_id": str(actor.user_id), "action": "ban", "reason": "grudge"},
        )

        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_unknown_user(self, client, make_profile):
        moderator = await make_profile(UserRole.ADMIN)
        unknown = uuid.uuid4()

        action = await client.post(
            f"{PREFIX}/users/{unknown}/actions",
            json={"actor_id": str(moderator.user_id), "action": "warn", "reason": "hi"},
        )
        state = await client.get(f"{PREFIX}/users/{unknown}/ban-state")

        assert action.status_code == 404
        assert state.status_code == 404

    @pytest.mark.asyncio
    async def test_rebuild_endpoint(self, client, make_profile):
        moderator = await make_profile(UserRole.MODERATOR)
        target = await make_profile(UserRole.USER)
        await client.post(
            f"{PREFIX}/users/{target.user_id}/actions",
            json={"actor_id": str(moderator.user_id), "action": "ban", "reason": "cheating"},
        )

        response = await client.post(f"{PREFIX}/users/{target.user_id}/ban-state/rebuild")

        assert response.status_code == 200
        assert response.json()["is_suspended"] is True
        assert response.json()["ban_reason"] == "cheating"
