"""HTTP API, health endpoints and error mapping."""

from __future__ import annotations

from collections.abc import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from progression.database import get_session
from progression.gamification.seed import REWARD_SEED_DATA, seed_catalog, seed_rewards
from progression.main import create_app

USER = "user-1"


@pytest_asyncio.fixture
async def client(session_factory) -> AsyncGenerator[AsyncClient, None]:  # noqa: ANN001
    app = create_app()

    async def _session():  # noqa: ANN202
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_session] = _session
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


class TestHealth:
    @pytest.mark.asyncio
    async def test_health(self, client: AsyncClient) -> None:
        response = await client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "healthy"}

    @pytest.mark.asyncio
    async def test_ready_without_redis_is_degraded(self, client: AsyncClient) -> None:
        response = await client.get("/ready")
        data = response.json()
        assert data["checks"]["database"] == "ok"
        assert data["checks"]["catalog"] == "empty"
        assert data["checks"]["redis"].startswith("error")
        assert data["status"] == "degraded"

    @pytest.mark.asyncio
    async def test_ready_reports_seeded_catalog(self, client: AsyncClient, db_session) -> None:
        await seed_catalog(db_session)

        data = (await client.get("/ready")).json()

        assert data["checks"]["catalog"] == "ok"

    @pytest.mark.asyncio
    async def test_version(self, client: AsyncClient) -> None:
        data = (await client.get("/version")).json()
        assert data["service"] == "progression-engine"
        assert "version" in data

    @pytest.mark.asyncio
    async def test_request_id_echoed(self, client: AsyncClient) -> None:
        response = await client.get("/health", headers={"X-Request-Id": "abc-123"})
        assert response.headers["x-request-id"] == "abc-123"

    @pytest.mark.asyncio
    async def test_request_id_generated(self, client: AsyncClient) -> None:
        response = await client.get("/version")
        assert len(response.headers["x-request-id"]) == 36


class TestPoints:
    @pytest.mark.asyncio
    async def test_unknown_user_reads_as_zero(self, client: AsyncClient) -> None:
        response = await client.get(f"/api/v1/progression/users/{USER}/points")
        assert response.status_code == 200
        data = response.json()
        assert data["total_xp"] == 0
        assert data["level"] == 1
        assert data["xp_to_next_level"] == 100

    @pytest.mark.asyncio
    async def test_points_and_history(self, client: AsyncClient, engine) -> None:
        await engine.xp.award(USER, 90, "admin_adjustment", description="Welcome bonus")
        await engine.xp.award(USER, 20, "check_in")

        points = (await client.get(f"/api/v1/progression/users/{USER}/points")).json()
        assert points["total_xp"] == 110
        assert points["level"] == 2
        assert points["xp_into_level"] == 10

        history = (await client.get(f"/api/v1/progression/users/{USER}/xp/history?per_page=1")).json()
        assert history["total"] == 2
        assert [e["amount"] for e in history["entries"]] == [20]

        page2 = (await client.get(f"/api/v1/progression/users/{USER}/xp/history?per_page=1&page=2")).json()
        assert page2["entries"][0]["description"] == "Welcome bonus"


class TestCatalog:
    @pytest.mark.asyncio
    async def test_hidden_badges_are_not_listed(self, client: AsyncClient, factory) -> None:
        await factory.badge(slug="visible", name="Visible")
        await factory.badge(slug="secret", name="Secret", is_hidden=True)

        data = (await client.get("/api/v1/progression/badges")).json()

        assert [b["slug"] for b in data["badges"]] == ["visible"]

    @pytest.mark.asyncio
    async def test_user_badges(self, client: AsyncClient, engine, factory, db_session) -> None:
        badge = await factory.badge(name="First Review")
        await engine.badges.grant(USER, badge.id)
        await db_session.commit()

        data = (await client.get(f"/api/v1/progression/users/{USER}/badges")).json()

        assert data["total_earned"] == 1
        assert data["earned"][0]["badge"]["name"] == "First Review"

    @pytest.mark.asyncio
    async def test_user_missions(self, client: AsyncClient, factory) -> None:
        mission = await factory.mission(type="narrative", requirement_type="write_reviews", target=5)

        data = (await client.get(f"/api/v1/progression/users/{USER}/missions")).json()

        assert len(data["missions"]) == 1
        entry = data["missions"][0]
        assert entry["id"] == mission.id
        assert entry["period_key"] == "all"
        assert entry["progress"] == 0
        assert entry["completed"] is False
        assert entry["locked"] is False


class TestLeaderboards:
    @pytest.mark.asyncio
    async def test_global(self, client: AsyncClient, engine) -> None:
        await engine.xp.award("alice", 300, "admin_adjustment")
        await engine.xp.award("bob", 120, "admin_adjustment")

        data = (await client.get("/api/v1/progression/leaderboards/global")).json()

        assert data["board"] == "global"
        assert [(e["rank"], e["user_id"]) for e in data["entries"]] == [(1, "alice"), (2, "bob")]

    @pytest.mark.asyncio
    async def test_weekly(self, client: AsyncClient, engine) -> None:
        await engine.xp.award("alice", 40, "admin_adjustment")
        await engine.xp.award("bob", 70, "admin_adjustment")

        data = (await client.get("/api/v1/progression/leaderboards/weekly?limit=1")).json()

        assert data["board"] == "weekly"
        assert [(e["user_id"], e["score"]) for e in data["entries"]] == [("bob", 70)]

    @pytest.mark.asyncio
    async def test_bad_limit_is_400(self, client: AsyncClient) -> None:
        response = await client.get("/api/v1/progression/leaderboards/global?limit=500")
        assert response.status_code == 400
        assert "between 1 and" in response.json()["detail"]

    @pytest.mark.asyncio
    async def test_unknown_category_is_400(self, client: AsyncClient) -> None:
        response = await client.get("/api/v1/progression/leaderboards/categories/karaoke")
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_non_integer_limit_is_validation_error(self, client: AsyncClient) -> None:
        response = await client.get("/api/v1/progression/leaderboards/monthly?limit=lots")
        assert response.status_code == 400
        data = response.json()
        assert data["kind"] == "validation"
        assert data["errors"][0]["loc"] == ["query", "limit"]


class TestRewards:
    @pytest.mark.asyncio
    async def test_catalog_is_seeded_in_sort_order(self, client: AsyncClient, db_session) -> None:
        await seed_rewards(db_session)

        data = (await client.get("/api/v1/progression/rewards")).json()

        assert [r["name"] for r in data["rewards"]] == [r["name"] for r in REWARD_SEED_DATA]

    @pytest.mark.asyncio
    async def test_user_rewards_after_reaching_level_two(self, client: AsyncClient, engine, db_session) -> None:
        await seed_rewards(db_session)
        await engine.xp.award(USER, 110, "admin_adjustment")

        data = (await client.get(f"/api/v1/progression/users/{USER}/rewards")).json()

        assert data["current_level"] == 2
        assert data["total_xp"] == 110
        unlocked = [r["name"] for r in data["rewards"] if r["is_unlocked"]]
        assert unlocked == ["photo_upload", "create_review"]
        assert all(r["claimed"] for r in data["rewards"] if r["is_unlocked"])

    @pytest.mark.asyncio
    async def test_claim(self, client: AsyncClient, engine, factory) -> None:
        await engine.xp.award(USER, 250, "admin_adjustment")
        reward = await factory.unlock(unlock_value=3, name="late_addition")
        url = f"/api/v1/progression/users/{USER}/rewards/{reward.id}/claim"

        first = await client.post(url)
        second = await client.post(url)

        assert first.status_code == 200
        assert first.json()["reward"]["name"] == "late_addition"
        assert second.status_code == 409
        assert second.json()["kind"] == "conflict"

    @pytest.mark.asyncio
    async def test_claim_errors(self, client: AsyncClient, factory) -> None:
        reward = await factory.unlock(unlock_value=5)

        not_eligible = await client.post(f"/api/v1/progression/users/{USER}/rewards/{reward.id}/claim")
        missing = await client.post(f"/api/v1/progression/users/{USER}/rewards/9999/claim")

        assert not_eligible.status_code == 400
        assert not_eligible.json()["kind"] == "validation"
        assert missing.status_code == 404
        assert missing.json()["kind"] == "not_found"


class TestErrors:
    @pytest.mark.asyncio
    async def test_engine_validation_error_carries_kind(self, client: AsyncClient) -> None:
        response = await client.get("/api/v1/progression/leaderboards/global?limit=0")
        assert response.json()["kind"] == "validation"

    @pytest.mark.asyncio
    async def test_unknown_route_is_not_found(self, client: AsyncClient) -> None:
        response = await client.get("/api/v1/progression/nowhere")
        assert response.status_code == 404
        assert response.json()["kind"] == "not_found"

    @pytest.mark.asyncio
    async def test_bad_page_is_400(self, client: AsyncClient) -> None:
        response = await client.get("/api/v1/progression/users/u1/xp/history?page=0")
        assert response.status_code == 400
