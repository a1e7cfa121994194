"""Stream payload routing onto the engine's event operations."""

from __future__ import annotations

import json
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from progression.errors import ErrorKind, NotFoundError
from progression.gamification import events
from progression.gamification.checkin_service import CheckInResult, Coordinates
from progression.gamification.types import TrackingOutcome
from progression.gamification.worker import _parse


@pytest.fixture
def engine() -> MagicMock:
    engine = MagicMock()
    engine.missions.on_review_created = AsyncMock(return_value=TrackingOutcome(completed_missions=[1]))
    engine.missions.on_vote_cast = AsyncMock(return_value=TrackingOutcome())
    engine.missions.on_follow_action = AsyncMock(return_value=TrackingOutcome())
    engine.missions.on_helpful_vote_received = AsyncMock(return_value=TrackingOutcome())
    engine.missions.on_photo_uploaded = AsyncMock(return_value=TrackingOutcome())
    engine.checkins.check_in = AsyncMock(
        return_value=CheckInResult(7, True, 12.0, tracking=TrackingOutcome(awarded_badges=[3]))
    )
    return engine


class TestDispatchEvent:
    @pytest.mark.asyncio
    async def test_review_created(self, engine: MagicMock) -> None:
        outcome = await events.dispatch_event(
            engine,
            events.REVIEW_CREATED,
            {"user_id": "u1", "review_id": "r1", "occurred_at": "2026-10-14T05:00:00+00:00"},
        )
        assert outcome.completed_missions == [1]
        engine.missions.on_review_created.assert_awaited_once_with(
            "u1", "r1", datetime(2026, 10, 14, 5, 0, tzinfo=timezone.utc)
        )

    @pytest.mark.asyncio
    async def test_check_in_parses_coordinates(self, engine: MagicMock) -> None:
        outcome = await events.dispatch_event(
            engine,
            events.CHECK_IN,
            {"user_id": "u1", "establishment_id": "v1", "latitude": "12.935", "longitude": "100.883"},
        )
        assert outcome.awarded_badges == [3]
        engine.checkins.check_in.assert_awaited_once_with("u1", "v1", Coordinates(12.935, 100.883), None)

    @pytest.mark.asyncio
    async def test_follow_uses_both_sides(self, engine: MagicMock) -> None:
        await events.dispatch_event(engine, events.FOLLOW, {"follower_id": "a", "following_id": "b"})
        engine.missions.on_follow_action.assert_awaited_once_with("a", "b", None)

    @pytest.mark.asyncio
    async def test_missing_field_is_validation_error(self, engine: MagicMock) -> None:
        outcome = await events.dispatch_event(engine, events.VOTE_CAST, {"user_id": "u1", "review_id": "r1"})
        assert outcome.error == ErrorKind.VALIDATION
        engine.missions.on_vote_cast.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_bad_coordinates_is_validation_error(self, engine: MagicMock) -> None:
        outcome = await events.dispatch_event(
            engine, events.CHECK_IN, {"user_id": "u1", "establishment_id": "v1", "latitude": "north"}
        )
        assert outcome.error == ErrorKind.VALIDATION

    @pytest.mark.asyncio
    async def test_bad_timestamp_is_validation_error(self, engine: MagicMock) -> None:
        outcome = await events.dispatch_event(
            engine, events.PHOTO_UPLOADED, {"user_id": "u1", "photo_id": "p1", "occurred_at": "yesterday"}
        )
        assert outcome.error == ErrorKind.VALIDATION

    @pytest.mark.asyncio
    async def test_unknown_stream(self, engine: MagicMock) -> None:
        outcome = await events.dispatch_event(engine, "progression:teleported", {"user_id": "u1"})
        assert outcome.error == ErrorKind.VALIDATION

    @pytest.mark.asyncio
    async def test_engine_errors_become_outcomes(self, engine: MagicMock) -> None:
        engine.checkins.check_in.side_effect = NotFoundError("Establishment v9 not found")
        outcome = await events.dispatch_event(
            engine,
            events.CHECK_IN,
            {"user_id": "u1", "establishment_id": "v9", "latitude": 1, "longitude": 2},
        )
        assert outcome.error == ErrorKind.NOT_FOUND


class TestParse:
    def test_json_data_field(self) -> None:
        assert _parse({"data": json.dumps({"user_id": "u1"})}) == {"user_id": "u1"}

    def test_flat_fields(self) -> None:
        assert _parse({"user_id": "u1", "review_id": "r1"}) == {"user_id": "u1", "review_id": "r1"}

    def test_undecodable_data_falls_back_to_raw(self) -> None:
        assert _parse({"data": "{not json"}) == {"data": "{not json"}
