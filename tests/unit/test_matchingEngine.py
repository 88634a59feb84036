"""
Unit tests for the technician matching engine -- baitech/services/matchingEngine.py

Covers the search pipeline (hard filters, scoring, boosts, persistence),
the suggestion lifecycle (view, reject, feedback, lazy expiry) and the
customer's matching preferences.
"""

from __future__ import annotations

import uuid
from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from sqlalchemy.exc import SQLAlchemyError

from baitech.algorithms.matchScoring import DEFAULT_MATCH_WEIGHTS
from baitech.models.matching import MatchingPreference, MatchStatus
from baitech.models.taxonomy import ServiceCategory, UrgencyLevel
from baitech.models.user import SubscriptionPlan, SubscriptionStatus
from baitech.services.geoService import GeoPoint
from baitech.services.matchingEngine import (
    ALGORITHM_VERSION,
    InvalidMatchTransitionError,
    MatchExpiredError,
    MatchingNotFoundError,
    MatchNotAuthorizedError,
    MatchRequest,
    TechnicianLookupError,
    TechnicianNotFoundError,
    _Subscription,
    _get_subscription,
    _preferred_local_time,
    add_match_feedback,
    block_technician,
    find_technicians,
    get_matching,
    get_or_create_preferences,
    load_customer_matching,
    reject_match,
    unblock_technician,
    update_preferences,
)
from baitech.services.pricingErrors import ConfigNotFoundError

from tests.conftest import WEEKDAY_NOON, make_technician, scalar_result

NAIROBI_CBD = GeoPoint(-1.2864, 36.8172)
FREE = _Subscription(SubscriptionPlan.FREE, SubscriptionStatus.ACTIVE, None)
PRO = _Subscription(SubscriptionPlan.PRO, SubscriptionStatus.ACTIVE, None)

ENGINE = "baitech.services.matchingEngine"


def _request(**overrides) -> MatchRequest:
    values = dict(service_category=ServiceCategory.PLUMBING, location=NAIROBI_CBD)
    values.update(overrides)
    return MatchRequest(**values)


def _subscriptions(mapping, default=FREE):
    """side_effect for ``_get_subscription`` keyed by technician id."""

    async def lookup(db, technician_id):
        value = mapping.get(technician_id, default)
        if isinstance(value, Exception):
            raise value
        return value

    return lookup


# ---------------------------------------------------------------------------
# find_technicians
# ---------------------------------------------------------------------------


class TestFindTechnicians:
    @pytest.mark.asyncio
    @patch(f"{ENGINE}._get_subscription", new_callable=AsyncMock)
    @patch(f"{ENGINE}._query_technicians", new_callable=AsyncMock)
    @patch(f"{ENGINE}.get_or_create_preferences", new_callable=AsyncMock)
    async def test_persists_ranked_suggestions(
        self, mock_prefs, mock_query, mock_sub, mock_db, sample_customer, sample_preferences
    ):
        regular = make_technician(first_name="Regular")
        pro = make_technician(first_name="Pro", latitude=-1.3200, longitude=36.8500,
                              rating_average=4.0)
        mock_prefs.return_value = sample_preferences
        mock_query.return_value = [regular, pro]
        mock_sub.side_effect = _subscriptions({pro.id: PRO})

        result = await find_technicians(
            mock_db, sample_customer.id, _request(urgency=UrgencyLevel.HIGH), now=WEEKDAY_NOON
        )

        assert [m.technician for m in result.matches] == [pro, regular]
        assert [m.matching.rank for m in result.matches] == [1, 2]
        assert result.total_candidates == 2
        assert result.total_scored == 2
        assert result.skipped == 0

        top = result.matches[0].matching
        assert top.status == MatchStatus.SUGGESTED
        assert top.session_id == result.session_id
        assert top.customer_id == sample_customer.id
        assert top.urgency == UrgencyLevel.HIGH
        assert top.expires_at == WEEKDAY_NOON + timedelta(hours=72)
        assert top.scores["pro_boost"] == 1.5
        assert top.scores["overall"] == pytest.approx(top.scores["base_score"] * 1.5, abs=0.01)
        assert top.algorithm["version"] == ALGORITHM_VERSION
        assert top.algorithm["boost_applied"] is True
        assert top.match_reasons[0]["reason"] == "Pro Verified Technician"

        assert mock_db.add.call_count == 2
        assert sample_preferences.total_matches == 2
        assert sample_preferences.last_match_request == WEEKDAY_NOON
        mock_db.flush.assert_awaited()

    @pytest.mark.asyncio
    @patch(f"{ENGINE}._get_subscription", new_callable=AsyncMock)
    @patch(f"{ENGINE}._query_technicians", new_callable=AsyncMock)
    @patch(f"{ENGINE}.get_or_create_preferences", new_callable=AsyncMock)
    async def test_hard_filters(
        self, mock_prefs, mock_query, mock_sub, mock_db, sample_customer, sample_preferences
    ):
        eligible = make_technician(first_name="Eligible")
        unrated = make_technician(first_name="Unrated", rating_average=0.0, rating_count=0)
        low_rated = make_technician(first_name="Low", rating_average=3.0, rating_count=10)
        electrician = make_technician(first_name="Sparky", category=ServiceCategory.ELECTRICAL)
        blocked = make_technician(first_name="Blocked")
        far_away = make_technician(first_name="Mombasa", latitude=-4.0435, longitude=39.6682)
        themselves = make_technician(first_name="Self")
        themselves.id = sample_customer.id

        sample_preferences.min_rating = 4.0
        sample_preferences.blocked_ids = {str(blocked.id)}
        mock_prefs.return_value = sample_preferences
        mock_query.return_value = [
            eligible, unrated, low_rated, electrician, blocked, far_away, themselves,
        ]
        mock_sub.side_effect = _subscriptions({})

        result = await find_technicians(
            mock_db, sample_customer.id, _request(), now=WEEKDAY_NOON
        )

        names = {m.technician.first_name for m in result.matches}
        assert names == {"Eligible", "Unrated"}
        assert result.total_candidates == 7
        assert result.min_rating == 4.0

    @pytest.mark.asyncio
    @patch(f"{ENGINE}._get_subscription", new_callable=AsyncMock)
    @patch(f"{ENGINE}._query_technicians", new_callable=AsyncMock)
    @patch(f"{ENGINE}.get_or_create_preferences", new_callable=AsyncMock)
    async def test_failed_lookup_skips_candidate(
        self, mock_prefs, mock_query, mock_sub, mock_db, sample_customer, sample_preferences
    ):
        ok = make_technician(first_name="Ok")
        vanished = make_technician(first_name="Vanished")
        mock_prefs.return_value = sample_preferences
        mock_query.return_value = [ok, vanished]
        mock_sub.side_effect = _subscriptions({vanished.id: TechnicianLookupError(vanished.id)})

        result = await find_technicians(
            mock_db, sample_customer.id, _request(), now=WEEKDAY_NOON
        )

        assert [m.technician for m in result.matches] == [ok]
        assert result.skipped == 1
        assert result.total_scored == 1

    @pytest.mark.asyncio
    @patch(f"{ENGINE}._get_subscription", new_callable=AsyncMock)
    @patch(f"{ENGINE}._query_technicians", new_callable=AsyncMock)
    @patch(f"{ENGINE}.get_or_create_preferences", new_callable=AsyncMock)
    async def test_expired_subscription_is_not_boosted(
        self, mock_prefs, mock_query, mock_sub, mock_db, sample_customer, sample_preferences
    ):
        lapsed = make_technician(first_name="Lapsed")
        mock_prefs.return_value = sample_preferences
        mock_query.return_value = [lapsed]
        mock_sub.side_effect = _subscriptions(
            {
                lapsed.id: _Subscription(
                    SubscriptionPlan.PREMIUM,
                    SubscriptionStatus.ACTIVE,
                    WEEKDAY_NOON - timedelta(days=1),
                )
            }
        )

        result = await find_technicians(
            mock_db, sample_customer.id, _request(), now=WEEKDAY_NOON
        )

        scored = result.matches[0].scored
        assert scored.boost_multiplier == 1.0
        assert scored.overall == scored.base_score

    @pytest.mark.asyncio
    @patch(f"{ENGINE}._get_subscription", new_callable=AsyncMock)
    @patch(f"{ENGINE}._query_technicians", new_callable=AsyncMock)
    @patch(f"{ENGINE}.get_or_create_preferences", new_callable=AsyncMock)
    async def test_max_results(
        self, mock_prefs, mock_query, mock_sub, mock_db, sample_customer, sample_preferences
    ):
        mock_prefs.return_value = sample_preferences
        mock_query.return_value = [make_technician() for _ in range(5)]
        mock_sub.side_effect = _subscriptions({})

        result = await find_technicians(
            mock_db, sample_customer.id, _request(), now=WEEKDAY_NOON, max_results=3
        )

        assert len(result.matches) == 3
        assert result.total_scored == 5
        assert sample_preferences.total_matches == 3

    @pytest.mark.asyncio
    @patch(f"{ENGINE}._get_subscription", new_callable=AsyncMock)
    @patch(f"{ENGINE}._query_technicians", new_callable=AsyncMock)
    @patch(f"{ENGINE}.get_or_create_preferences", new_callable=AsyncMock)
    async def test_invalid_custom_weights_fall_back(
        self, mock_prefs, mock_query, mock_sub, mock_db, sample_customer, sample_preferences
    ):
        sample_preferences.custom_weights = {"charisma": 1.0}
        mock_prefs.return_value = sample_preferences
        mock_query.return_value = [make_technician()]
        mock_sub.side_effect = _subscriptions({})

        result = await find_technicians(
            mock_db, sample_customer.id, _request(), now=WEEKDAY_NOON
        )

        assert result.matches[0].matching.algorithm["weights"] == DEFAULT_MATCH_WEIGHTS.as_dict()

    @pytest.mark.asyncio
    @patch(f"{ENGINE}._get_subscription", new_callable=AsyncMock)
    @patch(f"{ENGINE}._query_technicians", new_callable=AsyncMock)
    @patch(f"{ENGINE}.get_or_create_preferences", new_callable=AsyncMock)
    async def test_no_candidates(
        self, mock_prefs, mock_query, mock_sub, mock_db, sample_customer, sample_preferences
    ):
        mock_prefs.return_value = sample_preferences
        mock_query.return_value = []

        result = await find_technicians(
            mock_db, sample_customer.id, _request(), now=WEEKDAY_NOON
        )

        assert result.matches == []
        mock_db.add.assert_not_called()
        mock_sub.assert_not_awaited()

    @pytest.mark.asyncio
    @patch(f"{ENGINE}._get_subscription", new_callable=AsyncMock)
    @patch(f"{ENGINE}._query_technicians", new_callable=AsyncMock)
    @patch(f"{ENGINE}.get_or_create_preferences", new_callable=AsyncMock)
    async def test_database_error_skips_candidate(
        self, mock_prefs, mock_query, mock_sub, mock_db, sample_customer, sample_preferences
    ):
        ok = make_technician(first_name="Ok")
        broken = make_technician(first_name="Broken")
        mock_prefs.return_value = sample_preferences
        mock_query.return_value = [broken, ok]
        mock_sub.side_effect = _subscriptions({broken.id: SQLAlchemyError("connection reset")})

        result = await find_technicians(
            mock_db, sample_customer.id, _request(), now=WEEKDAY_NOON
        )

        assert [m.technician for m in result.matches] == [ok]
        assert result.skipped == 1
        mock_db.flush.assert_awaited()


class TestPreferredLocalTime:
    @pytest.mark.asyncio
    @patch(f"{ENGINE}.get_active_config", new_callable=AsyncMock)
    async def test_follows_active_ruleset_zone(self, mock_config, mock_db, default_rules):
        mock_config.return_value = MagicMock(
            rules=default_rules.with_changes({"timezone": "Africa/Lagos"})
        )

        local = await _preferred_local_time(
            mock_db, _request(preferred_date=WEEKDAY_NOON), WEEKDAY_NOON
        )

        assert local.utcoffset() == timedelta(hours=1)
        assert local == WEEKDAY_NOON

    @pytest.mark.asyncio
    @patch(f"{ENGINE}.get_active_config", new_callable=AsyncMock)
    async def test_default_zone_without_config(self, mock_config, mock_db):
        mock_config.side_effect = ConfigNotFoundError()

        local = await _preferred_local_time(
            mock_db, _request(urgency=UrgencyLevel.EMERGENCY), WEEKDAY_NOON
        )

        assert local.utcoffset() == timedelta(hours=3)

    @pytest.mark.asyncio
    @patch(f"{ENGINE}.get_active_config", new_callable=AsyncMock)
    async def test_no_preferred_time(self, mock_config, mock_db):
        assert await _preferred_local_time(mock_db, _request(), WEEKDAY_NOON) is None
        mock_config.assert_not_awaited()


class TestSubscriptionLookup:
    @pytest.fixture
    def savepoint_db(self, mock_db):
        mock_db.begin_nested = MagicMock()
        return mock_db

    @pytest.mark.asyncio
    async def test_reads_inside_a_savepoint(self, savepoint_db):
        result = MagicMock()
        result.one_or_none.return_value = (
            SubscriptionPlan.PRO, SubscriptionStatus.ACTIVE, None,
        )
        savepoint_db.execute.return_value = result

        subscription = await _get_subscription(savepoint_db, uuid.uuid4())

        assert subscription == PRO
        savepoint_db.begin_nested.assert_called_once_with()
        savepoint_db.begin_nested.return_value.__aenter__.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_failed_read_unwinds_the_savepoint(self, savepoint_db):
        savepoint_db.execute.side_effect = SQLAlchemyError("current transaction is aborted")

        with pytest.raises(SQLAlchemyError):
            await _get_subscription(savepoint_db, uuid.uuid4())

        exit_args = savepoint_db.begin_nested.return_value.__aexit__.await_args.args
        assert exit_args[0] is SQLAlchemyError

    @pytest.mark.asyncio
    async def test_missing_technician(self, savepoint_db):
        result = MagicMock()
        result.one_or_none.return_value = None
        savepoint_db.execute.return_value = result

        with pytest.raises(TechnicianLookupError):
            await _get_subscription(savepoint_db, uuid.uuid4())


# ---------------------------------------------------------------------------
# Suggestion lifecycle
# ---------------------------------------------------------------------------


class TestGetMatching:
    @pytest.mark.asyncio
    @patch(f"{ENGINE}.get_matching_by_id", new_callable=AsyncMock)
    async def test_customer_view_marks_viewed(self, mock_get, mock_db, sample_matching):
        mock_get.return_value = sample_matching

        matching = await get_matching(
            mock_db, sample_matching.id, sample_matching.customer_id, now=WEEKDAY_NOON
        )

        assert matching.status == MatchStatus.VIEWED
        assert matching.viewed_at == WEEKDAY_NOON
        mock_db.flush.assert_awaited_once()

    @pytest.mark.asyncio
    @patch(f"{ENGINE}.get_matching_by_id", new_callable=AsyncMock)
    async def test_technician_view_changes_nothing(self, mock_get, mock_db, sample_matching):
        mock_get.return_value = sample_matching

        matching = await get_matching(
            mock_db, sample_matching.id, sample_matching.technician_id, now=WEEKDAY_NOON
        )

        assert matching.status == MatchStatus.SUGGESTED
        mock_db.flush.assert_not_awaited()

    @pytest.mark.asyncio
    @patch(f"{ENGINE}.get_matching_by_id", new_callable=AsyncMock)
    async def test_stranger_is_rejected(self, mock_get, mock_db, sample_matching):
        mock_get.return_value = sample_matching

        with pytest.raises(MatchNotAuthorizedError):
            await get_matching(mock_db, sample_matching.id, uuid.uuid4(), now=WEEKDAY_NOON)

    @pytest.mark.asyncio
    @patch(f"{ENGINE}.get_matching_by_id", new_callable=AsyncMock)
    async def test_stale_match_expires_on_read(self, mock_get, mock_db, sample_matching):
        mock_get.return_value = sample_matching

        matching = await get_matching(
            mock_db,
            sample_matching.id,
            sample_matching.customer_id,
            now=sample_matching.expires_at + timedelta(minutes=1),
        )

        assert matching.status == MatchStatus.EXPIRED
        assert matching.viewed_at is None

    @pytest.mark.asyncio
    async def test_unknown_id(self, mock_db):
        mock_db.execute.return_value = scalar_result(None)

        with pytest.raises(MatchingNotFoundError):
            await get_matching(mock_db, uuid.uuid4(), uuid.uuid4(), now=WEEKDAY_NOON)


class TestRejectMatch:
    @pytest.mark.asyncio
    @patch(f"{ENGINE}.get_matching_by_id", new_callable=AsyncMock)
    async def test_reject_records_reason(self, mock_get, mock_db, sample_matching):
        sample_matching.status = MatchStatus.VIEWED
        mock_get.return_value = sample_matching

        matching = await reject_match(
            mock_db, sample_matching.id, sample_matching.customer_id, "Too far",
            now=WEEKDAY_NOON,
        )

        assert matching.status == MatchStatus.REJECTED
        assert matching.rejection_reason == "Too far"
        assert matching.responded_at == WEEKDAY_NOON

    @pytest.mark.asyncio
    @patch(f"{ENGINE}.get_matching_by_id", new_callable=AsyncMock)
    async def test_only_owner_may_reject(self, mock_get, mock_db, sample_matching):
        mock_get.return_value = sample_matching

        with pytest.raises(MatchNotAuthorizedError):
            await reject_match(
                mock_db, sample_matching.id, sample_matching.technician_id, now=WEEKDAY_NOON
            )
        assert sample_matching.status == MatchStatus.SUGGESTED

    @pytest.mark.asyncio
    @patch(f"{ENGINE}.get_matching_by_id", new_callable=AsyncMock)
    async def test_terminal_match_cannot_be_rejected(self, mock_get, mock_db, sample_matching):
        sample_matching.status = MatchStatus.ACCEPTED
        mock_get.return_value = sample_matching

        with pytest.raises(InvalidMatchTransitionError, match="already accepted"):
            await reject_match(
                mock_db, sample_matching.id, sample_matching.customer_id, now=WEEKDAY_NOON
            )

    @pytest.mark.asyncio
    @patch(f"{ENGINE}.get_matching_by_id", new_callable=AsyncMock)
    async def test_stale_match_expires_instead(self, mock_get, mock_db, sample_matching):
        mock_get.return_value = sample_matching

        with pytest.raises(MatchExpiredError):
            await reject_match(
                mock_db,
                sample_matching.id,
                sample_matching.customer_id,
                now=sample_matching.expires_at,
            )
        assert sample_matching.status == MatchStatus.EXPIRED
        mock_db.flush.assert_awaited_once()


class TestMatchFeedback:
    @pytest.mark.asyncio
    @patch(f"{ENGINE}.get_matching_by_id", new_callable=AsyncMock)
    async def test_feedback_stored_without_reranking(self, mock_get, mock_db, sample_matching):
        sample_matching.rank = 2
        mock_get.return_value = sample_matching

        matching = await add_match_feedback(
            mock_db,
            sample_matching.id,
            sample_matching.customer_id,
            {"rating": 4, "was_helpful": True, "comment": "Quick reply"},
            now=WEEKDAY_NOON,
        )

        assert matching.feedback == {
            "rating": 4,
            "was_helpful": True,
            "comment": "Quick reply",
            "submitted_at": WEEKDAY_NOON.isoformat(),
        }
        assert matching.rank == 2
        assert matching.status == MatchStatus.SUGGESTED

    @pytest.mark.asyncio
    @patch(f"{ENGINE}.get_matching_by_id", new_callable=AsyncMock)
    async def test_other_customer_cannot_load(self, mock_get, mock_db, sample_matching):
        mock_get.return_value = sample_matching

        with pytest.raises(MatchNotAuthorizedError):
            await load_customer_matching(mock_db, sample_matching.id, uuid.uuid4())


# ---------------------------------------------------------------------------
# Preferences
# ---------------------------------------------------------------------------


class TestPreferences:
    @pytest.mark.asyncio
    async def test_existing_preferences_returned(self, mock_db, sample_preferences):
        mock_db.execute.return_value = scalar_result(sample_preferences)

        prefs = await get_or_create_preferences(mock_db, sample_preferences.user_id)

        assert prefs is sample_preferences
        mock_db.add.assert_not_called()

    @pytest.mark.asyncio
    async def test_defaults_created(self, mock_db):
        mock_db.execute.return_value = scalar_result(None)
        user_id = uuid.uuid4()

        prefs = await get_or_create_preferences(mock_db, user_id)

        assert isinstance(prefs, MatchingPreference)
        assert prefs.user_id == user_id
        assert prefs.max_distance_km == 50
        assert prefs.blocked_technicians == []
        mock_db.add.assert_called_once_with(prefs)

    @pytest.mark.asyncio
    @patch(f"{ENGINE}.get_or_create_preferences", new_callable=AsyncMock)
    async def test_custom_weights_normalised(self, mock_prefs, mock_db, sample_preferences):
        mock_prefs.return_value = sample_preferences

        prefs = await update_preferences(
            mock_db,
            sample_preferences.user_id,
            max_distance_km=20,
            min_rating=4.2,
            custom_weights={"location_proximity": 2, "rating": 2},
        )

        assert prefs.max_distance_km == 20
        assert prefs.min_rating == 4.2
        assert prefs.custom_weights["location_proximity"] == pytest.approx(0.5)
        assert prefs.custom_weights["rating"] == pytest.approx(0.5)
        assert prefs.custom_weights["skill_match"] == 0.0

    @pytest.mark.asyncio
    @patch(f"{ENGINE}.get_or_create_preferences", new_callable=AsyncMock)
    async def test_clear_custom_weights(self, mock_prefs, mock_db, sample_preferences):
        sample_preferences.custom_weights = {"rating": 1.0}
        mock_prefs.return_value = sample_preferences

        prefs = await update_preferences(
            mock_db, sample_preferences.user_id, clear_custom_weights=True
        )

        assert prefs.custom_weights is None

    @pytest.mark.asyncio
    @patch(f"{ENGINE}.get_or_create_preferences", new_callable=AsyncMock)
    async def test_invalid_weights_rejected(self, mock_prefs, mock_db, sample_preferences):
        mock_prefs.return_value = sample_preferences

        with pytest.raises(ValueError):
            await update_preferences(
                mock_db, sample_preferences.user_id, custom_weights={"rating": 0}
            )
        assert sample_preferences.custom_weights is None


class TestBlockList:
    @pytest.mark.asyncio
    @patch(f"{ENGINE}.get_or_create_preferences", new_callable=AsyncMock)
    @patch(f"{ENGINE}._get_technician", new_callable=AsyncMock)
    async def test_block_appends_entry(
        self, mock_tech, mock_prefs, mock_db, sample_preferences, sample_technician
    ):
        original = sample_preferences.blocked_technicians
        mock_tech.return_value = sample_technician
        mock_prefs.return_value = sample_preferences

        prefs = await block_technician(
            mock_db, sample_preferences.user_id, sample_technician.id, "No-show",
            now=WEEKDAY_NOON,
        )

        assert prefs.blocked_technicians == [
            {
                "technician_id": str(sample_technician.id),
                "reason": "No-show",
                "blocked_at": WEEKDAY_NOON.isoformat(),
            }
        ]
        assert prefs.blocked_technicians is not original

    @pytest.mark.asyncio
    @patch(f"{ENGINE}.get_or_create_preferences", new_callable=AsyncMock)
    @patch(f"{ENGINE}._get_technician", new_callable=AsyncMock)
    async def test_block_is_idempotent(
        self, mock_tech, mock_prefs, mock_db, sample_preferences, sample_technician
    ):
        entry = {"technician_id": str(sample_technician.id), "reason": None, "blocked_at": "x"}
        sample_preferences.blocked_technicians = [entry]
        sample_preferences.blocked_ids = {str(sample_technician.id)}
        mock_tech.return_value = sample_technician
        mock_prefs.return_value = sample_preferences

        prefs = await block_technician(mock_db, sample_preferences.user_id, sample_technician.id)

        assert prefs.blocked_technicians == [entry]
        mock_db.flush.assert_not_awaited()

    @pytest.mark.asyncio
    @patch(f"{ENGINE}._get_technician", new_callable=AsyncMock)
    async def test_block_unknown_technician(self, mock_tech, mock_db):
        missing = uuid.uuid4()
        mock_tech.side_effect = TechnicianNotFoundError(missing)

        with pytest.raises(TechnicianNotFoundError):
            await block_technician(mock_db, uuid.uuid4(), missing)

    @pytest.mark.asyncio
    @patch(f"{ENGINE}.get_or_create_preferences", new_callable=AsyncMock)
    async def test_unblock_removes_entry(self, mock_prefs, mock_db, sample_preferences):
        keep, drop = uuid.uuid4(), uuid.uuid4()
        sample_preferences.blocked_technicians = [
            {"technician_id": str(keep)},
            {"technician_id": str(drop)},
        ]
        mock_prefs.return_value = sample_preferences

        prefs = await unblock_technician(mock_db, sample_preferences.user_id, drop)

        assert prefs.blocked_technicians == [{"technician_id": str(keep)}]
        mock_db.flush.assert_awaited_once()
