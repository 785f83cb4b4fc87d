"""
Rate policy service tests.

Verifies:
- Replacing a policy keeps exactly one active row per (lot, rate-type)
- Replaced policies stay in the table, inactive
- Input validation and lookups
"""

import pytest
from sqlalchemy.exc import IntegrityError

from parktrack.errors import ConflictError, NotFoundError, ValidationError
from parktrack.models import RatePolicy
from parktrack.services import rate_service

from conftest import LOT_ID


class TestNormalizeRateType:
    def test_default_is_normal(self):
        assert rate_service.normalize_rate_type(None) == "NORMAL"
        assert rate_service.normalize_rate_type("") == "NORMAL"

    def test_case_and_whitespace(self):
        assert rate_service.normalize_rate_type(" overnight ") == "OVERNIGHT"

    def test_unknown(self):
        with pytest.raises(ValidationError):
            rate_service.normalize_rate_type("WEEKEND")

    def test_non_string(self):
        with pytest.raises(ValidationError):
            rate_service.normalize_rate_type(5)


class TestSetRatePolicy:
    def test_creates_active_policy(self, db_session, lot):
        policy = rate_service.set_rate_policy(LOT_ID, "vip", 1200, 6000, gold_rate_cents=900)

        assert policy.id is not None
        assert policy.rate_type == "VIP"
        assert policy.is_active is True
        assert policy.gold_rate_cents == 900
        assert rate_service.lookup_rate_policy(LOT_ID, "VIP").id == policy.id

    def test_replace_deactivates_previous(self, db_session, normal_rate):
        old_id = normal_rate.id
        new = rate_service.set_rate_policy(LOT_ID, "NORMAL", 1500, 7000)

        assert new.id != old_id
        old = rate_service.get_rate_policy(old_id)
        assert old.is_active is False
        assert old.deactivated_at is not None
        assert rate_service.lookup_rate_policy(LOT_ID, "NORMAL").id == new.id

        active = db_session.query(RatePolicy).filter_by(lot_id=LOT_ID, rate_type="NORMAL", is_active=True).count()
        assert active == 1

    def test_list_policies(self, db_session, normal_rate):
        rate_service.set_rate_policy(LOT_ID, "NORMAL", 1500, 7000)
        rate_service.set_rate_policy(LOT_ID, "OVERNIGHT", 400, 3000)

        active = rate_service.list_rate_policies(LOT_ID)
        assert sorted(p.rate_type for p in active) == ["NORMAL", "OVERNIGHT"]
        assert len(rate_service.list_rate_policies(LOT_ID, include_inactive=True)) == 3

    def test_base_may_be_zero_when_every_tier_rate_set(self, db_session, lot):
        policy = rate_service.set_rate_policy(
            LOT_ID, "HOURLY", 0, 4000,
            normal_rate_cents=900, gold_rate_cents=700, platinum_rate_cents=500,
        )
        assert policy.base_price_per_hour_cents == 0

    @pytest.mark.parametrize("base,cap,extra", [
        (1000, 0, {}),
        (1000, -1, {}),
        (-5, 5000, {}),
        (0, 5000, {}),
        (0, 5000, {"gold_rate_cents": 700}),
        (10.5, 5000, {}),
        (1000, 5000, {"platinum_rate_cents": -1}),
    ])
    def test_rejects_bad_prices(self, db_session, lot, base, cap, extra):
        with pytest.raises(ValidationError):
            rate_service.set_rate_policy(LOT_ID, "NORMAL", base, cap, **extra)
        assert rate_service.list_rate_policies(LOT_ID) == []

    def test_unknown_lot(self, db_session, lot):
        with pytest.raises(NotFoundError):
            rate_service.set_rate_policy("LOT-Z", "NORMAL", 1000, 5000)

    def test_database_rejects_second_active_policy(self, db_session, normal_rate):
        db_session.add(RatePolicy(
            lot_id=LOT_ID,
            rate_type="NORMAL",
            base_price_per_hour_cents=1,
            max_daily_price_cents=1,
            is_active=True,
        ))
        with pytest.raises(IntegrityError):
            db_session.commit()
        db_session.rollback()

    def test_exhausted_retries_surface_as_conflict(self, db_session, normal_rate, monkeypatch):
        def always_loses(op):
            raise IntegrityError("INSERT INTO rate_policies", {}, Exception("UNIQUE constraint failed"))

        monkeypatch.setattr(rate_service, "run_with_retry", always_loses)
        with pytest.raises(ConflictError):
            rate_service.set_rate_policy(LOT_ID, "NORMAL", 1100, 5000)

        assert rate_service.lookup_rate_policy(LOT_ID, "NORMAL").id == normal_rate.id


class TestLookup:
    def test_missing_policy(self, db_session, lot):
        with pytest.raises(NotFoundError):
            rate_service.lookup_rate_policy(LOT_ID, "NORMAL")

    def test_deactivate(self, db_session, normal_rate):
        policy = rate_service.deactivate_rate_policy(normal_rate.id)
        assert policy.is_active is False
        with pytest.raises(NotFoundError):
            rate_service.lookup_rate_policy(LOT_ID, "NORMAL")

    def test_deactivate_unknown(self, db_session, lot):
        with pytest.raises(NotFoundError):
            rate_service.deactivate_rate_policy(9999)
