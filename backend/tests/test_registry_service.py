"""
Registry service tests: payers, vehicles, lots and tier lookups.
"""

import pytest

from parktrack.errors import NotFoundError, ValidationError
from parktrack.services import registry_service


class TestPayers:
    def test_register_and_tier(self, db_session):
        payer = registry_service.register_payer("drv-001", "Ada", tier="platinum")
        assert payer.tier == "PLATINUM"
        assert registry_service.get_payer_tier("drv-001") == "PLATINUM"

    def test_duplicate_payer(self, db_session, normal_payer):
        with pytest.raises(ValidationError):
            registry_service.register_payer("drv-normal", "Again")

    def test_invalid_tier(self, db_session):
        with pytest.raises(ValidationError):
            registry_service.register_payer("drv-001", "Ada", tier="DIAMOND")

    def test_set_tier(self, db_session, normal_payer):
        registry_service.set_payer_tier("drv-normal", "gold")
        assert registry_service.get_payer_tier("drv-normal") == "GOLD"

    def test_unknown_payer_tier(self, db_session):
        with pytest.raises(NotFoundError):
            registry_service.get_payer_tier("drv-ghost")

    def test_list_payers(self, db_session, normal_payer, gold_payer):
        assert {p.id for p in registry_service.list_payers()} == {"drv-normal", "drv-gold"}


class TestVehiclesAndLots:
    def test_plate_is_upper_cased(self, db_session, normal_payer):
        vehicle = registry_service.register_vehicle(" abc123 ", "drv-normal")
        assert vehicle.id == "ABC123"
        assert registry_service.get_vehicle("ABC123").payer_id == "drv-normal"

    def test_vehicle_needs_payer(self, db_session):
        with pytest.raises(NotFoundError):
            registry_service.register_vehicle("ABC123", "drv-ghost")

    def test_duplicate_vehicle(self, db_session, normal_payer):
        with pytest.raises(ValidationError):
            registry_service.register_vehicle("NRM001", "drv-normal")

    def test_lot(self, db_session):
        registry_service.register_lot("LOT-B", "North", capacity=40)
        assert registry_service.require_lot("LOT-B").capacity == 40

    def test_inactive_lot_not_usable(self, db_session, lot):
        lot.is_active = False
        db_session.commit()
        with pytest.raises(NotFoundError):
            registry_service.require_lot("LOT-A")
