from .registry import Payer, Vehicle, ParkingLot
from .sessions import ParkingSession
from .rates import RatePolicy
from .billing import ChargeRecord, Invoice, PaymentConfirmation, BillingBacklogItem, TierUpgradeRecord
from .audit import BillingEvent, SecurityEvent

__all__ = [
    'Payer', 'Vehicle', 'ParkingLot',
    'ParkingSession',
    'RatePolicy',
    'ChargeRecord', 'Invoice', 'PaymentConfirmation', 'BillingBacklogItem', 'TierUpgradeRecord',
    'BillingEvent', 'SecurityEvent',
]
