"""Settlement domain exports."""
from .entity import Settlement, SettlementStatus, calculate_settlement_date
from .repository import SettlementRepository

__all__ = ["Settlement", "SettlementStatus", "calculate_settlement_date", "SettlementRepository"]
