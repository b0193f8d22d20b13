"""Seller domain exports."""
from .entity import SellerProfile, PayoutAccountStatus
from .repository import SellerRepository

__all__ = ["SellerProfile", "PayoutAccountStatus", "SellerRepository"]
