"""Promo code domain exports."""
from .entity import PromoCode, PromoCodeUsage
from .repository import PromoCodeRepository

__all__ = ["PromoCode", "PromoCodeUsage", "PromoCodeRepository"]
