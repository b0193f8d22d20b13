"""Infrastructure models package exports."""
from .base import Base
from .catalog import ProductModel, SellerProfileModel
from .pricing import PromoCodeModel, PromoCodeUsageModel, TaxConfigModel, PlatformFeeModel
from .order import OrderModel, OrderItemModel
from .settlement import SettlementModel
from .customer import CartItemModel, LoyaltyPointModel, NotificationModel

__all__ = [
    "Base",
    "ProductModel",
    "SellerProfileModel",
    "PromoCodeModel",
    "PromoCodeUsageModel",
    "TaxConfigModel",
    "PlatformFeeModel",
    "OrderModel",
    "OrderItemModel",
    "SettlementModel",
    "CartItemModel",
    "LoyaltyPointModel",
    "NotificationModel",
]
