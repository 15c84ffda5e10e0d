from .models import OrderStatus, OrderItem, Order, ProductRewardAttributes
from .service import OrderRewardEngine

__all__ = [
    "OrderStatus",
    "OrderItem",
    "Order",
    "ProductRewardAttributes",
    "OrderRewardEngine",
]
