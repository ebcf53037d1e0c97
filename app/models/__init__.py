from app.models.database import Base, get_db
from app.models.user import User
from app.models.product import Product, ProductVariant
from app.models.coupon import Coupon, CouponUsage
from app.models.cart import Cart, CartItem
from app.models.order import Address, Order, OrderItem, OrderStatusHistory
from app.models.payment import Payment
from app.models.job import Job

__all__ = [
    "Base",
    "get_db",
    "User",
    "Product",
    "ProductVariant",
    "Coupon",
    "CouponUsage",
    "Cart",
    "CartItem",
    "Address",
    "Order",
    "OrderItem",
    "OrderStatusHistory",
    "Payment",
    "Job",
]
