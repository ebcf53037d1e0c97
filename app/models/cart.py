from decimal import Decimal

from sqlalchemy import Column, DateTime, ForeignKey, Integer, Numeric, String, Table
from sqlalchemy.orm import relationship

from app.models.database import Base, as_utc, utcnow
from app.services.money import ZERO, line_total

cart_coupons = Table(
    "cart_coupons",
    Base.metadata,
    Column("cart_id", Integer, ForeignKey("carts.id", ondelete="CASCADE"), primary_key=True),
    Column("coupon_id", Integer, ForeignKey("coupons.id", ondelete="CASCADE"), primary_key=True),
    Column("created_at", DateTime(timezone=True), default=utcnow),
)


class Cart(Base):
    __tablename__ = "carts"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=True, index=True)
    session_id = Column(String(64), nullable=True, index=True)
    expires_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    items = relationship(
        "CartItem",
        back_populates="cart",
        cascade="all, delete-orphan",
        order_by="CartItem.id",
        lazy="selectin",
    )
    coupons = relationship("Coupon", secondary=cart_coupons, lazy="selectin", order_by="Coupon.id")

    @property
    def is_empty(self) -> bool:
        return not self.items

    @property
    def subtotal(self) -> Decimal:
        return sum((item.total for item in self.items), ZERO)

    def is_expired(self, now) -> bool:
        return self.expires_at is not None and as_utc(self.expires_at) <= now

    def clear(self) -> None:
        self.items.clear()
        self.coupons.clear()


class CartItem(Base):
    __tablename__ = "cart_items"

    id = Column(Integer, primary_key=True, index=True)
    cart_id = Column(Integer, ForeignKey("carts.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False)
    variant_id = Column(Integer, ForeignKey("product_variants.id"), nullable=True)
    quantity = Column(Integer, nullable=False)
    price_at_addition = Column(Numeric(12, 2), nullable=False)

    cart = relationship("Cart", back_populates="items")
    product = relationship("Product", lazy="joined")
    variant = relationship("ProductVariant", lazy="joined")

    @property
    def current_price(self) -> Decimal:
        if self.variant is not None and self.variant.price is not None:
            return Decimal(self.variant.price)
        return self.product.current_price

    @property
    def total(self) -> Decimal:
        return line_total(self.current_price, self.quantity)

    @property
    def available_stock(self) -> int | None:
        """Units on hand, or None when the product does not track stock."""
        if not self.product.track_stock:
            return None
        if self.variant is not None:
            return self.variant.stock
        return self.product.stock
