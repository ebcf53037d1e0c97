from decimal import Decimal

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
)

from app.models.database import Base, as_utc, utcnow
from app.models.enums import CouponType
from app.services.money import percent_of, to_money


class Coupon(Base):
    __tablename__ = "coupons"

    id = Column(Integer, primary_key=True, index=True)
    code = Column(String(64), unique=True, index=True, nullable=False)
    type = Column(String(16), nullable=False, default=CouponType.PERCENTAGE.value)  # percentage | fixed
    value = Column(Numeric(12, 2), nullable=False)
    minimum_amount = Column(Numeric(12, 2), nullable=True)
    max_uses = Column(Integer, nullable=True)
    used_count = Column(Integer, nullable=False, default=0)
    starts_at = Column(DateTime(timezone=True), nullable=True)
    expires_at = Column(DateTime(timezone=True), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    @property
    def usage_exhausted(self) -> bool:
        return bool(self.max_uses) and (self.used_count or 0) >= self.max_uses

    def is_valid(self, now) -> bool:
        if not self.is_active or self.usage_exhausted:
            return False
        if self.starts_at is not None and as_utc(self.starts_at) > now:
            return False
        if self.expires_at is not None and as_utc(self.expires_at) <= now:
            return False
        return True

    def is_valid_for_amount(self, amount: Decimal, now) -> bool:
        if not self.is_valid(now):
            return False
        return not (self.minimum_amount and amount < self.minimum_amount)

    def calculate_discount(self, amount: Decimal) -> Decimal:
        if self.type == CouponType.FIXED.value:
            return min(to_money(self.value), to_money(amount))
        return min(percent_of(amount, self.value), to_money(amount))


class CouponUsage(Base):
    __tablename__ = "coupon_usages"
    __table_args__ = (UniqueConstraint("coupon_id", "order_id", name="uq_coupon_usage_order"),)

    id = Column(Integer, primary_key=True, index=True)
    coupon_id = Column(Integer, ForeignKey("coupons.id"), nullable=False, index=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    discount_amount = Column(Numeric(12, 2), nullable=False)
    used_at = Column(DateTime(timezone=True), default=utcnow)
