from sqlalchemy import JSON, Column, DateTime, ForeignKey, Integer, Numeric, String
from sqlalchemy.orm import relationship

from app.models.database import Base, utcnow
from app.models.enums import PaymentStatus


class Payment(Base):
    """One payment attempt for an order.

    ``id`` is sent to the gateway as the external reference, so a
    notification always resolves back to exactly one attempt.
    """

    __tablename__ = "payments"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False, index=True)
    gateway = Column(String(32), nullable=False)  # mercado_pago | bank_transfer | cash
    status = Column(String(32), nullable=False, default=PaymentStatus.PENDING.value)
    amount = Column(Numeric(12, 2), nullable=False)
    currency = Column(String(3), nullable=False)
    external_id = Column(String(255), nullable=True, index=True)
    # "metadata" is reserved on declarative classes
    gateway_data = Column("metadata", JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    order = relationship("Order", back_populates="payments")

    def merge_gateway_data(self, data: dict) -> None:
        # Reassign so the JSON column is flagged dirty.
        self.gateway_data = {**(self.gateway_data or {}), **data}
