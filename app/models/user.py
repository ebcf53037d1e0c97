from sqlalchemy import Column, DateTime, Integer, String

from app.models.database import Base, utcnow
from app.models.enums import UserRole


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(255), unique=True, index=True, nullable=False)
    display_name = Column(String(255), nullable=True)
    role = Column(String(32), nullable=False, default=UserRole.CUSTOMER.value)  # customer | admin
    created_at = Column(DateTime(timezone=True), default=utcnow)

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN.value
