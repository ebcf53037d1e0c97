import os
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Generator
from unittest.mock import MagicMock

# Override settings for tests before importing app modules
TEST_DATABASE_URL = "sqlite:///:memory:"
os.environ["DATABASE_URL"] = TEST_DATABASE_URL
os.environ["JWT_SECRET"] = "test-secret-key-for-testing-only"
os.environ["MERCADOPAGO_ACCESS_TOKEN"] = "TEST-access-token"
os.environ["MERCADOPAGO_WEBHOOK_SECRET"] = ""
os.environ["SMTP_HOST"] = ""
os.environ["BROADCAST_URL"] = ""
os.environ["GATEWAY_BACKOFF_SECONDS"] = "0"

import pytest
from fastapi.testclient import TestClient
from jose import jwt
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app.config import settings
from app.main import app
from app.models import Address, Order, OrderItem, Payment, Product, User
from app.models.database import Base, get_db
from app.models.enums import PaymentMethod, PaymentStatus, UserRole
from app.models.order import HISTORY_ORDER_CREATED
from app.services import stock_service
from app.services.mercadopago_service import GatewayPayment, PreferenceResult

# Create test database engine
test_engine = create_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=test_engine)


@pytest.fixture(scope="function")
def db() -> Generator[Session, None, None]:
    """Create a fresh database for each test."""
    Base.metadata.create_all(bind=test_engine)
    db_session = TestSessionLocal()
    try:
        yield db_session
    finally:
        db_session.close()
        Base.metadata.drop_all(bind=test_engine)


@pytest.fixture(scope="function")
def client(db: Session) -> Generator[TestClient, None, None]:
    """Create a test client with database override."""

    def override_get_db():
        try:
            yield db
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


def _create_user(db: Session, email: str, role: UserRole = UserRole.CUSTOMER) -> User:
    user = User(email=email, display_name=email.split("@")[0].title(), role=role.value)
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture
def test_user(db: Session) -> User:
    return _create_user(db, "test@example.com")


@pytest.fixture
def test_user2(db: Session) -> User:
    return _create_user(db, "test2@example.com")


@pytest.fixture
def admin_user(db: Session) -> User:
    return _create_user(db, "admin@example.com", UserRole.ADMIN)


def make_token(user: User) -> str:
    return jwt.encode(
        {"sub": str(user.id), "type": "access", "exp": datetime.now(timezone.utc) + timedelta(hours=1)},
        settings.JWT_SECRET,
        algorithm=settings.JWT_ALGORITHM,
    )


@pytest.fixture
def auth_headers(test_user: User) -> dict[str, str]:
    return {"Authorization": f"Bearer {make_token(test_user)}"}


@pytest.fixture
def admin_headers(admin_user: User) -> dict[str, str]:
    return {"Authorization": f"Bearer {make_token(admin_user)}"}


@pytest.fixture
def make_product(db: Session):
    counter = {"n": 0}

    def factory(price="33.33", stock=10, track_stock=True, is_active=True, name=None, sale_price=None) -> Product:
        counter["n"] += 1
        n = counter["n"]
        product = Product(
            name=name or f"Product {n}",
            slug=f"product-{n}",
            sku=f"SKU-{n:04d}",
            price=Decimal(price),
            sale_price=Decimal(sale_price) if sale_price is not None else None,
            stock=stock,
            track_stock=track_stock,
            is_active=is_active,
        )
        db.add(product)
        db.commit()
        db.refresh(product)
        return product

    return factory


@pytest.fixture
def product(make_product) -> Product:
    return make_product(price="33.33", stock=10, name="Mate Gourd")


def shipping_address(email: str | None = "buyer@example.com") -> Address:
    return Address(
        name="Ana Perez",
        email=email,
        phone="+54 11 5555-5555",
        address="Av. Corrientes 1234",
        city="Buenos Aires",
        state="CABA",
        postal_code="C1043",
        country="AR",
    )


@pytest.fixture
def make_order(db: Session):
    """Create a pending/pending order with reserved stock, as checkout leaves it."""

    def factory(
        lines,
        user: User | None = None,
        created_at: datetime | None = None,
        payment_method: str = PaymentMethod.MERCADO_PAGO.value,
    ) -> Order:
        subtotal = sum((Decimal(p.price) * qty for p, qty in lines), Decimal("0.00"))
        order = Order(
            user_id=user.id if user is not None else None,
            payment_method=payment_method,
            currency=settings.CURRENCY,
            subtotal=subtotal,
            shipping_cost=Decimal("0.00"),
            tax=Decimal("0.00"),
            discount=Decimal("0.00"),
            total=subtotal,
            shipping_address=shipping_address(),
            billing_address=shipping_address(),
        )
        order.items = [
            OrderItem(
                product_id=p.id,
                name=p.name,
                sku=p.sku,
                quantity=qty,
                unit_price=p.price,
                total=Decimal(p.price) * qty,
            )
            for p, qty in lines
        ]
        order.add_history(HISTORY_ORDER_CREATED)
        db.add(order)
        db.flush()
        stock_service.reserve(db, order)
        if created_at is not None:
            order.created_at = created_at
        db.commit()
        db.refresh(order)
        return order

    return factory


@pytest.fixture
def make_payment(db: Session):
    def factory(order: Order, status: PaymentStatus = PaymentStatus.PENDING, external_id: str | None = None) -> Payment:
        payment = Payment(
            order_id=order.id,
            gateway=PaymentMethod.MERCADO_PAGO.value,
            status=status.value,
            amount=order.total,
            currency=order.currency,
            external_id=external_id,
        )
        db.add(payment)
        db.commit()
        db.refresh(payment)
        return payment

    return factory


def gateway_payment(payment: Payment, status: str = "approved", gateway_id: str = "9001", **extra) -> GatewayPayment:
    return GatewayPayment.from_api(
        {
            "id": gateway_id,
            "status": status,
            "status_detail": extra.pop("status_detail", "accredited" if status == "approved" else None),
            "external_reference": str(payment.id),
            "transaction_amount": float(payment.amount),
            "currency_id": payment.currency,
            "payment_method_id": "visa",
            "payment_type_id": "credit_card",
            **extra,
        }
    )


@pytest.fixture
def fake_gateway() -> MagicMock:
    """A MercadoPagoClient stand-in that accepts every preference."""
    client = MagicMock()
    client.create_preference.return_value = PreferenceResult(
        preference_id="pref-123",
        init_point="https://www.mercadopago.com/checkout?pref_id=pref-123",
        sandbox_init_point="https://sandbox.mercadopago.com/checkout?pref_id=pref-123",
    )
    return client


def hours_ago(hours: float) -> datetime:
    return datetime.now(timezone.utc) - timedelta(hours=hours)
