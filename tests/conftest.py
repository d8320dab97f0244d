"""
Shared fixtures.

Settings are read at import time, so the environment is filled in before
anything under app/ is imported. DATABASE_URL points at in-memory SQLite;
app.database builds a single-connection StaticPool engine for it.
"""
import os

os.environ.setdefault("SUPABASE_URL", "http://localhost:54321")
os.environ.setdefault("SUPABASE_KEY", "test-anon-key")
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("SUPABASE_JWT_SECRET", "test-jwt-secret")
os.environ.setdefault("DEPLOYMENT_MODE", "partner_site")
os.environ.setdefault("PARTNER_SITE_PATTERNS", '["*.parceiro.com.br"]')

import uuid
from datetime import datetime, timezone

import pytest
from sqlmodel import Session, SQLModel

from app.database import engine
from app.models.establishment import Courier, Establishment
from app.models.order import Order, OrderItem
from app.models.side_effect import SideEffectTask  # noqa: F401
from app.models.user import User
from app.repositories.establishment_repo import CourierRepository, EstablishmentRepository
from app.repositories.order_repo import OrderRepository
from app.repositories.side_effect_repo import SideEffectRepository
from app.services.order_service import OrderService
from app.services.side_effects import SideEffectRunner
from app.services.tabs import TabPartitioner

PARTNER_PATTERNS = ["*.parceiro.com.br"]
TZ = "America/Sao_Paulo"


# ============================================================================
# Fake collaborators
# ============================================================================


class FakePrinter:
    def __init__(self):
        self.receipts = []
        self.non_fiscal = []
        self.fail = False

    def print_receipt(self, receipt):
        if self.fail:
            raise RuntimeError("printer offline")
        self.receipts.append(receipt)

    def print_non_fiscal(self, receipt):
        if self.fail:
            raise RuntimeError("printer offline")
        self.non_fiscal.append(receipt)


class FakeStock:
    def __init__(self):
        self.calls = []
        self.fail = False

    def deduct(self, establishment_id, order_id):
        if self.fail:
            raise RuntimeError("stock service down")
        self.calls.append((establishment_id, order_id))


class FakeNumbers:
    def __init__(self, start: int = 100):
        self.next = start
        self.fail = False

    def next_number(self, establishment_id):
        if self.fail:
            raise RuntimeError("sequence unavailable")
        self.next += 1
        return f"{self.next:04d}"


# ============================================================================
# Database
# ============================================================================


@pytest.fixture
def session():
    SQLModel.metadata.create_all(engine)
    with Session(engine) as s:
        yield s
    SQLModel.metadata.drop_all(engine)


@pytest.fixture
def establishment(session):
    est = Establishment(
        name="Na Brasa Burger",
        address="Av. Paulista, 1000",
        phone="(11) 3333-4444",
        cnpj="12345678000199",
        pix_key_value="pix@nabrasa.com.br",
    )
    session.add(est)
    session.commit()
    session.refresh(est)
    return est


@pytest.fixture
def operator(session, establishment):
    user = User(
        id=uuid.uuid4(),
        email="caixa@nabrasa.com.br",
        name="Caixa",
        role="staff",
        establishment_id=establishment.id,
    )
    session.add(user)
    session.commit()
    session.refresh(user)
    return user


@pytest.fixture
def make_order(session, establishment):
    """Persist an order for the establishment; keyword args override defaults."""
    counter = {"n": 0}

    def _make(items: list[dict] | None = None, **overrides) -> Order:
        counter["n"] += 1
        data = {
            "establishment_id": establishment.id,
            "order_number": f"{counter['n']:04d}",
            "customer_name": "Maria",
            "customer_phone": "(11) 98765-4321",
            "status": "pending",
            "payment_status": "pending",
            "payment_method": "pix",
            "order_type": "counter",
            "subtotal": 20.0,
            "total_amount": 20.0,
            "created_at": datetime.now(timezone.utc),
        }
        data.update(overrides)
        order = Order(**data)
        session.add(order)
        session.flush()
        for item in items or []:
            session.add(OrderItem(order_id=order.id, **item))
        session.commit()
        session.refresh(order)
        return order

    return _make


@pytest.fixture
def make_courier(session, establishment):
    def _make(name: str, is_active: bool = True) -> Courier:
        courier = Courier(establishment_id=establishment.id, name=name, is_active=is_active)
        session.add(courier)
        session.commit()
        session.refresh(courier)
        return courier

    return _make


# ============================================================================
# Services
# ============================================================================


@pytest.fixture
def printer():
    return FakePrinter()


@pytest.fixture
def stock():
    return FakeStock()


@pytest.fixture
def numbers():
    return FakeNumbers()


@pytest.fixture
def partitioner():
    return TabPartitioner("partner_site", PARTNER_PATTERNS, TZ)


@pytest.fixture
def runner(printer, stock):
    return SideEffectRunner(
        printer=printer,
        stock=stock,
        order_repo=OrderRepository(),
        establishment_repo=EstablishmentRepository(),
        side_effect_repo=SideEffectRepository(),
        partner_patterns=PARTNER_PATTERNS,
    )


@pytest.fixture
def courier_repo():
    return CourierRepository()


@pytest.fixture
def service(partitioner, runner, printer, numbers, courier_repo):
    return OrderService(
        order_repo=OrderRepository(),
        courier_repo=courier_repo,
        establishment_repo=EstablishmentRepository(),
        partitioner=partitioner,
        runner=runner,
        printer=printer,
        number_generator=numbers,
        retention_months=3,
    )


@pytest.fixture
def partner_delivery(make_order):
    """A pending partner-site delivery order, as the storefront writes it."""
    return make_order(
        channel="online",
        origin="site",
        source_domain="loja.parceiro.com.br",
        order_type="delivery",
        order_number="SITE-1",
        notes=(
            "[2x Cheeseburger - R$20,00 Obs: sem cebola]\n"
            "[1x Coca-Cola Lata - R$ 6,00]\n"
            "Endereço: Rua das Flores, 10"
        ),
        subtotal=26.0,
        total_amount=26.0,
    )
