import os
import tempfile
from pathlib import Path

_TEST_DB_DIR = Path(tempfile.mkdtemp(prefix="localmart-tests-"))
os.environ.setdefault("LOCALMART_DATABASE_URL", f"sqlite+pysqlite:///{_TEST_DB_DIR / 'test.db'}")
os.environ.setdefault("LOCALMART_TESTING", "true")

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402

import localmart.models  # noqa: F401,E402
from localmart.config import settings  # noqa: E402
from localmart.db.base import Base  # noqa: E402
from localmart.db.session import engine as app_engine  # noqa: E402
from localmart.db.session import get_db  # noqa: E402
from localmart.main import app  # noqa: E402
from localmart.models.delivery_agent import AgentApprovalStatus  # noqa: E402
from localmart.models.order import OrderStatus  # noqa: E402
from localmart.observability import metrics_store  # noqa: E402
from localmart.services import agents_service, delivery_service, orders_service  # noqa: E402
from localmart.services.orders_service import OrderLine  # noqa: E402


@pytest.fixture(scope="session", autouse=True)
def setup_test_schema():
    Base.metadata.drop_all(bind=app_engine)
    Base.metadata.create_all(bind=app_engine)
    yield
    Base.metadata.drop_all(bind=app_engine)


@pytest.fixture(autouse=True)
def reset_db():
    Base.metadata.drop_all(bind=app_engine)
    Base.metadata.create_all(bind=app_engine)
    yield


@pytest.fixture(autouse=True)
def reset_metrics_store():
    metrics_store.reset()
    yield


@pytest.fixture(scope="session", autouse=True)
def enable_testing_mode():
    original = settings.testing
    settings.testing = True
    yield
    settings.testing = original


@pytest.fixture
def session_factory():
    return sessionmaker(autocommit=False, autoflush=False, bind=app_engine)


@pytest.fixture
def db_session(session_factory):
    db = session_factory()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def client(session_factory):
    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def place_order(db_session):
    def _place(customer_id: str = "cust-1", shop_id: str = "shop-1"):
        return orders_service.place_order(
            db_session,
            customer_id=customer_id,
            shop_id=shop_id,
            items=[
                OrderLine(product_id="rice-5kg", quantity=2, price=450, product_name="Rice 5kg"),
                OrderLine(product_id="dal-1kg", quantity=1, price=120),
            ],
            delivery_address="12 MG Road, Bengaluru",
        )

    return _place


@pytest.fixture
def advance_order(db_session):
    def _advance(order, *statuses: OrderStatus):
        for target in statuses:
            order = orders_service.advance_status(db_session, order.id, target, order.version)
        return order

    return _advance


@pytest.fixture
def paid_order(place_order, advance_order):
    return advance_order(
        place_order(),
        OrderStatus.APPROVED,
        OrderStatus.PAYMENT_PENDING,
        OrderStatus.PAID,
    )


@pytest.fixture
def approved_agent(db_session):
    def _agent(name: str = "Ravi"):
        agent = agents_service.register_agent(db_session, name=name, vehicle_type="bike")
        return agents_service.set_agent_approval(
            db_session, agent.id, AgentApprovalStatus.APPROVED
        )

    return _agent


@pytest.fixture
def open_delivery(db_session, paid_order):
    return delivery_service.create_delivery(db_session, paid_order.id)
