"""
Pytest fixtures for RouteCash backend tests.

Provides an in-memory database, a branch with its field users, a shop, a
couple of catalog products and helpers that walk an order to the point
where cash can be collected.
"""

from decimal import Decimal

import pytest

from routecash import create_app
from routecash.extensions import db
from routecash.models import Branch, Product, Shop, User
from routecash.services import order_service
from routecash.services.order_state import OrderStatus


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        db.session.rollback()


@pytest.fixture(scope='function')
def branch(db_session):
    branch = Branch(name="Lahore Central", code="LHR", region="Punjab")
    db_session.add(branch)
    db_session.commit()
    return branch


@pytest.fixture(scope='function')
def booker(db_session, branch):
    """Booker allowed 15% per line and no order-level cap."""
    user = User(
        name="Asad Booker",
        email="booker@routecash.local",
        role="booker",
        branch_id=branch.id,
        max_discount_percent=Decimal("15"),
        max_discount_amount=Decimal("0"),
    )
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def salesman(db_session, branch):
    user = User(name="Bilal Salesman", email="salesman@routecash.local", role="salesman", branch_id=branch.id)
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def kpo(db_session, branch):
    user = User(name="Kiran KPO", email="kpo@routecash.local", role="kpo", branch_id=branch.id)
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def admin(db_session, branch):
    user = User(name="Admin", email="admin@routecash.local", role="admin", branch_id=branch.id)
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def shop(db_session, branch, booker):
    shop = Shop(shop_code="SHP-001", name="Madina Store", owner_name="Hamid", branch_id=branch.id, booker_id=booker.id)
    db_session.add(shop)
    db_session.commit()
    return shop


@pytest.fixture(scope='function')
def product(db_session):
    """nimco product: category ceiling 5%, no product-specific ceiling."""
    product = Product(sku="NIM-001", name="Nimco Mix 250g", category="nimco", unit_price=Decimal("100"))
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def bulk_product(db_session):
    """bulk product: category ceiling 10%."""
    product = Product(sku="BLK-001", name="Peanuts Bulk 5kg", category="bulk", unit_price=Decimal("500"))
    db_session.add(product)
    db_session.commit()
    return product


def advance_to_deliverable(order_id: int, salesman_id: int | None = None, kpo_id: int | None = None):
    """Walk a draft order through submit, finalize, bill and load form."""
    order = order_service.submit_order(order_id, acknowledge_unauthorized=True)
    for status in (OrderStatus.FINALIZED, OrderStatus.BILLED, OrderStatus.LOAD_FORM_READY):
        order = order_service.transition_order(order_id, status, actor_user_id=kpo_id)
    if salesman_id is not None:
        order = order_service.transition_order(order_id, OrderStatus.ASSIGNED, actor_user_id=kpo_id, salesman_id=salesman_id)
    return order


@pytest.fixture(scope='function')
def deliverable_order(db_session, shop, booker, salesman, kpo, product):
    """Order worth exactly 10000 (100 x 100, no discount) ready for delivery."""
    order = order_service.create_order(
        shop_id=shop.id,
        booker_id=booker.id,
        items=[{"product_id": product.id, "quantity": 100, "discount_percent": 0}],
    )
    return advance_to_deliverable(order.id, salesman_id=salesman.id, kpo_id=kpo.id)


def actor_headers(user) -> dict:
    """Headers the upstream gateway would forward for an authenticated user."""
    return {'X-User-Id': str(user.id)}


@pytest.fixture(scope='function')
def advance_order(db_session):
    return advance_to_deliverable


@pytest.fixture(scope='function')
def headers_for():
    return actor_headers
