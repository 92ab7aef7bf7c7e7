import pytest
from decimal import Decimal

from gestock import create_app
from gestock.database import create_tables, drop_tables, get_session
from gestock.models import Partner, PartnerType, Product, StockCurrent
from gestock.services.stock_service import add_stock_entry

ACTOR = 'user-test'


@pytest.fixture(scope='session')
def app():
    """Create application instance for testing (in-memory SQLite, no Redis)."""
    app = create_app('config.TestConfig')
    return app


@pytest.fixture(scope='function', autouse=True)
def database(app):
    """Fresh schema for every test, inside an application context."""
    with app.app_context():
        create_tables()
        yield
        get_session().remove()
        drop_tables()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def session():
    """Database session shared with the services under test."""
    # The thread-local Session behind the scoped registry (exposes in_transaction())
    session = get_session()()
    yield session
    session.rollback()


@pytest.fixture(scope='function')
def actor_headers():
    return {'X-User-Id': ACTOR}


@pytest.fixture(scope='function')
def product(session):
    """Product taxed at 19%, without stock."""
    product = Product(
        code='P-001',
        name='Huile d\'olive 1L',
        unit_of_measure='bouteille',
        purchase_price=Decimal('10.00'),
        sale_price_local=Decimal('100.00'),
        tax_rate=Decimal('19.00')
    )
    session.add(product)
    session.commit()
    return product


@pytest.fixture(scope='function')
def product_b(session):
    """Untaxed product, without stock."""
    product = Product(code='P-002', name='Dattes Deglet Nour 5kg', unit_of_measure='carton')
    session.add(product)
    session.commit()
    return product


@pytest.fixture(scope='function')
def supplier(session):
    supplier = Partner(name='Fournisseur Test', type=PartnerType.SUPPLIER)
    session.add(supplier)
    session.commit()
    return supplier


@pytest.fixture(scope='function')
def customer(session):
    customer = Partner(name='Client Test', type=PartnerType.CLIENT, country='Algérie')
    session.add(customer)
    session.commit()
    return customer


@pytest.fixture(scope='function')
def other_customer(session):
    customer = Partner(name='Autre Client', type=PartnerType.CLIENT)
    session.add(customer)
    session.commit()
    return customer


@pytest.fixture(scope='function')
def stocked_product(session, product):
    """``product`` with 100 units on hand at an average cost of 10.00."""
    add_stock_entry(session, [{
        'product_id': product.id,
        'quantity': 100,
        'unit_cost': '10.00',
        'movement_date': '2024-01-01',
        'notes': 'Stock initial'
    }], ACTOR)
    return product


@pytest.fixture(scope='function')
def stocked_product_b(session, product_b):
    """``product_b`` with 50 units on hand at an average cost of 4.00."""
    add_stock_entry(session, [{
        'product_id': product_b.id,
        'quantity': 50,
        'unit_cost': '4.00',
        'movement_date': '2024-01-01'
    }], ACTOR)
    return product_b


@pytest.fixture(scope='function')
def stock_of(session):
    """Read the current stock row of a product from the database."""
    def _stock_of(product_id):
        session.expire_all()
        return session.query(StockCurrent).filter(StockCurrent.product_id == product_id).first()
    return _stock_of
