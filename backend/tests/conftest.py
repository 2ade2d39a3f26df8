import os, sys, pytest
# Ensure backend directory is on path so 'servicedesk' can be imported
ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), '..'))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)
import servicedesk
from servicedesk import create_app, get_db
from servicedesk.models.user import Base
# Import all model modules to ensure tables are registered before create_all
import servicedesk.models.device  # noqa: F401
import servicedesk.models.ticket  # noqa: F401
import servicedesk.models.audit  # noqa: F401

@pytest.fixture(scope='session', autouse=True)
def app_instance(tmp_path_factory):
    app = create_app({
        'DATABASE_URL': 'sqlite+pysqlite:///:memory:',
        'JWT_SECRET_KEY': 'test-secret-key-with-enough-length-for-hs256',
        'STORAGE_ROOT': str(tmp_path_factory.mktemp('storage')),
        'TESTING': True,
    })
    # After app and blueprints are registered, ensure all tables exist
    with app.app_context():
        engine = get_db().get_bind()
        Base.metadata.create_all(engine)
    yield app

@pytest.fixture(autouse=True)
def clean_tables(app_instance):
    """Every test starts from empty tables; load balancing counts depend on it."""
    session = get_db()
    session.rollback()
    for table in reversed(Base.metadata.sorted_tables):
        session.execute(table.delete())
    session.commit()
    servicedesk.SessionLocal.remove()
    yield
    servicedesk.SessionLocal.remove()

@pytest.fixture()
def app_context(app_instance):
    with app_instance.app_context():
        yield app_instance

@pytest.fixture()
def client(app_instance):
    return app_instance.test_client()
