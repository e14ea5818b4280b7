import os

os.environ.setdefault("DATABASE_URL", "sqlite://")

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from atende.database import Base
from atende.models import AutomationConfig, Tenant


@pytest.fixture
def engine():
    """In-memory SQLite shared by every session of the test."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    # Let SQLAlchemy own BEGIN so SAVEPOINT works with pysqlite.
    @event.listens_for(engine, "connect")
    def _connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _begin(conn):
        conn.exec_driver_sql("BEGIN")

    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    # Attributes stay loaded after commit, so reading a fixture does not open
    # a transaction on the shared connection while another session is working.
    return sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)


@pytest.fixture
def db_session(session_factory):
    db = session_factory()
    yield db
    db.close()


@pytest.fixture
def mock_env(monkeypatch):
    """Set test environment variables."""
    monkeypatch.setenv("OPENAI_API_KEY", "test-key")
    monkeypatch.setenv("DATABASE_URL", "sqlite://")


@pytest.fixture
def tenant(db_session):
    """Tenant open every day, all day, in UTC, replying after 5 seconds."""
    tenant = Tenant(name="Clínica Sorriso", instance_name="clinica-sorriso", connection_status="connected")
    db_session.add(tenant)
    db_session.flush()
    db_session.add(
        AutomationConfig(
            tenant_id=tenant.id,
            enabled=True,
            agent_name="Ana",
            custom_prompt="Você atende a Clínica Sorriso.",
            business_hours_start="00:00",
            business_hours_end="23:59",
            business_days=[0, 1, 2, 3, 4, 5, 6],
            timezone="UTC",
            out_of_hours_message="Estamos fora do horário de atendimento.",
            max_messages_without_human=10,
            handoff_message="Vou chamar um atendente para continuar.",
            keyword_activation_enabled=False,
            trigger_keywords=[],
            response_delay_seconds=5,
        )
    )
    db_session.commit()
    return tenant


@pytest.fixture
def config(db_session, tenant):
    config = db_session.query(AutomationConfig).filter(AutomationConfig.tenant_id == tenant.id).one()
    db_session.commit()
    return config
