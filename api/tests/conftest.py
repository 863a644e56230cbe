import os

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("RATE_LIMIT_REQUESTS", "100000")

from dataclasses import dataclass  # noqa: E402
from datetime import datetime, time, timezone  # noqa: E402

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy.orm import Session, sessionmaker  # noqa: E402

from agenda.db.base import Base  # noqa: E402
from agenda.db.session import build_engine, get_db  # noqa: E402
from agenda.main import app  # noqa: E402
from agenda.models import (  # noqa: E402
    BusinessHoursEntry,
    Client,
    Professional,
    Resource,
    ScheduleSettings,
    Service,
    Tenant,
)

# Tuesday; every booking test works on the following Monday, 2030-01-07.
NOW = datetime(2030, 1, 1, 12, 0, tzinfo=timezone.utc)


@dataclass
class Clinic:
    tenant: Tenant
    professional: Professional
    service: Service
    client: Client


@pytest.fixture
def engine(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'agenda.db'}")
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@pytest.fixture
def db(session_factory) -> Session:
    session = session_factory()
    yield session
    session.rollback()
    session.close()


def make_clinic(
    db: Session,
    name: str = "Clínica Teste",
    *,
    opening: time = time(9, 0),
    closing: time = time(17, 0),
    duration: int = 30,
    timezone_name: str = "America/Sao_Paulo",
) -> Clinic:
    """Tenant open Monday to Friday with one professional and one service."""

    tenant = Tenant(name=name, timezone=timezone_name)
    db.add(tenant)
    db.flush()
    for weekday in range(7):
        db.add(
            BusinessHoursEntry(
                tenant_id=tenant.id,
                weekday=weekday,
                enabled=weekday < 5,
                start_time=opening,
                end_time=closing,
            )
        )
    db.add(ScheduleSettings(tenant_id=tenant.id))
    professional = Professional(tenant_id=tenant.id, name="Dra. Ana Costa")
    service = Service(tenant_id=tenant.id, name="Consulta", duration_minutes=duration)
    service.professionals.append(professional)
    client = Client(
        tenant_id=tenant.id,
        full_name="Maria Silva",
        email="maria.silva@example.com",
        phone_number="+5585987654321",
    )
    db.add_all([professional, service, client])
    db.commit()
    return Clinic(tenant=tenant, professional=professional, service=service, client=client)


def add_resources(db: Session, clinic: Clinic, *names: str) -> list[Resource]:
    resources = [Resource(tenant_id=clinic.tenant.id, name=name) for name in names]
    db.add_all(resources)
    clinic.service.requires_resource = True
    clinic.service.resources.extend(resources)
    db.commit()
    return resources


@pytest.fixture
def clinic(db) -> Clinic:
    return make_clinic(db)


@pytest.fixture
def api_client(session_factory):
    def override_get_db():
        session = session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as client:
        yield client
    app.dependency_overrides.clear()
