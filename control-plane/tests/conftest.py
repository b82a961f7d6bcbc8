# control-plane/tests/conftest.py
import os

os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("ADMIN_SECRET", "test-admin-secret")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from config import settings
from database.models import Base
from database.session import get_db
from core.directory import node_directory
from main import app


@pytest.fixture
def db_session():
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def network(db_session):
    """Network whose nodes hole-punch by default"""
    return node_directory.create_network(
        db_session,
        netid="skynet",
        address_range="10.10.10.0/24",
        default_udp_hole_punch=True
    )


@pytest.fixture
def make_node(db_session, network):
    """Factory for nodes in the skynet network"""
    counter = {"n": 0}

    def _make_node(os="linux", nftables=False, interface="nm-skynet", post_up="", post_down="", node_id=None):
        counter["n"] += 1
        return node_directory.create_node(
            db_session,
            netid=network.netid,
            name=f"node-{counter['n']}",
            os=os,
            interface=interface,
            is_nftables_present=nftables,
            node_id=node_id or f"node-{counter['n']}",
            post_up=post_up,
            post_down=post_down
        )

    return _make_node


@pytest.fixture
def admin_headers():
    return {"X-Admin-Token": settings.ADMIN_SECRET}


@pytest.fixture
def client(db_session):
    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
