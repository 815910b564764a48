"""
Pytest configuration and fixtures
"""
import os
import sys
import tempfile
from datetime import datetime, timedelta
from pathlib import Path
from uuid import uuid4

import pytest
from sqlalchemy.orm import Session

# Add backend directory to path for imports
backend_dir = Path(__file__).parent.parent
if str(backend_dir) not in sys.path:
    sys.path.insert(0, str(backend_dir))

# Settings are cached on first use, so the environment must be set before app imports
_scratch_dir = Path(tempfile.mkdtemp(prefix="stoneyard-tests-"))
os.environ.setdefault("DATABASE_URL", f"sqlite:///{_scratch_dir / 'stoneyard.db'}")
os.environ.setdefault("BLOB_STORE_PATH", str(_scratch_dir / "blobs"))
os.environ["ENABLE_TRACING"] = "false"
os.environ["ENFORCE_ROLES"] = "false"

from app.core.database import Base, SessionLocal, engine
from app.models import BlockStatus, StoneBlock
from app.services.blob_store import LocalBlobStore
from app.services.block_registry import BlockRegistry

BASE_TIME = datetime(2025, 1, 1, 12, 0, 0)


@pytest.fixture(scope="function")
def db() -> Session:
    """Create a database session over a freshly created schema"""
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)

    session = SessionLocal()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture
def blob_store(tmp_path) -> LocalBlobStore:
    """Blob store rooted in the test's temporary directory"""
    return LocalBlobStore(tmp_path / "blobs")


@pytest.fixture
def registry(db: Session, blob_store: LocalBlobStore) -> BlockRegistry:
    return BlockRegistry(db, blob_store)


@pytest.fixture
def block_fields():
    """Factory for valid registration fields"""
    def _make(**overrides):
        fields = {
            "name": "Black Galaxy Slab",
            "dimensions": "300x180x2 cm",
            "category": "Black",
            "subcategory": "Slab",
            "price": "120.50",
            "price_unit": "per sq ft",
            "stock_availability": "In Stock",
            "stock_quantity": "4",
        }
        fields.update(overrides)
        return fields
    return _make


@pytest.fixture
def image_bytes():
    """Factory for distinct fake photo contents"""
    def _make(seed: str = None):
        return b"\xff\xd8\xff\xe0JPEG-" + (seed or uuid4().hex).encode()
    return _make


@pytest.fixture
def block_factory(db: Session):
    """
    Insert blocks directly, bypassing QR rendering and blob storage

    ``age`` orders creation times: higher values are older.
    """
    def _make(age: int = 0, **overrides):
        values = {
            "identity_token": str(uuid4()),
            "identity_artifact_ref": uuid4().hex * 2 + ".png",
            "image_ref": uuid4().hex * 2 + ".jpg",
            "name": "Kashmir White",
            "dimensions": "200x100x3 cm",
            "category": "White",
            "subcategory": "Slab",
            "grade": "Standard",
            "price": 100.0,
            "price_unit": "per sq ft",
            "stock_availability": "In Stock",
            "stock_quantity": 1,
            "status": BlockStatus.REGISTERED.value,
            "created_at": BASE_TIME - timedelta(minutes=age),
            "updated_at": BASE_TIME - timedelta(minutes=age),
        }
        values.update(overrides)
        block = StoneBlock(**values)
        db.add(block)
        db.commit()
        db.refresh(block)
        return block
    return _make


@pytest.fixture(scope="function")
def client(db: Session, blob_store: LocalBlobStore):
    """Create test client with database and blob store dependency overrides"""
    from fastapi.testclient import TestClient

    from app.core.database import get_db
    from app.services.blob_store import get_blob_store
    from main import app

    def override_get_db():
        try:
            yield db
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_blob_store] = lambda: blob_store
    test_client = TestClient(app)
    yield test_client
    app.dependency_overrides.clear()
