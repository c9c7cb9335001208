import pytest
from fastapi.testclient import TestClient

from medo_backend.main import app, get_auth_client
from medo_backend.quiz import QuizSessionStore
from medo_backend.storage import StorageAdapter
from medo_backend.uploads import UploadBatchRegistry
from tests.fakes import FakeAuth, FakeBucket, FakeFirestore, FakeModel, bearer


@pytest.fixture
def db():
    return FakeFirestore()


@pytest.fixture
def bucket():
    return FakeBucket()


@pytest.fixture
def storage(db, bucket):
    # Small chunks so progress reporting has several steps.
    return StorageAdapter(db, bucket, chunk_size=4)


@pytest.fixture
def model():
    return FakeModel()


@pytest.fixture
def fake_auth():
    return FakeAuth()


@pytest.fixture
def client(db, bucket, model, fake_auth):
    # No context manager: startup (real Firebase/Gemini init) never runs.
    app.state.db = db
    app.state.bucket = bucket
    app.state.model = model
    app.state.quiz_sessions = QuizSessionStore()
    app.state.upload_batches = UploadBatchRegistry()
    app.dependency_overrides[get_auth_client] = lambda: fake_auth
    # Signed in as "u1" unless a test sends other headers.
    test_client = TestClient(app)
    test_client.headers.update(bearer("u1"))
    yield test_client
    app.dependency_overrides.clear()
    app.state.db = None
    app.state.bucket = None
    app.state.model = None
