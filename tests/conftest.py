"""
Smart Campus API - Test Configuration and Fixtures
"""
import os
import tempfile

import mongomock
import pytest
from faker import Faker
from fastapi.testclient import TestClient

# Set testing environment before the app reads it
os.environ['JWT_SECRET'] = 'test-jwt-secret-key-for-testing'
os.environ['ALLOWED_STUDENT_DOMAIN'] = '@klh.edu.in'
os.environ['UPLOAD_DIR'] = tempfile.mkdtemp(prefix='smart-campus-uploads-')
os.environ.pop('DATABASE_URL', None)
os.environ.pop('CLIENT_URL', None)

from main import app
from database import collection_name, ensure_indexes, get_db, utcnow
from oauth import OAuthIdentity, get_oauth_provider
from schemas import Student, Teacher, User
from security import Principal, create_access_token

fake = Faker()


class FakeOAuthProvider:
    """Stands in for Google: maps authorization codes to identities."""

    def __init__(self):
        self.identities = {}

    def register(self, code: str, **fields) -> OAuthIdentity:
        identity = OAuthIdentity(**fields)
        self.identities[code] = identity
        return identity

    def get_authorization_url(self, state=None) -> str:
        return f'https://accounts.example.test/o/oauth2/auth?state={state}'

    def authenticate(self, code: str):
        return self.identities.get(code)


@pytest.fixture
def db():
    """Fresh in-memory database for each test"""
    database = mongomock.MongoClient().smart_campus_test
    ensure_indexes(database)
    return database


@pytest.fixture
def provider() -> FakeOAuthProvider:
    return FakeOAuthProvider()


@pytest.fixture
def client(db, provider):
    """Create test client with database and identity provider overrides"""
    app.dependency_overrides[get_db] = lambda: db
    app.dependency_overrides[get_oauth_provider] = lambda: provider
    yield TestClient(app)
    app.dependency_overrides.clear()


def auth_headers(principal: Principal) -> dict:
    return {'Authorization': f'Bearer {create_access_token(principal)}'}


@pytest.fixture
def make_user(db):
    """Create an account (and its role profile) directly in the database"""
    def _make(role: str = 'student', name: str | None = None) -> Principal:
        name = name or fake.name()
        email = f'{fake.unique.user_name()}@klh.edu.in'
        external_id = str(fake.unique.random_number(digits=12))
        user = User(name=name, email=email, external_id=external_id, role=role).model_dump()
        user.update(created_at=utcnow(), updated_at=utcnow())
        user_id = db[collection_name(User)].insert_one(user).inserted_id

        profile_model = {'student': Student, 'teacher': Teacher}.get(role)
        if profile_model is not None:
            profile = profile_model(user=user_id, name=name, email=email, external_id=external_id).model_dump()
            db[collection_name(profile_model)].insert_one(profile)

        return Principal(id=str(user_id), name=name, email=email, role=role)
    return _make


@pytest.fixture
def login(make_user):
    """Create a user of the given role and return (principal, auth headers)"""
    def _login(role: str = 'student', name: str | None = None):
        principal = make_user(role, name)
        return principal, auth_headers(principal)
    return _login
