"""Shared setup for API tests: env, JWT minting and a fresh in-memory database per test."""
import os
import time
import unittest

os.environ["DATABASE_URL"] = "sqlite:///:memory:"
os.environ.pop("REDIS_URL", None)
os.environ.setdefault("SUPABASE_JWT_SECRET", "test-jwt-secret")
os.environ.setdefault("SUPABASE_PROJECT_URL", "https://test-project.supabase.co")
os.environ.setdefault("RATE_LIMIT_ENABLED", "0")
os.environ.setdefault("STRIPE_SECRET_KEY", "sk_test_dummy")
os.environ.setdefault("STRIPE_WEBHOOK_SECRET", "whsec_test")
os.environ.setdefault("GOOGLE_CLIENT_ID", "google-client-id")
os.environ.setdefault("GOOGLE_CLIENT_SECRET", "google-client-secret")
os.environ.setdefault("SITE_URL", "http://localhost:3000")

from fastapi.testclient import TestClient
from jose import jwt

from database import Base, SessionLocal, engine
from main import app
from models.user import User
from services.cache.cache_backend import cache_clear_local
from services.supabase_auth import SUPABASE_JWT_AUD, SUPABASE_JWT_SECRET, SUPABASE_PROJECT_URL


def make_token(user_id: str, email: str, *, expires_in: int = 3600) -> str:
    now = int(time.time())
    claims = {
        "sub": user_id,
        "email": email,
        "aud": SUPABASE_JWT_AUD,
        "iss": f"{SUPABASE_PROJECT_URL}/auth/v1",
        "iat": now,
        "exp": now + expires_in,
        "role": "authenticated",
    }
    return jwt.encode(claims, SUPABASE_JWT_SECRET, algorithm="HS256")


class ApiTestCase(unittest.TestCase):
    def setUp(self):
        cache_clear_local()
        Base.metadata.drop_all(bind=engine)
        Base.metadata.create_all(bind=engine)
        self.client = TestClient(app, raise_server_exceptions=False)
        self.db = SessionLocal()

    def tearDown(self):
        self.db.close()
        Base.metadata.drop_all(bind=engine)
        cache_clear_local()

    def create_user(self, user_id: str, email: str, *, is_admin: bool = False) -> User:
        user = User(id=user_id, email=email, is_admin=is_admin)
        self.db.add(user)
        self.db.commit()
        return user

    def headers_for(self, user: User) -> dict:
        return {"Authorization": f"Bearer {make_token(user.id, user.email)}"}

    def fresh(self):
        """The test session, with everything it loaded marked stale."""
        self.db.expire_all()
        return self.db
