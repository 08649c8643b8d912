import base64
import os
import sys
from pathlib import Path
from urllib.parse import parse_qsl

import httpx
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

os.environ.setdefault('APP_ENV', 'testing')
os.environ.setdefault('DATABASE_URL', 'sqlite://')
os.environ.setdefault('CHARGEBEE_SITE', 'test-site')
os.environ.setdefault('CHARGEBEE_KEY', 'test_key')
os.environ.setdefault('CHARGEBEE_GATEWAY', 'stripe')

from chargebee_subscriptions.config import Settings  # noqa: E402
from chargebee_subscriptions.database import init_db  # noqa: E402
from chargebee_subscriptions.integrations.chargebee import ChargebeeClient  # noqa: E402
from chargebee_subscriptions.models import User  # noqa: E402

REDIRECTS = {'redirect': {'success': 'https://app.test/billing/done', 'cancelled': 'https://app.test/billing'}}


def b64(value):
    return base64.b64encode(str(value).encode()).decode()


def form(request: httpx.Request) -> dict:
    return dict(parse_qsl(request.content.decode(), keep_blank_values=True))


class ChargebeeStub:
    """Routes requests by (method, path) to canned Chargebee responses and records them."""

    def __init__(self):
        self.routes = {}
        self.requests = []

    def add(self, method, path, body, status_code=200):
        self.routes[(method, f'/api/v2{path}')] = (status_code, body)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        key = (request.method, request.url.path)
        if key not in self.routes:
            return httpx.Response(404, json={'message': 'Not found', 'api_error_code': 'resource_not_found'})
        status_code, body = self.routes[key]
        if isinstance(body, Exception):
            raise body
        return httpx.Response(status_code, json=body)

    @property
    def transport(self):
        return httpx.MockTransport(self.handler)


@pytest.fixture
def settings():
    return Settings(
        _env_file=None,
        APP_ENV='testing',
        CHARGEBEE_SITE='test-site',
        CHARGEBEE_KEY='test_key',
        CHARGEBEE_GATEWAY='stripe',
    )


@pytest.fixture
def engine():
    engine = create_engine(
        'sqlite://',
        connect_args={'check_same_thread': False},
        poolclass=StaticPool,
    )
    init_db(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db(engine):
    session = sessionmaker(bind=engine)()
    yield session
    session.close()


@pytest.fixture
def user(db):
    user = User(id=42, first_name='Ada', last_name='Lovelace', email='ada@example.com')
    db.add(user)
    db.commit()
    return user


@pytest.fixture
def chargebee():
    return ChargebeeStub()


@pytest.fixture
def client(chargebee):
    return ChargebeeClient('test-site', 'test_key', transport=chargebee.transport)
