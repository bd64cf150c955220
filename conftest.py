import os
import tempfile

_tmp_dir = tempfile.mkdtemp(prefix="taskhub-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_tmp_dir, 'taskhub.db')}"
os.environ["AUTH_SERVICE_URL"] = "http://auth.test"
os.environ["RESEND_API_KEY"] = ""
os.environ["LOG_LEVEL"] = "WARNING"

import itertools  # noqa: E402

import httpx  # noqa: E402
import pytest  # noqa: E402
import respx  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from minio.error import S3Error  # noqa: E402

from taskhub.database import Base, SessionLocal, engine, init_db  # noqa: E402
from taskhub.events import EventPublisher, get_event_publisher  # noqa: E402
from taskhub.main import app  # noqa: E402
from taskhub.messaging_service.delivery import DeliveryRouter, get_delivery_router  # noqa: E402
from taskhub.proposal_service.models import Task, TaskStatus  # noqa: E402
from taskhub.user_service.models import User  # noqa: E402

_ids = itertools.count(1)


class RecordingPublisher(EventPublisher):
    def __init__(self):
        self.events = []

    def publish(self, event_type, data):
        self.events.append((event_type, data))

    def of_type(self, event_type):
        return [data for kind, data in self.events if kind == event_type]


class FakeRedis:
    """Just enough of redis.Redis for SET NX EX, with a clock the test controls."""

    def __init__(self):
        self.now = 0.0
        self.store = {}

    def _alive(self, key):
        entry = self.store.get(key)
        if entry and entry[1] is not None and entry[1] <= self.now:
            del self.store[key]
            return None
        return entry

    def set(self, key, value, nx=False, ex=None):
        if nx and self._alive(key):
            return None
        self.store[key] = (value, self.now + ex if ex else None)
        return True

    def delete(self, key):
        return 1 if self.store.pop(key, None) else 0


class StorageDown(S3Error):
    def __init__(self):
        Exception.__init__(self, "storage down")

    def __str__(self):
        return "storage down"


class FakeMinio:
    def __init__(self):
        self.buckets = set()
        self.objects = {}
        self.fail = False

    def bucket_exists(self, bucket_name):
        return bucket_name in self.buckets

    def make_bucket(self, bucket_name):
        self.buckets.add(bucket_name)

    def put_object(self, bucket_name, object_name, data, length, content_type=None):
        if self.fail:
            raise StorageDown()
        self.objects[(bucket_name, object_name)] = (data.read(), content_type)


@pytest.fixture(autouse=True)
def fresh_schema():
    Base.metadata.drop_all(bind=engine)
    init_db(engine)
    yield


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def make_user(db):
    def _make_user(first_name="Test", last_name=None, **prefs):
        n = next(_ids)
        user = User(
            email=f"user{n}@example.com",
            first_name=first_name,
            last_name=last_name if last_name is not None else f"User{n}",
            **prefs
        )
        db.add(user)
        db.commit()
        db.refresh(user)
        return user
    return _make_user


@pytest.fixture
def make_task(db):
    def _make_task(owner, title="Fix the garden fence", status=TaskStatus.PUBLISHED):
        task = Task(owner_id=owner.id, title=title, status=status)
        db.add(task)
        db.commit()
        db.refresh(task)
        return task
    return _make_task


@pytest.fixture
def publisher():
    return RecordingPublisher()


@pytest.fixture
def delivery():
    return DeliveryRouter()


@pytest.fixture
def fake_minio():
    return FakeMinio()


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def auth_service():
    """Auth service stand-in: the bearer token ``user-<id>`` belongs to user ``id``."""
    def me(request):
        token = request.headers.get("Authorization", "").replace("Bearer ", "", 1)
        if token.startswith("user-"):
            return httpx.Response(200, json={"id": int(token[len("user-"):])})
        return httpx.Response(401, json={"detail": "Invalid token"})

    with respx.mock(base_url="http://auth.test", assert_all_called=False) as mock:
        mock.get("/api/v1/auth/me").mock(side_effect=me)
        yield mock


@pytest.fixture
def auth():
    def _headers(user):
        return {"Authorization": f"Bearer user-{user.id}"}
    return _headers


@pytest.fixture
def client(auth_service, publisher, delivery):
    app.dependency_overrides[get_event_publisher] = lambda: publisher
    app.dependency_overrides[get_delivery_router] = lambda: delivery
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
