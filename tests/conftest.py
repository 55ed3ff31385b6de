import pytest
from fastapi.testclient import TestClient
from jose import jwt

from admission_desk.core.config import Settings
from admission_desk.core.services import build_services
from admission_desk.main import create_app
from admission_desk.services.photo_storage import LocalPhotoStorage
from admission_desk.stores.memory import MemoryApplicationStore, MemoryNotificationStore, MemoryStudentStore


@pytest.fixture
def settings(tmp_path):
    return Settings(
        STORE_BACKEND="memory",
        STORAGE_RETRY_BACKOFF_SECONDS=0,
        STORE_TIMEOUT_SECONDS=2,
        UPLOAD_DIR=str(tmp_path / "uploads"),
        UPLOAD_BASE_URL="http://testserver/uploads",
        JWT_SECRET_KEY="test-secret",
        _env_file=None,
    )


@pytest.fixture
def stores(settings):
    return MemoryApplicationStore(), MemoryStudentStore(), MemoryNotificationStore()


class OutboxMailer:
    """Keeps sent messages in memory; set ``fail`` to simulate a dead relay."""

    def __init__(self):
        self.outbox = []
        self.fail = False

    def send(self, recipient, subject, body):
        if self.fail:
            raise ConnectionRefusedError("smtp relay unreachable")
        self.outbox.append({"to": recipient, "subject": subject, "body": body})


@pytest.fixture
def mailer():
    return OutboxMailer()


@pytest.fixture
def services(settings, stores, mailer):
    photo_storage = LocalPhotoStorage(settings.UPLOAD_DIR, settings.UPLOAD_BASE_URL)
    return build_services(settings, *stores, photo_storage=photo_storage, mailer=mailer)


@pytest.fixture
def client(settings, stores, mailer):
    app = create_app(settings=settings, stores=stores, mailer=mailer)
    with TestClient(app) as c:
        yield c


@pytest.fixture
def token_for(settings, monkeypatch):
    # get_current_admin reads the module level settings
    from admission_desk.core import security
    monkeypatch.setattr(security.settings, "JWT_SECRET_KEY", settings.JWT_SECRET_KEY)

    def make_token(user_id="admin-1", role="admin"):
        return jwt.encode({"sub": user_id, "role": role}, settings.JWT_SECRET_KEY, algorithm=settings.ALGORITHM)

    return make_token


@pytest.fixture
def admin_headers(token_for):
    return {"Authorization": f"Bearer {token_for()}"}


@pytest.fixture
def payload():
    return {
        "first_name": "Asha",
        "last_name": "Verma",
        "date_of_birth": "2015-06-14",
        "gender": "Female",
        "class_applied": "V",
        "father_name": "Ravi Verma",
        "father_phone": "9876543210",
        "father_email": "ravi.verma@example.com",
        "mother_name": "Sunita Verma",
        "mother_phone": "9123456780",
        "address": {
            "street": "12 MG Road",
            "city": "Patna",
            "state": "Bihar",
            "pincode": "800001",
        },
        "previous_school": "Little Flowers Primary",
    }
