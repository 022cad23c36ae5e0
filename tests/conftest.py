import os

# Keep the app's module-level engine off the filesystem
os.environ.setdefault("DATABASE_URL", "sqlite://")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from planpal.chat.commands import CommandDispatcher
from planpal.chat.telegram import TelegramAdapter
from planpal.database import Base, get_db
from planpal.ledger_service import LedgerService
from planpal.main import app
from planpal.ratelimit import limiter
from planpal.receipt.base import ReceiptExtractionResult
from planpal.sessions import SessionStore


class RecordingAdapter(TelegramAdapter):
    """Telegram update parsing with an in-memory outbox instead of the Bot API."""

    def __init__(self):
        super().__init__(token="test-token")
        self.sent: list[tuple[str, str]] = []
        self.files: dict[str, bytes] = {}
        self.fail_downloads = False

    async def start(self) -> None:
        pass

    async def stop(self) -> None:
        pass

    async def send_message(self, chat_id: str, text: str) -> None:
        self.sent.append((chat_id, text))

    async def download_file(self, file_id: str) -> bytes:
        if self.fail_downloads:
            raise RuntimeError("download failed")
        return self.files.get(file_id, b"\xff\xd8fake-jpeg")

    def last(self) -> str | None:
        return self.sent[-1][1] if self.sent else None


class StubExtractor:
    def __init__(self):
        self.result: ReceiptExtractionResult | None = None
        self.error: Exception | None = None
        self.calls = 0

    async def extract(self, image_bytes: bytes, content_type: str) -> ReceiptExtractionResult:
        self.calls += 1
        if self.error:
            raise self.error
        return self.result or ReceiptExtractionResult()


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    db = session_factory()
    yield db
    db.close()


@pytest.fixture
def service(db):
    return LedgerService(db, policy="majority", tolerance=1)


@pytest.fixture
def ledger(db):
    """Fresh reads after another session has written."""
    def _ledger() -> LedgerService:
        db.expire_all()
        return LedgerService(db, policy="majority", tolerance=1)
    return _ledger


@pytest.fixture
def adapter():
    return RecordingAdapter()


@pytest.fixture
def extractor():
    return StubExtractor()


@pytest.fixture
def dispatcher(adapter, extractor, session_factory):
    dispatcher = CommandDispatcher(
        adapter,
        SessionStore(ttl_seconds=1800),
        session_factory,
        receipt_extractor_factory=lambda: extractor,
        policy="majority",
        tolerance=1,
    )
    dispatcher.attach()
    yield dispatcher
    dispatcher.detach()


@pytest.fixture
def client(session_factory):
    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    limiter.enabled = False
    yield TestClient(app)
    limiter.enabled = True
    app.dependency_overrides.clear()
    app.state.dispatcher = None
