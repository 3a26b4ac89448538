"""Pytest bootstrap configuration.

Environment variables are set before any application module is imported,
so settings resolve to an in-memory SQLite database and no external
integration is configured.
"""
import asyncio
import os

os.environ.setdefault("DATABASE__URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("LOG_LEVEL", "WARNING")

from datetime import datetime, timezone  # noqa: E402
from functools import partial  # noqa: E402
from typing import Optional  # noqa: E402

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from application.ports.integrations import (  # noqa: E402
    FolderRef,
    NotificationResult,
    TicketSummary,
    UploadedFile,
)
from infrastructure.models import (  # noqa: E402
    AttachmentModel,
    Base,
    CustomerModel,
    PaymentModel,
    TicketModel,
)
from infrastructure.unit_of_work import SQLAlchemyUnitOfWork  # noqa: E402


@pytest_asyncio.fixture
async def engine():
    eng = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(bind=engine, expire_on_commit=False)


@pytest.fixture
def uow_factory(session_factory):
    return partial(SQLAlchemyUnitOfWork, session_factory=session_factory)


class Seeder:
    """直接写 ORM 模型准备测试数据"""

    def __init__(self, session_factory):
        self._session_factory = session_factory
        self._ticket_seq = 0

    async def _add(self, model):
        async with self._session_factory() as session:
            session.add(model)
            await session.commit()
            await session.refresh(model)
        return model

    async def customer(self, name: str = "Budi Santoso", email: str = "budi@example.com", phone: str = "+628123456789") -> int:
        model = await self._add(CustomerModel(name=name, email=email, phone=phone))
        return model.id

    async def ticket(
        self,
        *,
        ticket_no: Optional[str] = None,
        status: str = "DRAFT",
        payment_status: str = "PENDING",
        customer_id: Optional[int] = None,
        created_at: Optional[datetime] = None,
        drive_folder_id: Optional[str] = None,
        issue_type: str = "Account Recovery",
    ) -> int:
        if customer_id is None:
            customer_id = await self.customer()
        self._ticket_seq += 1
        model = TicketModel(
            ticket_no=ticket_no or f"WAC-2025-{self._ticket_seq:06d}",
            customer_id=customer_id,
            status=status,
            payment_status=payment_status,
            issue_type=issue_type,
            drive_folder_id=drive_folder_id,
            drive_folder_url=f"https://drive.example.com/{drive_folder_id}" if drive_folder_id else None,
            created_at=created_at or datetime.now(timezone.utc),
        )
        model = await self._add(model)
        return model.id

    async def payment(
        self,
        ticket_id: int,
        *,
        order_id: str,
        amount: int = 50123,
        unique_code: Optional[str] = "123",
        status: str = "PENDING",
        payload=None,
        provider: str = "QRIS",
    ) -> int:
        if payload is None:
            payload = {"unique_code": unique_code, "base_amount": 50000, "status_history": []}
        model = await self._add(
            PaymentModel(
                ticket_id=ticket_id,
                order_id=order_id,
                amount=amount,
                currency="IDR",
                status=status,
                provider=provider,
                payload=payload,
                version=0,
            )
        )
        return model.id

    async def attachment(self, ticket_id: int, *, file_name: str = "receipt.png", data: bytes = b"\x89PNG") -> int:
        model = await self._add(
            AttachmentModel(
                ticket_id=ticket_id,
                file_name=file_name,
                mime_type="image/png",
                size=len(data),
                file_data=data,
            )
        )
        return model.id


@pytest.fixture
def seed(session_factory):
    return Seeder(session_factory)


@pytest_asyncio.fixture
async def file_engine(tmp_path):
    """文件库，每个会话独立连接；用于并发事务测试"""
    eng = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'payments.db'}")
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest.fixture
def file_session_factory(file_engine):
    return async_sessionmaker(bind=file_engine, expire_on_commit=False)


@pytest.fixture
def file_uow_factory(file_session_factory):
    return partial(SQLAlchemyUnitOfWork, session_factory=file_session_factory)


@pytest.fixture
def file_seed(file_session_factory):
    return Seeder(file_session_factory)


class FakeFolders:
    def __init__(self, *, fail: bool = False, delay: float = 0.0):
        self.fail = fail
        self.delay = delay
        self.calls: list[int] = []

    async def create_folder(self, ticket) -> FolderRef:
        self.calls.append(ticket.id)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise RuntimeError("drive unavailable")
        return FolderRef(id=f"folder-{ticket.id}", url=f"https://drive.example.com/folder-{ticket.id}", row_index=7)


class FakeUploader:
    def __init__(self, *, fail: bool = False):
        self.fail = fail
        self.calls: list[tuple[int, str]] = []

    async def upload_file(self, file, folder_id: str) -> UploadedFile:
        self.calls.append((file.id, folder_id))
        if self.fail:
            raise RuntimeError("upload failed")
        return UploadedFile(url=f"https://drive.example.com/{folder_id}/{file.file_name}", remote_file_id=f"file-{file.id}")


class FakeSheets:
    def __init__(self, *, fail: bool = False):
        self.fail = fail
        self.calls: list[tuple[int, list[str]]] = []

    async def upsert_row(self, ticket, urls: list[str]) -> Optional[int]:
        self.calls.append((ticket.id, list(urls)))
        if self.fail:
            raise RuntimeError("sheet locked")
        return ticket.sheet_row_index or 7


class FakeNotifier:
    def __init__(self, *, delivered: bool = True):
        self.delivered = delivered
        self.summaries: list[TicketSummary] = []

    async def notify(self, summary: TicketSummary) -> NotificationResult:
        self.summaries.append(summary)
        if self.delivered:
            return NotificationResult(delivered=True, attempts=1)
        return NotificationResult(delivered=False, attempts=3, error="gateway down")


@pytest.fixture
def collaborators():
    return {
        "folders": FakeFolders(),
        "uploader": FakeUploader(),
        "sheets": FakeSheets(),
        "notifier": FakeNotifier(),
    }
