from __future__ import annotations

from collections.abc import AsyncIterator
from io import BytesIO

import pytest
import xlwt
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from ledger_service import models  # noqa: F401
from ledger_service.api import create_app
from ledger_service.config import Settings
from ledger_service.database import (
    Base,
    create_engine,
    create_session_factory,
    get_session,
    get_session_factory,
)


@pytest.fixture()
def test_settings(tmp_path) -> Settings:
    db_path = tmp_path / "test.db"
    return Settings(
        database_url=f"sqlite+aiosqlite:///{db_path}",
        environment="test",
        app_name="Test Ledger Service",
    )


@pytest.fixture()
async def engine(test_settings: Settings) -> AsyncIterator[AsyncEngine]:
    db_engine = create_engine(test_settings.database_url)
    async with db_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield db_engine
    await db_engine.dispose()


@pytest.fixture()
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return create_session_factory(engine)


@pytest.fixture()
async def session(session_factory) -> AsyncIterator[AsyncSession]:
    async with session_factory() as db_session:
        yield db_session


@pytest.fixture()
async def app(test_settings: Settings, session_factory) -> AsyncIterator[FastAPI]:
    async def override_get_session() -> AsyncIterator[AsyncSession]:
        async with session_factory() as db_session:
            yield db_session

    app = create_app(test_settings)
    app.dependency_overrides[get_session] = override_get_session
    app.dependency_overrides[get_session_factory] = lambda: session_factory

    yield app


@pytest.fixture()
async def client(app: FastAPI) -> AsyncIterator[AsyncClient]:
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client


REPORT_TITLE = "QT THUỐC THÁNG 09 NĂM 2025 _ ĐỀ NGHỊ MUA THUỐC THÁNG 10 NĂM 2025"


def make_row(seq, name, units, *, opening=(None, None, None), inbound=(None, None, None),
             outbound=(None, None, None), closing=(None, None, None), expiry=None,
             suggested=(None, None, None), route=None) -> list:
    row = [None] * 28
    row[0], row[1], row[2], row[5] = seq, name, route, units
    row[6:9] = opening
    row[9:12] = inbound
    row[12:15] = outbound
    row[15:18] = closing
    row[18] = expiry
    row[25:28] = suggested
    return row


@pytest.fixture()
def report_title() -> str:
    return REPORT_TITLE


@pytest.fixture()
def report_rows() -> list[list]:
    return [
        ["I - THUỐC KHÁNG SINH"],
        make_row(1, "Amoxicillin 500mg", "viên", opening=(1000, 100, None),
                 inbound=(500, 120, None), outbound=(300, 100, None),
                 expiry="15/06/2027", route="Uống"),
        make_row("2", "Paracetamol", "viên", opening=("1,200", "50", "60000"), expiry=46086),
        ["II - VẬT TƯ Y TẾ"],
        make_row(1, "Bông y tế", "gói", inbound=(10, "abc", None)),
        make_row(2, "Gạc", "", inbound=(10, 5, None)),
        [None, "TỔNG CỘNG", None, None, None, None, None, None, 160000],
        ["Ngày 30 tháng 9 năm 2025"],
        [],
        make_row(3, "Gạc vô trùng", "gói", inbound=(20, 3000, None), expiry="31/02/2026"),
        make_row(4, "Chữ ký TGD", "x"),
    ]


def workbook_bytes(title: str, rows: list[list], start_row: int = 8) -> bytes:
    book = xlwt.Workbook(encoding="utf-8")
    sheet = book.add_sheet("Sheet1")
    sheet.write(0, 0, title)
    sheet.write(start_row - 1, 0, "STT")
    sheet.write(start_row - 1, 1, "Tên thuốc")
    for offset, row in enumerate(rows):
        for column, value in enumerate(row):
            if value is not None:
                sheet.write(start_row + offset, column, value)
    buffer = BytesIO()
    book.save(buffer)
    return buffer.getvalue()


@pytest.fixture()
def report_workbook(report_title: str, report_rows: list[list]) -> bytes:
    return workbook_bytes(report_title, report_rows)
