"""
Fixtures compartidas por los tests del módulo Sales

- Base de datos SQLite (aiosqlite) en un archivo temporal por test
- Clientes falsos de Fast y metadata que registran cada llamada
"""
from collections import defaultdict
from datetime import datetime

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker

from invoice_sync.database.database import Base
from invoice_sync.modules.integrations.accounting import AccountingClient
from invoice_sync.modules.integrations.metadata import MetadataProvider
from invoice_sync.modules.sales import models  # noqa: F401  registra las tablas
from invoice_sync.modules.sales.schemas import OrderData, SaleLine, CustomerData


OK_RESPONSE = [{"status": 1, "message": "OK", "guid": "g1"}]


class FakeAccountingClient(AccountingClient):
    """Registra las llamadas; responses[nombre] puede ser una respuesta o una excepción"""

    def __init__(self):
        self.calls = defaultdict(list)
        self.responses = {}

    def _respond(self, name, default=None):
        value = self.responses.get(name, OK_RESPONSE if default is None else default)
        if isinstance(value, Exception):
            raise value
        return value

    @property
    def total_calls(self):
        return sum(len(items) for items in self.calls.values())

    async def create_sales_order(self, payload, action=0):
        self.calls["create_sales_order"].append({"payload": payload, "action": action})
        return self._respond("create_sales_order")

    async def create_sales_invoice(self, payload):
        self.calls["create_sales_invoice"].append({"payload": payload})
        return self._respond("create_sales_invoice")

    async def create_sales_return(self, payload):
        self.calls["create_sales_return"].append({"payload": payload})
        return self._respond("create_sales_return")

    async def create_gxt_invoice(self, payload):
        self.calls["create_gxt_invoice"].append({"payload": payload})
        return self._respond("create_gxt_invoice")

    async def create_or_update_customer(self, payload):
        self.calls["create_or_update_customer"].append({"payload": payload})
        return self._respond("create_or_update_customer")

    async def process_payment(self, doc_code, order, invoice_data, stock_codes, allow_without_stock_codes=False):
        self.calls["process_payment"].append({
            "doc_code": doc_code,
            "stock_codes": stock_codes,
            "allow_without_stock_codes": allow_without_stock_codes,
        })
        return self._respond("process_payment", {"paymentResults": [], "debitAdviceResults": []})

    async def process_cashio_payment(self, payment_data):
        self.calls["process_cashio_payment"].append({"payment_data": payment_data})
        return self._respond("process_cashio_payment")


class FakeMetadataProvider(MetadataProvider):
    """Datos en memoria; los nombres en `failing` lanzan excepción"""

    def __init__(self):
        self.products = {}
        self.departments = {}
        self.warehouses = {}
        self.employees = {}
        self.card_data = {}
        self.pending_payments = {}
        self.failing = set()
        self.calls = defaultdict(list)

    def _record(self, name, arg):
        self.calls[name].append(arg)
        if name in self.failing:
            raise RuntimeError(f"{name} unavailable")

    async def fetch_products(self, item_codes):
        item_codes = list(item_codes)
        self._record("fetch_products", item_codes)
        return {code: self.products[code] for code in item_codes if code in self.products}

    async def fetch_departments(self, branch_codes):
        branch_codes = list(branch_codes)
        self._record("fetch_departments", branch_codes)
        return {code: self.departments[code] for code in branch_codes if code in self.departments}

    async def fetch_warehouse_codes(self, stock_codes):
        stock_codes = list(stock_codes)
        self._record("fetch_warehouse_codes", stock_codes)
        return {code: self.warehouses[code] for code in stock_codes if code in self.warehouses}

    async def fetch_employee_status(self, partner_codes):
        partner_codes = list(partner_codes)
        self._record("fetch_employee_status", partner_codes)
        return {code: self.employees.get(code, False) for code in partner_codes}

    async def fetch_card_data(self, doc_code):
        self._record("fetch_card_data", doc_code)
        return self.card_data.get(doc_code, [])

    async def find_pending_payments(self, doc_code):
        self._record("find_pending_payments", doc_code)
        return self.pending_payments.get(doc_code, [])


def build_order(doc_code, *lines, customer_code="KH01", branch_code="CN01", doc_source_type=None):
    """Arma un OrderData; cada línea es un dict de campos de SaleLine"""
    sales = [
        SaleLine(doc_code=doc_code, branch_code=branch_code, doc_source_type=doc_source_type, **line)
        for line in lines
    ]
    return OrderData(
        doc_code=doc_code,
        doc_date=datetime(2025, 1, 15, 10, 30),
        branch_code=branch_code,
        doc_source_type=doc_source_type,
        customer=CustomerData(code=customer_code, name="Nguyễn Văn A") if customer_code else None,
        sales=sales,
    )


# ===== FIXTURES =====

@pytest.fixture
async def session_factory(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'invoice_sync.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


@pytest.fixture
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def accounting():
    return FakeAccountingClient()


@pytest.fixture
def metadata():
    return FakeMetadataProvider()


@pytest.fixture
def make_order():
    return build_order
