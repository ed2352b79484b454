"""
Tests para el módulo Sales

Tests que cubren:
- Clasificación de đơn hàng y prioridad de variants
- Gate de validación por Loại đơn hàng
- Ghép phiếu kho (FIFO, unicidad, fallback por material_code)
- Explosión de líneas y construcción de payloads de Fast
- Persistencia de fast_api_invoices y carga de đơn hàng
- Procesamiento por lotes y endpoints HTTP
"""
from datetime import date, datetime
from types import SimpleNamespace

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import select

from invoice_sync.database.database import get_async_db
from invoice_sync.dependencies.integrationDependencies import get_integration_clients
from invoice_sync.main import app
from invoice_sync.modules.integrations.accounting import (
    response_status, response_message, response_guid, with_api_message
)
from invoice_sync.modules.integrations.metadata import ProductInfo, DepartmentInfo, parse_card_data
from invoice_sync.modules.integrations.registry import configure_integrations
from invoice_sync.modules.sales import router as sales_router
from invoice_sync.modules.sales.classifier import (
    classify, normalize_label, is_cancel_code, strip_cancel_suffix, VARIANT_LABELS
)
from invoice_sync.modules.sales.constants import OrderVariant, MSG_NO_SALES
from invoice_sync.modules.sales.enrichment import EnrichedOrder, explode_sales, apply_platform_voucher
from invoice_sync.modules.sales.matcher import (
    match_stock_transfers, sort_transfers_for_matching, doc_codes_for_stock_transfer, resolve_stock_codes
)
from invoice_sync.modules.sales.models import Sale, Customer, StockTransfer, OrderFee, FastApiInvoice
from invoice_sync.modules.sales.payload import (
    SalesPayloadBuilder, normalize_ma_kh, resolve_loai_gd
)
from invoice_sync.modules.sales.persistence import InvoicePersistenceService
from invoice_sync.modules.sales.schemas import (
    SaleLine, StockTransferData, OrderFeeData, CustomerData, BatchProcessRequest
)
from invoice_sync.modules.sales.service import InvoiceBatchService, find_order_by_doc_code, order_validator
from invoice_sync.modules.sales.validation import OrderValidator


def transfer(doc_code, item_code, qty=-1, **kwargs):
    return StockTransferData(doc_code=doc_code, item_code=item_code, qty=qty, **kwargs)


# ===== CLASIFICACIÓN =====

class TestClassifier:
    """Clasificación por Loại y docSourceType"""

    def test_normalize_label_ignores_spacing_and_case(self):
        assert normalize_label("01.Thường") == normalize_label("01. Thường")
        assert normalize_label("  03.   Đổi  điểm ") == "03.đổi điểm"
        assert normalize_label(None) == ""

    def test_normal_order_is_ordinary(self, make_order):
        result = classify(make_order("SO1", {"ordertype_name": "01. Thường"}))

        assert result.variant == OrderVariant.NORMAL
        assert result.is_ordinary is True

    def test_service_order_has_priority_over_other_special_types(self, make_order):
        order = make_order("SO1", {"ordertype_name": "03. Đổi điểm"}, {"ordertype_name": "02. Làm dịch vụ"})

        result = classify(order)

        assert result.variant == OrderVariant.SERVICE_ORDER
        assert result.predicates.is_loyalty_exchange is True
        assert result.is_ordinary is False

    def test_sale_return_has_priority_over_everything(self, make_order):
        """docSourceType se normaliza a mayúsculas"""
        order = make_order("RT1", {"ordertype_name": "02. Làm dịch vụ"}, doc_source_type=" sale_return ")

        result = classify(order)

        assert result.variant == OrderVariant.SALE_RETURN
        assert result.doc_source_type == "SALE_RETURN"

    def test_order_return_is_flagged_but_not_routed_as_return(self, make_order):
        result = classify(make_order("SO1", {"ordertype_name": "01. Thường"}, doc_source_type="ORDER_RETURN"))

        assert result.predicates.is_return is True
        assert result.variant == OrderVariant.NORMAL

    def test_raw_service_code_is_detected(self, make_order):
        result = classify(make_order("SO1", {"ordertype": "LAM_DV"}))

        assert result.variant == OrderVariant.SERVICE_ORDER

    def test_special_priority_order(self, make_order):
        order = make_order(
            "SO1",
            {"ordertype_name": "08. Tách thẻ"},
            {"ordertype_name": "Đổi vỏ"},
            {"ordertype_name": "06. Đầu tư"},
        )

        assert classify(order).variant == OrderVariant.INVESTMENT

    def test_cancel_code_helpers(self):
        assert is_cancel_code("SO3_X") is True
        assert is_cancel_code("so3_x") is True
        assert is_cancel_code("SO3") is False
        assert strip_cancel_suffix("SO3_X") == "SO3"


# ===== VALIDACIÓN =====

class TestOrderValidator:
    """Gate de Loại đơn hàng"""

    def test_both_spellings_of_normal_are_allowed(self, make_order):
        validator = OrderValidator()

        assert validator.validate(make_order("SO1", {"ordertype_name": "01.Thường"})).success is True
        assert validator.validate(make_order("SO1", {"ordertype_name": "01. Thường"})).success is True

    def test_disallowed_label_reports_label_and_allow_list(self, make_order):
        validator = OrderValidator(["01.Thường", "01. Thường"])

        result = validator.validate(make_order("SO5", {"ordertype_name": "99. Unknown"}))

        assert result.success is False
        assert result.order_type == "99. Unknown"
        assert result.message == (
            'Chỉ cho phép tạo hóa đơn cho đơn hàng có Loại thuộc: [01.Thường, 01. Thường]. '
            'Đơn hàng SO5 có Loại = "99. Unknown"'
        )

    def test_first_line_decides(self, make_order):
        order = make_order("SO1", {"ordertype_name": "99. Unknown"}, {"ordertype_name": "01. Thường"})

        assert OrderValidator().validate(order).success is False

    def test_variant_labels_extend_allow_list_per_call(self, make_order):
        validator = OrderValidator()
        order = make_order("SO2", {"ordertype_name": "03.Đổi điểm"})

        assert validator.validate(order).success is False
        assert validator.validate(order, also_allowed=VARIANT_LABELS[OrderVariant.LOYALTY_EXCHANGE]).success is True

    def test_order_without_lines_fails(self, make_order):
        result = OrderValidator().validate(make_order("SO6"))

        assert result.success is False
        assert result.message == MSG_NO_SALES.format(doc_code="SO6")

    def test_allow_list_can_be_changed_at_runtime(self, make_order):
        validator = OrderValidator()
        order = make_order("SO1", {"ordertype_name": "07. Bán tài khoản"})

        validator.add_allowed_order_type("07. Bán tài khoản")
        validator.add_allowed_order_type("07. Bán tài khoản")
        assert validator.allowed_order_types.count("07. Bán tài khoản") == 1
        assert validator.validate(order).success is True

        validator.remove_allowed_order_type("07. Bán tài khoản")
        assert validator.validate(order).success is False

    def test_sale_return_only_needs_lines(self, make_order):
        validator = OrderValidator()

        assert validator.validate_sale_return(make_order("RT1", {"ordertype_name": "99. Unknown"})).success is True
        assert validator.validate_sale_return(make_order("RT1")).success is False


# ===== GHÉP PHIẾU KHO =====

class TestStockTransferMatcher:
    """FIFO por mã vật tư"""

    def test_fifo_assigns_first_lines(self):
        lines = [SaleLine(id=f"L{i}", item_code="A", qty=1) for i in range(3)]
        transfers = [transfer("ST1", "A"), transfer("ST2", "A")]

        result = match_stock_transfers(lines, transfers)

        assert result.assignments["L0"].issue.doc_code == "ST1"
        assert result.assignments["L1"].issue.doc_code == "ST2"
        assert result.assignments["L2"].issue is None
        assert result.assignments["L2"].return_ is None
        assert result.unmatched == []

    def test_each_transfer_used_once(self):
        lines = [SaleLine(id="L0", item_code="A"), SaleLine(id="L1", item_code="B")]
        transfers = [transfer("ST1", "A"), transfer("ST2", "A"), transfer("ST3", "C")]

        result = match_stock_transfers(lines, transfers)

        assigned = [a.issue.doc_code for a in result.assignments.values() if a.issue]
        assert assigned == ["ST1"]
        assert [t.doc_code for t in result.unmatched] == ["ST2", "ST3"]

    def test_material_code_fallback_is_case_insensitive(self):
        lines = [SaleLine(id="L0", item_code="Mat-01")]

        result = match_stock_transfers(lines, [transfer("ST1", "OTHER", material_code="mat-01")])

        assert result.assignments["L0"].issue.doc_code == "ST1"

    def test_return_transfers_go_to_return_slot(self):
        lines = [SaleLine(id="L0", item_code="A")]

        result = match_stock_transfers(lines, [transfer("RT1", "A", qty=1)])

        assert result.assignments["L0"].issue is None
        assert result.assignments["L0"].return_.doc_code == "RT1"

    def test_negative_qty_is_issue_only_across_orders(self):
        lines = [SaleLine(id="L0", item_code="A")]
        record = transfer("TR1", "A", qty=-2)

        assert match_stock_transfers(lines, [record], cross_order=True).assignments["L0"].issue is not None
        assert match_stock_transfers(lines, [record]).assignments["L0"].issue is None

    def test_lines_without_id_get_positional_keys(self):
        result = match_stock_transfers([SaleLine(item_code="A")], [transfer("ST1", "A")])

        assert result.assignments["line-0"].issue.doc_code == "ST1"

    def test_sort_by_doc_code_for_single_order(self):
        ordered = sort_transfers_for_matching([transfer("ST2", "A"), transfer("ST1", "A")])

        assert [t.doc_code for t in ordered] == ["ST1", "ST2"]

    def test_sort_by_created_at_across_orders(self):
        late = transfer("ST1", "A", created_at=datetime(2025, 1, 2))
        early = transfer("ST2", "A", created_at=datetime(2025, 1, 1))

        ordered = sort_transfers_for_matching([late, early], cross_order=True)

        assert [t.doc_code for t in ordered] == ["ST2", "ST1"]

    def test_return_codes_include_origin_order(self):
        assert doc_codes_for_stock_transfer(["RT33.00121928_1"]) == ["RT33.00121928_1", "SO33.00121928"]
        assert doc_codes_for_stock_transfer(["SO1", "SO1"]) == ["SO1"]

    def test_resolve_stock_codes_is_distinct(self):
        records = [transfer("ST1", "A", stock_code="K1"), transfer("ST2", "B", stock_code="K1"),
                   transfer("ST3", "C", stock_code=" K2 "), transfer("ST4", "D")]

        assert resolve_stock_codes(records) == ["K1", "K2"]


# ===== EXPLOSIÓN =====

class TestExplodeSales:
    """Una línea por phiếu xuất kho"""

    def test_one_line_split_across_two_transfers(self, make_order):
        order = make_order("SO1", {"id": "L0", "item_code": "A", "qty": 2, "revenue": 200, "tien_hang": 200})
        transfers = [
            transfer("ST1", "A", stock_code="K1", doctype="SALE_STOCKOUT"),
            transfer("ST2", "A", stock_code="K2", doctype="SALE_STOCKOUT"),
        ]

        lines, orphans = explode_sales(order, transfers, warehouse_map={"K2": "FAST-K2"})

        assert [line.qty for line in lines] == [1, 1]
        assert [line.revenue for line in lines] == [100, 100]
        assert [line.ma_kho for line in lines] == ["K1", "FAST-K2"]
        assert orphans == []

    def test_unknown_item_becomes_pseudo_line(self, make_order):
        order = make_order("SO1", {"id": "L0", "item_code": "A", "qty": 1})

        lines, orphans = explode_sales(order, [transfer("ST1", "A"), transfer("ST2", "Z", stock_code="K9")])

        assert len(lines) == 2
        assert lines[1].is_pseudo is True
        assert lines[1].item_code == "Z"
        assert [t.doc_code for t in orphans] == ["ST2"]

    def test_unmatched_sale_lines_are_kept(self, make_order):
        order = make_order("SO1", {"id": "L0", "item_code": "A", "qty": 1}, {"id": "L1", "item_code": "DV", "qty": 1})

        lines, _ = explode_sales(order, [transfer("ST1", "A")])

        assert [line.item_code for line in lines] == ["A", "DV"]

    def test_placeholder_item_is_not_exploded(self, make_order):
        order = make_order("SO1", {"id": "L0", "item_code": "A", "qty": 3})

        lines, orphans = explode_sales(order, [transfer("ST1", "TRUTONKEEP", qty=5, doctype="SALE_STOCKOUT")])

        assert [line.qty for line in lines] == [3]
        assert orphans == []

    def test_batch_and_serial_follow_product_tracking(self, make_order):
        order = make_order("SO1", {"id": "L0", "item_code": "A", "qty": 1}, {"id": "L1", "item_code": "B", "qty": 1})
        products = {
            "A": ProductInfo(code="A", track_batch=True),
            "B": ProductInfo(code="B", track_serial=True),
        }

        lines, _ = explode_sales(
            order, [transfer("ST1", "A", batch_serial="LO1"), transfer("ST2", "B", batch_serial="SER1")], products
        )

        assert (lines[0].ma_lo, lines[0].so_serial) == ("LO1", None)
        assert (lines[1].ma_lo, lines[1].so_serial) == (None, "SER1")

    def test_platform_voucher_from_order_fee(self):
        sales = [SaleLine(item_code="A")]
        fees = [OrderFeeData(erp_order_code="SO1", raw_data={"raw_data": {"voucher_from_seller": "5000"}})]

        apply_platform_voucher(sales, fees)

        assert sales[0].voucher_dp1 == "VC CTKM SÀN"
        assert sales[0].chiet_khau_voucher_dp1 == 5000


# ===== PAYLOAD =====

class TestPayloadBuilder:
    """Payloads de Fast"""

    def test_normalize_ma_kh(self):
        assert normalize_ma_kh("NV0001") == "0001"
        assert normalize_ma_kh(" KH01 ") == "KH01"
        assert normalize_ma_kh("NV") == "NV"
        assert normalize_ma_kh(None) == ""

    def test_loai_gd_for_normal_orders(self):
        assert resolve_loai_gd(SaleLine(product_type="I", qty=1), OrderVariant.NORMAL) == "01"
        assert resolve_loai_gd(SaleLine(product_type="S", qty=1), OrderVariant.NORMAL) == "02"
        assert resolve_loai_gd(SaleLine(product_type="V", qty=1), OrderVariant.NORMAL) == "03"
        assert resolve_loai_gd(SaleLine(product_type="S", qty=-1), OrderVariant.SERVICE_CHANGE) == "11"
        assert resolve_loai_gd(SaleLine(product_type="S", qty=0, gia_ban=0), OrderVariant.SERVICE_ORDER) == "06"

    def test_invoice_payload_header_and_detail(self, make_order):
        order = make_order("SO1", {"item_code": "A", "qty": 2, "gia_ban": 50, "disc_amount": 10})
        enriched = EnrichedOrder(
            order=order,
            products={"A": ProductInfo(code="A", dvt="Hộp", material_code="MAT-A")},
            departments={"CN01": DepartmentInfo(branch_code="CN01", ma_bp="BP01", ma_dvcs="TTM")},
        )

        payload = SalesPayloadBuilder().build_invoice_payload(enriched, OrderVariant.NORMAL)

        assert payload["so_ct"] == "SO1"
        assert payload["ma_dvcs"] == "TTM"
        assert payload["ma_kh"] == "KH01"
        assert payload["ma_bp"] == "BP01"
        assert payload["action"] == 0
        detail = payload["detail"][0]
        assert detail["ma_vt"] == "MAT-A"
        assert detail["dvt"] == "Hộp"
        assert detail["tien_hang"] == 100
        assert detail["km_yn"] == 0
        assert payload["cbdetail"][0]["ck_nt"] == 10

    def test_employee_discount_code(self, make_order):
        order = make_order("SO1", {"item_code": "A", "product_type": "I", "qty": 1, "gia_ban": 100,
                                   "disc_amount": 10, "partner_code": "NV01"})
        enriched = EnrichedOrder(
            order=order,
            departments={"CN01": DepartmentInfo(branch_code="CN01", ma_dvcs="FBV")},
            employees={"NV01": True},
        )

        detail = SalesPayloadBuilder().build_invoice_payload(enriched, OrderVariant.NORMAL)["detail"][0]

        assert detail["ma_ck01"] == "SPQTNV"

    def test_platform_discount_code(self, make_order):
        order = make_order("SO1", {"item_code": "A", "qty": 1, "gia_ban": 100})
        enriched = EnrichedOrder(order=order, order_fees=[OrderFeeData(erp_order_code="SO1", brand="Menard")])

        detail = SalesPayloadBuilder().build_invoice_payload(enriched, OrderVariant.NORMAL)["detail"][0]

        assert detail["ma_ck01"] == "TTM.R601ECOM"

    def test_investment_lines_are_not_promotions(self, make_order):
        order = make_order("SO1", {"item_code": "A", "qty": 1, "gia_ban": 0})
        enriched = EnrichedOrder(order=order)

        detail = SalesPayloadBuilder().build_invoice_payload(enriched, OrderVariant.INVESTMENT)["detail"][0]

        assert detail["km_yn"] == 0
        assert detail["tk_chi_phi"] == "64191"

    def test_customer_payload_skips_empty_fields(self):
        customer = CustomerData(code="NV0001", name="Trần B", birthday=date(1990, 5, 1))

        payload = SalesPayloadBuilder().build_customer_payload(customer)

        assert payload == {"ma_kh": "0001", "ten_kh": "Trần B", "ngay_sinh": "19900501"}


# ===== CLIENTES EXTERNOS =====

class TestIntegrationHelpers:

    def test_response_helpers(self):
        response = [{"status": "1", "message": "OK", "guid": ["g1", "g2"]}]

        assert response_status(response) == 1
        assert response_message(response) == "OK"
        assert response_guid(response) == "g1"
        assert response_status([]) == 0
        assert response_status({"status": "x"}) == 0
        assert response_guid(None) is None

    def test_with_api_message_skips_plain_ok(self):
        assert with_api_message("Tạo đơn hàng thành công", "OK") == "Tạo đơn hàng thành công"
        assert with_api_message("Tạo đơn hàng thất bại", "Sai mã") == "Tạo đơn hàng thất bại. Sai mã"

    def test_parse_card_data(self):
        items = parse_card_data([{"data": [{"item_code": "THE01", "qty": -1, "issue_partner_code": "KH1"}]}])

        assert items[0].issue_partner_code == "KH1"
        assert parse_card_data({"data": []}) == []


# ===== PERSISTENCIA =====

class TestInvoicePersistence:
    """fast_api_invoices, sales.is_processed y lecturas"""

    async def test_upsert_keeps_one_row_and_preserves_missing_values(self, db_session):
        persistence = InvoicePersistenceService(db_session)

        await persistence.save_fast_api_invoice("SO1", 0, "Lỗi", guid="g0", fast_api_response=[{"status": 0}], ma_kh="KH01")
        invoice = await persistence.save_fast_api_invoice("SO1", 1, "OK")

        rows = (await db_session.execute(select(FastApiInvoice))).scalars().all()
        assert len(rows) == 1
        assert invoice.status == 1
        assert invoice.message == "OK"
        assert invoice.guid == "g0"
        assert invoice.ma_kh == "KH01"
        assert invoice.fast_api_response == '[{"status": 0}]'

    async def test_mark_order_as_processed_is_idempotent(self, db_session):
        db_session.add_all([Sale(doc_code="SO1", line_no=i, qty=1) for i in range(2)])
        await db_session.commit()
        persistence = InvoicePersistenceService(db_session)

        assert await persistence.mark_order_as_processed("SO1") == 2
        assert await persistence.mark_order_as_processed("SO1") == 0

    async def test_find_stock_transfers_and_fees(self, db_session):
        db_session.add_all([
            StockTransfer(doc_code="ST2", so_code="SO1", item_code="A", qty=-1),
            StockTransfer(doc_code="ST1", so_code="SO1", item_code="B", qty=-1),
            StockTransfer(doc_code="ST3", so_code="SO2", item_code="A", qty=-1),
            OrderFee(erp_order_code="SO1", brand="menard", fee_amount=1000, raw_data={"raw_data": {}}),
        ])
        await db_session.commit()
        persistence = InvoicePersistenceService(db_session)

        transfers = await persistence.find_stock_transfers(["SO1"])
        fees = await persistence.find_order_fees(["SO1"])

        assert [t.doc_code for t in transfers] == ["ST1", "ST2"]
        assert fees[0].brand == "menard"
        assert await persistence.find_stock_transfers([]) == []


# ===== CARGA Y LOTES =====

class TestOrderLoadingAndBatch:

    async def seed_orders(self, db_session):
        customer = Customer(code="NV0001", name="Lê C")
        db_session.add(customer)
        await db_session.flush()
        db_session.add_all([
            Sale(doc_code="SO1", line_no=2, ordertype_name="01. Thường", item_code="B", qty=1, gia_ban=20,
                 branch_code="CN01", customer_id=customer.id),
            Sale(doc_code="SO1", line_no=1, ordertype_name="01. Thường", item_code="A", qty=2, gia_ban=10,
                 branch_code="CN01", customer_id=customer.id),
            Sale(doc_code="SO2", line_no=1, ordertype_name="99. Unknown", item_code="A", qty=1),
        ])
        await db_session.commit()

    async def test_find_order_by_doc_code(self, db_session):
        await self.seed_orders(db_session)

        order = await find_order_by_doc_code(db_session, "SO1")

        assert [line.item_code for line in order.sales] == ["A", "B"]
        assert order.branch_code == "CN01"
        assert order.customer.code == "NV0001"
        assert order.sales[0].qty == 2
        assert await find_order_by_doc_code(db_session, "NOPE") is None

    async def test_batch_reports_each_order(self, db_session, session_factory, accounting, metadata):
        await self.seed_orders(db_session)
        service = InvoiceBatchService(
            accounting, metadata, validator=OrderValidator(), session_factory=session_factory, concurrency=2
        )

        response = await service.process_orders(["SO1", "SO2", "NOPE"])

        assert (response.total, response.succeeded, response.failed) == (3, 1, 2)
        by_code = {item.doc_code: item for item in response.results}
        assert by_code["SO1"].success is True
        assert "99. Unknown" in by_code["SO2"].message
        assert by_code["NOPE"].message == "Không tìm thấy đơn hàng NOPE"
        customer_payload = accounting.calls["create_or_update_customer"][0]["payload"]
        assert customer_payload["ma_kh"] == "0001"

    def test_batch_request_dedupes_codes(self):
        request = BatchProcessRequest(doc_codes=[" SO1", "SO1", "SO2", " "])

        assert request.doc_codes == ["SO1", "SO2"]


# ===== ENDPOINTS =====

@pytest.fixture
async def api_client(session_factory, accounting, metadata):
    async def override_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_async_db] = override_db
    app.dependency_overrides[get_integration_clients] = lambda: (accounting, metadata)
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client
    app.dependency_overrides.clear()


class TestSalesRouter:

    async def test_create_invoice_and_read_status(self, api_client, session_factory):
        async with session_factory() as session:
            session.add(Sale(doc_code="SO1", line_no=1, ordertype_name="01. Thường", item_code="A", qty=1, gia_ban=10))
            await session.commit()

        response = await api_client.post("/sales/SO1/invoice", json={"force_retry": False})
        status_response = await api_client.get("/sales/invoices/SO1")

        assert response.status_code == 200
        assert response.json()["success"] is True
        assert status_response.status_code == 200
        assert status_response.json()["status"] == 1
        assert status_response.json()["guid"] == "g1"

    async def test_unknown_order_returns_404(self, api_client):
        assert (await api_client.post("/sales/NOPE/invoice")).status_code == 404
        assert (await api_client.get("/sales/invoices/NOPE")).status_code == 404

    async def test_missing_clients_returns_503(self, session_factory):
        async def override_db():
            async with session_factory() as session:
                yield session

        configure_integrations(None, None)
        app.dependency_overrides[get_async_db] = override_db
        try:
            async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
                response = await client.post("/sales/SO1/invoice")
        finally:
            app.dependency_overrides.clear()

        assert response.status_code == 503

    async def test_allowed_order_types_endpoints(self, api_client):
        label = "07. Bán tài khoản"
        try:
            added = await api_client.post("/sales/allowed-order-types", json={"label": label})
            listed = await api_client.get("/sales/allowed-order-types")
            removed = await api_client.delete("/sales/allowed-order-types", params={"label": label})
            missing = await api_client.delete("/sales/allowed-order-types", params={"label": label})
        finally:
            order_validator.remove_allowed_order_type(label)

        assert label in added.json()["allowed_order_types"]
        assert label in listed.json()["allowed_order_types"]
        assert label not in removed.json()["allowed_order_types"]
        assert missing.status_code == 404

    async def test_queue_batch_task(self, api_client, monkeypatch):
        queued = []

        def fake_delay(doc_codes, force_retry):
            queued.append((doc_codes, force_retry))
            return SimpleNamespace(id="task-1")

        monkeypatch.setattr(sales_router.process_orders_batch_task, "delay", fake_delay)

        response = await api_client.post("/sales/invoices/batch/async", json={"doc_codes": ["SO1", "SO2"]})

        assert response.status_code == 202
        assert response.json() == {"task_id": "task-1", "total": 2}
        assert queued == [(["SO1", "SO2"], False)]

    async def test_batch_size_limit(self, api_client, monkeypatch):
        monkeypatch.setattr(sales_router.settings, "BATCH_MAX_SIZE", 1)

        response = await api_client.post("/sales/invoices/batch", json={"doc_codes": ["SO1", "SO2"]})

        assert response.status_code == 400
