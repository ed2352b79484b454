"""
Tests del orquestador y de los flujos por Loại đơn hàng

Cubren:
- Enrutamiento por variant (thường, đặc biệt, làm dịch vụ, tách thẻ, trả lại, hủy _X)
- Un único registro en fast_api_invoices por doc_code en todos los casos
- Idempotencia y force_retry
- Manejo de errores del cliente de Fast y del sistema
"""
import pytest
from sqlalchemy import select, func

from invoice_sync.modules.integrations.metadata import DepartmentInfo
from invoice_sync.modules.sales.constants import (
    MSG_SALE_RETURN_NO_TRANSFERS, MSG_SERVICE_ORDER_SUCCESS, SubmitAction
)
from invoice_sync.modules.sales.flows.orchestrator import InvoiceFlowOrchestrator
from invoice_sync.modules.sales.models import FastApiInvoice, Sale, StockTransfer
from invoice_sync.modules.sales.persistence import InvoicePersistenceService
from invoice_sync.modules.sales.service import find_order_by_doc_code
from invoice_sync.modules.sales.validation import OrderValidator


NORMAL_LINE = {"ordertype_name": "01. Thường", "item_code": "SP01", "product_type": "I", "qty": 1, "gia_ban": 100}


# ===== FIXTURES =====

@pytest.fixture
def persistence(db_session):
    return InvoicePersistenceService(db_session)


@pytest.fixture
def orchestrator(persistence, accounting, metadata):
    return InvoiceFlowOrchestrator(
        persistence,
        accounting,
        metadata,
        validator=OrderValidator(["01.Thường", "01. Thường"]),
    )


async def count_invoices(db_session, doc_code):
    result = await db_session.execute(
        select(func.count()).select_from(FastApiInvoice).where(FastApiInvoice.doc_code == doc_code)
    )
    return result.scalar_one()


# ===== ĐƠN THƯỜNG =====

class TestNormalOrder:
    """Đơn 01. Thường: un solo salesOrder"""

    async def test_normal_order_persists_success_with_guid(self, orchestrator, persistence, accounting, make_order):
        """SO1 termina con status 1 y guid g1"""
        order = make_order("SO1", NORMAL_LINE)

        result = await orchestrator.orchestrate_invoice_creation("SO1", order)

        assert result.success is True
        assert result.message == "Tạo đơn hàng thành công cho đơn hàng SO1"
        invoice = await persistence.get_invoice("SO1")
        assert invoice.status == 1
        assert invoice.guid == "g1"
        assert invoice.ma_kh == "KH01"
        assert len(accounting.calls["create_sales_order"]) == 1
        assert accounting.calls["create_sales_order"][0]["action"] == SubmitAction.NORMAL
        assert len(accounting.calls["create_sales_invoice"]) == 0
        assert len(accounting.calls["create_or_update_customer"]) == 1

    async def test_failed_submission_appends_api_message(self, orchestrator, persistence, accounting, make_order):
        """status 0 de Fast: el mensaje incluye el texto devuelto"""
        accounting.responses["create_sales_order"] = [{"status": 0, "message": "Mã vật tư không tồn tại"}]

        result = await orchestrator.orchestrate_invoice_creation("SO1", make_order("SO1", NORMAL_LINE))

        assert result.success is False
        assert result.message == "Tạo đơn hàng thất bại cho đơn hàng SO1. Mã vật tư không tồn tại"
        invoice = await persistence.get_invoice("SO1")
        assert invoice.status == 0

    async def test_customer_upsert_failure_is_only_a_warning(self, orchestrator, accounting, make_order):
        """Un fallo al crear el khách hàng no detiene el đơn"""
        accounting.responses["create_or_update_customer"] = RuntimeError("customer api down")

        result = await orchestrator.orchestrate_invoice_creation("SO1", make_order("SO1", NORMAL_LINE))

        assert result.success is True
        assert any("customer api down" in warning for warning in result.warnings)

    async def test_success_marks_sale_lines_processed(self, db_session, session_factory, accounting, metadata):
        """Tras status 1 las líneas quedan is_processed"""
        db_session.add(Sale(doc_code="SO9", line_no=1, ordertype_name="01. Thường", item_code="SP01", qty=1, gia_ban=100))
        await db_session.commit()
        order = await find_order_by_doc_code(db_session, "SO9")
        orchestrator = InvoiceFlowOrchestrator(InvoicePersistenceService(db_session), accounting, metadata)

        result = await orchestrator.orchestrate_invoice_creation("SO9", order)

        assert result.success is True
        async with session_factory() as check:
            rows = (await check.execute(select(Sale).where(Sale.doc_code == "SO9"))).scalars().all()
        assert all(row.is_processed for row in rows)


# ===== VALIDACIÓN =====

class TestValidationGate:
    """Gate de Loại đơn hàng"""

    async def test_unknown_order_type_is_persisted_as_failure(self, orchestrator, persistence, accounting, make_order):
        """99. Unknown no pasa y queda registrado con la lista permitida"""
        order = make_order("SO5", {**NORMAL_LINE, "ordertype_name": "99. Unknown"})

        result = await orchestrator.orchestrate_invoice_creation("SO5", order)

        assert result.success is False
        assert "99. Unknown" in result.message
        assert "01.Thường, 01. Thường" in result.message
        invoice = await persistence.get_invoice("SO5")
        assert invoice.status == 0
        assert "99. Unknown" in invoice.message
        assert accounting.total_calls == 0

    async def test_order_without_lines_is_persisted_as_failure(self, orchestrator, persistence, make_order):
        result = await orchestrator.orchestrate_invoice_creation("SO6", make_order("SO6"))

        assert result.success is False
        assert (await persistence.get_invoice("SO6")).status == 0


# ===== ĐƠN ĐẶC BIỆT =====

class TestSpecialOrders:
    """Đổi điểm / Tặng sinh nhật / Đầu tư / Đổi vỏ / Tách thẻ"""

    async def test_loyalty_exchange_only_creates_sales_order(self, orchestrator, persistence, accounting, make_order):
        """SO2: createSalesInvoice no se llama"""
        order = make_order("SO2", {**NORMAL_LINE, "ordertype_name": "03. Đổi điểm", "gia_ban": 0})

        result = await orchestrator.orchestrate_invoice_creation("SO2", order)

        assert result.success is True
        assert result.message == "03. Đổi điểm thành công"
        assert len(accounting.calls["create_sales_order"]) == 1
        assert len(accounting.calls["create_sales_invoice"]) == 0
        detail = accounting.calls["create_sales_order"][0]["payload"]["detail"][0]
        assert detail["tk_chi_phi"] == "64191"
        assert detail["km_yn"] == 1
        assert (await persistence.get_invoice("SO2")).status == 1

    async def test_birthday_gift_uses_birthday_expense_account(self, orchestrator, accounting, make_order):
        order = make_order("SO7", {**NORMAL_LINE, "ordertype_name": "05. Tặng sinh nhật"})

        await orchestrator.orchestrate_invoice_creation("SO7", order)

        detail = accounting.calls["create_sales_order"][0]["payload"]["detail"][0]
        assert detail["tk_chi_phi"] == "64192"
        assert detail["ma_phi"] == "162010"

    async def test_special_order_failure_keeps_api_message(self, orchestrator, accounting, make_order):
        accounting.responses["create_sales_order"] = [{"status": 0, "message": "Sai mã kho"}]
        order = make_order("SO8", {**NORMAL_LINE, "ordertype_name": "06. Đầu tư"})

        result = await orchestrator.orchestrate_invoice_creation("SO8", order)

        assert result.success is False
        assert result.message == "06. Đầu tư thất bại. Sai mã kho"

    async def test_special_order_failure_without_api_message(self, orchestrator, accounting, make_order):
        accounting.responses["create_sales_order"] = [{"status": 0, "message": ""}]
        order = make_order("SO9", {**NORMAL_LINE, "ordertype_name": "06. Đầu tư"})

        result = await orchestrator.orchestrate_invoice_creation("SO9", order)

        assert result.success is False
        assert result.message == "06. Đầu tư thất bại"

    async def test_card_split_maps_issue_partner_codes(self, orchestrator, accounting, metadata, make_order):
        """Tách thẻ: mã khách hàng por línea desde los datos de thẻ, kho B + mã bộ phận"""
        metadata.departments["CN01"] = DepartmentInfo(branch_code="CN01", ma_bp="BP01", ma_dvcs="TTM")
        metadata.card_data["TS1"] = [{"data": [
            {"item_code": "THE01", "qty": -1, "issue_partner_code": "KH_OLD"},
            {"item_code": "THE02", "qty": 1, "action": "ADJUST", "issue_partner_code": "KH_NEW"},
        ]}]
        order = make_order(
            "TS1",
            {"ordertype_name": "08. Tách thẻ", "item_code": "THE01", "qty": -1, "gia_ban": 0},
            {"ordertype_name": "08. Tách thẻ", "item_code": "THE02", "qty": 1, "gia_ban": 0},
        )

        result = await orchestrator.orchestrate_invoice_creation("TS1", order)

        assert result.success is True
        assert result.message == "08. Tách thẻ thành công | Tạo sales invoice thành công"
        payload = accounting.calls["create_sales_order"][0]["payload"]
        assert payload["ma_kh"] == "KH_OLD"
        assert [d["ma_kh_i"] for d in payload["detail"]] == ["KH_OLD", "KH_NEW"]
        assert [d["ma_kho"] for d in payload["detail"]] == ["BBP01", "BBP01"]
        assert [d["loai_gd"] for d in payload["detail"]] == ["11", "12"]
        assert len(accounting.calls["create_sales_invoice"]) == 1

    async def test_card_split_invoice_failure_is_a_warning(self, orchestrator, accounting, make_order):
        accounting.responses["create_sales_invoice"] = [{"status": 0, "message": "Trùng số"}]
        order = make_order("TS2", {"ordertype_name": "08. Tách thẻ", "item_code": "THE01", "qty": 1})

        result = await orchestrator.orchestrate_invoice_creation("TS2", order)

        assert result.success is True
        assert result.message.endswith("| Tạo sales invoice thất bại: Trùng số")
        assert "Tạo sales invoice thất bại: Trùng số" in result.warnings


# ===== LÀM DỊCH VỤ =====

class TestServiceOrder:
    """02. Làm dịch vụ"""

    SERVICE_LINE = {"ordertype_name": "02. Làm dịch vụ", "item_code": "DV01", "product_type": "S", "qty": 1, "gia_ban": 500}
    EXPORT_LINE = {"ordertype_name": "02. Làm dịch vụ", "item_code": "VT01", "product_type": "I", "qty": 2, "gia_ban": 50}

    async def test_service_order_runs_full_flow(self, orchestrator, persistence, accounting, metadata, make_order):
        metadata.pending_payments["SV1"] = [{"so_code": "SV1", "total_in": 500}]
        order = make_order("SV1", self.SERVICE_LINE, self.EXPORT_LINE)

        result = await orchestrator.orchestrate_invoice_creation("SV1", order)

        assert result.success is True
        assert result.message == MSG_SERVICE_ORDER_SUCCESS
        so_payload = accounting.calls["create_sales_order"][0]["payload"]
        assert [d["ma_vt"] for d in so_payload["detail"]] == ["DV01"]
        assert len(accounting.calls["create_sales_invoice"]) == 1
        gxt_payload = accounting.calls["create_gxt_invoice"][0]["payload"]
        assert [d["ma_vt"] for d in gxt_payload["ndetail"]] == ["DV01"]
        assert [d["ma_vt"] for d in gxt_payload["detail"]] == ["VT01"]
        assert len(accounting.calls["process_cashio_payment"]) == 1
        assert (await persistence.get_invoice("SV1")).status == 1

    async def test_service_order_cashio_error_downgrades_status(self, orchestrator, persistence, metadata, make_order):
        metadata.failing.add("find_pending_payments")

        result = await orchestrator.orchestrate_invoice_creation("SV2", make_order("SV2", self.SERVICE_LINE))

        assert result.success is False
        assert result.message.startswith(MSG_SERVICE_ORDER_SUCCESS)
        assert "Lỗi thanh toán" in result.message
        assert (await persistence.get_invoice("SV2")).status == 0

    async def test_service_order_gxt_error_is_only_a_warning(self, orchestrator, accounting, make_order):
        accounting.responses["create_gxt_invoice"] = RuntimeError("gxt timeout")

        result = await orchestrator.orchestrate_invoice_creation(
            "SV3", make_order("SV3", self.SERVICE_LINE, self.EXPORT_LINE)
        )

        assert result.success is True
        assert any("gxt timeout" in warning for warning in result.warnings)

    async def test_service_order_sales_order_failure_stops_flow(self, orchestrator, persistence, accounting, make_order):
        accounting.responses["create_sales_order"] = [{"status": 0, "message": "Khách hàng không tồn tại"}]

        result = await orchestrator.orchestrate_invoice_creation("SV4", make_order("SV4", self.SERVICE_LINE))

        assert result.success is False
        assert result.message == "Lỗi hệ thống: Khách hàng không tồn tại"
        assert len(accounting.calls["create_sales_invoice"]) == 0
        invoice = await persistence.get_invoice("SV4")
        assert invoice.status == 0
        assert invoice.message == "Lỗi hệ thống: Khách hàng không tồn tại"
        assert "Khách hàng không tồn tại" in invoice.fast_api_response

    async def test_service_order_without_service_lines_is_a_system_error(
        self, orchestrator, persistence, accounting, make_order
    ):
        """SV6 solo tiene líneas I: no se llama a Fast"""
        result = await orchestrator.orchestrate_invoice_creation("SV6", make_order("SV6", self.EXPORT_LINE))

        assert result.success is False
        assert result.message.startswith("Lỗi hệ thống: ")
        assert "SV6" in result.message
        assert len(accounting.calls["create_sales_order"]) == 0
        assert (await persistence.get_invoice("SV6")).message == result.message

    async def test_order_return_service_order_pays_with_stock_codes(
        self, orchestrator, persistence, db_session, accounting, make_order
    ):
        db_session.add(StockTransfer(doc_code="SV7_T1", so_code="SV7", doctype="ORDER_RETURN",
                                     item_code="DV01", qty=1, stock_code="K07"))
        await db_session.commit()
        order = make_order("SV7", self.SERVICE_LINE, doc_source_type="ORDER_RETURN")

        result = await orchestrator.orchestrate_invoice_creation("SV7", order)

        assert result.success is True
        payment = accounting.calls["process_payment"]
        assert len(payment) == 1
        assert payment[0]["doc_code"] == "SV7"
        assert payment[0]["stock_codes"] == ["K07"]
        assert (await persistence.get_invoice("SV7")).status == 1

    async def test_order_return_service_order_without_transfers_skips_payment(self, orchestrator, accounting, make_order):
        order = make_order("SV8", self.SERVICE_LINE, doc_source_type="ORDER_RETURN")

        result = await orchestrator.orchestrate_invoice_creation("SV8", order)

        assert result.success is True
        assert len(accounting.calls["process_payment"]) == 0

    async def test_order_return_service_order_payment_error_downgrades_status(
        self, orchestrator, persistence, db_session, accounting, make_order
    ):
        db_session.add(StockTransfer(doc_code="SV9_T1", so_code="SV9", doctype="ORDER_RETURN",
                                     item_code="DV01", qty=1, stock_code="K09"))
        await db_session.commit()
        accounting.responses["process_payment"] = RuntimeError("phiếu chi lỗi")
        order = make_order("SV9", self.SERVICE_LINE, doc_source_type="ORDER_RETURN")

        result = await orchestrator.orchestrate_invoice_creation("SV9", order)

        assert result.success is False
        assert "Lỗi thanh toán" in result.message
        assert "phiếu chi lỗi" in result.message
        assert (await persistence.get_invoice("SV9")).status == 0

    async def test_raw_service_code_routes_to_service_flow(self, orchestrator, accounting, make_order):
        """ordertype LAM_DV sin ordertypeName"""
        line = {**self.SERVICE_LINE, "ordertype_name": None, "ordertype": "LAM_DV"}

        result = await orchestrator.orchestrate_invoice_creation("SV5", make_order("SV5", line))

        assert result.success is True
        assert len(accounting.calls["create_sales_invoice"]) == 1


# ===== HÀNG BÁN TRẢ LẠI =====

class TestSaleReturn:
    """docSourceType SALE_RETURN"""

    async def test_return_without_stock_transfers_is_a_noop(self, orchestrator, persistence, accounting, make_order):
        """RT1 sin phiếu kho: no se llama a Fast"""
        order = make_order("RT1", NORMAL_LINE, doc_source_type="SALE_RETURN")

        result = await orchestrator.orchestrate_invoice_creation("RT1", order)

        assert result.success is False
        assert result.message == MSG_SALE_RETURN_NO_TRANSFERS
        assert accounting.total_calls == 0
        invoice = await persistence.get_invoice("RT1")
        assert invoice.status == 0
        assert invoice.message == MSG_SALE_RETURN_NO_TRANSFERS

    async def test_return_with_transfers_creates_sales_return(self, db_session, session_factory, accounting, metadata):
        db_session.add_all([
            Sale(doc_code="RT2", line_no=1, doc_source_type="SALE_RETURN", ordertype_name="01. Thường",
                 item_code="SP01", qty=1, gia_ban=100),
            StockTransfer(doc_code="RT2_T1", so_code="RT2", doctype="SALE_RETURN",
                          item_code="SP01", qty=1, stock_code="K01"),
        ])
        await db_session.commit()
        order = await find_order_by_doc_code(db_session, "RT2")
        orchestrator = InvoiceFlowOrchestrator(InvoicePersistenceService(db_session), accounting, metadata)

        result = await orchestrator.orchestrate_invoice_creation("RT2", order)

        assert result.success is True
        assert result.message == "Tạo hàng bán trả lại thành công cho đơn hàng RT2"
        payload = accounting.calls["create_sales_return"][0]["payload"]
        assert payload["detail"][0]["so_luong"] == 1
        assert payload["so_ct0"] == "RT2"
        assert accounting.calls["process_payment"][0]["stock_codes"] == ["K01"]
        assert len(accounting.calls["create_or_update_customer"]) == 0
        # Đơn trả lại no se marca como procesado
        async with session_factory() as check:
            row = (await check.execute(select(Sale).where(Sale.doc_code == "RT2"))).scalars().first()
        assert row.is_processed is False


# ===== ĐƠN HỦY _X =====

class TestCancelOrder:
    """Đơn con sufijo _X"""

    async def test_cancel_order_pays_without_stock_codes(self, orchestrator, persistence, accounting, make_order):
        """SO3_X: el pago se procesa aunque no haya mã kho"""
        order = make_order("SO3_X", NORMAL_LINE)

        result = await orchestrator.orchestrate_invoice_creation("SO3_X", order)

        assert result.success is True
        so_call = accounting.calls["create_sales_order"][0]
        assert so_call["action"] == SubmitAction.CANCEL_UPDATE
        assert so_call["payload"]["so_ct"] == "SO3"
        assert so_call["payload"]["action"] == 1
        payment = accounting.calls["process_payment"]
        assert len(payment) == 1
        assert payment[0]["stock_codes"] == []
        assert payment[0]["allow_without_stock_codes"] is True
        assert (await persistence.get_invoice("SO3_X")).status == 1

    async def test_cancel_order_failure_is_persisted(self, orchestrator, persistence, accounting, make_order):
        accounting.responses["create_sales_order"] = [{"status": 0, "message": "Không tìm thấy đơn gốc"}]

        result = await orchestrator.orchestrate_invoice_creation("SO4_X", make_order("SO4_X", NORMAL_LINE))

        assert result.success is False
        assert result.message == "Lỗi hệ thống: Tạo đơn hàng thất bại cho đơn hàng SO4_X. Không tìm thấy đơn gốc"
        assert len(accounting.calls["process_payment"]) == 0
        invoice = await persistence.get_invoice("SO4_X")
        assert invoice.status == 0
        assert invoice.message == result.message

    async def test_cancel_order_payment_failure_is_a_warning(self, orchestrator, accounting, make_order):
        accounting.responses["process_payment"] = RuntimeError("cashio down")

        result = await orchestrator.orchestrate_invoice_creation("SO5_X", make_order("SO5_X", NORMAL_LINE))

        assert result.success is True
        assert any("cashio down" in warning for warning in result.warnings)


# ===== IDEMPOTENCIA Y ERRORES =====

class TestIdempotencyAndErrors:

    async def test_forced_retry_keeps_single_record(self, orchestrator, db_session, make_order):
        order = make_order("SO1", NORMAL_LINE)

        first = await orchestrator.orchestrate_invoice_creation("SO1", order, force_retry=True)
        second = await orchestrator.orchestrate_invoice_creation("SO1", order, force_retry=True)

        assert first.message == second.message
        assert first.success == second.success
        assert await count_invoices(db_session, "SO1") == 1

    async def test_failed_order_is_retried_and_keeps_single_record(self, orchestrator, db_session, accounting, make_order):
        accounting.responses["create_sales_order"] = [{"status": 0, "message": "Sai giá"}]
        order = make_order("SO1", NORMAL_LINE)

        first = await orchestrator.orchestrate_invoice_creation("SO1", order)
        second = await orchestrator.orchestrate_invoice_creation("SO1", order)

        assert first.message == second.message
        assert len(accounting.calls["create_sales_order"]) == 2
        assert await count_invoices(db_session, "SO1") == 1

    async def test_already_synced_order_is_not_resubmitted(self, orchestrator, accounting, make_order):
        order = make_order("SO1", NORMAL_LINE)

        first = await orchestrator.orchestrate_invoice_creation("SO1", order)
        second = await orchestrator.orchestrate_invoice_creation("SO1", order)

        assert second.already_exists is True
        assert second.success is True
        assert second.message == first.message
        assert second.result == [{"status": 1, "message": "OK", "guid": "g1"}]
        assert len(accounting.calls["create_sales_order"]) == 1

    async def test_unexpected_exception_is_persisted(self, orchestrator, persistence, accounting, make_order):
        accounting.responses["create_sales_order"] = RuntimeError("connection reset")

        result = await orchestrator.orchestrate_invoice_creation("SO1", make_order("SO1", NORMAL_LINE))

        assert result.success is False
        assert result.message == "Lỗi hệ thống: connection reset"
        invoice = await persistence.get_invoice("SO1")
        assert invoice.status == 0
        assert invoice.message == "Lỗi hệ thống: connection reset"

    async def test_metadata_outage_does_not_block_order(self, orchestrator, metadata, make_order):
        metadata.failing.update({"fetch_products", "fetch_departments"})

        result = await orchestrator.orchestrate_invoice_creation("SO1", make_order("SO1", NORMAL_LINE))

        assert result.success is True
        assert len(result.warnings) == 2
