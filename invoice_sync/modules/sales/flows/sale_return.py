"""
Đơn trả lại (SALE_RETURN) y đơn hủy con sufijo _X.
"""
import logging
from typing import Awaitable, Callable, List, Optional

from invoice_sync.modules.integrations.accounting import (
    AccountingClient, response_status, response_message, response_guid, with_api_message
)
from invoice_sync.modules.sales.classifier import strip_cancel_suffix
from invoice_sync.modules.sales.constants import OrderVariant, SubmitAction, MSG_SALE_RETURN_NO_TRANSFERS
from invoice_sync.modules.sales.enrichment import SaleEnrichmentService
from invoice_sync.modules.sales.exceptions import InvoiceFlowError
from invoice_sync.modules.sales.matcher import doc_codes_for_stock_transfer, resolve_stock_codes
from invoice_sync.modules.sales.payload import SalesPayloadBuilder
from invoice_sync.modules.sales.schemas import OrderData, HandlerResult

logger = logging.getLogger(__name__)

OrderLoader = Callable[[str], Awaitable[Optional[OrderData]]]


class SaleReturnHandler:

    def __init__(
        self,
        accounting: AccountingClient,
        enrichment: SaleEnrichmentService,
        builder: SalesPayloadBuilder,
    ):
        self.accounting = accounting
        self.enrichment = enrichment
        self.builder = builder

    async def execute(self, order: OrderData, doc_code: str) -> HandlerResult:
        logger.info(f"[SaleReturn] Processing sale return {doc_code}")
        transfers = await self.enrichment.persistence.find_stock_transfers(
            doc_codes_for_stock_transfer([doc_code])
        )
        if not transfers:
            logger.info(f"[SaleReturn] {doc_code} has no stock transfers, nothing to do")
            return HandlerResult(result=None, status=0, message=MSG_SALE_RETURN_NO_TRANSFERS)

        warnings: List[str] = []
        enriched = await self.enrichment.enrich_order(order, explode=False)
        warnings.extend(enriched.warnings)

        payload = self.builder.build_sales_return_payload(enriched, transfers)
        response = await self.accounting.create_sales_return(payload)

        status = response_status(response)
        if status == 1:
            base = f"Tạo hàng bán trả lại thành công cho đơn hàng {doc_code}"
        else:
            base = f"Tạo hàng bán trả lại thất bại cho đơn hàng {doc_code}"

        payment = None
        if status == 1:
            stock_codes = resolve_stock_codes(transfers)
            if stock_codes:
                try:
                    invoice_payload = self.builder.build_invoice_payload(enriched, OrderVariant.NORMAL)
                    payment = await self.accounting.process_payment(
                        doc_code, order.model_dump(mode="json"), invoice_payload, stock_codes
                    )
                except Exception as e:
                    logger.warning(f"[Payment] Error processing payment for {doc_code} (SALE_RETURN): {e}")
                    warnings.append(f"Lỗi tạo phiếu chi: {e}")
            else:
                logger.debug(f"[Payment] {doc_code} (SALE_RETURN) has no stock codes, skipping payment")

        return HandlerResult(
            result={"salesReturn": response, "payment": payment},
            status=status,
            message=with_api_message(base, response_message(response)),
            guid=response_guid(response),
            fast_api_response=response,
            warnings=warnings,
            ma_dvcs=payload.get("ma_dvcs"),
            ma_kh=payload.get("ma_kh"),
            ten_kh=payload.get("ong_ba"),
        )


class CancelOrderHandler:
    """
    Đơn có đuôi _X: salesOrder con action=1 para el đơn gốc.

    No persiste nada; los errores se propagan para que el wrapper del
    orquestador guarde el registro con status 0.
    """

    def __init__(
        self,
        accounting: AccountingClient,
        enrichment: SaleEnrichmentService,
        builder: SalesPayloadBuilder,
        order_loader: Optional[OrderLoader] = None,
    ):
        self.accounting = accounting
        self.enrichment = enrichment
        self.builder = builder
        self.order_loader = order_loader

    async def execute(self, order: OrderData, doc_code: str) -> HandlerResult:
        base_code = strip_cancel_suffix(doc_code)
        logger.info(f"[CancelOrder] Processing {doc_code} as cancel/update of {base_code}")
        warnings: List[str] = []

        try:
            base_order = order
            if self.order_loader:
                loaded = await self.order_loader(base_code)
                if loaded and loaded.sales:
                    base_order = loaded

            enriched = await self.enrichment.enrich_order(base_order)
            warnings.extend(enriched.warnings)
            payload = self.builder.build_invoice_payload(
                enriched, OrderVariant.NORMAL, doc_code=base_code, action=SubmitAction.CANCEL_UPDATE
            )
            response = await self.accounting.create_sales_order(payload, action=SubmitAction.CANCEL_UPDATE)
        except Exception as e:
            logger.error(f"[CancelOrder] Error creating sales order for {doc_code}: {e}")
            raise InvoiceFlowError(f"Tạo đơn hàng thất bại cho đơn hàng {doc_code}. {e}") from e

        status = response_status(response)
        api_message = response_message(response)
        if status != 1:
            raise InvoiceFlowError(
                with_api_message(f"Tạo đơn hàng thất bại cho đơn hàng {doc_code}", api_message),
                response,
            )

        payment = None
        try:
            transfers = await self.enrichment.persistence.find_stock_transfers(
                doc_codes_for_stock_transfer([base_code])
            )
            # Đơn hủy no tiene movimiento físico: se paga aunque no haya mã kho
            payment = await self.accounting.process_payment(
                doc_code,
                base_order.model_dump(mode="json"),
                payload,
                resolve_stock_codes(transfers),
                allow_without_stock_codes=True,
            )
        except Exception as e:
            logger.warning(f"[Payment] Error processing payment for {doc_code}: {e}")
            warnings.append(f"Lỗi thanh toán: {e}")

        return HandlerResult(
            result={"salesOrder": response, "payment": payment},
            status=status,
            message=with_api_message(f"Tạo đơn hàng thành công cho đơn hàng {doc_code}", api_message),
            guid=response_guid(response),
            fast_api_response=response,
            warnings=warnings,
            ma_dvcs=payload.get("ma_dvcs"),
            ma_kh=payload.get("ma_kh"),
            ten_kh=payload.get("ong_ba"),
        )
