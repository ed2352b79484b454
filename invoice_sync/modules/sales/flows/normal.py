"""
Flujo de đơn thường (01. Thường) y Đổi DV.

Un solo salesOrder con las líneas explotadas por phiếu xuất kho.
"""
import logging
from typing import List

from invoice_sync.modules.integrations.accounting import (
    AccountingClient, response_status, response_message, response_guid, with_api_message
)
from invoice_sync.modules.sales.constants import OrderVariant, SubmitAction
from invoice_sync.modules.sales.enrichment import SaleEnrichmentService
from invoice_sync.modules.sales.payload import SalesPayloadBuilder
from invoice_sync.modules.sales.schemas import OrderData, HandlerResult

logger = logging.getLogger(__name__)


async def upsert_customer(
    accounting: AccountingClient,
    builder: SalesPayloadBuilder,
    order: OrderData,
    warnings: List[str],
) -> None:
    """Tạo / cập nhật khách hàng en Fast; un fallo solo deja warning"""
    if not order.customer or not order.customer.code:
        return
    try:
        await accounting.create_or_update_customer(builder.build_customer_payload(order.customer))
    except Exception as e:
        logger.warning(f"[Customer] Failed to upsert customer {order.customer.code} for {order.doc_code}: {e}")
        warnings.append(f"Lỗi tạo khách hàng {order.customer.code}: {e}")


class NormalOrderHandler:

    def __init__(
        self,
        accounting: AccountingClient,
        enrichment: SaleEnrichmentService,
        builder: SalesPayloadBuilder,
    ):
        self.accounting = accounting
        self.enrichment = enrichment
        self.builder = builder

    async def execute(
        self,
        order: OrderData,
        doc_code: str,
        variant: OrderVariant = OrderVariant.NORMAL,
    ) -> HandlerResult:
        logger.info(f"[NormalOrder] Processing {doc_code} ({variant.value})")
        warnings: List[str] = []

        await upsert_customer(self.accounting, self.builder, order, warnings)

        enriched = await self.enrichment.enrich_order(order)
        warnings.extend(enriched.warnings)

        payload = self.builder.build_invoice_payload(enriched, variant)
        response = await self.accounting.create_sales_order(payload, action=SubmitAction.NORMAL)

        status = response_status(response)
        if status == 1:
            base = f"Tạo đơn hàng thành công cho đơn hàng {doc_code}"
        else:
            base = f"Tạo đơn hàng thất bại cho đơn hàng {doc_code}"

        return HandlerResult(
            result=response,
            status=status,
            message=with_api_message(base, response_message(response)),
            guid=response_guid(response),
            fast_api_response=response,
            warnings=warnings,
        )


class ServiceChangeHandler:
    """04. Đổi DV: sigue el flujo completo de đơn thường"""

    def __init__(self, normal: NormalOrderHandler):
        self.normal = normal

    async def execute(self, order: OrderData, doc_code: str) -> HandlerResult:
        return await self.normal.execute(order, doc_code, variant=OrderVariant.SERVICE_CHANGE)
