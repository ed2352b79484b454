"""
Flujos de đơn đặc biệt:

- Standard special (03. Đổi điểm, 05. Tặng sinh nhật, 06. Đầu tư, Đổi vỏ):
  solo salesOrder, son movimientos internos sin cobro.
- 08. Tách thẻ: igual que standard special pero con datos de thẻ y
  salesInvoice obligatorio.
- 02. Làm dịch vụ: salesOrder + salesInvoice para las líneas S, cashio,
  GXT y phiếu chi para đơn trả lại.
"""
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional

from invoice_sync.modules.integrations.accounting import (
    AccountingClient, response_status, response_message, response_guid, with_api_message
)
from invoice_sync.modules.integrations.metadata import MetadataProvider, CardItem, parse_card_data
from invoice_sync.modules.sales.classifier import normalize_doc_source_type
from invoice_sync.modules.sales.constants import (
    OrderVariant, OrderTypeLabel, ProductType, DocSourceType, SubmitAction,
    CARD_ADJUST_ACTION, MSG_NO_SERVICE_LINES, MSG_SERVICE_ORDER_SUCCESS,
)
from invoice_sync.modules.sales.enrichment import EnrichedOrder, SaleEnrichmentService
from invoice_sync.modules.sales.exceptions import InvoiceFlowError
from invoice_sync.modules.sales.flows.normal import upsert_customer
from invoice_sync.modules.sales.matcher import doc_codes_for_stock_transfer, resolve_stock_codes
from invoice_sync.modules.sales.payload import SalesPayloadBuilder
from invoice_sync.modules.sales.schemas import OrderData, SaleLine, HandlerResult

logger = logging.getLogger(__name__)

BeforeAction = Callable[[EnrichedOrder, List[str]], Awaitable[EnrichedOrder]]

VARIANT_DESCRIPTIONS = {
    OrderVariant.LOYALTY_EXCHANGE: OrderTypeLabel.LOYALTY_EXCHANGE,
    OrderVariant.BIRTHDAY_GIFT: OrderTypeLabel.BIRTHDAY_GIFT,
    OrderVariant.INVESTMENT: OrderTypeLabel.INVESTMENT,
    OrderVariant.BOTTLE_EXCHANGE: OrderTypeLabel.BOTTLE_EXCHANGE,
    OrderVariant.CARD_SPLIT: OrderTypeLabel.CARD_SPLIT,
}


def map_issue_partner_codes(sales: List[SaleLine], card_items: List[CardItem]) -> List[SaleLine]:
    """
    Asigna issue_partner_code de los datos de thẻ:
    línea negativa <- primer item negativo; línea positiva <- primer item
    positivo con action ADJUST (o cualquier positivo).
    """
    if not card_items:
        return sales

    negative = next((c for c in card_items if c.qty < 0), None)
    positive = next(
        (c for c in card_items if c.qty > 0 and c.action == CARD_ADJUST_ACTION), None
    ) or next((c for c in card_items if c.qty > 0 and c.issue_partner_code), None)

    mapped = []
    for sale in sales:
        source = negative if sale.qty < 0 else positive if sale.qty > 0 else None
        if source and source.issue_partner_code:
            sale = sale.model_copy(update={"issue_partner_code": source.issue_partner_code})
        mapped.append(sale)
    return mapped


class StandardSpecialHandler:

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
        variant: OrderVariant,
        create_invoice: bool = False,
        before_action: Optional[BeforeAction] = None,
    ) -> HandlerResult:
        description = VARIANT_DESCRIPTIONS.get(variant, variant.value)
        logger.info(f"[SpecialOrder] Processing {description}: {doc_code}")
        warnings: List[str] = []

        enriched = await self.enrichment.enrich_order(order)
        warnings.extend(enriched.warnings)
        if before_action:
            enriched = await before_action(enriched, warnings)

        payload = self.builder.build_invoice_payload(enriched, variant)
        so_response = await self.accounting.create_sales_order(payload, action=SubmitAction.NORMAL)
        status = response_status(so_response)
        base = f"{description} thành công" if status == 1 else f"{description} thất bại"
        message = with_api_message(base, response_message(so_response))

        result: Any = so_response
        if create_invoice:
            invoice_response = None
            try:
                invoice_response = await self.accounting.create_sales_invoice(payload)
                if response_status(invoice_response) == 1:
                    fragment = "Tạo sales invoice thành công"
                else:
                    fragment = f"Tạo sales invoice thất bại: {response_message(invoice_response)}"
                    warnings.append(fragment)
            except Exception as e:
                logger.warning(f"[SpecialOrder] Sales invoice failed for {doc_code}: {e}")
                fragment = f"Tạo sales invoice thất bại: {e}"
                warnings.append(fragment)
            message = f"{message} | {fragment}"
            result = {"salesOrder": so_response, "salesInvoice": invoice_response}

        return HandlerResult(
            result=result,
            status=status,
            message=message,
            guid=response_guid(so_response),
            fast_api_response=result,
            warnings=warnings,
        )


class CardSplitHandler:
    """08. Tách thẻ"""

    def __init__(self, special: StandardSpecialHandler, metadata: MetadataProvider, lookup_semaphore=None):
        self.special = special
        self.metadata = metadata
        self.lookup_semaphore = lookup_semaphore or special.enrichment.lookup_semaphore

    async def execute(self, order: OrderData, doc_code: str) -> HandlerResult:

        async def attach_card_data(enriched: EnrichedOrder, warnings: List[str]) -> EnrichedOrder:
            try:
                async with self.lookup_semaphore:
                    response = await self.metadata.fetch_card_data(doc_code)
                card_items = parse_card_data(response)
            except Exception as e:
                logger.warning(f"[CardSplit] Failed to fetch card data for {doc_code}: {e}")
                warnings.append(f"Không lấy được dữ liệu thẻ: {e}")
                return enriched
            if not card_items:
                logger.info(f"[CardSplit] No card data for {doc_code}")
                return enriched
            sales = map_issue_partner_codes(enriched.sales, card_items)
            return enriched.model_copy(update={"order": enriched.order.model_copy(update={"sales": sales})})

        return await self.special.execute(
            order,
            doc_code,
            OrderVariant.CARD_SPLIT,
            create_invoice=True,
            before_action=attach_card_data,
        )


class ServiceOrderHandler:
    """02. Làm dịch vụ"""

    def __init__(
        self,
        accounting: AccountingClient,
        enrichment: SaleEnrichmentService,
        builder: SalesPayloadBuilder,
        metadata: MetadataProvider,
    ):
        self.accounting = accounting
        self.enrichment = enrichment
        self.builder = builder
        self.metadata = metadata

    async def execute(self, order: OrderData, doc_code: str) -> HandlerResult:
        logger.info(f"[ServiceOrder] Processing service order {doc_code}")
        warnings: List[str] = []

        await upsert_customer(self.accounting, self.builder, order, warnings)

        enriched = await self.enrichment.enrich_order(order, explode=False)
        warnings.extend(enriched.warnings)

        service_lines = [s for s in enriched.sales if (s.product_type or "").strip().upper() == ProductType.SERVICE]
        if not service_lines:
            raise InvoiceFlowError(MSG_NO_SERVICE_LINES.format(doc_code=doc_code))

        payload = self.builder.build_invoice_payload(enriched, OrderVariant.SERVICE_ORDER, lines=service_lines)

        so_response = await self.accounting.create_sales_order(payload, action=SubmitAction.NORMAL)
        if response_status(so_response) != 1:
            raise InvoiceFlowError(response_message(so_response) or "Tạo Sales Order thất bại", so_response)

        si_response = await self.accounting.create_sales_invoice(payload)
        if response_status(si_response) != 1:
            raise InvoiceFlowError(response_message(si_response) or "Tạo Sales Invoice thất bại", si_response)

        payment_errors: List[str] = []
        cashio_results = await self._process_cashio(doc_code, payment_errors)
        gxt_response = await self._create_gxt(enriched, service_lines, doc_code, warnings)
        payment_response = await self._process_return_payment(order, doc_code, payload, payment_errors)

        status = 0 if payment_errors else 1
        message = MSG_SERVICE_ORDER_SUCCESS
        if payment_errors:
            message = f"{message}. Lỗi thanh toán: {'; '.join(payment_errors)}"
        warnings.extend(payment_errors)

        result = {
            "salesOrder": so_response,
            "salesInvoice": si_response,
            "gxtInvoice": gxt_response,
            "cashio": cashio_results,
            "payment": payment_response,
        }
        return HandlerResult(
            result=result,
            status=status,
            message=message,
            guid=response_guid(si_response),
            fast_api_response=result,
            warnings=warnings,
        )

    async def _process_cashio(self, doc_code: str, payment_errors: List[str]) -> List[Any]:
        results = []
        try:
            records = await self.metadata.find_pending_payments(doc_code)
            if not records:
                logger.info(f"[Cashio] No payment records for {doc_code}")
                return results
            logger.info(f"[Cashio] Found {len(records)} payment record(s) for {doc_code}")
            for record in records:
                results.append(await self.accounting.process_cashio_payment(record))
        except Exception as e:
            logger.error(f"[Cashio] Error processing payment sync for {doc_code}: {e}")
            payment_errors.append(f"cashio: {e}")
        return results

    async def _create_gxt(
        self,
        enriched: EnrichedOrder,
        service_lines: List[SaleLine],
        doc_code: str,
        warnings: List[str],
    ) -> Optional[Any]:
        export_lines = [s for s in enriched.sales if (s.product_type or "").strip().upper() == ProductType.ITEM_EXPORT]
        if not export_lines:
            return None
        try:
            payload = self.builder.build_gxt_payload(enriched, service_lines, export_lines)
            return await self.accounting.create_gxt_invoice(payload)
        except Exception as e:
            logger.warning(f"[ServiceOrder] GXT invoice failed for {doc_code}: {e}")
            warnings.append(f"Tạo GxtInvoice thất bại: {e}")
            return None

    async def _process_return_payment(
        self,
        order: OrderData,
        doc_code: str,
        payload: Dict[str, Any],
        payment_errors: List[str],
    ) -> Optional[Dict[str, Any]]:
        doc_source_type = normalize_doc_source_type(order)
        if doc_source_type not in (DocSourceType.ORDER_RETURN, DocSourceType.SALE_RETURN):
            logger.debug(f"[Payment] {doc_code} has docSourceType '{doc_source_type}', skipping payment")
            return None
        try:
            transfers = await self.enrichment.persistence.find_stock_transfers(
                doc_codes_for_stock_transfer([doc_code])
            )
            stock_codes = resolve_stock_codes(transfers)
            if not stock_codes:
                logger.debug(f"[Payment] {doc_code} has no stock codes, skipping payment")
                return None
            return await self.accounting.process_payment(
                doc_code, order.model_dump(mode="json"), payload, stock_codes
            )
        except Exception as e:
            logger.warning(f"[Payment] Error processing payment for {doc_code}: {e}")
            payment_errors.append(f"payment: {e}")
            return None
