"""
Orquestador del flujo đơn hàng -> Fast.

RECEIVED -> CLASSIFIED -> VALIDATING -> EXECUTING -> PERSISTED

Cada invocación termina con exactamente un registro en fast_api_invoices
para el doc_code, sea éxito, fallo de validación o excepción.
"""
import asyncio
import json
import logging
from typing import Awaitable, Callable, Optional

from invoice_sync.core.config import settings
from invoice_sync.modules.integrations.accounting import AccountingClient
from invoice_sync.modules.integrations.metadata import MetadataProvider
from invoice_sync.modules.sales.classifier import classify, is_cancel_code, VARIANT_LABELS
from invoice_sync.modules.sales.constants import OrderVariant, MSG_SYSTEM_ERROR, MSG_NO_SALES
from invoice_sync.modules.sales.enrichment import SaleEnrichmentService
from invoice_sync.modules.sales.exceptions import InvoiceFlowError
from invoice_sync.modules.sales.flows.normal import NormalOrderHandler, ServiceChangeHandler
from invoice_sync.modules.sales.flows.sale_return import SaleReturnHandler, CancelOrderHandler, OrderLoader
from invoice_sync.modules.sales.flows.special import (
    StandardSpecialHandler, CardSplitHandler, ServiceOrderHandler
)
from invoice_sync.modules.sales.payload import SalesPayloadBuilder, normalize_ma_kh
from invoice_sync.modules.sales.persistence import InvoicePersistenceService
from invoice_sync.modules.sales.schemas import OrderData, HandlerResult, OrchestrationResult
from invoice_sync.modules.sales.validation import OrderValidator

logger = logging.getLogger(__name__)

Handler = Callable[[], Awaitable[HandlerResult]]


class InvoiceFlowOrchestrator:

    def __init__(
        self,
        persistence: InvoicePersistenceService,
        accounting: AccountingClient,
        metadata: MetadataProvider,
        validator: Optional[OrderValidator] = None,
        lookup_semaphore: Optional[asyncio.Semaphore] = None,
        order_loader: Optional[OrderLoader] = None,
    ):
        self.persistence = persistence
        self.validator = validator or OrderValidator(settings.ALLOWED_ORDER_TYPES)

        builder = SalesPayloadBuilder()
        enrichment = SaleEnrichmentService(persistence, metadata, lookup_semaphore)
        self.normal_handler = NormalOrderHandler(accounting, enrichment, builder)
        self.service_change_handler = ServiceChangeHandler(self.normal_handler)
        self.special_handler = StandardSpecialHandler(accounting, enrichment, builder)
        self.card_split_handler = CardSplitHandler(self.special_handler, metadata)
        self.service_order_handler = ServiceOrderHandler(accounting, enrichment, builder, metadata)
        self.sale_return_handler = SaleReturnHandler(accounting, enrichment, builder)
        self.cancel_handler = CancelOrderHandler(accounting, enrichment, builder, order_loader)

    async def orchestrate_invoice_creation(
        self,
        doc_code: str,
        order: OrderData,
        force_retry: bool = False,
    ) -> OrchestrationResult:
        """Punto de entrada único: nunca propaga excepciones."""
        logger.info(f"[Orchestrator] RECEIVED {doc_code} (force_retry={force_retry})")
        try:
            if not force_retry:
                existing = await self.persistence.get_invoice(doc_code)
                if existing and existing.status == 1:
                    logger.info(f"[Orchestrator] {doc_code} already synced, skipping")
                    return OrchestrationResult(
                        success=True,
                        message=existing.message or "",
                        result=_parse_response(existing.fast_api_response),
                        already_exists=True,
                    )

            if not order.sales:
                return await self._persist_failure(doc_code, order, MSG_NO_SALES.format(doc_code=doc_code))

            if is_cancel_code(doc_code):
                logger.info(f"[Orchestrator] CLASSIFIED {doc_code} as cancel order")
                return await self.execute_with_persistence(
                    doc_code, order, lambda: self.cancel_handler.execute(order, doc_code)
                )

            classification = classify(order)
            variant = classification.variant
            logger.info(
                f"[Orchestrator] CLASSIFIED {doc_code}: variant={variant.value}, "
                f"docSourceType='{classification.doc_source_type}'"
            )

            logger.info(f"[Orchestrator] VALIDATING {doc_code}")
            if variant == OrderVariant.SALE_RETURN:
                validation = self.validator.validate_sale_return(order)
            else:
                validation = self.validator.validate(order, also_allowed=VARIANT_LABELS.get(variant, ()))
            if not validation.success:
                return await self._persist_failure(doc_code, order, validation.message)

            logger.info(f"[Orchestrator] EXECUTING {doc_code} with {variant.value} handler")
            return await self.execute_with_persistence(
                doc_code,
                order,
                self._handler_for(variant, order, doc_code),
                mark_processed=variant != OrderVariant.SALE_RETURN,
            )
        except Exception as e:
            logger.error(f"[Orchestrator] Unexpected error for {doc_code}: {e}", exc_info=True)
            return await self._persist_failure(doc_code, order, MSG_SYSTEM_ERROR.format(error=e))

    def _handler_for(self, variant: OrderVariant, order: OrderData, doc_code: str) -> Handler:
        if variant == OrderVariant.SALE_RETURN:
            return lambda: self.sale_return_handler.execute(order, doc_code)
        if variant == OrderVariant.SERVICE_ORDER:
            return lambda: self.service_order_handler.execute(order, doc_code)
        if variant == OrderVariant.SERVICE_CHANGE:
            return lambda: self.service_change_handler.execute(order, doc_code)
        if variant == OrderVariant.CARD_SPLIT:
            return lambda: self.card_split_handler.execute(order, doc_code)
        if variant in (
            OrderVariant.LOYALTY_EXCHANGE,
            OrderVariant.BIRTHDAY_GIFT,
            OrderVariant.INVESTMENT,
            OrderVariant.BOTTLE_EXCHANGE,
        ):
            return lambda: self.special_handler.execute(order, doc_code, variant)
        return lambda: self.normal_handler.execute(order, doc_code)

    async def execute_with_persistence(
        self,
        doc_code: str,
        order: OrderData,
        handler: Handler,
        mark_processed: bool = True,
    ) -> OrchestrationResult:
        """
        Ejecuta el handler y persiste su resultado.

        - guarda fast_api_invoices con status/message/guid/response
        - si status == 1 y mark_processed, marca las líneas como procesadas
        - cualquier excepción se guarda como status 0
        """
        try:
            outcome = await handler()
        except InvoiceFlowError as e:
            logger.error(f"[Orchestrator] Flow error for {doc_code}: {e.message}")
            return await self._persist_failure(
                doc_code, order, MSG_SYSTEM_ERROR.format(error=e.message), e.response_data
            )
        except Exception as e:
            logger.error(f"[Orchestrator] Handler error for {doc_code}: {e}", exc_info=True)
            return await self._persist_failure(doc_code, order, MSG_SYSTEM_ERROR.format(error=e))

        await self.persistence.save_fast_api_invoice(
            doc_code=doc_code,
            status=outcome.status,
            message=outcome.message,
            guid=outcome.guid,
            fast_api_response=outcome.fast_api_response if outcome.fast_api_response is not None else outcome.result,
            **_header_fields(order, outcome),
        )
        if outcome.status == 1 and mark_processed:
            await self.persistence.mark_order_as_processed(doc_code)

        for warning in outcome.warnings:
            logger.warning(f"[Orchestrator] {doc_code}: {warning}")
        logger.info(f"[Orchestrator] PERSISTED {doc_code}: status={outcome.status}")

        return OrchestrationResult(
            success=outcome.status == 1,
            message=outcome.message,
            result=outcome.result,
            warnings=outcome.warnings,
        )

    async def _persist_failure(
        self,
        doc_code: str,
        order: OrderData,
        message: str,
        response=None,
    ) -> OrchestrationResult:
        try:
            await self.persistence.save_fast_api_invoice(
                doc_code=doc_code,
                status=0,
                message=message,
                fast_api_response=response,
                **_header_fields(order),
            )
        except Exception as e:
            logger.error(f"[Orchestrator] Could not persist failure for {doc_code}: {e}")
        logger.info(f"[Orchestrator] PERSISTED {doc_code}: status=0")
        return OrchestrationResult(success=False, message=message, result=response)


def _header_fields(order: OrderData, outcome: Optional[HandlerResult] = None) -> dict:
    customer = order.customer
    return {
        "ma_dvcs": (outcome.ma_dvcs if outcome else None) or order.branch_code,
        "ma_kh": (outcome.ma_kh if outcome else None) or (normalize_ma_kh(customer.code) if customer else None),
        "ten_kh": (outcome.ten_kh if outcome else None) or (customer.name if customer else None),
        "ngay_ct": order.doc_date,
    }


def _parse_response(raw):
    if not raw:
        return None
    try:
        return json.loads(raw)
    except (TypeError, ValueError):
        return raw
