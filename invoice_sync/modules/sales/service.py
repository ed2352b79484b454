"""
Servicios de negocio del módulo Sales

- Carga del đơn hàng (líneas + khách hàng) desde la base de datos
- Sincronización de un đơn hàng con Fast a través del orquestador
- Procesamiento por lotes: una sesión por đơn hàng, semáforo compartido
  para las búsquedas de metadata
"""
import asyncio
import logging
from typing import Callable, List, Optional

from fastapi import HTTPException, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from invoice_sync.core.config import settings
from invoice_sync.database.database import AsyncSessionLocal
from invoice_sync.modules.integrations.accounting import AccountingClient
from invoice_sync.modules.integrations.metadata import MetadataProvider
from invoice_sync.modules.sales.constants import MSG_SYSTEM_ERROR
from invoice_sync.modules.sales.flows.orchestrator import InvoiceFlowOrchestrator
from invoice_sync.modules.sales.models import Sale, FastApiInvoice
from invoice_sync.modules.sales.persistence import InvoicePersistenceService
from invoice_sync.modules.sales.schemas import (
    OrderData, SaleLine, CustomerData, OrchestrationResult,
    BatchItemResult, BatchProcessResponse
)
from invoice_sync.modules.sales.validation import OrderValidator

logger = logging.getLogger(__name__)

# Lista permitida compartida por toda la aplicación (editable vía API)
order_validator = OrderValidator(settings.ALLOWED_ORDER_TYPES)


async def find_order_by_doc_code(db: AsyncSession, doc_code: str) -> Optional[OrderData]:
    """Arma el OrderData de un doc_code; None si no hay líneas."""
    result = await db.execute(
        select(Sale)
        .options(selectinload(Sale.customer))
        .where(Sale.doc_code == doc_code)
        .order_by(Sale.line_no, Sale.created_at)
    )
    rows = result.scalars().all()
    if not rows:
        return None

    first = rows[0]
    return OrderData(
        doc_code=doc_code,
        doc_date=first.doc_date,
        branch_code=first.branch_code,
        doc_source_type=first.doc_source_type,
        customer=CustomerData.model_validate(first.customer) if first.customer else None,
        sales=[SaleLine.model_validate(row) for row in rows],
    )


async def get_invoice_status(db: AsyncSession, doc_code: str) -> FastApiInvoice:
    invoice = await InvoicePersistenceService(db).get_invoice(doc_code)
    if invoice is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Chưa có trạng thái đồng bộ cho đơn hàng {doc_code}"
        )
    return invoice


class InvoiceSyncService:
    """Sincronización de un đơn hàng con Fast"""

    def __init__(
        self,
        db: AsyncSession,
        accounting: AccountingClient,
        metadata: MetadataProvider,
        validator: Optional[OrderValidator] = None,
        lookup_semaphore: Optional[asyncio.Semaphore] = None,
    ):
        self.db = db
        self.orchestrator = InvoiceFlowOrchestrator(
            InvoicePersistenceService(db),
            accounting,
            metadata,
            validator=validator or order_validator,
            lookup_semaphore=lookup_semaphore,
            order_loader=self.load_order,
        )

    async def load_order(self, doc_code: str) -> Optional[OrderData]:
        return await find_order_by_doc_code(self.db, doc_code)

    async def process_order(self, doc_code: str, force_retry: bool = False) -> OrchestrationResult:
        order = await self.load_order(doc_code)
        if order is None:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail=f"Không tìm thấy đơn hàng {doc_code}"
            )
        return await self.orchestrator.orchestrate_invoice_creation(doc_code, order, force_retry)


class InvoiceBatchService:
    """
    Procesa varios đơn hàng en paralelo.

    Cada đơn hàng usa su propia sesión; el semáforo limita las llamadas
    concurrentes al servicio de metadata para todo el lote.
    """

    def __init__(
        self,
        accounting: AccountingClient,
        metadata: MetadataProvider,
        validator: Optional[OrderValidator] = None,
        session_factory: Callable[[], AsyncSession] = AsyncSessionLocal,
        concurrency: Optional[int] = None,
    ):
        self.accounting = accounting
        self.metadata = metadata
        self.validator = validator or order_validator
        self.session_factory = session_factory
        self.concurrency = concurrency or settings.LOOKUP_CONCURRENCY

    async def process_orders(self, doc_codes: List[str], force_retry: bool = False) -> BatchProcessResponse:
        semaphore = asyncio.Semaphore(self.concurrency)
        logger.info(f"[Batch] Processing {len(doc_codes)} orders (concurrency={self.concurrency})")

        results = await asyncio.gather(
            *(self._process_one(doc_code, force_retry, semaphore) for doc_code in doc_codes)
        )
        succeeded = sum(1 for item in results if item.success)

        logger.info(f"[Batch] Done: {succeeded}/{len(results)} succeeded")
        return BatchProcessResponse(
            total=len(results),
            succeeded=succeeded,
            failed=len(results) - succeeded,
            results=list(results),
        )

    async def _process_one(self, doc_code: str, force_retry: bool, semaphore: asyncio.Semaphore) -> BatchItemResult:
        async with self.session_factory() as session:
            try:
                service = InvoiceSyncService(
                    session, self.accounting, self.metadata, self.validator, lookup_semaphore=semaphore
                )
                result = await service.process_order(doc_code, force_retry)
            except HTTPException as e:
                return BatchItemResult(doc_code=doc_code, success=False, message=str(e.detail))
            except Exception as e:
                logger.error(f"[Batch] Error processing {doc_code}: {e}", exc_info=True)
                await session.rollback()
                return BatchItemResult(
                    doc_code=doc_code, success=False, message=MSG_SYSTEM_ERROR.format(error=e)
                )

        return BatchItemResult(
            doc_code=doc_code,
            success=result.success,
            message=result.message,
            already_exists=result.already_exists,
        )
