"""
Tareas en segundo plano del módulo Sales
"""
import asyncio
import logging
from typing import List

from invoice_sync.core.celery import celery_app
from invoice_sync.database.database import async_engine
from invoice_sync.modules.integrations.registry import get_integrations
from invoice_sync.modules.sales.schemas import BatchProcessResponse
from invoice_sync.modules.sales.service import InvoiceBatchService

logger = logging.getLogger(__name__)


async def _run_batch(doc_codes: List[str], force_retry: bool) -> BatchProcessResponse:
    accounting, metadata = get_integrations()
    try:
        return await InvoiceBatchService(accounting, metadata).process_orders(doc_codes, force_retry)
    finally:
        # Las conexiones del pool quedan ligadas al event loop de asyncio.run
        await async_engine.dispose()


@celery_app.task(bind=True, max_retries=3)
def process_orders_batch_task(self, doc_codes: List[str], force_retry: bool = False):
    """
    Sincroniza un lote de đơn hàng con Fast.

    Los fallos por đơn hàng quedan en fast_api_invoices; solo se reintenta
    si el lote completo no pudo ejecutarse (DB caída, clientes sin configurar).
    """
    try:
        logger.info(f"[Task] Processing batch of {len(doc_codes)} orders")
        response = asyncio.run(_run_batch(doc_codes, force_retry))

        logger.info(f"[Task] Batch done: {response.succeeded} ok, {response.failed} failed")
        return response.model_dump()

    except Exception as e:
        logger.error(f"[Task] Batch processing failed: {str(e)}")
        raise self.retry(exc=e, countdown=60 * (self.request.retries + 1))
