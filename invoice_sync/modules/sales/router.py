from fastapi import APIRouter, HTTPException, status
from typing import Optional

from invoice_sync.core.config import settings
from invoice_sync.dependencies.dbDependecies import async_db_dependency
from invoice_sync.dependencies.integrationDependencies import integrations_dependency
from invoice_sync.modules.sales.schemas import (
    ProcessOrderRequest, OrchestrationResult, BatchProcessRequest, BatchProcessResponse,
    BatchTaskQueued, InvoiceStatusOut, AllowedOrderTypeRequest, AllowedOrderTypesOut
)
from invoice_sync.modules.sales.service import (
    InvoiceSyncService, InvoiceBatchService, get_invoice_status, order_validator
)
from invoice_sync.modules.sales.tasks import process_orders_batch_task

router = APIRouter(prefix="/sales", tags=["Sales"])


def _check_batch_size(request: BatchProcessRequest) -> None:
    if len(request.doc_codes) > settings.BATCH_MAX_SIZE:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Máximo {settings.BATCH_MAX_SIZE} đơn hàng por lote"
        )


@router.post("/{doc_code}/invoice", response_model=OrchestrationResult)
async def create_invoice(
    doc_code: str,
    db: async_db_dependency,
    clients: integrations_dependency,
    request: Optional[ProcessOrderRequest] = None,
):
    """
    Sincronizar un đơn hàng con Fast

    Clasifica el đơn hàng, valida su Loại, ejecuta el flujo correspondiente y
    guarda el resultado en fast_api_invoices. Si ya fue sincronizado con
    éxito se devuelve el registro existente salvo force_retry=true.
    """
    accounting, metadata = clients
    service = InvoiceSyncService(db, accounting, metadata)
    force_retry = request.force_retry if request else False
    return await service.process_order(doc_code, force_retry)


@router.post("/invoices/batch", response_model=BatchProcessResponse)
async def create_invoices_batch(request: BatchProcessRequest, clients: integrations_dependency):
    """Sincronizar varios đơn hàng en paralelo y esperar el resultado"""
    _check_batch_size(request)
    accounting, metadata = clients
    service = InvoiceBatchService(accounting, metadata)
    return await service.process_orders(request.doc_codes, request.force_retry)


@router.post("/invoices/batch/async", response_model=BatchTaskQueued, status_code=status.HTTP_202_ACCEPTED)
def queue_invoices_batch(request: BatchProcessRequest):
    """Encolar la sincronización de un lote en Celery"""
    _check_batch_size(request)
    task = process_orders_batch_task.delay(request.doc_codes, request.force_retry)
    return BatchTaskQueued(task_id=task.id, total=len(request.doc_codes))


@router.get("/invoices/{doc_code}", response_model=InvoiceStatusOut)
async def read_invoice_status(doc_code: str, db: async_db_dependency):
    """Estado de sincronización de un đơn hàng"""
    return await get_invoice_status(db, doc_code)


# Loại đơn hàng permitidos

@router.get("/allowed-order-types", response_model=AllowedOrderTypesOut)
def list_allowed_order_types():
    return AllowedOrderTypesOut(allowed_order_types=order_validator.allowed_order_types)


@router.post("/allowed-order-types", response_model=AllowedOrderTypesOut)
def add_allowed_order_type(request: AllowedOrderTypeRequest):
    return AllowedOrderTypesOut(allowed_order_types=order_validator.add_allowed_order_type(request.label))


@router.delete("/allowed-order-types", response_model=AllowedOrderTypesOut)
def remove_allowed_order_type(label: str):
    if label.strip() not in order_validator.allowed_order_types:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Loại đơn hàng '{label}' no está en la lista"
        )
    return AllowedOrderTypesOut(allowed_order_types=order_validator.remove_allowed_order_type(label))
