from typing import Annotated, Tuple
from fastapi import Depends, HTTPException, status
from invoice_sync.modules.integrations.accounting import AccountingClient
from invoice_sync.modules.integrations.metadata import MetadataProvider
from invoice_sync.modules.integrations.registry import get_integrations, IntegrationNotConfigured


def get_integration_clients() -> Tuple[AccountingClient, MetadataProvider]:
    """Clientes de Fast y metadata configurados al arrancar la app"""
    try:
        return get_integrations()
    except IntegrationNotConfigured as e:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=str(e)
        )


integrations_dependency = Annotated[Tuple[AccountingClient, MetadataProvider], Depends(get_integration_clients)]
