"""
Registro de los clientes externos (Fast / metadata).

Las implementaciones se configuran al arrancar la app o el worker, ya sea
explícitamente con configure_integrations() o desde settings con una ruta
"paquete.modulo:Clase".
"""
import importlib
import logging
from typing import Optional, Tuple

from invoice_sync.core.config import settings
from invoice_sync.modules.integrations.accounting import AccountingClient
from invoice_sync.modules.integrations.metadata import MetadataProvider

logger = logging.getLogger(__name__)

_accounting_client: Optional[AccountingClient] = None
_metadata_provider: Optional[MetadataProvider] = None


class IntegrationNotConfigured(RuntimeError):
    pass


def configure_integrations(accounting: Optional[AccountingClient], metadata: Optional[MetadataProvider]) -> None:
    global _accounting_client, _metadata_provider
    _accounting_client = accounting
    _metadata_provider = metadata


def _load_object(path: str):
    module_name, _, attr = path.partition(":")
    if not module_name or not attr:
        raise ValueError(f"Ruta inválida '{path}', se espera 'paquete.modulo:Clase'")
    module = importlib.import_module(module_name)
    return getattr(module, attr)()


def load_integrations_from_settings() -> bool:
    """Instancia los clientes definidos en settings. Devuelve True si ambos quedaron configurados."""
    if not settings.ACCOUNTING_CLIENT_PATH or not settings.METADATA_PROVIDER_PATH:
        logger.warning("External clients not configured (ACCOUNTING_CLIENT_PATH / METADATA_PROVIDER_PATH)")
        return False

    accounting = _load_object(settings.ACCOUNTING_CLIENT_PATH)
    metadata = _load_object(settings.METADATA_PROVIDER_PATH)
    if not isinstance(accounting, AccountingClient):
        raise TypeError(f"{settings.ACCOUNTING_CLIENT_PATH} no implementa AccountingClient")
    if not isinstance(metadata, MetadataProvider):
        raise TypeError(f"{settings.METADATA_PROVIDER_PATH} no implementa MetadataProvider")

    configure_integrations(accounting, metadata)
    logger.info("External clients loaded from settings")
    return True


def get_integrations() -> Tuple[AccountingClient, MetadataProvider]:
    if _accounting_client is None or _metadata_provider is None:
        raise IntegrationNotConfigured("Clientes de Fast / metadata no configurados")
    return _accounting_client, _metadata_provider
