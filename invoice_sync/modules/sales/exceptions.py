from typing import Any, Optional


class InvoiceFlowError(Exception):
    """Fallo de un paso obligatorio del flujo (Fast respondió status != 1)."""

    def __init__(self, message: str, response_data: Optional[Any] = None):
        super().__init__(message)
        self.message = message
        self.response_data = response_data
