"""
Bank CRM system wiring

Builds the process-wide components in dependency order: configuration,
logging, the storage backend, then the ledger service that owns it.
"""

from typing import Optional

from .config import CRMConfig, get_config
from .logging_config import setup_logging
from .service import LedgerService
from .storage import CRMStore, open_store


class BankCRM:
    """Bank CRM with all components initialized"""

    def __init__(self, config: Optional[CRMConfig] = None):
        self.config = config or get_config()
        self.logger = setup_logging(
            level=self.config.log_level,
            log_format=self.config.log_format
        )

        # Backend is chosen once here and kept for the process lifetime
        self.store: CRMStore = open_store(self.config)
        self.service = LedgerService(self.store)

    @property
    def backend_name(self) -> str:
        return self.store.backend_name

    def close(self) -> None:
        """Close the storage backend"""
        self.store.close()

    def __enter__(self) -> "BankCRM":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
