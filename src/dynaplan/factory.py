# src/dynaplan/factory.py
import threading
from typing import Optional

from .config import Settings
from .models import StoreBackend
from .utils import setup_logger


class StoreFactory:
    """Builds the store adapter named by settings, once per factory"""

    def __init__(self, settings: Optional[Settings] = None):
        self.logger = setup_logger(__name__)
        self.settings = settings or Settings.from_env()
        self.backend = self.settings.store
        self._store = None
        self._lock = threading.Lock()

        self.logger.info(f"StoreFactory backend: {self.backend.value}")

    def get_store(self):
        with self._lock:
            if self._store is None:
                if self.backend == StoreBackend.DYNAMODB:
                    from .adapters.DynamoDBAdapter import DynamoDBAdapter
                    self._store = DynamoDBAdapter(self.settings.endpoint_url, self.settings.region)
                else:
                    from .adapters.MemoryAdapter import MemoryAdapter
                    self._store = MemoryAdapter()
            return self._store
