"""
External Capabilities

Interfaces for collaborators the engine consumes but does not own:
credential resolution, binary object storage and workflow lookup.
"""

import logging
import threading
import uuid
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

from flowrunner.core.errors import BinaryNotFoundError
from flowrunner.schemas.workflow import WorkflowDefinition

logger = logging.getLogger(__name__)


class CredentialResolver(ABC):
    """Resolves decrypted credential data for a node."""

    @abstractmethod
    async def resolve(self, node_id: str) -> Dict[str, Any]:
        """
        Args:
            node_id: Node requesting credentials

        Returns:
            Decrypted credential data

        Raises:
            CredentialNotFoundError: No credential for the node
            CredentialAccessDeniedError: Caller may not use the credential
        """


class BinaryStore(ABC):
    """Stores binary payloads by reference."""

    @abstractmethod
    def put(self, data: bytes, mime_type: Optional[str] = None) -> str:
        """Store data and return its reference."""

    @abstractmethod
    def get(self, reference: str) -> bytes:
        """Return stored data, raising BinaryNotFoundError when missing."""


class InMemoryBinaryStore(BinaryStore):
    """Process-local binary store, used when no external store is configured."""

    def __init__(self):
        self._data: Dict[str, bytes] = {}
        self._lock = threading.Lock()

    def put(self, data: bytes, mime_type: Optional[str] = None) -> str:
        reference = f"mem:{uuid.uuid4()}"
        with self._lock:
            self._data[reference] = bytes(data)
        logger.debug(f"Stored {len(data)} bytes as {reference} ({mime_type or 'unknown type'})")
        return reference

    def get(self, reference: str) -> bytes:
        with self._lock:
            if reference not in self._data:
                raise BinaryNotFoundError(reference)
            return self._data[reference]

    def __len__(self) -> int:
        return len(self._data)


class WorkflowProvider(ABC):
    """Loads the current definition of a workflow (used by retry with load_workflow)."""

    @abstractmethod
    def get_workflow(self, workflow_id: str) -> WorkflowDefinition:
        """Raises WorkflowNotFoundError when the workflow does not exist."""
