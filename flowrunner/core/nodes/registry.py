"""
Node Registry

Maps node type names to handler classes. The executor is handler-agnostic: it
only asks the registry for the class registered under a node's type.
"""

import logging
from typing import Any, Dict, List, Optional, Type

from flowrunner.core.errors import UnknownNodeTypeError
from flowrunner.core.nodes.base import NodeHandler

logger = logging.getLogger(__name__)


class NodeRegistry:
    """
    Registry for node types.

    Maintains mapping of node_type string to NodeHandler class. The module
    level `node_registry` holds the builtin nodes; tests and embedders can
    create their own instances.
    """

    def __init__(self):
        self._handlers: Dict[str, Type[NodeHandler]] = {}
        self._metadata: Dict[str, Dict[str, Any]] = {}

    def register(
        self,
        node_type: str,
        handler_class: Type[NodeHandler],
        display_name: Optional[str] = None,
        description: Optional[str] = None,
    ) -> None:
        """
        Register a node type.

        Args:
            node_type: Unique identifier for node type (e.g., "set")
            handler_class: Handler class (must inherit from NodeHandler)
            display_name: Human-readable name
            description: Node description
        """
        if not (isinstance(handler_class, type) and issubclass(handler_class, NodeHandler)):
            raise ValueError(f"Handler class {handler_class} must inherit from NodeHandler")

        if node_type in self._handlers:
            logger.warning(f"⚠️ Overwriting existing node type: {node_type}")

        self._handlers[node_type] = handler_class
        self._metadata[node_type] = {
            "display_name": display_name or node_type,
            "description": description or "",
            "class_name": handler_class.__name__,
            "inputs": handler_class.input_count,
            "outputs": handler_class.output_count,
        }
        logger.debug(f"Registered node type: {node_type} → {handler_class.__name__}")

    def get(self, node_type: str) -> Optional[Type[NodeHandler]]:
        """Get handler class by type, or None if not found."""
        return self._handlers.get(node_type)

    def get_handler(self, node_type: str) -> Type[NodeHandler]:
        """Get handler class by type, raising UnknownNodeTypeError if missing."""
        handler_class = self._handlers.get(node_type)
        if handler_class is None:
            raise UnknownNodeTypeError(node_type)
        return handler_class

    def get_metadata(self, node_type: str) -> Optional[Dict[str, Any]]:
        return self._metadata.get(node_type)

    def list_types(self) -> List[str]:
        return list(self._handlers.keys())

    def is_registered(self, node_type: str) -> bool:
        return node_type in self._handlers

    def unregister(self, node_type: str) -> bool:
        if node_type in self._handlers:
            del self._handlers[node_type]
            del self._metadata[node_type]
            logger.info(f"🗑️ Unregistered node type: {node_type}")
            return True
        return False

    def copy(self) -> "NodeRegistry":
        """Independent registry with the same registrations."""
        clone = NodeRegistry()
        clone._handlers = dict(self._handlers)
        clone._metadata = {key: dict(value) for key, value in self._metadata.items()}
        return clone


node_registry = NodeRegistry()


def register_node(
    node_type: str,
    display_name: Optional[str] = None,
    description: Optional[str] = None,
    registry: Optional[NodeRegistry] = None,
):
    """
    Decorator to register a handler class.

    Example:
        @register_node("no_op", description="Pass items through unchanged")
        class NoOpNode(NodeHandler):
            ...
    """
    def decorator(handler_class: Type[NodeHandler]) -> Type[NodeHandler]:
        (registry or node_registry).register(
            node_type,
            handler_class,
            display_name=display_name,
            description=description,
        )
        return handler_class

    return decorator


def get_node_registry() -> NodeRegistry:
    """Registry holding the builtin nodes (imports them on first use)."""
    import flowrunner.core.nodes.builtin  # noqa: F401  (registers builtin handlers)
    return node_registry
