"""
Unit tests for NodeRegistry
"""

import pytest

from flowrunner.core.errors import UnknownNodeTypeError
from flowrunner.core.nodes.base import NodeHandler
from flowrunner.core.nodes.registry import NodeRegistry, get_node_registry, register_node


class EchoNode(NodeHandler):
    output_count = 3

    async def execute(self, input_data):
        return input_data.items(0)


class TestRegistration:
    """Test registering handler classes"""

    def test_register_and_get(self):
        registry = NodeRegistry()
        registry.register("echo", EchoNode, display_name="Echo", description="Echo items")

        assert registry.get("echo") is EchoNode
        assert registry.get_handler("echo") is EchoNode
        assert registry.is_registered("echo")
        assert registry.get_metadata("echo") == {
            "display_name": "Echo",
            "description": "Echo items",
            "class_name": "EchoNode",
            "inputs": 1,
            "outputs": 3,
        }

    def test_rejects_non_handler(self):
        with pytest.raises(ValueError, match="must inherit from NodeHandler"):
            NodeRegistry().register("bad", dict)

    def test_unknown_type(self):
        registry = NodeRegistry()

        assert registry.get("missing") is None
        with pytest.raises(UnknownNodeTypeError):
            registry.get_handler("missing")

    def test_unregister(self):
        registry = NodeRegistry()
        registry.register("echo", EchoNode)

        assert registry.unregister("echo") is True
        assert registry.unregister("echo") is False
        assert registry.list_types() == []

    def test_decorator_with_explicit_registry(self):
        registry = NodeRegistry()

        @register_node("decorated", registry=registry)
        class DecoratedNode(NodeHandler):
            async def execute(self, input_data):
                return None

        assert registry.get("decorated") is DecoratedNode

    def test_copy_is_independent(self):
        registry = NodeRegistry()
        registry.register("echo", EchoNode)

        clone = registry.copy()
        clone.unregister("echo")

        assert registry.is_registered("echo")


class TestBuiltinRegistry:
    """Test the default registry"""

    def test_builtin_nodes_registered(self):
        registry = get_node_registry()

        for node_type in ("manual_trigger", "set", "if", "merge", "no_op", "wait"):
            assert registry.is_registered(node_type), node_type

    def test_declared_ports(self, make_node):
        registry = get_node_registry()

        assert registry.get("if").declared_outputs(make_node("n", "if")) == 2
        assert registry.get("merge").declared_inputs(make_node("n", "merge")) == 2
        assert registry.get("merge").declared_inputs(make_node("n", "merge", inputs=3)) == 3
