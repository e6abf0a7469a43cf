"""
Unit tests for the data pipeline

Tests input assembly and output normalization:
- Concatenation per input port in connection order
- NOT_READY while an upstream node has no usable result
- Pinned and disabled upstream nodes
- Accepted handler return shapes and binary storage
"""

import pytest

from flowrunner.core.capabilities import InMemoryBinaryStore
from flowrunner.core.errors import BinaryNotFoundError, NodeOutputError
from flowrunner.core.execution.graph.builder import build_execution_graph
from flowrunner.core.execution.pipeline import NOT_READY, assemble_inputs, has_input, normalize_output
from flowrunner.core.nodes.base import NodeExecutionInput
from flowrunner.schemas.execution import TaskData, TaskStatus


def success(*ports):
    return [TaskData(status=TaskStatus.SUCCESS, outputs_by_port=list(ports))]


@pytest.fixture
def fan_in(make_node, connect, make_workflow):
    """a and b feed port 0 of target (b declared first), c feeds port 1."""
    return build_execution_graph(make_workflow(
        [make_node("a"), make_node("b"), make_node("c"), make_node("target", inputs=2)],
        [
            connect("b", "target", target_port=0),
            connect("a", "target", target_port=0),
            connect("c", "target", target_port=1),
        ],
    ))


class TestAssembleInputs:
    """Test assembling a node's inputs from upstream results"""

    def test_concatenates_in_connection_order(self, fan_in):
        run_data = {
            "a": success([{"json": {"from": "a"}}]),
            "b": success([{"json": {"from": "b"}}]),
            "c": success([{"json": {"from": "c"}}]),
        }

        inputs = assemble_inputs("target", fan_in, run_data)

        assert inputs == [
            [{"json": {"from": "b"}}, {"json": {"from": "a"}}],
            [{"json": {"from": "c"}}],
        ]

    def test_not_ready_until_all_upstream_resolved(self, fan_in):
        run_data = {"a": success([]), "b": success([])}

        assert assemble_inputs("target", fan_in, run_data) is NOT_READY
        assert not NOT_READY

    def test_failed_upstream_is_not_ready(self, fan_in):
        run_data = {
            "a": success([]),
            "b": [TaskData(status=TaskStatus.ERROR)],
            "c": success([]),
        }

        assert assemble_inputs("target", fan_in, run_data) is NOT_READY

    def test_latest_attempt_is_used(self, make_node, connect, make_workflow):
        graph = build_execution_graph(make_workflow(
            [make_node("a"), make_node("b")],
            [connect("a", "b")],
        ))
        run_data = {"a": [
            TaskData(status=TaskStatus.ERROR),
            TaskData(status=TaskStatus.SUCCESS, outputs_by_port=[[{"json": {"ok": True}}]]),
        ]}

        assert assemble_inputs("b", graph, run_data) == [[{"json": {"ok": True}}]]

    def test_pin_data_takes_precedence(self, fan_in):
        run_data = {"a": success([{"json": {"from": "run"}}]), "c": success([])}
        pin_data = {"a": [{"json": {"from": "pin"}}], "b": []}

        inputs = assemble_inputs("target", fan_in, run_data, pin_data)

        assert inputs[0] == [{"json": {"from": "pin"}}]

    def test_disabled_upstream_contributes_nothing(self, make_node, connect, make_workflow):
        graph = build_execution_graph(make_workflow(
            [make_node("a", disabled=True), make_node("root"), make_node("b")],
            [connect("a", "b"), connect("root", "b")],
        ))

        inputs = assemble_inputs("b", graph, {"root": success([{"json": {"n": 1}}])})

        assert inputs == [[{"json": {"n": 1}}]]

    def test_inputs_are_deep_copies(self, make_node, connect, make_workflow):
        graph = build_execution_graph(make_workflow(
            [make_node("a"), make_node("b")],
            [connect("a", "b")],
        ))
        run_data = {"a": success([{"json": {"nested": {"n": 1}}}])}

        inputs = assemble_inputs("b", graph, run_data)
        inputs[0][0]["json"]["nested"]["n"] = 2

        assert run_data["a"][0].output(0) == [{"json": {"nested": {"n": 1}}}]

    def test_has_input(self):
        assert has_input([[], [{"json": {}}]])
        assert not has_input([[], []])
        assert not has_input([])


class TestNormalizeOutput:
    """Test normalization of handler return values"""

    def test_none_is_empty(self):
        assert normalize_output(None, 2) == [[], []]

    def test_single_dict_is_wrapped(self):
        assert normalize_output({"a": 1}, 1) == [[{"json": {"a": 1}}]]

    def test_list_of_items(self):
        raw = [{"json": {"a": 1}}, {"b": 2}]
        assert normalize_output(raw, 1) == [[{"json": {"a": 1}}, {"json": {"b": 2}}]]

    def test_list_of_collections(self):
        raw = [[{"json": {"a": 1}}], [{"json": {"b": 2}}]]
        assert normalize_output(raw, 2) == raw

    def test_short_list_of_collections_is_padded(self):
        assert normalize_output([[{"a": 1}]], 3) == [[{"json": {"a": 1}}], [], []]

    def test_dict_with_extra_keys_is_json(self):
        """Test that a dict with keys besides json/binary is treated as plain data"""
        raw = {"json": {"a": 1}, "other": True}
        assert normalize_output(raw, 1) == [[{"json": raw}]]

    def test_too_many_collections(self):
        with pytest.raises(NodeOutputError, match="declares 1 port"):
            normalize_output([[], []], 1)

    def test_scalar_output_rejected(self):
        with pytest.raises(NodeOutputError):
            normalize_output("text", 1)

    def test_mixed_shapes_rejected(self):
        with pytest.raises(NodeOutputError):
            normalize_output([{"a": 1}, [{"b": 2}]], 2)

    def test_non_dict_item_reports_index(self):
        with pytest.raises(NodeOutputError) as exc_info:
            normalize_output([[{"a": 1}, "bad"]], 1)
        assert exc_info.value.item_index == 1


class TestBinaryOutput:
    """Test binary payload storage"""

    def test_bytes_replaced_with_reference(self):
        store = InMemoryBinaryStore()

        outputs = normalize_output(
            [{"json": {}, "binary": {"file": {"data": b"abc", "mime_type": "text/plain"}}}],
            1,
            store,
        )

        binary = outputs[0][0]["binary"]["file"]
        assert binary["mime_type"] == "text/plain"
        assert binary["size"] == 3
        assert store.get(binary["reference"]) == b"abc"

    def test_raw_bytes_value(self):
        store = InMemoryBinaryStore()

        outputs = normalize_output([{"json": {}, "binary": {"file": b"xyz"}}], 1, store)

        assert store.get(outputs[0][0]["binary"]["file"]["reference"]) == b"xyz"

    def test_existing_reference_kept(self):
        reference = {"reference": "mem:1", "mime_type": None, "size": 1}

        outputs = normalize_output([{"json": {}, "binary": {"file": reference}}], 1)

        assert outputs[0][0]["binary"]["file"] == reference

    def test_binary_without_store_rejected(self):
        with pytest.raises(NodeOutputError, match="no binary store"):
            normalize_output([{"json": {}, "binary": {"file": b"abc"}}], 1)

    def test_non_bytes_payload_rejected(self):
        with pytest.raises(NodeOutputError, match="must be bytes"):
            normalize_output([{"json": {}, "binary": {"file": {"data": "text"}}}], 1, InMemoryBinaryStore())

    def test_missing_reference(self):
        with pytest.raises(BinaryNotFoundError):
            InMemoryBinaryStore().get("mem:missing")

    def test_handler_loads_binary(self):
        store = InMemoryBinaryStore()
        item = normalize_output([{"json": {}, "binary": {"data": b"payload"}}], 1, store)[0][0]
        input_data = NodeExecutionInput(
            inputs=[[item]], workflow_id="w", execution_id="e", node_id="n", binary_store=store,
        )

        assert input_data.get_binary(input_data.items(0)[0]) == b"payload"
