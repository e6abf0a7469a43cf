"""Pytest fixtures and configuration."""

import os
import sys
from pathlib import Path

# Set up test environment variables BEFORE any flowrunner imports
os.environ.setdefault("FLOWRUNNER_DATABASE_URL", "sqlite://")
os.environ.setdefault("FLOWRUNNER_ENVIRONMENT", "testing")
os.environ.setdefault("FLOWRUNNER_LOG_LEVEL", "INFO")

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

import asyncio
from typing import Any, Dict, List

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import flowrunner.database.models  # noqa: F401  (register models on Base)
from flowrunner.core.capabilities import InMemoryBinaryStore, WorkflowProvider
from flowrunner.core.errors import WorkflowNotFoundError
from flowrunner.core.execution.orchestrator import WorkflowOrchestrator
from flowrunner.core.execution.registry import ActiveExecutionRegistry
from flowrunner.core.nodes.base import NodeExecutionInput, NodeHandler
from flowrunner.core.nodes.registry import get_node_registry
from flowrunner.database.base import Base
from flowrunner.database.repositories.execution import ExecutionRepository
from flowrunner.schemas.workflow import Connection, NodeConfiguration, WorkflowDefinition


# ==================== Test handlers ====================

class CallLog:
    """Invocation log shared by the test handlers."""

    def __init__(self):
        self.calls: List[str] = []
        self.active = 0
        self.max_active = 0
        self.started: List[str] = []

    def count(self, node_id: str) -> int:
        return self.calls.count(node_id)

    def reset(self):
        self.__init__()


call_log = CallLog()


class RecordingNode(NodeHandler):
    """Passes port 0 through (or emits one item naming the node) and logs the call."""

    async def execute(self, input_data: NodeExecutionInput):
        call_log.calls.append(self.node_id)
        return input_data.items(0) or [{"json": {"node": self.node_id}}]


class EmitNode(NodeHandler):
    """Emits the items given in parameters["items"]."""

    async def execute(self, input_data: NodeExecutionInput):
        call_log.calls.append(self.node_id)
        return input_data.parameters.get("items", [])


class FailingNode(NodeHandler):
    async def execute(self, input_data: NodeExecutionInput):
        call_log.calls.append(self.node_id)
        raise RuntimeError(input_data.parameters.get("message", "boom"))


class FlakyNode(NodeHandler):
    """Fails the first parameters["failures"] attempts."""

    async def execute(self, input_data: NodeExecutionInput):
        call_log.calls.append(self.node_id)
        if input_data.attempt <= input_data.parameters.get("failures", 1):
            raise RuntimeError(f"attempt {input_data.attempt} failed")
        return [{"json": {"attempt": input_data.attempt}}]


class SlowNode(NodeHandler):
    """Sleeps cooperatively for parameters["seconds"], tracking concurrency."""

    async def execute(self, input_data: NodeExecutionInput):
        call_log.calls.append(self.node_id)
        call_log.started.append(self.node_id)
        call_log.active += 1
        call_log.max_active = max(call_log.max_active, call_log.active)
        try:
            await input_data.cancel_token.sleep(input_data.parameters.get("seconds", 0.05))
            input_data.checkpoint()
        finally:
            call_log.active -= 1
        return input_data.items(0) or [{"json": {"node": self.node_id}}]


class StubbornNode(NodeHandler):
    """Sleeps without checking for cancellation."""

    async def execute(self, input_data: NodeExecutionInput):
        call_log.calls.append(self.node_id)
        call_log.started.append(self.node_id)
        await asyncio.sleep(input_data.parameters.get("seconds", 0.05))
        return [{"json": {"done": True}}]


class MutatingNode(NodeHandler):
    """Mutates its input items in place."""

    async def execute(self, input_data: NodeExecutionInput):
        call_log.calls.append(self.node_id)
        for item in input_data.items(0):
            item["json"]["mutated"] = True
        return input_data.items(0)


TEST_HANDLERS = {
    "record": RecordingNode,
    "emit": EmitNode,
    "fail": FailingNode,
    "flaky": FlakyNode,
    "slow": SlowNode,
    "stubborn": StubbornNode,
    "mutate": MutatingNode,
}


class DictWorkflowProvider(WorkflowProvider):
    def __init__(self, workflows: Dict[str, WorkflowDefinition] = None):
        self.workflows = workflows or {}

    def get_workflow(self, workflow_id: str) -> WorkflowDefinition:
        if workflow_id not in self.workflows:
            raise WorkflowNotFoundError(workflow_id)
        return self.workflows[workflow_id]


# ==================== Database ====================

@pytest.fixture(scope="session")
def test_engine():
    """Create a test database engine for the session."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)


@pytest.fixture(scope="function")
def clean_db(test_engine):
    """Provide a clean database for each test."""
    Base.metadata.drop_all(test_engine)
    Base.metadata.create_all(test_engine)

    Session = sessionmaker(bind=test_engine)
    session = Session()
    yield session
    session.close()


@pytest.fixture
def repository(clean_db):
    return ExecutionRepository(clean_db)


# ==================== Engine ====================

@pytest.fixture(autouse=True)
def calls():
    """Invocation log of the test handlers, reset for every test."""
    call_log.reset()
    yield call_log


@pytest.fixture
def node_registry():
    """Builtin nodes plus the test handlers, isolated from the default registry."""
    registry = get_node_registry().copy()
    for node_type, handler_class in TEST_HANDLERS.items():
        registry.register(node_type, handler_class)
    return registry


@pytest.fixture
def active_registry():
    return ActiveExecutionRegistry()


@pytest.fixture
def workflow_provider():
    return DictWorkflowProvider()


@pytest.fixture
def orchestrator(repository, node_registry, active_registry, workflow_provider):
    return WorkflowOrchestrator(
        store=repository,
        node_registry=node_registry,
        binary_store=InMemoryBinaryStore(),
        workflow_provider=workflow_provider,
        active_registry=active_registry,
    )


# ==================== Workflow factories ====================

@pytest.fixture
def make_node():
    def _make(node_id: str, node_type: str = "record", **kwargs: Any) -> NodeConfiguration:
        return NodeConfiguration(node_id=node_id, node_type=node_type, name=node_id, **kwargs)
    return _make


@pytest.fixture
def connect():
    def _connect(source: str, target: str, source_port: int = 0, target_port: int = 0) -> Connection:
        return Connection(
            source_node_id=source,
            source_port=source_port,
            target_node_id=target,
            target_port=target_port,
        )
    return _connect


@pytest.fixture
def make_workflow():
    def _make(nodes, connections=None, workflow_id: str = "wf-test", **settings: Any) -> WorkflowDefinition:
        return WorkflowDefinition(
            workflow_id=workflow_id,
            name="Test Workflow",
            nodes=list(nodes),
            connections=list(connections or []),
            settings=settings,
        )
    return _make


@pytest.fixture
def scenario_workflow(make_node, connect, make_workflow):
    """
    Trigger -> Set -> IF{true: Email, false: NoOp}.

    Set stores parameters["value"] on field "x"; IF routes x > 5 to Email.
    """
    def _make(value: int = 10) -> WorkflowDefinition:
        return make_workflow(
            [
                make_node("trigger", "manual_trigger"),
                make_node("set", "set", parameters={"values": {"x": value}}),
                make_node("if", "if", parameters={
                    "conditions": [{"field": "x", "operation": "greater_than", "value": 5}],
                }),
                make_node("email", "record"),
                make_node("noop", "no_op"),
            ],
            [
                connect("trigger", "set"),
                connect("set", "if"),
                connect("if", "email", source_port=0),
                connect("if", "noop", source_port=1),
            ],
        )
    return _make
