"""
Pytest configuration and shared fixtures.
"""

import asyncio
import copy
import json
import sys
from pathlib import Path

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from config import Settings, override_settings
from flowdesk.models.base import Base
from flowdesk.models.preference import WorkflowPreference
from flowdesk.services.gateway import RemoteGateway
from flowdesk.services.graph_store import GraphStore
from flowdesk.services.preference_store import PreferenceStore


_DEFAULT_FAILURE = object()

DEFAULT_FLOW_CONFIGS = {
    "StartNode": {"nodeName": "Start", "status": "idle"},
    "ChatNode": {"nodeName": "Chat", "status": "idle"},
    "EndNode": {"nodeName": "End", "status": "idle"},
    "MemoryNode": {"nodeName": "Memory", "dialogueId": "default", "historyRounds": 5},
}

DEFAULT_WORK_CONFIGS = {
    "ChatNode": {"model": "gpt-4o-mini", "temperature": 0.7, "systemPrompt": "You are helpful."},
    "MemoryNode": {},
}


class FakeBackend:
    """
    In-memory stand-in for the backend process.

    Implements the workflow, node and conversation controllers the way the
    real backend does: coded {code, success, data} replies, node positions
    renumbered server-side, conversation content stored as JSON text.
    """

    def __init__(self):
        self.workflows = {}
        self.nodes = {}
        self.conversations = {}
        self.current_conversation = {}
        self.calls = []
        self.node_types = ["StartNode", "ChatNode", "EndNode", "MemoryNode"]
        self.reassign_conversation = False
        self._failures = {}
        self._errors = {}
        self._gates = {}
        self._counter = 0

    # -- test controls ------------------------------------------------- #

    def fail(self, operation, reply=_DEFAULT_FAILURE, times=1):
        """Make the next call(s) to an operation return a failure reply."""
        if reply is _DEFAULT_FAILURE:
            reply = {"code": 500, "success": False, "message": f"{operation} failed"}
        self._failures[operation] = [reply, times]

    def raise_on(self, operation, error):
        """Make the next call to an operation raise at the transport level."""
        self._errors[operation] = error

    def block(self, operation):
        """Hold calls to an operation until the returned event is set."""
        gate = asyncio.Event()
        self._gates[operation] = gate
        return gate

    def called(self, operation):
        return [payload for name, payload in self.calls if name == operation]

    # -- transport ----------------------------------------------------- #

    async def invoke(self, operation_id, payload=None):
        operation = operation_id.rsplit("/", 1)[-1]
        payload = copy.deepcopy(payload or {})
        self.calls.append((operation, payload))

        # The reply is computed on arrival; a gate only delays its delivery
        gate = self._gates.pop(operation, None)
        error = self._errors.pop(operation, None)
        reply = None if error is not None else self._reply(operation, payload)

        if gate is not None:
            await gate.wait()
        if error is not None:
            raise error
        return reply

    def _reply(self, operation, payload):
        failure = self._failures.get(operation)
        if failure is not None:
            failure[1] -= 1
            if failure[1] <= 0:
                del self._failures[operation]
            return failure[0]

        handler = getattr(self, f"_op_{operation}")
        return handler(payload)

    # -- helpers ------------------------------------------------------- #

    def _next_id(self, prefix):
        self._counter += 1
        return f"{prefix}-{self._counter}"

    def _ok(self, data=None):
        return {"code": 200, "success": True, "data": data}

    def _renumber(self, workflow_id):
        for position, node in enumerate(self.nodes[workflow_id]):
            node["order_index"] = position

    def _find_node(self, node_id):
        for workflow_id, nodes in self.nodes.items():
            for node in nodes:
                if node["id"] == node_id:
                    return workflow_id, node
        return None, None

    def add_message(self, conversation_id, role, text):
        """Store a message the way the backend does."""
        message = {
            "id": self._next_id("msg"),
            "conversationId": conversation_id,
            "role": role,
            "content": json.dumps({"role": role, "content": text}),
            "createdAt": f"2024-01-01T00:00:{len(self.conversations[conversation_id]['messages']):02d}",
        }
        self.conversations[conversation_id]["messages"].append(message)
        return message

    def new_conversation(self, workflow_id):
        conversation_id = self._next_id("conv")
        self.conversations[conversation_id] = {
            "id": conversation_id,
            "workflowId": workflow_id,
            "createdAt": "2024-01-01T00:00:00",
            "messages": [],
        }
        self.current_conversation[workflow_id] = conversation_id
        return conversation_id

    def run(self, input_data):
        text = input_data.get("text") if isinstance(input_data, dict) else json.dumps(input_data)
        return {"items": [{"data": f"echo: {text}"}]}

    # -- connection ---------------------------------------------------- #

    def _op_check(self, payload):
        return {"success": True, "message": "connected", "data": {"status": "ok"}}

    # -- workflows ----------------------------------------------------- #

    def _op_createWorkflow(self, payload):
        workflow_id = self._next_id("wf")
        self.workflows[workflow_id] = {
            "id": workflow_id,
            "name": payload["name"],
            "description": payload.get("description", ""),
            "config": payload.get("config") or {},
            "status": "ready",
        }
        self.nodes[workflow_id] = []
        return self._ok(dict(self.workflows[workflow_id]))

    def _op_getWorkflow(self, payload):
        workflow = self.workflows.get(payload["id"])
        if workflow is None:
            return {"code": 404, "message": "Workflow not found", "success": False}
        data = copy.deepcopy(workflow)
        data["nodes"] = copy.deepcopy(self.nodes[payload["id"]])
        return self._ok(data)

    def _op_listWorkflows(self, payload):
        return self._ok([dict(workflow) for workflow in self.workflows.values()])

    def _op_updateWorkflow(self, payload):
        workflow = self.workflows.get(payload["id"])
        if workflow is None:
            return {"code": 404, "message": "Workflow not found", "success": False}
        for key in ("name", "description", "config", "status"):
            if key in payload:
                workflow[key] = payload[key]
        return self._ok(True)

    def _op_deleteWorkflow(self, payload):
        if self.workflows.pop(payload["id"], None) is None:
            return {"code": 404, "message": "Workflow not found", "success": False}
        self.nodes.pop(payload["id"], None)
        return self._ok(True)

    # -- nodes --------------------------------------------------------- #

    def _op_addNode(self, payload):
        workflow_id = payload["workflowId"]
        if workflow_id not in self.workflows:
            return {"code": 404, "message": "Workflow not found", "success": False}
        node_type = payload["nodeType"]
        node = {
            "id": self._next_id("node"),
            "workflow_id": workflow_id,
            "type": node_type,
            "flow_config": payload.get("flowConfig") or copy.deepcopy(DEFAULT_FLOW_CONFIGS.get(node_type, {})),
            "work_config": payload.get("workConfig") or copy.deepcopy(DEFAULT_WORK_CONFIGS.get(node_type, {})),
        }
        nodes = self.nodes[workflow_id]
        index = payload.get("index", -1)
        if index < 0 or index > len(nodes):
            index = len(nodes)
        nodes.insert(index, node)
        self._renumber(workflow_id)
        return self._ok({"nodeId": node["id"]})

    def _op_updateNode(self, payload):
        _, node = self._find_node(payload["nodeId"])
        if node is None:
            return {"code": 404, "message": "Node not found", "success": False}
        if "flowConfig" in payload:
            node["flow_config"] = payload["flowConfig"]
        if "workConfig" in payload:
            node["work_config"] = payload["workConfig"]
        return self._ok(True)

    def _op_deleteNode(self, payload):
        workflow_id, node = self._find_node(payload["nodeId"])
        if node is None:
            return {"code": 404, "message": "Node not found", "success": False}
        self.nodes[workflow_id].remove(node)
        self._renumber(workflow_id)
        return self._ok(True)

    def _op_moveNode(self, payload):
        workflow_id, node = self._find_node(payload["nodeId"])
        if node is None:
            return {"code": 404, "message": "Node not found", "success": False}
        nodes = self.nodes[workflow_id]
        nodes.remove(node)
        nodes.insert(min(payload["newIndex"], len(nodes)), node)
        self._renumber(workflow_id)
        return self._ok(True)

    def _op_getNodeTypes(self, payload):
        return self._ok(list(self.node_types))

    # -- execution ----------------------------------------------------- #

    def _op_executeWorkflow(self, payload):
        return self._ok(self.run(payload["input"]))

    def _op_executeWorkflowWithConversation(self, payload):
        workflow_id = payload["workflowId"]
        conversation_id = payload.get("conversationId")
        if self.reassign_conversation or conversation_id not in self.conversations:
            conversation_id = self.new_conversation(workflow_id)

        input_data = payload["input"]
        text = input_data.get("text") if isinstance(input_data, dict) else json.dumps(input_data)
        result = self.run(input_data)
        self.add_message(conversation_id, "user", text)
        self.add_message(conversation_id, "ai", result["items"][0]["data"])
        self.current_conversation[workflow_id] = conversation_id
        return self._ok({"result": result, "conversationId": conversation_id})

    # -- conversations ------------------------------------------------- #

    def _op_createWorkflowConversation(self, payload):
        return self._ok({"conversationId": self.new_conversation(payload["workflowId"])})

    def _op_getWorkflowCurrentConversation(self, payload):
        conversation_id = self.current_conversation.get(payload["workflowId"])
        if conversation_id is None or conversation_id not in self.conversations:
            return {"code": 404, "message": "No conversation", "success": False}
        return self._ok({"conversationId": conversation_id})

    def _op_getWorkflowConversations(self, payload):
        return self._ok([
            {
                "id": conversation["id"],
                "workflowId": conversation["workflowId"],
                "createdAt": conversation["createdAt"],
                "messageCount": len(conversation["messages"]),
            }
            for conversation in self.conversations.values()
            if conversation["workflowId"] == payload["workflowId"]
        ])

    def _op_getConversationMessages(self, payload):
        conversation = self.conversations.get(payload["conversationId"])
        if conversation is None:
            return {"code": 404, "message": "Conversation not found", "success": False}
        return self._ok(copy.deepcopy(conversation["messages"]))

    def _op_addUserMessage(self, payload):
        return self._ok({"messageId": self.add_message(payload["conversationId"], "user", payload["content"])["id"]})

    def _op_addAIMessage(self, payload):
        return self._ok({"messageId": self.add_message(payload["conversationId"], "ai", payload["content"])["id"]})

    def _op_deleteConversation(self, payload):
        conversation = self.conversations.pop(payload["conversationId"], None)
        if conversation is None:
            return {"code": 404, "message": "Conversation not found", "success": False}
        if self.current_conversation.get(conversation["workflowId"]) == conversation["id"]:
            del self.current_conversation[conversation["workflowId"]]
        return self._ok(True)

    def _op_getConversationStats(self, payload):
        messages = self.conversations[payload["conversationId"]]["messages"]
        users = [m for m in messages if m["role"] == "user"]
        ais = [m for m in messages if m["role"] == "ai"]
        return self._ok({
            "totalMessages": len(messages),
            "userMessages": len(users),
            "aiMessages": len(ais),
            "systemMessages": len(messages) - len(users) - len(ais),
            "avgUserMessageLength": 0,
            "avgAiMessageLength": 0,
            "firstMessageTime": messages[0]["createdAt"] if messages else None,
            "lastMessageTime": messages[-1]["createdAt"] if messages else None,
        })

    def _op_exportConversationAsJson(self, payload):
        conversation = self.conversations[payload["conversationId"]]
        return self._ok(json.dumps(conversation, indent=2))

    # -- config lookups ------------------------------------------------ #

    def _op_getNodeConfigByType(self, payload):
        node_type = payload["nodeType"]
        return {
            "status": "success",
            "message": "ok",
            "data": {
                "flowConfig": DEFAULT_FLOW_CONFIGS.get(node_type, {}),
                "workConfig": DEFAULT_WORK_CONFIGS.get(node_type, {}),
            },
        }

    def _op_getDefaultFlowConfig(self, payload):
        return {"status": "success", "message": "ok", "data": DEFAULT_FLOW_CONFIGS.get(payload["nodeType"], {})}

    def _op_getDefaultWorkConfig(self, payload):
        return {"status": "success", "message": "ok", "data": DEFAULT_WORK_CONFIGS.get(payload["nodeType"], {})}

    def _op_getAllPipelineTypes(self, payload):
        return {"success": True, "message": "ok", "data": ["TEXT", "RETRIEVAL"]}


@pytest.fixture(scope="session")
def test_settings():
    """Override settings for testing."""
    return Settings(
        backend_url="http://backend.test",
        local_store_path=":memory:",  # In-memory database for tests
        log_level="ERROR",  # Reduce noise in tests
        log_to_file=False
    )


@pytest.fixture(autouse=True)
def use_test_settings(test_settings):
    """Install test settings as the global settings for each test."""
    override_settings(test_settings)
    yield test_settings
    override_settings(None)


@pytest.fixture(scope="function")
def test_db():
    """Create a test database for each test."""
    # Create in-memory SQLite database
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool
    )

    # Create all tables
    Base.metadata.create_all(bind=engine)

    # Create session
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    db = TestingSessionLocal()

    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def backend():
    """Fresh in-memory backend."""
    return FakeBackend()


@pytest.fixture
def gateway(backend):
    """Gateway talking to the in-memory backend."""
    return RemoteGateway(backend)


@pytest.fixture
def graph_store(gateway):
    """Graph store on the in-memory backend."""
    return GraphStore(gateway)


@pytest.fixture
def preferences(test_db):
    """Preference store on the test database."""
    return PreferenceStore(test_db)


@pytest.fixture
def sample_workflow_payload():
    """Workflow as the backend returns it from getWorkflow."""
    return {
        "id": "wf-1",
        "name": "W1",
        "description": "",
        "config": {},
        "status": "ready",
        "nodes": [
            {
                "id": "node-2",
                "workflow_id": "wf-1",
                "type": "ChatNode",
                "flow_config": {"nodeName": "Chat", "status": "idle"},
                "work_config": {"model": "gpt-4o-mini", "systemPrompt": "Be brief."},
                "order_index": 1
            },
            {
                "id": "node-1",
                "workflow_id": "wf-1",
                "type": "StartNode",
                "flow_config": {"nodeName": "Start"},
                "work_config": {},
                "order_index": 0
            }
        ]
    }


@pytest.fixture
def memory_flow_config():
    """flowConfig of a memory node."""
    return {"nodeName": "Memory", "dialogueId": "conv-7", "historyRounds": 3, "enabled": True}
