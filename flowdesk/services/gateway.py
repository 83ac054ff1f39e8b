"""
Remote gateway: one typed coroutine per backend operation.

Every reply goes through the response adapter. Business failures
(``success=False``) become GatewayException; transport failures are logged
and propagated unchanged.
"""

import time
from typing import Any, Dict, List, Optional

from flowdesk.schemas.conversation import ConversationStats, ConversationSummary
from flowdesk.schemas.envelope import ApiResponse
from flowdesk.schemas.execution import ConversationExecutionResult, ExecutionOptions
from flowdesk.schemas.workflow import Workflow
from flowdesk.services.response_adapter import normalize
from flowdesk.services.transport import Transport
from flowdesk.utils.json_helpers import pretty_print_json
from flowdesk.utils.logger import get_logger, log_gateway_call

logger = get_logger(__name__)


# Backend controller routes, keyed by gateway operation
OPERATIONS: Dict[str, str] = {
    "check_connection": "controller/connection/check",
    # Workflows
    "create_workflow": "controller/workflow/createWorkflow",
    "get_workflow": "controller/workflow/getWorkflow",
    "list_workflows": "controller/workflow/listWorkflows",
    "update_workflow": "controller/workflow/updateWorkflow",
    "delete_workflow": "controller/workflow/deleteWorkflow",
    # Nodes
    "add_node": "controller/workflow/addNode",
    "update_node": "controller/workflow/updateNode",
    "delete_node": "controller/workflow/deleteNode",
    "move_node": "controller/workflow/moveNode",
    "get_node_types": "controller/workflow/getNodeTypes",
    # Execution
    "execute_workflow": "controller/workflow/executeWorkflow",
    "execute_workflow_with_conversation": "controller/workflow/executeWorkflowWithConversation",
    # Conversations
    "create_conversation": "controller/workflow/createWorkflowConversation",
    "get_current_conversation": "controller/workflow/getWorkflowCurrentConversation",
    "list_conversations": "controller/workflow/getWorkflowConversations",
    "get_conversation_messages": "controller/workflow/getConversationMessages",
    "add_user_message": "controller/workflow/addUserMessage",
    "add_ai_message": "controller/workflow/addAIMessage",
    "delete_conversation": "controller/workflow/deleteConversation",
    "get_conversation_stats": "controller/workflow/getConversationStats",
    "export_conversation_as_json": "controller/workflow/exportConversationAsJson",
    # Config lookups
    "get_config_node_types": "controller/config/getNodeTypes",
    "get_node_config_by_type": "controller/config/getNodeConfigByType",
    "get_default_flow_config": "controller/config/getDefaultFlowConfig",
    "get_default_work_config": "controller/config/getDefaultWorkConfig",
    "get_all_pipeline_types": "controller/config/getAllPipelineTypes",
}


class GatewayException(Exception):
    """Raised when the backend reports a business failure (success=False)."""

    def __init__(self, message: str, operation: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.operation = operation


def _drop_none(payload: Dict[str, Any]) -> Dict[str, Any]:
    """Remove absent optional parameters so the backend leaves them untouched."""
    return {key: value for key, value in payload.items() if value is not None}


def _extract(data: Any, key: str) -> Any:
    """Pull a named field out of a reply payload, tolerating bare values."""
    if isinstance(data, dict):
        return data.get(key)
    return data


class RemoteGateway:
    """Typed access to every backend operation."""

    def __init__(self, transport: Transport, default_error_message: str = "Request failed"):
        """
        Initialize remote gateway.

        Args:
            transport: Object exposing async invoke(operation_id, payload)
            default_error_message: Fallback message for failures without one
        """
        self.transport = transport
        self.default_error_message = default_error_message

    async def _invoke_raw(self, operation: str, payload: Optional[Dict[str, Any]] = None) -> Any:
        route = OPERATIONS[operation]
        try:
            return await self.transport.invoke(route, payload if payload is not None else {})
        except Exception as e:
            logger.error(f"Transport call to {route} failed: {type(e).__name__}: {e}")
            raise

    def _check(self, operation: str, raw: Any, error_message: str, started: float) -> ApiResponse:
        response = normalize(raw, error_message)
        log_gateway_call(
            logger, OPERATIONS[operation], response.success,
            time.time() - started, response.message
        )
        if not response.success:
            logger.error(f"{operation} failed: {response.message} | Raw result: {raw!r}"[:2000])
            raise GatewayException(response.message, operation=operation)
        return response

    async def _call(
        self,
        operation: str,
        payload: Optional[Dict[str, Any]] = None,
        error_message: Optional[str] = None
    ) -> Any:
        """
        Invoke an operation and return the normalized payload.

        Raises:
            GatewayException: If the backend reports failure
        """
        started = time.time()
        raw = await self._invoke_raw(operation, payload)
        response = self._check(operation, raw, error_message or self.default_error_message, started)
        return response.data

    # ------------------------------------------------------------------ #
    # Connectivity
    # ------------------------------------------------------------------ #

    async def check_connection(self) -> Any:
        return await self._call("check_connection", {}, "Backend connection check failed")

    # ------------------------------------------------------------------ #
    # Workflows
    # ------------------------------------------------------------------ #

    async def create_workflow(
        self,
        name: str,
        description: str = "",
        config: Optional[Dict[str, Any]] = None
    ) -> Workflow:
        """
        Create a workflow.

        Args:
            name: Workflow name
            description: Optional description
            config: Optional workflow-level config

        Returns:
            Workflow: The created workflow as the backend returns it
        """
        data = await self._call(
            "create_workflow",
            {"name": name, "description": description, "config": config or {}},
            "Failed to create workflow"
        )
        return Workflow.model_validate(data)

    async def get_workflow(self, workflow_id: str) -> Workflow:
        """
        Get a workflow with its nodes.

        Args:
            workflow_id: Workflow ID

        Returns:
            Workflow: Authoritative server copy
        """
        data = await self._call("get_workflow", {"id": workflow_id}, "Failed to get workflow")
        return Workflow.model_validate(data)

    async def list_workflows(self) -> List[Workflow]:
        data = await self._call("list_workflows", {}, "Failed to list workflows")
        return [Workflow.model_validate(item) for item in (data or [])]

    async def update_workflow(self, workflow_id: str, **updates: Any) -> Any:
        """
        Update workflow metadata.

        Args:
            workflow_id: Workflow ID
            **updates: name / description / config; only given fields are sent

        Returns:
            Backend result (usually True)
        """
        payload = {"id": workflow_id}
        payload.update(_drop_none(updates))
        return await self._call("update_workflow", payload, "Failed to update workflow")

    async def delete_workflow(self, workflow_id: str) -> Any:
        return await self._call("delete_workflow", {"id": workflow_id}, "Failed to delete workflow")

    # ------------------------------------------------------------------ #
    # Nodes
    # ------------------------------------------------------------------ #

    async def add_node(
        self,
        workflow_id: str,
        node_type: str,
        flow_config: Optional[Dict[str, Any]] = None,
        work_config: Optional[Dict[str, Any]] = None,
        index: Optional[int] = None
    ) -> Optional[str]:
        """
        Add a node to a workflow.

        The backend fills in default configs for the node type when none are
        given and appends when no index is given.

        Returns:
            str or None: The new node ID, if the backend reports one
        """
        payload = _drop_none({
            "workflowId": workflow_id,
            "nodeType": node_type,
            "flowConfig": flow_config,
            "workConfig": work_config,
            "index": index
        })
        data = await self._call("add_node", payload, "Failed to add node")
        node_id = _extract(data, "nodeId")
        return str(node_id) if node_id is not None and not isinstance(node_id, bool) else None

    async def update_node(
        self,
        node_id: str,
        flow_config: Optional[Dict[str, Any]] = None,
        work_config: Optional[Dict[str, Any]] = None
    ) -> Any:
        payload = _drop_none({
            "nodeId": node_id,
            "flowConfig": flow_config,
            "workConfig": work_config
        })
        return await self._call("update_node", payload, "Failed to update node")

    async def delete_node(self, node_id: str) -> Any:
        return await self._call("delete_node", {"nodeId": node_id}, "Failed to delete node")

    async def move_node(self, node_id: str, new_index: int) -> Any:
        return await self._call(
            "move_node", {"nodeId": node_id, "newIndex": new_index}, "Failed to move node"
        )

    async def get_node_types(self) -> List[Any]:
        """
        List node types the backend can run.

        Returns:
            list: Type names or type description objects, as sent
        """
        data = await self._call("get_node_types", {}, "Failed to list node types")
        return list(data or [])

    # ------------------------------------------------------------------ #
    # Config lookups
    # ------------------------------------------------------------------ #

    async def get_config_node_types(self) -> List[Any]:
        data = await self._call("get_config_node_types", {}, "Failed to list configurable node types")
        return list(data or [])

    async def get_node_config_by_type(self, node_type: str) -> Dict[str, Any]:
        data = await self._call(
            "get_node_config_by_type", {"nodeType": node_type}, "Failed to get node config"
        )
        return data or {}

    async def get_default_flow_config(self, node_type: str) -> Dict[str, Any]:
        data = await self._call(
            "get_default_flow_config", {"nodeType": node_type}, "Failed to get default flow config"
        )
        return data or {}

    async def get_default_work_config(self, node_type: str) -> Dict[str, Any]:
        data = await self._call(
            "get_default_work_config", {"nodeType": node_type}, "Failed to get default work config"
        )
        return data or {}

    async def get_all_pipeline_types(self) -> Any:
        return await self._call("get_all_pipeline_types", {}, "Failed to list pipeline types")

    # ------------------------------------------------------------------ #
    # Execution
    # ------------------------------------------------------------------ #

    async def execute_workflow(
        self,
        workflow_id: str,
        input_data: Any,
        options: Optional[ExecutionOptions] = None
    ) -> Any:
        """
        Run a workflow once without recording a conversation.

        Args:
            workflow_id: Workflow ID
            input_data: Workflow input
            options: Execution options forwarded as-is

        Returns:
            Raw execution result
        """
        options = options or ExecutionOptions()
        return await self._call(
            "execute_workflow",
            {"workflowId": workflow_id, "input": input_data, "options": options.to_payload()},
            "Failed to execute workflow"
        )

    async def execute_workflow_with_conversation(
        self,
        workflow_id: str,
        input_data: Any,
        conversation_id: Optional[str] = None,
        record_node_execution: bool = False,
        options: Optional[ExecutionOptions] = None
    ) -> ConversationExecutionResult:
        """
        Run a workflow and record the exchange in a conversation.

        Args:
            workflow_id: Workflow ID
            input_data: Workflow input
            conversation_id: Conversation to record into; the backend picks
                or creates one when omitted
            record_node_execution: Also record per-node execution
            options: Execution options forwarded as-is

        Returns:
            ConversationExecutionResult: Result and the conversation used
        """
        payload = {
            "workflowId": workflow_id,
            "input": input_data,
            "conversationId": conversation_id,
            "recordNodeExecution": record_node_execution
        }
        if options is not None:
            payload["options"] = options.to_payload()

        data = await self._call(
            "execute_workflow_with_conversation",
            payload,
            "Failed to execute workflow with conversation"
        )
        if isinstance(data, dict) and ("result" in data or "conversationId" in data):
            return ConversationExecutionResult.model_validate(data)
        return ConversationExecutionResult(result=data, conversation_id=None)

    # ------------------------------------------------------------------ #
    # Conversations
    # ------------------------------------------------------------------ #

    async def create_conversation(self, workflow_id: str) -> str:
        """
        Create a conversation for a workflow.

        Returns:
            str: New conversation ID
        """
        data = await self._call(
            "create_conversation", {"workflowId": workflow_id}, "Failed to create conversation"
        )
        conversation_id = _extract(data, "conversationId")
        if conversation_id is None:
            raise GatewayException("Backend did not return a conversation ID", "create_conversation")
        return str(conversation_id)

    async def get_current_conversation(self, workflow_id: str) -> Optional[str]:
        """
        Get the conversation the backend currently associates with a workflow.

        Returns:
            str or None: Conversation ID, None when the workflow has none
        """
        started = time.time()
        raw = await self._invoke_raw("get_current_conversation", {"workflowId": workflow_id})
        if isinstance(raw, dict) and raw.get("code") == 404:
            logger.debug(f"Workflow {workflow_id} has no current conversation")
            return None

        response = self._check(
            "get_current_conversation", raw, "Failed to get current conversation", started
        )
        conversation_id = _extract(response.data, "conversationId")
        return str(conversation_id) if conversation_id else None

    async def list_conversations(self, workflow_id: str) -> List[ConversationSummary]:
        data = await self._call(
            "list_conversations", {"workflowId": workflow_id}, "Failed to list conversations"
        )
        return [ConversationSummary.model_validate(item) for item in (data or [])]

    async def get_conversation_messages(self, conversation_id: str) -> List[Dict[str, Any]]:
        """
        Get the stored messages of a conversation, unformatted.

        Returns:
            list: Message records as the backend stores them
        """
        data = await self._call(
            "get_conversation_messages",
            {"conversationId": conversation_id},
            "Failed to get conversation messages"
        )
        return list(data or [])

    async def add_user_message(self, conversation_id: str, content: str) -> Optional[str]:
        data = await self._call(
            "add_user_message",
            {"conversationId": conversation_id, "content": content},
            "Failed to add user message"
        )
        message_id = _extract(data, "messageId")
        return str(message_id) if message_id is not None else None

    async def add_ai_message(self, conversation_id: str, content: str) -> Optional[str]:
        data = await self._call(
            "add_ai_message",
            {"conversationId": conversation_id, "content": content},
            "Failed to add AI message"
        )
        message_id = _extract(data, "messageId")
        return str(message_id) if message_id is not None else None

    async def delete_conversation(self, conversation_id: str) -> Any:
        return await self._call(
            "delete_conversation",
            {"conversationId": conversation_id},
            "Failed to delete conversation"
        )

    async def get_conversation_stats(self, conversation_id: str) -> ConversationStats:
        data = await self._call(
            "get_conversation_stats",
            {"conversationId": conversation_id},
            "Failed to get conversation stats"
        )
        return ConversationStats.model_validate(data or {})

    async def export_conversation_as_json(self, conversation_id: str) -> str:
        """
        Export a conversation as a JSON document.

        Returns:
            str: JSON text produced by the backend
        """
        data = await self._call(
            "export_conversation_as_json",
            {"conversationId": conversation_id},
            "Failed to export conversation"
        )
        if data is None or isinstance(data, str):
            return data or ""
        return pretty_print_json(data)
