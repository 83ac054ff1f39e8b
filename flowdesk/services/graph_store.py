"""
Graph store: the open workflow and its node list, kept in sync with the
backend by fire-and-refetch.

No mutation is ever applied locally. Every successful mutating call is
followed by a getWorkflow and the held Workflow is replaced wholesale by the
server's copy; a failed call leaves the held Workflow untouched.
"""

from typing import Any, Dict, List, Optional

from config import get_settings
from flowdesk.schemas.workflow import NodeRef, Workflow
from flowdesk.services.gateway import RemoteGateway
from flowdesk.services.node_types import NodeTypeRegistry
from flowdesk.utils.logger import get_logger, log_error_with_context
from flowdesk.utils.validators import (
    validate_node_index,
    validate_node_sequence,
    validate_workflow_name,
)

logger = get_logger(__name__)

_WORKFLOW_FIELDS = ("name", "description", "config", "status")


class GraphStore:
    """Holds the open workflow and routes every graph edit through the backend."""

    def __init__(self, gateway: RemoteGateway, capability_table: Optional[Dict[str, List[str]]] = None):
        """
        Initialize graph store.

        Args:
            gateway: Remote gateway
            capability_table: Node type -> capability tags for types the
                backend lists by name only (defaults to settings)
        """
        self.gateway = gateway
        self.capability_table = (
            capability_table if capability_table is not None
            else get_settings().node_capabilities
        )
        self.workflow: Optional[Workflow] = None
        self._registry: Optional[NodeTypeRegistry] = None

        # Workflow the caller asked to open; only its refetches are held
        self._open_id: Optional[str] = None
        self._seq = 0
        self._open_seq = 0
        self._applied_seq = 0

    # ------------------------------------------------------------------ #
    # Request sequencing
    # ------------------------------------------------------------------ #

    def _next_seq(self) -> int:
        self._seq += 1
        return self._seq

    def _hold(self, workflow: Workflow, seq: int) -> bool:
        """
        Hold a refetched workflow if it is the open one and newer than what is held.

        Sequence numbers are taken when the refetch is sent, so a later
        number always reflects at least as much server state. Requests that
        fail never reach here and cannot invalidate an earlier success.
        """
        if workflow.id != self._open_id:
            return False

        if seq < self._open_seq or seq <= self._applied_seq:
            logger.debug(
                f"Discarding stale refetch of workflow {workflow.id} "
                f"(request {seq}, applied {self._applied_seq})"
            )
            return False

        self.workflow = workflow
        self._applied_seq = seq
        return True

    async def _refetch(self, workflow_id: str) -> Workflow:
        workflow = await self.gateway.get_workflow(workflow_id)

        is_valid, problems = validate_node_sequence(workflow.nodes)
        if not is_valid:
            logger.warning(
                f"Workflow {workflow_id} returned an inconsistent node list: {'; '.join(problems)}"
            )
        return workflow

    def _resolve_workflow_id(self, node_id: str, workflow_id: Optional[str]) -> str:
        if workflow_id:
            return workflow_id
        if self.workflow is not None and self.workflow.find_node(node_id) is not None:
            return self.workflow.id
        raise ValueError(
            f"Node {node_id} is not part of the open workflow; pass workflow_id explicitly"
        )

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
            name: Workflow name (required)
            description: Optional description
            config: Optional workflow-level config

        Returns:
            Workflow: The created workflow

        Raises:
            ValueError: If the name is blank (nothing is sent)
        """
        is_valid, error = validate_workflow_name(name)
        if not is_valid:
            raise ValueError(error)

        try:
            workflow = await self.gateway.create_workflow(name.strip(), description or "", config)
        except Exception as e:
            log_error_with_context(logger, e, {"operation": "create_workflow", "name": name})
            raise

        logger.info(f"Created workflow {workflow.id} ({workflow.name})")
        return workflow

    async def get_workflow(self, workflow_id: str) -> Workflow:
        """Fetch a workflow without changing what is held."""
        try:
            return await self._refetch(workflow_id)
        except Exception as e:
            log_error_with_context(logger, e, {"operation": "get_workflow", "workflow_id": workflow_id})
            raise

    async def list_workflows(self) -> List[Workflow]:
        try:
            return await self.gateway.list_workflows()
        except Exception as e:
            log_error_with_context(logger, e, {"operation": "list_workflows"})
            raise

    async def open_workflow(self, workflow_id: str) -> Workflow:
        """
        Fetch a workflow and hold it as the open one.

        Args:
            workflow_id: Workflow ID

        Returns:
            Workflow: The server copy now held
        """
        if self._open_id != workflow_id:
            self.workflow = None
        self._open_id = workflow_id
        seq = self._next_seq()
        self._open_seq = seq

        try:
            workflow = await self._refetch(workflow_id)
        except Exception as e:
            log_error_with_context(logger, e, {"operation": "open_workflow", "workflow_id": workflow_id})
            raise

        self._hold(workflow, seq)
        return workflow

    def close_workflow(self) -> None:
        """Forget the open workflow; pending refetches will not reopen it."""
        self._open_id = None
        self._open_seq = self._next_seq()
        self.workflow = None

    async def refresh(self) -> Optional[Workflow]:
        """Refetch the open workflow, if any."""
        if self._open_id is None:
            return None
        return await self._refetch_and_hold(self._open_id)

    async def _refetch_and_hold(self, workflow_id: str) -> Workflow:
        """Refetch after a successful mutation; held only if it is the open workflow."""
        seq = self._next_seq()
        workflow = await self._refetch(workflow_id)
        self._hold(workflow, seq)
        return workflow

    async def update_workflow(self, workflow_id: str, **updates: Any) -> Workflow:
        """
        Update workflow metadata and refetch it.

        Args:
            workflow_id: Workflow ID
            **updates: Any of name, description, config, status; only the
                fields given are sent

        Returns:
            Workflow: Refreshed workflow

        Raises:
            ValueError: For unknown fields or a blank name (nothing is sent)
        """
        unknown = set(updates) - set(_WORKFLOW_FIELDS)
        if unknown:
            raise ValueError(f"Unknown workflow fields: {', '.join(sorted(unknown))}")

        if "name" in updates:
            is_valid, error = validate_workflow_name(updates["name"])
            if not is_valid:
                raise ValueError(error)

        try:
            await self.gateway.update_workflow(workflow_id, **updates)
            return await self._refetch_and_hold(workflow_id)
        except Exception as e:
            log_error_with_context(logger, e, {"operation": "update_workflow", "workflow_id": workflow_id})
            raise

    async def delete_workflow(self, workflow_id: str) -> None:
        """Delete a workflow, closing it if it is the open one."""
        try:
            await self.gateway.delete_workflow(workflow_id)
        except Exception as e:
            log_error_with_context(logger, e, {"operation": "delete_workflow", "workflow_id": workflow_id})
            raise

        if self._open_id == workflow_id:
            self.close_workflow()
        logger.info(f"Deleted workflow {workflow_id}")

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
    ) -> Workflow:
        """
        Add a node and refetch the workflow.

        The id and index the server assigned are only known from the refetch.

        Args:
            workflow_id: Workflow ID
            node_type: Node type name
            flow_config: Initial flow config (server defaults when omitted)
            work_config: Initial work config (server defaults when omitted)
            index: Requested position (appended when omitted)

        Returns:
            Workflow: Refreshed workflow
        """
        if not node_type:
            raise ValueError("Node type cannot be empty")
        if index is not None:
            is_valid, error = validate_node_index(index)
            if not is_valid:
                raise ValueError(error)

        try:
            await self.gateway.add_node(workflow_id, node_type, flow_config, work_config, index)
            return await self._refetch_and_hold(workflow_id)
        except Exception as e:
            log_error_with_context(logger, e, {
                "operation": "add_node", "workflow_id": workflow_id, "node_type": node_type
            })
            raise

    async def update_node(
        self,
        node_id: str,
        flow_config: Optional[Dict[str, Any]] = None,
        work_config: Optional[Dict[str, Any]] = None,
        workflow_id: Optional[str] = None
    ) -> Workflow:
        """
        Partially update a node's configs and refetch the workflow.

        Configs left as None are not sent and stay untouched server-side. The
        held node afterwards carries exactly the server's configs.

        Args:
            node_id: Node ID
            flow_config: New flow config
            work_config: New work config
            workflow_id: Owning workflow (defaults to the open workflow)

        Returns:
            Workflow: Refreshed workflow
        """
        target_workflow = self._resolve_workflow_id(node_id, workflow_id)

        try:
            await self.gateway.update_node(node_id, flow_config, work_config)
            return await self._refetch_and_hold(target_workflow)
        except Exception as e:
            log_error_with_context(logger, e, {"operation": "update_node", "node_id": node_id})
            raise

    async def delete_node(self, node_id: str, workflow_id: Optional[str] = None) -> Workflow:
        """Delete a node and refetch the workflow."""
        target_workflow = self._resolve_workflow_id(node_id, workflow_id)

        try:
            await self.gateway.delete_node(node_id)
            return await self._refetch_and_hold(target_workflow)
        except Exception as e:
            log_error_with_context(logger, e, {"operation": "delete_node", "node_id": node_id})
            raise

    async def move_node(self, node_id: str, new_index: int, workflow_id: Optional[str] = None) -> Workflow:
        """
        Ask the backend to move a node, then refetch.

        The server renumbers the other nodes; no ordering is computed here.

        Args:
            node_id: Node ID
            new_index: Requested 0-based position
            workflow_id: Owning workflow (defaults to the open workflow)

        Returns:
            Workflow: Refreshed workflow

        Raises:
            ValueError: If new_index is not a non-negative integer
        """
        is_valid, error = validate_node_index(new_index)
        if not is_valid:
            raise ValueError(error)
        target_workflow = self._resolve_workflow_id(node_id, workflow_id)

        try:
            await self.gateway.move_node(node_id, new_index)
            return await self._refetch_and_hold(target_workflow)
        except Exception as e:
            log_error_with_context(logger, e, {
                "operation": "move_node", "node_id": node_id, "new_index": new_index
            })
            raise

    def find_node(self, node_id: str) -> Optional[NodeRef]:
        if self.workflow is None:
            return None
        return self.workflow.find_node(node_id)

    async def node_types(self, refresh: bool = False) -> NodeTypeRegistry:
        """
        Get the node type registry, fetching it on first use.

        Args:
            refresh: Refetch even if cached

        Returns:
            NodeTypeRegistry
        """
        if self._registry is None or refresh:
            raw_types = await self.gateway.get_node_types()
            self._registry = NodeTypeRegistry.from_backend(raw_types, self.capability_table)
        return self._registry
