"""
Client factory and configuration.
"""

from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from config import load_settings, log_settings
from flowdesk.models.base import create_tables, get_session_maker, init_db
from flowdesk.schemas.execution import ExecutionOptions
from flowdesk.schemas.workflow import Workflow
from flowdesk.services.execution_session import ExecutionSession
from flowdesk.services.gateway import RemoteGateway
from flowdesk.services.graph_store import GraphStore
from flowdesk.services.preference_store import PreferenceStore
from flowdesk.services.transport import HttpTransport, Transport
from flowdesk.utils.logger import get_logger, setup_logging


class FlowdeskClient:
    """Wires the gateway, graph store, preference store and execution sessions together."""

    def __init__(
        self,
        transport: Transport,
        db: Session,
        owns_db: bool = False,
        default_error_message: str = "Request failed",
        default_options: Optional[ExecutionOptions] = None,
        capability_table: Optional[Dict[str, Any]] = None
    ):
        """
        Initialize client.

        Args:
            transport: Transport to the backend
            db: Local store session
            owns_db: Close the session on aclose()
            default_error_message: Fallback message for failures without one
            default_options: Execution options for workflows with none saved
            capability_table: Node type -> capability tags
        """
        self.transport = transport
        self.db = db
        self._owns_db = owns_db

        self.gateway = RemoteGateway(transport, default_error_message)
        self.graph = GraphStore(self.gateway, capability_table)
        self.preferences = PreferenceStore(db, default_options)
        self._sessions: Dict[str, ExecutionSession] = {}

    async def check_connection(self) -> Any:
        return await self.gateway.check_connection()

    async def open_workflow(self, workflow_id: str) -> Workflow:
        """Open a workflow for editing in the graph store."""
        return await self.graph.open_workflow(workflow_id)

    async def execution_session(self, workflow: Optional[Workflow] = None) -> ExecutionSession:
        """
        Get the execution session for a workflow, loading it on first use.

        Args:
            workflow: Workflow to execute (defaults to the open one)

        Returns:
            ExecutionSession: Loaded session for the workflow
        """
        workflow = workflow or self.graph.workflow
        if workflow is None:
            raise ValueError("No workflow given and none is open")

        session = self._sessions.get(workflow.id)
        if session is None:
            session = ExecutionSession(self.gateway, self.preferences, self.graph)
            await session.load(workflow)
            self._sessions[workflow.id] = session
        return session

    def forget_session(self, workflow_id: str) -> None:
        self._sessions.pop(workflow_id, None)

    async def aclose(self) -> None:
        """Release the transport and, if owned, the local store session."""
        close = getattr(self.transport, "aclose", None)
        if close is not None:
            await close()
        if self._owns_db:
            self.db.close()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.aclose()


def create_client(transport: Optional[Transport] = None, db: Optional[Session] = None) -> FlowdeskClient:
    """
    Create and configure a client.

    Args:
        transport: Transport to use (defaults to HttpTransport on settings)
        db: Local store session (defaults to one on the configured SQLite file)

    Returns:
        FlowdeskClient: Configured client
    """
    # Load settings
    settings = load_settings()

    # Setup logging
    setup_logging()
    logger = get_logger(__name__)
    log_settings(settings, logger)

    # Initialize local store
    owns_db = db is None
    if owns_db:
        init_db()
        create_tables()
        db = get_session_maker()()
        logger.info("Local store initialized")

    client = FlowdeskClient(
        transport=transport or HttpTransport(),
        db=db,
        owns_db=owns_db,
        default_error_message=settings.default_error_message,
        default_options=ExecutionOptions(
            debug=settings.default_debug,
            timeout_ms=settings.default_timeout_ms,
            validate_start_end=settings.default_validate_start_end
        ),
        capability_table=settings.node_capabilities
    )

    logger.info("Client created successfully")

    return client
