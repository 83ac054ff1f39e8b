"""
Execution session: runs a workflow, one-shot or inside a recorded
conversation, and keeps the conversation transcript in step with the backend.

One instance per open workflow. Every state-changing coroutine takes a
request sequence number when it starts and applies its result only if no
newer request has started since, so a slow reconciliation can never
overwrite the view of a session switched to in the meantime.
"""

import enum
import time
from typing import Any, Dict, Iterable, List, Optional

from pydantic import ValidationError

from config import get_settings
from flowdesk.schemas.conversation import (
    ConversationStats,
    ConversationSummary,
    Message,
    MessageRole,
)
from flowdesk.schemas.execution import ExecutionMode, ExecutionOptions
from flowdesk.schemas.workflow import Workflow
from flowdesk.services.gateway import RemoteGateway
from flowdesk.services.preference_store import PreferenceStore
from flowdesk.utils.json_helpers import pretty_print_json, safe_json_parse
from flowdesk.utils.logger import get_logger, log_error_with_context, log_execution

logger = get_logger(__name__)

_ROLE_ALIASES = {
    "user": MessageRole.USER,
    "human": MessageRole.USER,
    "assistant": MessageRole.ASSISTANT,
    "ai": MessageRole.ASSISTANT,
    "system": MessageRole.SYSTEM,
    "error": MessageRole.ERROR,
}

LOADING_TEXT = "Processing..."


class SessionState(str, enum.Enum):
    """Whether a conversation is active for the loaded workflow."""
    NO_SESSION = "no_session"
    SESSION_ACTIVE = "session_active"


class ExecutionInProgressError(RuntimeError):
    """Raised when execute() is called while another execution is in flight."""
    pass


def _map_role(role: Any) -> MessageRole:
    if isinstance(role, MessageRole):
        return role
    if isinstance(role, str):
        return _ROLE_ALIASES.get(role.strip().lower(), MessageRole.SYSTEM)
    return MessageRole.SYSTEM


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, (dict, list)):
        return pretty_print_json(value)
    return str(value)


def _format_one(raw: Any) -> Message:
    record = raw if isinstance(raw, dict) else {"content": raw}

    content = record.get("content")
    role = record.get("role")
    display = content

    parsed = safe_json_parse(content) if isinstance(content, str) else content
    if isinstance(parsed, dict):
        for key in ("text", "content"):
            if parsed.get(key) is not None:
                display = parsed[key]
                break
        if not role:
            role = parsed.get("role")

    timestamp = (
        record.get("timestamp")
        or record.get("createdAt")
        or record.get("created_at")
    )

    fields = {"role": _map_role(role), "content": _as_text(display), "id": record.get("id")}
    if timestamp is not None:
        fields["timestamp"] = str(timestamp)
    return Message(**fields)


def format_history(raw_messages: Optional[Iterable[Any]]) -> List[Message]:
    """
    Turn stored conversation messages into display messages.

    Stored content is often a serialized {role, content} object; when it
    parses and carries a "text" or "content" field that field is shown,
    otherwise the raw content is. Never raises.

    Args:
        raw_messages: Messages as returned by getConversationMessages

    Returns:
        list: Message per stored message, in order
    """
    messages = []
    for raw in raw_messages or ():
        try:
            messages.append(_format_one(raw))
        except (ValidationError, TypeError, ValueError) as e:
            logger.warning(f"Showing unreadable stored message as raw text: {e}")
            messages.append(Message(role=MessageRole.SYSTEM, content=_as_text(raw)))
    return messages


def extract_result_text(result: Any) -> str:
    """
    Display text for a bare execution result.

    Results with an items list show each item's data on its own line;
    other objects are shown as indented JSON.

    Args:
        result: Raw execution result

    Returns:
        str: Display text
    """
    if result is None or result == "":
        return ""

    if isinstance(result, str):
        parsed = safe_json_parse(result)
        if isinstance(parsed, dict) and isinstance(parsed.get("items"), list):
            result = parsed
        else:
            return result

    if isinstance(result, dict) and isinstance(result.get("items"), list):
        return "\n".join(
            _as_text(item.get("data") if isinstance(item, dict) else None)
            for item in result["items"]
        )

    return _as_text(result)


def parse_input(text: str) -> Any:
    """Workflow input from user text: JSON when it parses, else {"text": text}."""
    parsed = safe_json_parse(text, None)
    if parsed is None and text.strip() != "null":
        return {"text": text}
    return parsed


class ExecutionSession:
    """Per-workflow execution and conversation state."""

    def __init__(
        self,
        gateway: RemoteGateway,
        preferences: PreferenceStore,
        graph_store=None
    ):
        """
        Initialize execution session.

        Args:
            gateway: Remote gateway
            preferences: Store for per-workflow options and mode
            graph_store: Graph store to read the open workflow from (optional)
        """
        self.gateway = gateway
        self.preferences = preferences
        self.graph_store = graph_store

        self.workflow_id: Optional[str] = None
        self.workflow_name: str = ""
        self.sessions: List[ConversationSummary] = []
        self.active_session_id: Optional[str] = None
        self.messages: List[Message] = []

        self.options = ExecutionOptions()
        self.mode = ExecutionMode.SIMPLE

        self.result: Any = None
        self.error: Optional[str] = None
        self.executing = False

        self._seq = 0
        self._running_seq: Optional[int] = None

    # ------------------------------------------------------------------ #
    # Helpers
    # ------------------------------------------------------------------ #

    def _next_seq(self) -> int:
        self._seq += 1
        return self._seq

    def _is_current(self, seq: int) -> bool:
        return seq == self._seq

    def _require_workflow(self) -> str:
        if not self.workflow_id:
            raise ValueError("No workflow loaded")
        return self.workflow_id

    def _welcome(self) -> Message:
        settings = get_settings()
        name = self.workflow_name or settings.unnamed_workflow_label
        return Message(
            role=MessageRole.SYSTEM,
            content=settings.welcome_message_template.format(name=name)
        )

    def _show(self, history: List[Message]) -> None:
        self.messages = history if history else [self._welcome()]

    def _reset_transient(self) -> None:
        self.result = None
        self.error = None

    async def _fetch_history(self, session_id: str) -> List[Message]:
        raw_messages = await self.gateway.get_conversation_messages(session_id)
        return format_history(raw_messages)

    @property
    def state(self) -> SessionState:
        if self.active_session_id:
            return SessionState.SESSION_ACTIVE
        return SessionState.NO_SESSION

    @property
    def session_ids(self) -> List[str]:
        return [session.id for session in self.sessions]

    @property
    def display_messages(self) -> List[Message]:
        """Messages with a trailing loading entry while an execution runs."""
        if self.executing:
            return self.messages + [Message(role=MessageRole.LOADING, content=LOADING_TEXT)]
        return list(self.messages)

    @property
    def result_text(self) -> str:
        return extract_result_text(self.result)

    # ------------------------------------------------------------------ #
    # Loading
    # ------------------------------------------------------------------ #

    async def load(self, workflow: Optional[Workflow] = None) -> SessionState:
        """
        Bind to a workflow and restore its options, mode and conversation.

        Adopts the conversation the backend currently associates with the
        workflow, if any, and loads its history; otherwise starts in
        NO_SESSION with a welcome message.

        Args:
            workflow: Workflow to bind (defaults to the graph store's open one)

        Returns:
            SessionState: State after loading
        """
        if workflow is None and self.graph_store is not None:
            workflow = self.graph_store.workflow
        if workflow is None:
            raise ValueError("No workflow given and none is open")

        seq = self._next_seq()
        self.workflow_id = workflow.id
        self.workflow_name = workflow.name
        self.options = self.preferences.get_options(workflow.id)
        self.mode = self.preferences.get_mode(workflow.id)

        self.sessions = []
        self.active_session_id = None
        self.messages = [self._welcome()]
        self.executing = False
        self._running_seq = None
        self._reset_transient()

        try:
            sessions = await self.gateway.list_conversations(workflow.id)
            current_id = await self.gateway.get_current_conversation(workflow.id)
            history = await self._fetch_history(current_id) if current_id else []
        except Exception as e:
            log_error_with_context(logger, e, {"operation": "load", "workflow_id": workflow.id})
            raise

        if not self._is_current(seq):
            return self.state

        self.sessions = sessions
        if current_id:
            self.active_session_id = current_id
            self._show(history)

        logger.info(f"Loaded workflow {workflow.id} for execution ({self.state.value})")
        return self.state

    async def refresh_sessions(self) -> List[ConversationSummary]:
        workflow_id = self._require_workflow()
        try:
            self.sessions = await self.gateway.list_conversations(workflow_id)
        except Exception as e:
            log_error_with_context(logger, e, {"operation": "refresh_sessions", "workflow_id": workflow_id})
            raise
        return self.sessions

    # ------------------------------------------------------------------ #
    # Sessions
    # ------------------------------------------------------------------ #

    async def create_session(self) -> str:
        """
        Create a conversation and make it the active one.

        Returns:
            str: New conversation ID
        """
        workflow_id = self._require_workflow()
        seq = self._next_seq()

        try:
            session_id = await self.gateway.create_conversation(workflow_id)
            sessions = await self.gateway.list_conversations(workflow_id)
        except Exception as e:
            log_error_with_context(logger, e, {"operation": "create_session", "workflow_id": workflow_id})
            raise

        if self._is_current(seq):
            self.sessions = sessions
            self.active_session_id = session_id
            self.messages = [self._welcome()]
            self._reset_transient()

        logger.info(f"Created conversation {session_id} for workflow {workflow_id}")
        return session_id

    async def switch_session(self, session_id: str) -> bool:
        """
        Make another conversation active and load its history.

        Args:
            session_id: Conversation ID

        Returns:
            bool: True if the switch was applied, False for a no-op or a
            switch superseded by a newer request
        """
        if session_id == self.active_session_id:
            return False

        seq = self._next_seq()
        try:
            history = await self._fetch_history(session_id)
        except Exception as e:
            log_error_with_context(logger, e, {"operation": "switch_session", "session_id": session_id})
            raise

        if not self._is_current(seq):
            logger.debug(f"Discarding superseded switch to {session_id}")
            return False

        self.active_session_id = session_id
        self._show(history)
        self._reset_transient()
        return True

    async def delete_session(self, session_id: str) -> SessionState:
        """
        Delete a conversation.

        Deleting the active one activates the first remaining conversation
        with its history, or returns to NO_SESSION when none remain.

        Args:
            session_id: Conversation ID

        Returns:
            SessionState: State afterwards
        """
        seq = self._next_seq()
        try:
            await self.gateway.delete_conversation(session_id)
        except Exception as e:
            log_error_with_context(logger, e, {"operation": "delete_session", "session_id": session_id})
            raise

        self.sessions = [session for session in self.sessions if session.id != session_id]
        if self.active_session_id != session_id:
            return self.state

        self._reset_transient()
        if not self.sessions:
            self.active_session_id = None
            self.messages = [self._welcome()]
            return self.state

        next_id = self.sessions[0].id
        self.active_session_id = next_id
        self.messages = [self._welcome()]

        try:
            history = await self._fetch_history(next_id)
        except Exception as e:
            log_error_with_context(logger, e, {"operation": "delete_session", "session_id": next_id})
            raise

        if self._is_current(seq):
            self._show(history)
        return self.state

    # ------------------------------------------------------------------ #
    # Execution
    # ------------------------------------------------------------------ #

    async def execute(self, input_text: str, options: Optional[ExecutionOptions] = None) -> Any:
        """
        Run the workflow on user input.

        Without conversation recording the raw result is exposed and the
        transcript is left alone. With recording, an unconfirmed user
        message is shown at once, the run is recorded in the active
        conversation (created when there is none), and the transcript is then
        replaced by the backend's.

        Args:
            input_text: User input; JSON is passed as parsed, other text as {"text": ...}
            options: Options for this run (defaults to the session's)

        Returns:
            Raw execution result

        Raises:
            ValueError: If the input is empty or no workflow is loaded
            ExecutionInProgressError: If an execution is already running
        """
        workflow_id = self._require_workflow()
        if input_text is None or not str(input_text).strip():
            raise ValueError("Input cannot be empty")
        if self.executing:
            raise ExecutionInProgressError("An execution is already in progress")

        options = options or self.options
        input_data = parse_input(str(input_text))

        seq = self._next_seq()
        self._running_seq = seq
        self.executing = True
        self._reset_transient()
        started = time.time()

        try:
            if not options.record_conversation:
                result = await self.gateway.execute_workflow(workflow_id, input_data, options)
                if self._is_current(seq):
                    self.result = result
                log_execution(logger, workflow_id, False, None, time.time() - started)
                return result

            return await self._execute_recorded(seq, workflow_id, str(input_text), input_data, options, started)

        except Exception as e:
            if self._is_current(seq):
                self.error = getattr(e, "message", None) or str(e)
                if options.record_conversation:
                    self.messages = self.messages + [Message(role=MessageRole.ERROR, content=self.error)]
            log_error_with_context(logger, e, {
                "operation": "execute",
                "workflow_id": workflow_id,
                "recorded": options.record_conversation
            })
            raise

        finally:
            if self._running_seq == seq:
                self.executing = False
                self._running_seq = None

    async def _execute_recorded(
        self,
        seq: int,
        workflow_id: str,
        input_text: str,
        input_data: Any,
        options: ExecutionOptions,
        started: float
    ) -> Any:
        self.messages = self.messages + [
            Message(role=MessageRole.USER, content=input_text, pending=True)
        ]

        session_id = self.active_session_id
        created = False
        if not session_id:
            session_id = await self.gateway.create_conversation(workflow_id)
            created = True
            if self._is_current(seq):
                self.active_session_id = session_id

        outcome = await self.gateway.execute_workflow_with_conversation(
            workflow_id,
            input_data,
            conversation_id=session_id,
            record_node_execution=options.record_node_execution,
            options=options
        )
        log_execution(logger, workflow_id, True, outcome.conversation_id or session_id, time.time() - started)

        if not self._is_current(seq):
            logger.debug(f"Discarding superseded reconciliation for conversation {session_id}")
            return outcome.result

        if outcome.conversation_id and outcome.conversation_id != session_id:
            logger.info(f"Backend recorded the run in conversation {outcome.conversation_id}, adopting it")
            session_id = outcome.conversation_id
            self.active_session_id = session_id
            created = True

        if created:
            sessions = await self.gateway.list_conversations(workflow_id)
            if self._is_current(seq):
                self.sessions = sessions

        history = await self._fetch_history(session_id)
        if self._is_current(seq):
            self._show(history)
            self.result = outcome.result
        return outcome.result

    def dismiss(self) -> None:
        """
        Stop showing the running execution and allow a new one.

        The request already sent is not aborted; its transcript
        reconciliation still applies when it returns.
        """
        if self.executing:
            logger.info("Execution dismissed; the backend request keeps running")
        self.executing = False
        self._running_seq = None

    # ------------------------------------------------------------------ #
    # Options and mode
    # ------------------------------------------------------------------ #

    def update_options(self, **changes: Any) -> ExecutionOptions:
        """
        Change execution options and persist them for the workflow.

        Args:
            **changes: Option fields by name (debug, timeout_ms, ...)

        Returns:
            ExecutionOptions: The updated options
        """
        unknown = set(changes) - set(ExecutionOptions.model_fields)
        if unknown:
            raise ValueError(f"Unknown execution options: {', '.join(sorted(unknown))}")

        values = self.options.model_dump()
        values.update(changes)
        self.options = ExecutionOptions.model_validate(values)

        if self.workflow_id:
            self.preferences.save_options(self.workflow_id, self.options)
        return self.options

    def set_mode(self, mode: ExecutionMode) -> ExecutionMode:
        self.mode = ExecutionMode(mode)
        if self.workflow_id:
            self.preferences.save_mode(self.workflow_id, self.mode)
        return self.mode

    # ------------------------------------------------------------------ #
    # Active conversation
    # ------------------------------------------------------------------ #

    def _require_session(self) -> str:
        if not self.active_session_id:
            raise ValueError("No active conversation")
        return self.active_session_id

    async def stats(self) -> ConversationStats:
        return await self.gateway.get_conversation_stats(self._require_session())

    async def export_json(self) -> str:
        """Export the active conversation as JSON text."""
        return await self.gateway.export_conversation_as_json(self._require_session())

    def to_dict(self) -> Dict[str, Any]:
        """Snapshot of the session for display or debugging."""
        return {
            "workflow_id": self.workflow_id,
            "state": self.state.value,
            "active_session_id": self.active_session_id,
            "sessions": self.session_ids,
            "messages": [message.to_dict() for message in self.messages],
            "executing": self.executing,
            "error": self.error,
            "mode": self.mode.value,
            "options": self.options.to_payload()
        }
