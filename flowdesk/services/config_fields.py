"""
Config field model: turns a node's flowConfig/workConfig into editable field
descriptors and applies edits back into new config objects.

Field kinds come from the runtime shape of each value. Two keys get a
dedicated editor: system prompt keys get a multi-line editor, and on node
types with the memory capability the session reference key gets a session
selector that also drives its history depth companion key.
"""

import copy
import enum
import math
from typing import Any, Dict, FrozenSet, Iterable, List, Optional

from pydantic import BaseModel, Field

from config import get_settings
from flowdesk.schemas.conversation import ConversationSummary
from flowdesk.schemas.workflow import NodeRef
from flowdesk.services.node_types import MEMORY_CAPABILITY
from flowdesk.utils.json_helpers import (
    parse_float_prefix,
    parse_int_prefix,
    pretty_print_json,
    safe_json_parse,
)
from flowdesk.utils.logger import get_logger

logger = get_logger(__name__)

MIN_HISTORY_ROUNDS = 1
MAX_HISTORY_ROUNDS = 20

_MISSING = object()


class FieldKind(str, enum.Enum):
    """Shape of a config value."""
    STRING = "string"
    LONGTEXT = "longtext"
    NUMBER = "number"
    BOOLEAN = "boolean"
    ARRAY = "array"
    OBJECT = "object"


class ConfigTarget(str, enum.Enum):
    """Which of a node's two config objects a field belongs to."""
    FLOW = "flowConfig"
    WORK = "workConfig"


class FieldEditor(str, enum.Enum):
    """Editor a field is presented with."""
    DEFAULT = "default"
    LONG_TEXT = "long_text"
    JSON = "json"
    SESSION_SELECTOR = "session_selector"


class ConfigEditError(ValueError):
    """Raised in strict mode when an edit cannot be applied."""

    def __init__(self, message: str, key: Optional[str] = None):
        super().__init__(message)
        self.key = key


class ConfigField(BaseModel):
    """Descriptor for one editable config entry."""

    key: str
    value: Any = None
    kind: FieldKind
    target: ConfigTarget
    editor: FieldEditor = FieldEditor.DEFAULT
    text: Optional[str] = Field(None, description="JSON text for array/object values")
    companion_key: Optional[str] = Field(None, description="Sibling key driven by the same editor")
    companion_value: Optional[int] = None

    class Config:
        frozen = True


def _kind_of(key: str, value: Any, system_prompt_keys: Iterable[str]) -> Optional[FieldKind]:
    # bool is an int subclass, so it must be checked first
    if isinstance(value, bool):
        return FieldKind.BOOLEAN
    if isinstance(value, (int, float)):
        return FieldKind.NUMBER
    if isinstance(value, str):
        return FieldKind.LONGTEXT if key in system_prompt_keys else FieldKind.STRING
    if isinstance(value, list):
        return FieldKind.ARRAY
    if isinstance(value, dict):
        return FieldKind.OBJECT
    return None


def _history_rounds(value: Any, default: int) -> int:
    rounds = parse_int_prefix(value)
    return rounds if rounds is not None else default


def derive_fields(
    config: Optional[Dict[str, Any]],
    target: ConfigTarget,
    capabilities: FrozenSet[str] = frozenset()
) -> List[ConfigField]:
    """
    Derive the ordered field list for one config object.

    Args:
        config: flowConfig or workConfig of a node
        target: Which config object this is
        capabilities: Capability tags of the node's type

    Returns:
        list: ConfigField per entry, in config order; None values are skipped
    """
    settings = get_settings()
    target = ConfigTarget(target)
    config = config or {}

    session_key = settings.session_reference_key
    depth_key = settings.history_depth_key
    use_selector = (
        target == ConfigTarget.FLOW
        and MEMORY_CAPABILITY in capabilities
        and config.get(session_key) is not None
    )

    fields = []
    for key, value in config.items():
        if value is None:
            continue

        if use_selector and key == session_key:
            fields.append(ConfigField(
                key=key,
                value=str(value),
                kind=FieldKind.STRING,
                target=target,
                editor=FieldEditor.SESSION_SELECTOR,
                companion_key=depth_key,
                companion_value=_history_rounds(config.get(depth_key), settings.default_history_rounds)
            ))
            continue
        if use_selector and key == depth_key:
            continue

        kind = _kind_of(key, value, settings.system_prompt_keys)
        if kind is None:
            logger.debug(f"Skipping config key '{key}' with unsupported value type {type(value).__name__}")
            continue

        if kind in (FieldKind.ARRAY, FieldKind.OBJECT):
            fields.append(ConfigField(
                key=key, value=value, kind=kind, target=target,
                editor=FieldEditor.JSON, text=pretty_print_json(value)
            ))
        elif kind == FieldKind.LONGTEXT:
            fields.append(ConfigField(
                key=key, value=value, kind=kind, target=target, editor=FieldEditor.LONG_TEXT
            ))
        else:
            fields.append(ConfigField(key=key, value=value, kind=kind, target=target))

    return fields


def _coerce(field: ConfigField, new_value: Any) -> Any:
    """Convert raw editor input to the field's kind, or return _MISSING."""
    if field.editor == FieldEditor.SESSION_SELECTOR:
        if new_value is None or not str(new_value).strip():
            return _MISSING
        return str(new_value).strip()

    if field.kind in (FieldKind.STRING, FieldKind.LONGTEXT):
        return "" if new_value is None else str(new_value)

    if field.kind == FieldKind.NUMBER:
        number = parse_float_prefix(new_value)
        if number is None or (isinstance(number, float) and not math.isfinite(number)):
            return _MISSING
        return number

    if field.kind == FieldKind.BOOLEAN:
        if isinstance(new_value, bool):
            return new_value
        if isinstance(new_value, str) and new_value.strip().lower() in ("true", "false"):
            return new_value.strip().lower() == "true"
        return _MISSING

    expected = list if field.kind == FieldKind.ARRAY else dict
    if isinstance(new_value, expected):
        return copy.deepcopy(new_value)
    parsed = safe_json_parse(new_value, _MISSING)
    return parsed if isinstance(parsed, expected) else _MISSING


def _reject(field: ConfigField, new_value: Any, strict: bool, reason: str) -> None:
    message = f"Rejected edit of '{field.key}' ({field.kind.value}): {reason}"
    if strict:
        raise ConfigEditError(message, key=field.key)
    logger.warning(f"{message}; keeping previous value. Input: {new_value!r}"[:500])


def apply_edit(
    config: Optional[Dict[str, Any]],
    field: ConfigField,
    new_value: Any,
    strict: bool = False
) -> Dict[str, Any]:
    """
    Apply one edit and return the new config object.

    The input config is never modified. Input that cannot be read as the
    field's kind leaves the previous value in place; with strict=True it
    raises instead.

    Args:
        config: Current config object
        field: Field being edited
        new_value: Raw editor input (text, number, bool, list or dict)
        strict: Raise ConfigEditError on unreadable input

    Returns:
        dict: New config object

    Raises:
        ConfigEditError: In strict mode, if the input is rejected
    """
    updated = dict(config or {})
    value = _coerce(field, new_value)

    if value is _MISSING:
        _reject(field, new_value, strict, f"input is not a valid {field.kind.value}")
        return updated

    updated[field.key] = value
    return updated


def apply_companion_edit(
    config: Optional[Dict[str, Any]],
    field: ConfigField,
    value: Any,
    strict: bool = False
) -> Dict[str, Any]:
    """
    Set the history depth that accompanies a session selector field.

    Only the companion key is written; the session reference is left as is.
    Values are read with integer-prefix semantics and clamped to 1..20.

    Args:
        config: Current flowConfig
        field: Session selector field carrying companion_key
        value: New history depth
        strict: Raise ConfigEditError on unreadable input

    Returns:
        dict: New config object
    """
    if not field.companion_key:
        raise ConfigEditError(f"Field '{field.key}' has no companion key", key=field.key)

    updated = dict(config or {})
    rounds = parse_int_prefix(value)
    if rounds is None:
        message = f"Rejected history depth for '{field.companion_key}': not an integer"
        if strict:
            raise ConfigEditError(message, key=field.companion_key)
        logger.warning(f"{message}; keeping previous value. Input: {value!r}")
        return updated

    updated[field.companion_key] = max(MIN_HISTORY_ROUNDS, min(MAX_HISTORY_ROUNDS, rounds))
    return updated


class SessionSelector:
    """
    Sub-editor for the session reference of a memory node.

    Lists the workflow's conversations, accepts a free-text conversation ID
    and drives the history depth companion key.
    """

    def __init__(self, gateway, workflow_id: Optional[str], field: Optional[ConfigField] = None):
        """
        Initialize session selector.

        Args:
            gateway: Remote gateway, used to list conversations
            workflow_id: Workflow whose conversations are offered
            field: The session selector field (built from settings if omitted)
        """
        settings = get_settings()
        self.gateway = gateway
        self.workflow_id = workflow_id
        self.field = field or ConfigField(
            key=settings.session_reference_key,
            kind=FieldKind.STRING,
            target=ConfigTarget.FLOW,
            editor=FieldEditor.SESSION_SELECTOR,
            companion_key=settings.history_depth_key,
            companion_value=settings.default_history_rounds
        )
        self.options: List[ConversationSummary] = []
        self.custom_value: Optional[str] = None

    async def load_options(self, current_value: Optional[str] = None) -> List[ConversationSummary]:
        """
        Load the conversations that can be selected.

        A current value that is not among them is kept as the custom value.

        Args:
            current_value: Session reference currently configured

        Returns:
            list: ConversationSummary per selectable conversation

        Raises:
            ValueError: If no workflow ID is known
        """
        if not self.workflow_id:
            raise ValueError("No workflow ID given, cannot load conversations")

        try:
            self.options = await self.gateway.list_conversations(self.workflow_id)
        except Exception as e:
            logger.error(f"Failed to load conversations for {self.workflow_id}: {e}")
            raise

        if current_value and current_value not in self.option_ids:
            self.custom_value = current_value
        return self.options

    @property
    def option_ids(self) -> List[str]:
        return [option.id for option in self.options]

    def select(self, config: Optional[Dict[str, Any]], session_id: str) -> Dict[str, Any]:
        """Point the node at a listed conversation."""
        return apply_edit(config, self.field, session_id)

    def apply_custom(self, config: Optional[Dict[str, Any]], text: Optional[str]) -> Dict[str, Any]:
        """Point the node at a typed conversation ID; blank text is ignored."""
        if text is None or not text.strip():
            return dict(config or {})
        self.custom_value = text.strip()
        return apply_edit(config, self.field, self.custom_value)

    def set_history_depth(self, config: Optional[Dict[str, Any]], rounds: Any) -> Dict[str, Any]:
        return apply_companion_edit(config, self.field, rounds)


class NodeConfigDraft:
    """Editable copies of one node's configs, saved through the graph store."""

    def __init__(self, graph_store, node: NodeRef, capabilities: FrozenSet[str] = frozenset(), strict: bool = False):
        """
        Initialize draft.

        Args:
            graph_store: GraphStore used to save
            node: Node being edited
            capabilities: Capability tags of the node's type
            strict: Raise on unreadable input instead of keeping the old value
        """
        self.graph_store = graph_store
        self.capabilities = frozenset(capabilities)
        self.strict = strict
        self.load(node)

    def load(self, node: NodeRef) -> None:
        """Reset the draft to a node's server-side configs."""
        self.node = node
        self.flow_config = copy.deepcopy(node.flow_config)
        self.work_config = copy.deepcopy(node.work_config)

    @property
    def dirty(self) -> bool:
        return self.flow_config != self.node.flow_config or self.work_config != self.node.work_config

    def _config_for(self, target: ConfigTarget) -> Dict[str, Any]:
        return self.flow_config if ConfigTarget(target) == ConfigTarget.FLOW else self.work_config

    def _store(self, target: ConfigTarget, config: Dict[str, Any]) -> None:
        if ConfigTarget(target) == ConfigTarget.FLOW:
            self.flow_config = config
        else:
            self.work_config = config

    def fields(self, target: ConfigTarget) -> List[ConfigField]:
        return derive_fields(self._config_for(target), target, self.capabilities)

    def edit(self, field: ConfigField, new_value: Any) -> Dict[str, Any]:
        """Apply an edit to the matching draft config and return it."""
        updated = apply_edit(self._config_for(field.target), field, new_value, strict=self.strict)
        self._store(field.target, updated)
        return updated

    def edit_companion(self, field: ConfigField, value: Any) -> Dict[str, Any]:
        updated = apply_companion_edit(self._config_for(field.target), field, value, strict=self.strict)
        self._store(field.target, updated)
        return updated

    async def save(self) -> Optional[NodeRef]:
        """
        Save both configs and reload the draft from the refetched node.

        Returns:
            NodeRef: The node as the server now holds it, or None if it is
            no longer part of the workflow
        """
        workflow = await self.graph_store.update_node(
            self.node.id,
            flow_config=self.flow_config,
            work_config=self.work_config,
            workflow_id=self.node.workflow_id
        )

        refreshed = workflow.find_node(self.node.id)
        if refreshed is None:
            logger.warning(f"Node {self.node.id} disappeared from workflow {workflow.id} after saving")
            return None

        self.load(refreshed)
        return refreshed
