"""
Workflow and node schemas exchanged with the backend.
"""

from typing import Any, Dict, FrozenSet, List, Optional

from pydantic import BaseModel, Field, root_validator, validator
from pydantic.alias_generators import to_camel


def _coerce_id(v):
    """Backends hand out numeric ids as often as strings."""
    if v is None:
        return v
    return str(v)


def _coerce_timestamp(v):
    if v is None:
        return v
    if hasattr(v, "isoformat"):
        return v.isoformat()
    return str(v)


class NodeRef(BaseModel):
    """A single node of a workflow, as held by the server."""

    id: str = Field(..., description="Node ID, unique within its workflow")
    workflow_id: Optional[str] = Field(None, description="Owning workflow ID")
    node_type: str = Field(..., description="Node type name, resolved against the type registry")
    index: int = Field(..., ge=0, description="0-based position in the workflow")
    flow_config: Dict[str, Any] = Field(
        default_factory=dict,
        description="Structural/presentation config (name, status, layout)"
    )
    work_config: Dict[str, Any] = Field(
        default_factory=dict,
        description="Runtime parameters consumed by the node"
    )
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    _normalize_ids = validator('id', 'workflow_id', pre=True, allow_reuse=True)(_coerce_id)
    _normalize_times = validator('created_at', 'updated_at', pre=True, allow_reuse=True)(_coerce_timestamp)

    @root_validator(pre=True)
    def map_storage_columns(cls, values):
        """Accept the backend's storage column names (type, order_index)."""
        if not isinstance(values, dict):
            return values
        values = dict(values)
        if "type" in values and not ({"node_type", "nodeType"} & values.keys()):
            values["node_type"] = values["type"]
        for column in ("order_index", "orderIndex"):
            if column in values and "index" not in values:
                values["index"] = values[column]
        return values

    @validator('flow_config', 'work_config', pre=True)
    def default_config(cls, v):
        """Treat a missing config as empty."""
        return v if v is not None else {}

    class Config:
        alias_generator = to_camel
        populate_by_name = True
        extra = "allow"


class Workflow(BaseModel):
    """A workflow with its ordered node list."""

    id: str = Field(..., description="Workflow ID")
    name: str = Field(default="", description="Workflow name")
    description: Optional[str] = Field(default="", description="Workflow description")
    status: Optional[str] = Field(None, description="Backend status label")
    config: Dict[str, Any] = Field(default_factory=dict, description="Workflow-level config")
    nodes: List[NodeRef] = Field(default_factory=list, description="Nodes ordered by index")
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    _normalize_id = validator('id', pre=True, allow_reuse=True)(_coerce_id)
    _normalize_times = validator('created_at', 'updated_at', pre=True, allow_reuse=True)(_coerce_timestamp)

    @validator('config', pre=True)
    def default_config(cls, v):
        """Treat a null config as empty."""
        return v if v is not None else {}

    @validator('nodes', pre=True)
    def default_nodes(cls, v):
        """Treat a null node list as empty."""
        return v if v is not None else []

    @validator('nodes')
    def sort_nodes(cls, v):
        """Keep nodes in index order regardless of how the server listed them."""
        return sorted(v, key=lambda node: node.index)

    @property
    def node_ids(self) -> List[str]:
        return [node.id for node in self.nodes]

    @property
    def node_types(self) -> List[str]:
        return [node.node_type for node in self.nodes]

    def find_node(self, node_id: str) -> Optional[NodeRef]:
        """
        Find a node by ID.

        Args:
            node_id: Node ID

        Returns:
            NodeRef or None if not part of this workflow
        """
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None

    class Config:
        alias_generator = to_camel
        populate_by_name = True
        extra = "allow"
        json_schema_extra = {
            "example": {
                "id": "wf-1",
                "name": "W1",
                "description": "",
                "nodes": [
                    {
                        "id": "n-1",
                        "workflowId": "wf-1",
                        "nodeType": "StartNode",
                        "index": 0,
                        "flowConfig": {"nodeName": "Start", "status": "idle"},
                        "workConfig": {}
                    }
                ]
            }
        }


class NodeTypeDefinition(BaseModel):
    """A node type the backend can run, with the editor capabilities it carries."""

    name: str = Field(..., description="Type name used as NodeRef.node_type")
    label: Optional[str] = Field(None, description="Human-readable label")
    capabilities: FrozenSet[str] = Field(
        default_factory=frozenset,
        description="Capability tags, e.g. 'memory' for stateful chat nodes"
    )

    @validator('capabilities', pre=True)
    def default_capabilities(cls, v):
        return frozenset(v or ())

    def has_capability(self, capability: str) -> bool:
        return capability in self.capabilities

    class Config:
        alias_generator = to_camel
        populate_by_name = True
        frozen = True
