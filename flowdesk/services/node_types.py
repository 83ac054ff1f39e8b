"""
Node type registry: the node types the backend can run and the editor
capabilities each one carries.
"""

from typing import Any, Dict, Iterable, List, Mapping, Optional

from flowdesk.schemas.workflow import NodeTypeDefinition
from flowdesk.utils.logger import get_logger

logger = get_logger(__name__)

# Capability tag for node types that read a conversation as memory
MEMORY_CAPABILITY = "memory"


class NodeTypeRegistry:
    """Lookup of NodeTypeDefinition by type name."""

    def __init__(
        self,
        definitions: Optional[Iterable[NodeTypeDefinition]] = None,
        capability_table: Optional[Mapping[str, Iterable[str]]] = None
    ):
        """
        Initialize registry.

        Args:
            definitions: Known node type definitions
            capability_table: Capabilities for types not otherwise described
        """
        self.capability_table = {
            name: frozenset(caps) for name, caps in (capability_table or {}).items()
        }
        self._definitions: Dict[str, NodeTypeDefinition] = {}
        for definition in definitions or ():
            self._definitions[definition.name] = definition

    @classmethod
    def from_backend(
        cls,
        raw_types: Iterable[Any],
        capability_table: Optional[Mapping[str, Iterable[str]]] = None
    ) -> "NodeTypeRegistry":
        """
        Build a registry from a getNodeTypes reply.

        The backend lists types either by name or as objects. Named types get
        their capabilities from the capability table; objects may carry their
        own, which are merged with the table's.

        Args:
            raw_types: Items of the getNodeTypes reply
            capability_table: Type name -> capability tags

        Returns:
            NodeTypeRegistry
        """
        registry = cls(capability_table=capability_table)

        for item in raw_types:
            if isinstance(item, str):
                registry.register(NodeTypeDefinition(name=item))
            elif isinstance(item, dict):
                name = item.get("name") or item.get("type") or item.get("nodeType")
                if not name:
                    logger.warning(f"Skipping node type without a name: {item!r}")
                    continue
                registry.register(NodeTypeDefinition(
                    name=str(name),
                    label=item.get("label"),
                    capabilities=item.get("capabilities") or ()
                ))
            else:
                logger.warning(f"Skipping unrecognized node type entry: {item!r}")

        logger.debug(f"Node type registry built with {len(registry)} types")
        return registry

    def register(self, definition: NodeTypeDefinition) -> NodeTypeDefinition:
        """Add or replace a definition, merging capabilities from the table."""
        extra = self.capability_table.get(definition.name, frozenset())
        if extra - definition.capabilities:
            definition = definition.model_copy(
                update={"capabilities": definition.capabilities | extra}
            )
        self._definitions[definition.name] = definition
        return definition

    def get(self, name: str) -> NodeTypeDefinition:
        """
        Get a definition by type name.

        Unknown types resolve to a bare definition whose capabilities come
        from the table, so nodes of types the backend no longer lists remain
        editable.
        """
        definition = self._definitions.get(name)
        if definition is None:
            return NodeTypeDefinition(
                name=name,
                capabilities=self.capability_table.get(name, frozenset())
            )
        return definition

    def capabilities_of(self, name: str) -> frozenset:
        return self.get(name).capabilities

    def names(self) -> List[str]:
        return list(self._definitions)

    def __contains__(self, name: str) -> bool:
        return name in self._definitions

    def __len__(self) -> int:
        return len(self._definitions)
