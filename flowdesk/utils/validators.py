"""
Validation utilities for workflows and node sequences.
"""

from typing import Any, Iterable, List, Optional


def is_blank(value: Optional[str]) -> bool:
    """
    Check if a string is missing, empty, or whitespace only.

    Args:
        value: String to check

    Returns:
        bool: True if blank
    """
    return value is None or not str(value).strip()


def validate_workflow_name(name: Optional[str], max_length: int = 200) -> tuple[bool, Optional[str]]:
    """
    Validate a workflow name before it is sent to the backend.

    Args:
        name: Proposed workflow name
        max_length: Maximum allowed length

    Returns:
        tuple: (is_valid, error_message)
    """
    if is_blank(name):
        return False, "Workflow name cannot be empty"

    if len(name.strip()) > max_length:
        return False, f"Workflow name too long (maximum {max_length} characters)"

    return True, None


def validate_node_index(index: Any) -> tuple[bool, Optional[str]]:
    """
    Validate a node position requested by the caller.

    Args:
        index: Requested 0-based index

    Returns:
        tuple: (is_valid, error_message)
    """
    if isinstance(index, bool) or not isinstance(index, int):
        return False, f"Node index must be an integer, got {type(index).__name__}"

    if index < 0:
        return False, f"Node index cannot be negative: {index}"

    return True, None


def validate_node_sequence(nodes: Iterable[Any]) -> tuple[bool, List[str]]:
    """
    Check that a node list holds unique ids and dense 0..N-1 indices.

    Accepts NodeRef models or plain dicts.

    Args:
        nodes: Nodes as returned by the backend

    Returns:
        tuple: (is_valid, list_of_problems)
    """
    problems = []
    seen_ids = set()
    indices = []

    for position, node in enumerate(nodes):
        node_id = node.get("id") if isinstance(node, dict) else getattr(node, "id", None)
        index = node.get("index") if isinstance(node, dict) else getattr(node, "index", None)

        if node_id in seen_ids:
            problems.append(f"Duplicate node ID: {node_id}")
        seen_ids.add(node_id)

        if not isinstance(index, int):
            problems.append(f"Node at position {position} has no integer index")
            continue
        indices.append(index)

    expected = list(range(len(indices)))
    if sorted(indices) != expected:
        problems.append(
            f"Node indices are not dense: got {sorted(indices)}, expected {expected}"
        )

    return len(problems) == 0, problems
