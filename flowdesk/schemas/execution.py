"""
Execution option and result schemas.
"""

import enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field, validator
from pydantic.alias_generators import to_camel


class ExecutionMode(str, enum.Enum):
    """Execution view last used for a workflow."""
    SIMPLE = "simple"
    EXPERT = "expert"


class ExecutionOptions(BaseModel):
    """Per-workflow execution options, persisted locally."""

    debug: bool = Field(default=False, description="Ask the backend for debug output")
    timeout_ms: int = Field(
        default=60000,
        alias="timeout",
        description="Timeout forwarded to the backend; never enforced locally"
    )
    validate_start_end: bool = Field(default=True, description="Require start and end nodes")
    record_conversation: bool = Field(
        default=False,
        description="Run inside a recorded conversation instead of a bare execution"
    )
    record_node_execution: bool = Field(
        default=False,
        description="Also record each node's execution in the conversation"
    )

    @validator('timeout_ms', pre=True)
    def validate_timeout(cls, v):
        """Fall back to the default for unusable timeouts."""
        try:
            value = int(v)
        except (TypeError, ValueError):
            return 60000
        return value if value > 0 else 60000

    def to_payload(self) -> Dict[str, Any]:
        """Options in the shape the backend expects."""
        return self.model_dump(by_alias=True)

    class Config:
        alias_generator = to_camel
        populate_by_name = True
        extra = "ignore"
        json_schema_extra = {
            "example": {
                "debug": False,
                "timeout": 60000,
                "validateStartEnd": True,
                "recordConversation": True,
                "recordNodeExecution": False
            }
        }


class ConversationExecutionResult(BaseModel):
    """Result of a conversation-recording execution."""

    result: Any = Field(None, description="Raw workflow output")
    conversation_id: Optional[str] = Field(None, description="Conversation the run was recorded in")

    @validator('conversation_id', pre=True)
    def coerce_id(cls, v):
        return str(v) if v is not None else v

    class Config:
        alias_generator = to_camel
        populate_by_name = True
        extra = "allow"
