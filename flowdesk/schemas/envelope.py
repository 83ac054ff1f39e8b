"""
Canonical response envelope every backend reply is normalized into.
"""

from typing import Any, Dict

from pydantic import BaseModel, Field


class ApiResponse(BaseModel):
    """Canonical {success, message, data} envelope."""

    success: bool = Field(..., description="Whether the backend reported success")
    message: str = Field(default="", description="Backend or default message")
    data: Any = Field(None, description="Payload, if any")

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary, omitting data when there is none."""
        result = {"success": self.success, "message": self.message}
        if self.data is not None:
            result["data"] = self.data
        return result

    class Config:
        json_schema_extra = {
            "example": {
                "success": True,
                "message": "ok",
                "data": {"x": 1}
            }
        }
