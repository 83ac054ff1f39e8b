"""
Preference store for execution options and view mode kept on the client.
"""

from typing import Optional
from pydantic import ValidationError
from sqlalchemy.orm import Session

from flowdesk.models.preference import WorkflowPreference
from flowdesk.schemas.execution import ExecutionMode, ExecutionOptions
from flowdesk.utils.logger import get_logger

logger = get_logger(__name__)


class PreferenceStore:
    """Durable key-value storage of per-workflow client state."""

    def __init__(self, db: Session, defaults: Optional[ExecutionOptions] = None):
        """
        Initialize preference store.

        Args:
            db: Local store session
            defaults: Options returned for workflows with nothing saved
        """
        self.db = db
        self.defaults = defaults or ExecutionOptions()

    def _get_row(self, workflow_id: str) -> Optional[WorkflowPreference]:
        return self.db.query(WorkflowPreference).filter(
            WorkflowPreference.workflow_id == workflow_id
        ).first()

    def _get_or_create_row(self, workflow_id: str) -> WorkflowPreference:
        row = self._get_row(workflow_id)
        if row is None:
            row = WorkflowPreference(workflow_id=workflow_id)
            self.db.add(row)
        return row

    def get_options(self, workflow_id: str) -> ExecutionOptions:
        """
        Get saved execution options for a workflow.

        Args:
            workflow_id: Workflow ID

        Returns:
            ExecutionOptions: Saved options, or a copy of the defaults
        """
        row = self._get_row(workflow_id)
        if row is None or not row.execution_options:
            return self.defaults.model_copy()

        try:
            return ExecutionOptions.model_validate(row.execution_options)
        except (ValidationError, TypeError) as e:
            logger.warning(
                f"Stored execution options for {workflow_id} are unreadable, using defaults: {e}"
            )
            return self.defaults.model_copy()

    def save_options(self, workflow_id: str, options: ExecutionOptions) -> ExecutionOptions:
        """
        Save execution options for a workflow.

        Args:
            workflow_id: Workflow ID
            options: Options to persist

        Returns:
            ExecutionOptions: The saved options
        """
        row = self._get_or_create_row(workflow_id)
        row.execution_options = options.to_payload()

        self.db.commit()
        logger.debug(f"Saved execution options for {workflow_id}")

        return options

    def get_mode(self, workflow_id: str) -> ExecutionMode:
        """
        Get the last-used execution mode for a workflow.

        Args:
            workflow_id: Workflow ID

        Returns:
            ExecutionMode: Saved mode, SIMPLE when none or unknown
        """
        row = self._get_row(workflow_id)
        if row is None or not row.mode:
            return ExecutionMode.SIMPLE

        try:
            return ExecutionMode(row.mode)
        except ValueError:
            logger.warning(f"Unknown stored mode '{row.mode}' for {workflow_id}")
            return ExecutionMode.SIMPLE

    def save_mode(self, workflow_id: str, mode: ExecutionMode) -> ExecutionMode:
        """
        Save the execution mode for a workflow.

        Args:
            workflow_id: Workflow ID
            mode: Mode to persist

        Returns:
            ExecutionMode: The saved mode
        """
        mode = ExecutionMode(mode)
        row = self._get_or_create_row(workflow_id)
        row.mode = mode.value

        self.db.commit()
        return mode

    def forget(self, workflow_id: str) -> bool:
        """
        Remove everything saved for a workflow.

        Args:
            workflow_id: Workflow ID

        Returns:
            bool: True if something was removed
        """
        row = self._get_row(workflow_id)
        if row is None:
            return False

        self.db.delete(row)
        self.db.commit()
        return True
