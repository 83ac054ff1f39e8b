"""
Tests for PreferenceStore.
"""

from flowdesk.models.preference import WorkflowPreference
from flowdesk.schemas.execution import ExecutionMode, ExecutionOptions
from flowdesk.services.preference_store import PreferenceStore


class TestExecutionOptions:
    """Tests for saved execution options."""

    def test_defaults_when_nothing_saved(self, preferences):
        """Test unknown workflows get the default options."""
        options = preferences.get_options("wf-1")

        assert options == ExecutionOptions()
        assert options.timeout_ms == 60000

    def test_custom_defaults(self, test_db):
        """Test the store hands out copies of its configured defaults."""
        defaults = ExecutionOptions(debug=True)
        store = PreferenceStore(test_db, defaults=defaults)

        options = store.get_options("wf-1")

        assert options.debug is True
        assert options is not defaults

    def test_save_and_get(self, preferences):
        """Test options survive a round trip through the local store."""
        saved = ExecutionOptions(record_conversation=True, timeout_ms=2500)

        preferences.save_options("wf-1", saved)

        assert preferences.get_options("wf-1") == saved
        assert preferences.get_options("wf-2") == ExecutionOptions()

    def test_stored_in_backend_shape(self, preferences, test_db):
        """Test the row holds the camelCase payload."""
        preferences.save_options("wf-1", ExecutionOptions(timeout_ms=2500))

        row = test_db.query(WorkflowPreference).filter_by(workflow_id="wf-1").one()

        assert row.execution_options["timeout"] == 2500
        assert row.execution_options["recordConversation"] is False

    def test_unreadable_options_fall_back(self, preferences, test_db, mocker):
        """Test corrupt stored options give defaults and a warning."""
        test_db.add(WorkflowPreference(workflow_id="wf-1", execution_options={"debug": "sometimes"}))
        test_db.commit()
        warning = mocker.patch("flowdesk.services.preference_store.logger.warning")

        options = preferences.get_options("wf-1")

        assert options == ExecutionOptions()
        warning.assert_called_once()


class TestExecutionMode:
    """Tests for the remembered view mode."""

    def test_default_mode(self, preferences):
        """Test SIMPLE when nothing is saved."""
        assert preferences.get_mode("wf-1") == ExecutionMode.SIMPLE

    def test_save_mode_keeps_options(self, preferences):
        """Test mode and options live side by side."""
        preferences.save_options("wf-1", ExecutionOptions(debug=True))
        preferences.save_mode("wf-1", "expert")

        assert preferences.get_mode("wf-1") == ExecutionMode.EXPERT
        assert preferences.get_options("wf-1").debug is True

    def test_unknown_stored_mode(self, preferences, test_db):
        """Test a mode from another client version falls back to SIMPLE."""
        test_db.add(WorkflowPreference(workflow_id="wf-1", mode="wizard"))
        test_db.commit()

        assert preferences.get_mode("wf-1") == ExecutionMode.SIMPLE


class TestForget:
    """Tests for removing saved state."""

    def test_forget(self, preferences):
        """Test forget removes everything for one workflow."""
        preferences.save_mode("wf-1", ExecutionMode.EXPERT)

        assert preferences.forget("wf-1") is True
        assert preferences.get_mode("wf-1") == ExecutionMode.SIMPLE
        assert preferences.forget("wf-1") is False
