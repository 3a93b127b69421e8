"""Unit tests for domain enums."""

from miraveja_orchestrator.domain.enums import LifecycleEvent, ServiceStatus


class TestServiceStatus:
    """Test cases for the ServiceStatus enum."""

    def test_status_values(self):
        """Test that every lifecycle status has its string value."""
        assert ServiceStatus.REGISTERED.value == "registered"
        assert ServiceStatus.STARTING.value == "starting"
        assert ServiceStatus.STARTED.value == "started"
        assert ServiceStatus.STOPPING.value == "stopping"
        assert ServiceStatus.STOPPED.value == "stopped"
        assert ServiceStatus.ERROR.value == "error"

    def test_status_is_string(self):
        """Test that statuses compare equal to plain strings."""
        assert ServiceStatus.STARTED == "started"
        assert isinstance(ServiceStatus.STARTED, str)

    def test_status_str(self):
        """Test string representation of a status."""
        assert str(ServiceStatus.ERROR) == "error"

    def test_status_from_value(self):
        """Test that a status can be built from its value."""
        assert ServiceStatus("stopping") is ServiceStatus.STOPPING


class TestLifecycleEvent:
    """Test cases for the LifecycleEvent enum."""

    def test_all_events_present(self):
        """Test that every published event exists."""
        expected = {
            "service_registered",
            "service_unregistered",
            "service_starting",
            "service_started",
            "service_start_failed",
            "auto_start_failed",
            "service_stopping",
            "service_stopped",
            "service_stop_failed",
            "service_unhealthy",
            "health_check_failed",
            "service_recovery_attempt",
            "service_recovered",
            "service_recovery_failed",
            "service_recovery_given_up",
            "circular_dependency_detected",
            "unknown_dependency",
            "bulk_start_error",
            "bulk_stop_error",
            "config_updated",
        }
        assert {event.value for event in LifecycleEvent} == expected

    def test_event_str(self):
        """Test string representation of an event."""
        assert str(LifecycleEvent.SERVICE_STARTED) == "service_started"
