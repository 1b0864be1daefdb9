"""Log event types for structured logging."""

from enum import StrEnum


class LogEvent(StrEnum):
    """Log event types for the manager.

    Used with logger.info/warning/error extra dict:
        logger.info("message", extra={"event": LogEvent.INSTANCE_CREATED, ...})
    """

    # Application lifecycle
    APP_STARTED = "app_started"
    APP_STOPPED = "app_stopped"

    # Instance lifecycle
    INSTANCE_CREATED = "instance_created"
    INSTANCE_STATE_CHANGED = "instance_state_changed"
    INSTANCE_DELETED = "instance_deleted"
    INSTANCE_RECONCILED = "instance_reconciled"

    # Container events
    CONTAINER_CREATED = "container_created"
    CONTAINER_STARTED = "container_started"
    CONTAINER_REMOVED = "container_removed"
    IMAGE_PULLED = "image_pulled"

    # Port events
    PORTS_ALLOCATED = "ports_allocated"
    PORTS_RELEASED = "ports_released"
    PORTS_EXHAUSTED = "ports_exhausted"

    # Cleanup events
    CLEANUP_STARTED = "cleanup_started"
    CLEANUP_COMPLETED = "cleanup_completed"
    CLEANUP_FAILED = "cleanup_failed"

    # Recovery events
    RECOVERY_COMPLETED = "recovery_completed"
    RECOVERY_SKIPPED = "recovery_skipped"

    # Error events
    RUNTIME_ERROR = "runtime_error"
    UNHANDLED_EXCEPTION = "unhandled_exception"
    MANAGER_ERROR = "manager_error"
