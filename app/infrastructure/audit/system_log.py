"""
SystemLogWriter - operational event log for sync and import runs.

Every pipeline run (pixel sync, audience import) leaves one row in the
system_logs table so admins can see outcomes from the dashboard without
digging through stdout.

Usage:
    from app.infrastructure.audit import system_log

    await system_log.log_event(
        log_type="api",
        event_name="visitors_api_sync",
        status="success",
        message="Visitors sync completed for pixel px-1",
        request_data={"pixel_id": "px-1"},
        response_data={"total_fetched": 120},
        user_id="user-123",
    )

Design Principles:
- Write to both database (queryable) and structured logs (searchable)
- Never fail the caller if writing the log row fails
"""

from typing import Any

from psycopg.types.json import Jsonb

from app.db.helpers import execute_query
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

LOG_TYPES = {"webhook", "api", "stripe", "error", "info", "audience"}
LOG_STATUSES = {"success", "error", "warning", "info"}


class SystemLogWriter:
    """
    Writes system_logs rows and mirrors them to structlog.
    """

    async def log_event(
        self,
        log_type: str,
        event_name: str,
        status: str,
        message: str,
        request_data: dict[str, Any] | None = None,
        response_data: dict[str, Any] | None = None,
        error_details: str | None = None,
        user_id: str | None = None,
        ip_address: str | None = None,
    ) -> bool:
        """
        Log an operational event.

        Returns:
            True if the row was written, False otherwise (never raises)
        """
        if log_type not in LOG_TYPES:
            logger.warning("Unknown system log type", log_type=log_type)
        if status not in LOG_STATUSES:
            logger.warning("Unknown system log status", status=status)

        log_method = logger.error if status == "error" else logger.info
        log_method(
            "System event",
            log_type=log_type,
            event_name=event_name,
            status=status,
            message=message,
            user_id=user_id,
            error_details=error_details,
        )

        try:
            await execute_query(
                """
                INSERT INTO system_logs (
                    type, event_name, status, message, request_data,
                    response_data, error_details, user_id, ip_address, created_at
                ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, NOW())
                """,
                (
                    log_type,
                    event_name,
                    status,
                    message,
                    Jsonb(request_data) if request_data is not None else None,
                    Jsonb(response_data) if response_data is not None else None,
                    error_details,
                    user_id,
                    ip_address,
                ),
            )
            return True

        except Exception as e:
            # Never fail the pipeline because the log sink is unavailable
            logger.error(
                "Failed to write system log to database",
                error=str(e),
                error_type=type(e).__name__,
                event_name=event_name,
                fallback_data={
                    "type": log_type,
                    "status": status,
                    "message": message,
                    "user_id": user_id,
                },
            )
            return False

    async def log_audit_action(
        self,
        user_id: str,
        action: str,
        resource_type: str,
        resource_id: str,
        details: dict[str, Any] | None = None,
    ) -> bool:
        """Record an admin action against a resource."""
        return await self.log_event(
            log_type="audience" if resource_type == "audience" else "info",
            event_name=action,
            status="success",
            message=f"{action} on {resource_type} {resource_id}",
            request_data={"resource_type": resource_type, "resource_id": resource_id},
            response_data=details,
            user_id=user_id,
        )


system_log = SystemLogWriter()
