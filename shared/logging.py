# shared/logging.py
import structlog
import logging
import sys
from typing import Any, Dict, List, Optional

_SHARED_PROCESSORS = [
    structlog.stdlib.filter_by_level,
    structlog.stdlib.add_logger_name,
    structlog.stdlib.add_log_level,
    structlog.stdlib.PositionalArgumentsFormatter(),
    structlog.processors.TimeStamper(fmt="iso"),
    structlog.processors.StackInfoRenderer(),
    structlog.processors.format_exc_info,
    structlog.processors.UnicodeDecoder(),
]

# Configure structured logging
structlog.configure(
    processors=_SHARED_PROCESSORS + [structlog.processors.JSONRenderer()],
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)

# Get logger instance
logger = structlog.get_logger()

# Configure standard library logging
logging.basicConfig(
    format="%(message)s",
    stream=sys.stdout,
    level=logging.INFO,
)

def setup_logging(level: str = "INFO", json_logs: bool = True):
    """Setup logging configuration"""
    log_level = getattr(logging, level.upper())
    logging.getLogger().setLevel(log_level)

    if not json_logs:
        # Use human-readable format for development
        structlog.configure(
            processors=_SHARED_PROCESSORS + [structlog.dev.ConsoleRenderer()],
            context_class=dict,
            logger_factory=structlog.stdlib.LoggerFactory(),
            cache_logger_on_first_use=True,
        )

def log_agent_execution(
    agent_name: str,
    business_id: str,
    execution_time_ms: int,
    success: bool,
    output_fields: Optional[List[str]] = None,
    error_message: Optional[str] = None
):
    """Log agent execution metrics"""
    extra_data = {
        "agent_name": agent_name,
        "business_id": business_id,
        "execution_time_ms": execution_time_ms,
        "success": success
    }

    if output_fields is not None:
        extra_data["output_fields"] = output_fields

    if error_message:
        extra_data["error_message"] = error_message
        logger.error("Agent execution failed", **extra_data)
    else:
        logger.info("Agent execution completed", **extra_data)

def log_staleness_event(
    business_id: str,
    event_type: str,
    fields: List[str],
    reason: Optional[str] = None,
    additional_context: Optional[Dict[str, Any]] = None
):
    """Log staleness bookkeeping outcomes"""
    extra_data = {
        "business_id": business_id,
        "event_type": event_type,
        "fields": fields
    }

    if reason:
        extra_data["reason"] = reason

    if additional_context:
        extra_data.update(additional_context)

    logger.info("Staleness event", **extra_data)
