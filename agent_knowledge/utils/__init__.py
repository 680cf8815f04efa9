"""Utility modules for the agent knowledge engine."""

from .ids import chunk_id, content_hash, string_to_uuid
from .logging import (
    AgentContextFilter,
    DevelopmentFormatter,
    JSONFormatter,
    SensitiveDataFilter,
    Timer,
    clear_agent_context,
    redact_sensitive_data,
    set_agent_context,
    setup_logging,
    timed,
)

__all__ = [
    # Identifiers
    "chunk_id",
    "content_hash",
    "string_to_uuid",
    # Logging utilities
    "AgentContextFilter",
    "DevelopmentFormatter",
    "JSONFormatter",
    "SensitiveDataFilter",
    "Timer",
    "clear_agent_context",
    "redact_sensitive_data",
    "set_agent_context",
    "setup_logging",
    "timed",
]
