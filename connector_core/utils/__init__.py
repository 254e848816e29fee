"""Utility modules for the connector core."""

from .backoff_utils import calculate_exponential_backoff, next_retry_time
from .encryption_utils import CredentialCipher, generate_master_key
from .hash_utils import calculate_item_hash, compare_snapshots, get_nested_value
from .json_utils import dumps, loads, to_jsonable
from .keyed_lock import KeyedLock
from .logger import (
    AzureQueueHandler,
    ContextAwareLogger,
    CorrelationContextFilter,
    configure_logging,
    get_logger,
)
from .redaction_utils import redact_headers, redact_payload
from .template_utils import OMIT, CompiledTemplate, TemplateRenderer, compile_template

__all__ = [
    # Retry
    "calculate_exponential_backoff",
    "next_retry_time",
    # Encryption
    "CredentialCipher",
    "generate_master_key",
    # Hashing
    "calculate_item_hash",
    "compare_snapshots",
    "get_nested_value",
    # JSON
    "dumps",
    "loads",
    "to_jsonable",
    # Concurrency
    "KeyedLock",
    # Logging
    "AzureQueueHandler",
    "ContextAwareLogger",
    "CorrelationContextFilter",
    "configure_logging",
    "get_logger",
    # Redaction
    "redact_headers",
    "redact_payload",
    # Templates
    "OMIT",
    "CompiledTemplate",
    "TemplateRenderer",
    "compile_template",
]
