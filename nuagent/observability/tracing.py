import os
from typing import Any

from opentelemetry import trace

# Max span attribute value length
MAX_ATTR_LENGTH = 4096

SERVICE_VERSION = "0.1.0"


def _get_service_name(component: str | None = None) -> str:
    """Resolve the service name, optionally suffixed with a component."""
    base = os.getenv("OTEL_SERVICE_NAME", "nuagent")
    return f"{base}.{component}" if component else base


def truncate(val: Any, max_len: int = MAX_ATTR_LENGTH) -> str:
    """Truncate string to max length."""
    str_val = str(val)
    if len(str_val) <= max_len:
        return str_val
    return str_val[: max_len - 3] + "..."


def get_tracer(component: str | None = None):
    """Get a tracer for a component.

    Spans are no-ops until the host application installs a tracer provider.
    """
    return trace.get_tracer(_get_service_name(component), SERVICE_VERSION)
