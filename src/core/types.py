"""Type aliases shared across the telemetry pipeline and the API layer."""

from collections.abc import Callable
from typing import TypeAlias

# Shutdown hook returned by telemetry providers; receives the deadline in seconds
ShutdownFn: TypeAlias = Callable[[float], None]
