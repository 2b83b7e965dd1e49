"""Poll an n8n instance and emit workflows that changed since the last check."""

__version__ = "1.0.0"

from workflow_watch.auth import AuthConfig, build_auth_headers  # noqa: E402
from workflow_watch.client import WorkflowClient, WorkflowListing  # noqa: E402
from workflow_watch.config import WatchConfig, load_config, watch_config_from_dict  # noqa: E402
from workflow_watch.diff import EPOCH_ISO, parse_timestamp, should_emit  # noqa: E402
from workflow_watch.errors import (  # noqa: E402
    ConfigurationError,
    EmissionError,
    SourceError,
    StateError,
    WatchError,
)
from workflow_watch.sinks import (  # noqa: E402
    CallbackSink,
    EmissionSink,
    JsonLinesFileSink,
    StreamSink,
    WebhookSink,
    build_sink,
)
from workflow_watch.state import (  # noqa: E402
    JsonFileWatermarkStore,
    MemoryWatermarkStore,
    WatermarkState,
    WatermarkStore,
)
from workflow_watch.trigger import CycleResult, EnrichmentResult, WorkflowUpdatedTrigger  # noqa: E402

__all__ = [
    "__version__",
    # Auth
    "AuthConfig",
    "build_auth_headers",
    # Client
    "WorkflowClient",
    "WorkflowListing",
    # Config
    "WatchConfig",
    "load_config",
    "watch_config_from_dict",
    # Change detection
    "EPOCH_ISO",
    "parse_timestamp",
    "should_emit",
    # Errors
    "ConfigurationError",
    "EmissionError",
    "SourceError",
    "StateError",
    "WatchError",
    # Sinks
    "CallbackSink",
    "EmissionSink",
    "JsonLinesFileSink",
    "StreamSink",
    "WebhookSink",
    "build_sink",
    # State
    "JsonFileWatermarkStore",
    "MemoryWatermarkStore",
    "WatermarkState",
    "WatermarkStore",
    # Trigger
    "CycleResult",
    "EnrichmentResult",
    "WorkflowUpdatedTrigger",
]
