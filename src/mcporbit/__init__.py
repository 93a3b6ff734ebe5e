# mcporbit - One MCP server registry for every AI coding client
# ABOUTME: Version information
__version__ = "0.1.0"

# ABOUTME: Export core data models and the fingerprint function
from mcporbit.fingerprint import calculate_fingerprint
from mcporbit.models import (
    Binding,
    Candidate,
    ClientAdapter,
    ClientType,
    HttpTransport,
    Server,
    ServerConfig,
    StdioTransport,
)

# ABOUTME: Export pipeline entry points
from mcporbit.config import Settings, load_settings
from mcporbit.platforms import get_adapter, get_all_adapters
from mcporbit.rebuild import RebuildResult, rebuild_registry
from mcporbit.registry import RegistryService
from mcporbit.store import Store

__all__ = [
    "__version__",
    "Binding",
    "Candidate",
    "ClientAdapter",
    "ClientType",
    "HttpTransport",
    "Server",
    "ServerConfig",
    "StdioTransport",
    "calculate_fingerprint",
    "Settings",
    "load_settings",
    "get_adapter",
    "get_all_adapters",
    "RebuildResult",
    "rebuild_registry",
    "RegistryService",
    "Store",
]
