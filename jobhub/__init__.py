"""Job hub: an HTTP service that runs per-project pipelines on demand.

Each registered project is a directory holding a pipeline entry point.
Clients submit runs over an authenticated HTTP API; the hub admits them
against a per-project concurrency limit, supervises each run as an OS
subprocess, captures its output, and exposes status and output for
polling and cancellation.
"""

__version__ = "0.2.0"
__description__ = "Authenticated HTTP job hub for per-project pipelines"

from jobhub.config import HubConfig
from jobhub.core.hub import JobHub

__all__ = ["HubConfig", "JobHub", "__version__"]
