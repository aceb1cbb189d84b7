"""HTTP API for the job hub (FastAPI).

``create_app(hub)`` builds the application; every ``/api`` route requires
the configured bearer token.
"""

from jobhub.api.app import create_app

__all__ = ["create_app"]
