"""REST API for the CI matrix orchestrator.

This package is optional; the CLI does not depend on it.
"""

from ci_matrix_orchestrator.server.app import create_app

__all__ = ["create_app"]
