"""CI Matrix Orchestrator.

Decides, from a repository event, whether a cross-platform test run should be
launched and which matrix jobs it consists of, then tracks that run to a
terminal state:
- trigger rules and matrix loaded once from a workflow definition
- configuration loaded from `.env`
- structured logging
"""

__version__ = "0.1.0"

from ci_matrix_orchestrator.orchestrator.config import OrchestratorSettings

__all__ = ["__version__", "OrchestratorSettings"]
