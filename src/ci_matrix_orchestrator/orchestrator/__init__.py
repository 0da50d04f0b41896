"""Orchestrator entrypoints.

Trigger evaluation, local execution and run tracking live under
`ci_matrix_orchestrator.orchestrator.workflow`.
"""
