from __future__ import annotations


class ConfigurationError(ValueError):
    """The workflow definition is invalid.

    Raised only while loading; an orchestrator never evaluates events against a
    definition that failed validation.
    """
