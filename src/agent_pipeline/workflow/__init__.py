"""Workflow execution: definitions, the dependency graph, transformers and the engine.

Import from the submodules directly; this package deliberately re-exports
nothing so the agent layer can depend on ``workflow.errors`` and
``workflow.events`` without pulling in the engine.
"""

__all__: list[str] = []
