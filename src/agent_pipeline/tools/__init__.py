"""Stores exposed to agents as tools."""

from agent_pipeline.tools.scratchpad import ScratchpadEntry, ScratchpadStorage

__all__ = ["ScratchpadEntry", "ScratchpadStorage"]
