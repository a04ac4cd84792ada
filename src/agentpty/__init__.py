"""agentpty — managed pseudo-terminal sessions exposed to an LLM agent as tools."""

__version__ = "0.1.0"
