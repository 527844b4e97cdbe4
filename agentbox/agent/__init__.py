"""Tool functions exposed to the coding agent."""
