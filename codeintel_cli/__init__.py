"""CodeIntel CLI — dependency graphs, impact analysis and architecture health."""

__version__ = "0.3.0"
