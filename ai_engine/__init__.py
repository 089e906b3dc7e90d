"""AI Engine Gateway — multi-provider routing for AI capabilities."""

__version__ = "2.0.0"
