"""canvas-ask: context-aware questions over JSON Canvas boards."""

__version__ = "0.3.0"
