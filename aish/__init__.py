"""aish: natural-language requests turned into supervised shell commands."""

from .cli import main

__version__ = "0.1.0"

__all__ = ["main", "__version__"]
