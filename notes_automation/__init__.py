"""Notes Automation: resilient AppleScript execution for Apple Notes."""

from importlib.metadata import version

__version__ = version("notes-automation")

__all__ = ["__version__"]
