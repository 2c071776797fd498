"""
Deferral agent for mandatory OS updates.

Prompts the console user to install pending updates or defer them, and
enforces installation once the deferral deadline passes.
"""
from deferagent.version import __version__

__all__ = ['__version__']
