"""UI package for sqltabs.

Dialogs opened from the main window.
"""

__all__ = [
    "connection_dialog",
]
