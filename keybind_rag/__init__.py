"""
Keybinding retrieval core - semantic search and incremental index sync for editor keybindings.
"""

__version__ = "0.1.0"
