"""
MindSync - Bidirectional sync between mindmap documents and git repositories.

Each mindmap branch is exported as a directory tree (one directory per node,
one markdown file per card) into its own git working directory, and can be
rebuilt from that tree after a pull. Operations are exposed through the
Model Context Protocol (MCP).
"""

__version__ = "1.0.0"
__author__ = "MindSync Team"
__description__ = "MindSync - mindmap to git filesystem synchronization"

from .server import main

__all__ = ["main"]
