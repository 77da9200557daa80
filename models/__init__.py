"""
Models package initialization.
"""

from .base import Base, BaseModel
from .tree_node import TreeNode

__all__ = [
    "Base",
    "BaseModel",
    "TreeNode",
]
