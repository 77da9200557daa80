"""
Tree node model backing the hierarchical realtime store.
"""

from sqlalchemy import JSON, Column, String

from .base import BaseModel


class TreeNode(BaseModel):
    """
    One leaf of the hierarchical key-value tree.

    Objects are never stored whole: every nested mapping is flattened so each
    scalar (or list) value gets its own row, addressed by its full
    slash-delimited path (``companies/acme/chats/-Nx1/name``). Subtrees are
    read back with a prefix scan on ``path``.

    :ivar path: Full slash-delimited path of the leaf.
    :type path: str
    :ivar value: JSON-encoded leaf value (string, number, bool or list).
    :type value: Any
    """

    __tablename__ = "tree_nodes"

    path = Column(String(1024), nullable=False, unique=True, index=True)
    value = Column(JSON, nullable=False)
