# ruff: noqa: F403, F401
"""Schemas package initialization."""

from .base import *
from .messenger import *

# Rebuild models to resolve postponed annotations
Chat.model_rebuild()
Message.model_rebuild()
DraftMessage.model_rebuild()
