"""
Chat formatting module.

Components:
    - template: Template and its presets
    - history: ChatHistory, Chat and Role
"""

from pyllm.chat.history import Chat, ChatHistory, Role
from pyllm.chat.template import PRESETS, Template

__all__ = [
    "Template",
    "PRESETS",
    "Chat",
    "ChatHistory",
    "Role",
]
