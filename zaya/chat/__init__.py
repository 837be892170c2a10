"""Conversation state: bounded per-session buffers and their registry."""

from zaya.chat.buffer import ConversationBuffer, DialogMessage, Message, message_cost
from zaya.chat.registry import SessionRegistry

__all__ = [
    "ConversationBuffer",
    "DialogMessage",
    "Message",
    "SessionRegistry",
    "message_cost",
]
