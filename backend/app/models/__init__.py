# Re-export Beanie documents
from .chat import Chat, Message
