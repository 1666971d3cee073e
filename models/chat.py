# models/chat.py
from datetime import datetime

from models.base import CamelModel


class ChatMessage(CamelModel):
    id: int
    listing_id: int
    sender_id: int
    message: str
    created_at: datetime | None = None
