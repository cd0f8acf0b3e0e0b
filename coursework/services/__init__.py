"""Service layer - domain rules and abstractions for external providers."""

from coursework.services.generation import ContentGenerator, get_content_generator
from coursework.services.outbox import Outbox, get_outbox

__all__ = [
    "ContentGenerator",
    "Outbox",
    "get_content_generator",
    "get_outbox",
]
