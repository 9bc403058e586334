"""
Response representation: encoders, the per-router encoder registry and
Accept-header negotiation.
"""

from .encoder import Encoder, JSONEncoder
from .negotiation import MediaRange, negotiate_content_type, parse_accept
from .registry import DEFAULT_TYPE, EncoderRegistry

__all__ = [
    "Encoder",
    "JSONEncoder",
    "EncoderRegistry",
    "DEFAULT_TYPE",
    "MediaRange",
    "negotiate_content_type",
    "parse_accept",
]
