"""CiderPress: copy Apple Voice Memos into a private local store."""
from .constants import VERSION

__version__ = VERSION
