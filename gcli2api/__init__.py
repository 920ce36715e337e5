"""
gcli2api - OpenAI-compatible gateway in front of Gemini Code Assist
"""

from .config import settings, SERVICE_VERSION
from .helpers import debug_log, get_logger, configure_structlog
from .schemas import OpenAIRequest, ModelsResponse, Model, Message, ContentPart
from .credential_manager import CredentialManager, CredentialRecord

__version__ = SERVICE_VERSION

__all__ = [
    "settings",
    "debug_log",
    "get_logger",
    "configure_structlog",
    "OpenAIRequest",
    "ModelsResponse",
    "Model",
    "Message",
    "ContentPart",
    "CredentialManager",
    "CredentialRecord",
]
