from .errors import (
    CredentialsNotProvided,
    InvalidTransition,
    MalformedMessageError,
    MarketChatError,
    RemoteServiceError,
    UnexpectedResponseError,
)
from .gateway import MessageFilter, RemoteMessageGateway, SupabaseGateway
from .models import Conversation, ListingSummary, Message, Notice, Profile, StorageTier
from .service import ChatService
from .storage import LocalMessageStore, MemoryKeyValueStorage, SQLiteKeyValueStorage

__version__ = "1.0.0"
