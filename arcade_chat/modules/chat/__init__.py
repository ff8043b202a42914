"""Chat module: message store, realtime change feed and delivery sessions."""

from arcade_chat.modules.chat.models import DirectMessage, GlobalMessage
from arcade_chat.modules.chat.schemas import (
    DELETED_PLACEHOLDER,
    GLOBAL_MESSAGES_TABLE,
    ChangeEvent,
    ChangeEventType,
    MessageRecord,
    RenderedMessage,
)
from arcade_chat.modules.chat.repository import DirectMessageRepository, GlobalMessageRepository
from arcade_chat.modules.chat.realtime import (
    ChangeFeed,
    ChangeFeedDisconnected,
    ChangeFeedError,
    LocalChangeFeed,
    RedisChangeFeed,
    create_change_feed,
)
from arcade_chat.modules.chat.delivery import (
    ChatDeliverySession,
    MetadataCache,
    ReconnectPolicy,
    SessionState,
    SqlStoreReader,
    StoreReader,
)
from arcade_chat.modules.chat.service import (
    ChatPermissionError,
    ChatService,
    ChatServiceError,
    MessageBlockedError,
    MessageNotFoundError,
    MessageValidationError,
    UserSuspendedError,
)
from arcade_chat.modules.chat.router import router

__all__ = [
    # Models
    "DirectMessage",
    "GlobalMessage",
    # Schemas
    "DELETED_PLACEHOLDER",
    "GLOBAL_MESSAGES_TABLE",
    "ChangeEvent",
    "ChangeEventType",
    "MessageRecord",
    "RenderedMessage",
    # Repository
    "DirectMessageRepository",
    "GlobalMessageRepository",
    # Realtime
    "ChangeFeed",
    "ChangeFeedDisconnected",
    "ChangeFeedError",
    "LocalChangeFeed",
    "RedisChangeFeed",
    "create_change_feed",
    # Delivery
    "ChatDeliverySession",
    "MetadataCache",
    "ReconnectPolicy",
    "SessionState",
    "SqlStoreReader",
    "StoreReader",
    # Service
    "ChatPermissionError",
    "ChatService",
    "ChatServiceError",
    "MessageBlockedError",
    "MessageNotFoundError",
    "MessageValidationError",
    "UserSuspendedError",
    # Router
    "router",
]
