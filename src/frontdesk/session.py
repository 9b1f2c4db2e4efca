import threading
from dataclasses import dataclass, field
from enum import Enum


class Role(Enum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


@dataclass
class ConversationMessage:
    role: Role
    content: str
    timestamp: float

    # Tool-call metadata
    tool_call_id: str | None = None
    tool_name: str | None = None
    tool_result: str | None = None
    tool_calls: list[dict] | None = None


@dataclass
class CallSession:
    call_id: str
    tenant_id: str
    caller_phone: str | None = None

    # From the media stream / caller lookup
    stream_id: str = ""
    caller_name: str = ""

    # Conversation
    conversation_history: list[ConversationMessage] = field(default_factory=list)
    current_intent: str = ""
    tools_enabled: bool = False

    # Audio coordination
    is_playing: bool = False
    is_speaking: bool = False
    interrupt_requested: bool = False

    # Timing (epoch seconds)
    start_time: float = 0.0
    last_activity_time: float = 0.0

    # Guards every mutation of this session; owned by SessionRegistry.
    lock: threading.RLock = field(
        default_factory=threading.RLock, repr=False, compare=False
    )
