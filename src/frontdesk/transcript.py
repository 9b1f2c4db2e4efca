from frontdesk.intent import GENERAL_INTENT, INTENT_CATEGORIES
from frontdesk.session import CallSession, ConversationMessage, Role


def to_plain_text(history: list[ConversationMessage]) -> str:
    """Convert conversation history to plain text.

    Caller lines prefixed with "Customer:", agent lines with "Agent:",
    tool results shown as "[Tool: name]". System prompts are left out.
    """
    if not history:
        return ""

    lines = []
    for message in history:
        if message.role is Role.USER:
            lines.append(f"Customer: {message.content}")
        elif message.role is Role.ASSISTANT:
            lines.append(f"Agent: {message.content}")
        elif message.role is Role.TOOL:
            lines.append(f"[Tool: {message.tool_name}]")
    return "\n".join(lines)


def to_llm_messages(history: list[ConversationMessage]) -> list[dict]:
    """Convert conversation history to chat-completion style message dicts."""
    messages = []
    for message in history:
        entry = {"role": message.role.value, "content": message.content}
        if message.role is Role.TOOL and message.tool_call_id:
            entry["tool_call_id"] = message.tool_call_id
        if message.role is Role.ASSISTANT and message.tool_calls:
            entry["tool_calls"] = message.tool_calls
        messages.append(entry)
    return messages


def detect_intents(history: list[ConversationMessage]) -> list[str]:
    """Every intent category mentioned by the caller, in category order."""
    text = " ".join(
        m.content for m in history if m.role is Role.USER
    ).lower()

    intents = [label for label, pattern in INTENT_CATEGORIES if pattern.search(text)]
    return intents or [GENERAL_INTENT]


def summarize_session(session: CallSession, end_time: float) -> dict:
    """Build the end-of-call summary emitted when a session is removed."""
    history = session.conversation_history
    return {
        "call_id": session.call_id,
        "tenant_id": session.tenant_id,
        "caller_phone": session.caller_phone or "",
        "duration_s": round(end_time - session.start_time, 1),
        "message_count": len(history),
        "user_turns": sum(1 for m in history if m.role is Role.USER),
        "intents": detect_intents(history),
        "last_intent": session.current_intent,
    }
