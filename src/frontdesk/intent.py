"""Per-utterance routing between the tool-calling LLM path and chat-only.

The pattern tables below are data: ordered ``IntentRule`` rows whose weights
are summed by ``score_intent``.  ``needs_tool_call`` compares the sum against
``TOOL_CALL_THRESHOLD``.  ``detect_intent`` is a separate first-match labeller
used only for analytics.
"""

import logging
import re
from dataclasses import asdict, dataclass, field

logger = logging.getLogger(__name__)

TOOL_CALL_THRESHOLD = 5

# Short, low-signal utterances ("yes", "okay sure") lean towards chat-only.
SHORT_UTTERANCE_WORDS = 3
SHORT_UTTERANCE_MIN_SCORE = 3
SHORT_UTTERANCE_PENALTY = 2

TRIGGER_TEXT_LIMIT = 30


@dataclass(frozen=True)
class IntentRule:
    label: str
    pattern: re.Pattern
    weight: int

    def search(self, text: str) -> re.Match | None:
        return self.pattern.search(text)


def _rule(label: str, pattern: str, weight: int) -> IntentRule:
    return IntentRule(label, re.compile(pattern, re.IGNORECASE), weight)


HIGH_CONFIDENCE_RULES: tuple[IntentRule, ...] = (
    # Escalation and call control. Weighted to outrank every chat-only rule combined.
    _rule("transfer", r"\btransfer (?:me|my call|the call|this call)\b", 20),
    _rule(
        "human",
        r"\b(?:speak|talk) (?:to|with) (?:a |an |the |your )?"
        r"(?:human|person|manager|representative|operator|someone|somebody|agent)\b",
        20,
    ),
    _rule("real_person", r"\b(?:real|actual|live) (?:person|human)\b", 20),
    _rule("hang_up", r"\b(?:hang up|end (?:the|this) call)\b", 20),
    # Booking and orders. An action verb outweighs a greeting plus a thanks.
    _rule("booking", r"\b(?:book|schedule|reserve)\b", 10),
    _rule("booking_noun", r"\b(?:appointments?|reservations?|bookings?)\b", 5),
    _rule("modification", r"\b(?:cancel|reschedule)\b", 10),
    _rule(
        "change_booking",
        r"\b(?:change|modify|move) (?:my|the|our) (?:appointment|booking|reservation|order)\b",
        10,
    ),
    _rule(
        "order",
        r"\b(?:(?:to|can i|i'll|i will|i'd like to|i want to) order|place an order"
        r"|(?:an|my|the) order|for (?:pickup|delivery))\b",
        10,
    ),
    _rule(
        "product",
        r"\b(?:pizzas?|pepperoni|margherita|calzones?|wings|suites?|king room|double room)\b",
        4,
    ),
    # Availability
    _rule("availability", r"\b(?:available|availability|openings?|free slots?|time slots?)\b", 5),
    _rule("when_can", r"\bwhen (?:can|could|do|are) (?:i|we|you)\b", 4),
    # Dates and times
    _rule(
        "day",
        r"\b(?:today|tomorrow|tonight|monday|tuesday|wednesday|thursday|friday|saturday|sunday)\b",
        3,
    ),
    _rule("relative_date", r"\b(?:next|this) (?:week|weekend|month)\b", 3),
    _rule(
        "clock_time",
        r"\b\d{1,2}(?::\d{2})?\s*(?:am|pm|a\.m\.|p\.m\.)(?![a-z])|\b\d{1,2}:\d{2}\b",
        3,
    ),
)

LOW_CONFIDENCE_RULES: tuple[IntentRule, ...] = (
    _rule("affirmative", r"^\W*(?:yes|yeah|yep|yup|sure|okay|ok|correct|right)\b", 1),
    _rule("negative", r"^\W*(?:no|nope|nah)\b", 1),
    _rule("bare_thanks", r"^\W*(?:thanks|thank you)\W*$", 1),
    _rule("pricing", r"\b(?:prices?|costs?|how much)\b", 2),
    _rule(
        "party_size",
        r"\b(?:\d+|one|two|three|four|five|six|seven|eight|nine|ten) "
        r"(?:people|persons|guests|nights|adults)\b",
        2,
    ),
    _rule("contact_details", r"\b(?:my name is|my (?:phone )?number is|my email is)\b", 2),
)

CHAT_ONLY_RULES: tuple[IntentRule, ...] = (
    _rule("greeting", r"^\W*(?:hi|hello|hey|good (?:morning|afternoon|evening))\b", -3),
    _rule("small_talk", r"\b(?:how are you|how's it going|what's up)\b", -2),
    _rule("thanks", r"\b(?:thank you|thanks|appreciate it)\b", -2),
    _rule("goodbye", r"\b(?:bye|goodbye|see you|take care)\b", -2),
    _rule(
        "about_agent",
        r"\b(?:who are you|what do you do|what can you help with|are you a robot"
        r"|tell me about yourself)\b",
        -2,
    ),
)

# First match wins; the order is part of the contract.
INTENT_CATEGORIES: tuple[tuple[str, re.Pattern], ...] = (
    ("order", re.compile(r"\b(?:order|delivery|deliver|pick ?up|carry ?out|take ?out)\b")),
    ("menu", re.compile(r"\b(?:menu|specials?|toppings?|dishes|vegetarian|vegan|gluten)\b")),
    ("booking", re.compile(r"\b(?:book|booking|schedule|appointment|reserve|reservation)\b")),
    ("availability", re.compile(r"\b(?:available|availability|openings?|free|slots?|when)\b")),
    ("modification", re.compile(r"\b(?:cancel|reschedule|change|modify)\b")),
    (
        "transfer",
        re.compile(r"\b(?:transfer|human|person|agent|speak to|talk to|manager|representative)\b"),
    ),
    ("support", re.compile(r"\b(?:help|support|problem|issue|complaint)\b")),
    ("pricing", re.compile(r"\b(?:prices?|costs?|how much|rates?)\b")),
    ("location", re.compile(r"\b(?:location|located|address|where|directions)\b")),
    ("hours", re.compile(r"\b(?:hours|open|close|closing)\b")),
)

GENERAL_INTENT = "general"


@dataclass
class IntentScore:
    score: int
    triggers: list[str] = field(default_factory=list)


@dataclass
class RouteDecision:
    needs_tools: bool
    intent: str
    score: int
    triggers: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return asdict(self)


def _describe(rule: IntentRule, match: re.Match) -> str:
    return f"{rule.label}({rule.weight:+d}): {match.group(0)[:TRIGGER_TEXT_LIMIT]}"


def score_intent(text: str) -> IntentScore:
    """Sum the weights of every rule that matches ``text``.

    High-confidence and chat-only matches are recorded in ``triggers`` for
    logging.  Utterances of three words or fewer that score below 3 take an
    extra penalty so bare confirmations stay on the chat-only path.
    """
    score = 0
    triggers: list[str] = []

    for rule in HIGH_CONFIDENCE_RULES:
        match = rule.search(text)
        if match:
            score += rule.weight
            triggers.append(_describe(rule, match))

    for rule in LOW_CONFIDENCE_RULES:
        if rule.search(text):
            score += rule.weight

    for rule in CHAT_ONLY_RULES:
        match = rule.search(text)
        if match:
            score += rule.weight
            triggers.append(_describe(rule, match))

    if len(text.split()) <= SHORT_UTTERANCE_WORDS and score < SHORT_UTTERANCE_MIN_SCORE:
        score -= SHORT_UTTERANCE_PENALTY

    return IntentScore(score=score, triggers=triggers)


def needs_tool_call(text: str) -> bool:
    result = score_intent(text)
    needed = result.score >= TOOL_CALL_THRESHOLD
    verdict = "Tool call needed" if needed else "Chat only"
    logger.debug(f"{verdict} for {text[:50]!r} (score={result.score}, triggers={result.triggers})")
    return needed


def detect_intent(text: str) -> str:
    """Coarse intent label for analytics. Never used to gate behaviour."""
    lower = text.lower()
    for label, pattern in INTENT_CATEGORIES:
        if pattern.search(lower):
            return label
    return GENERAL_INTENT


def route_utterance(text: str) -> RouteDecision:
    """Score and label one finalized utterance for the orchestration layer."""
    result = score_intent(text)
    decision = RouteDecision(
        needs_tools=result.score >= TOOL_CALL_THRESHOLD,
        intent=detect_intent(text),
        score=result.score,
        triggers=result.triggers,
    )
    route = "Tools" if decision.needs_tools else "Chat only"
    logger.info(
        f"[{decision.intent}] {route} for {text[:50]!r} "
        f"(score={decision.score}, triggers={decision.triggers})"
    )
    return decision
