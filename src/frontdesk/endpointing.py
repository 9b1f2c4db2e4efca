"""Decide when a caller has finished speaking.

Layered endpointing: what the agent last asked for, then filler words, then
punctuation and trailing numbers in the transcript.
"""

import re
from enum import Enum

# Context-aware waits (the agent just asked for something)
STRUCTURED_DATA_WAIT_MS = 3000
DATE_COLLECTION_WAIT_MS = 2000

FILLER_WAIT_MS = 2000

# Transcript heuristics
ON_PUNCTUATION_MS = 400
ON_NUMBER_MS = 1000
ON_NO_PUNCTUATION_MS = 1500

INCOMPLETE_WAIT_MS = 1500
MAX_ACCUMULATION_MS = 12000
MIN_TRANSCRIPT_LENGTH = 3
BARGE_IN_TRANSCRIPT_WAIT_MS = 350

# Backchannel while the agent talks; not an interruption.
ACKNOWLEDGEMENT_PHRASES = frozenset({
    "yeah", "yes", "yep", "yup", "okay", "ok", "right",
    "uh-huh", "uh huh", "mm-hmm", "mm hmm", "mmhmm", "mhm",
    "got it", "sure", "alright", "correct", "that's right",
})

_TRAILING_FILLER = re.compile(r"\b(u+m+|u+h+|h+m+|m+m+|a+h+|e+r+|you know)\s*$", re.IGNORECASE)
_ONLY_FILLERS = re.compile(
    r"^(\s*(u+m+|u+h+|h+m+|m+m+|a+h+|e+r+|you know|like|well|so|yeah|ok)\s*)+$",
    re.IGNORECASE,
)
_ENDS_WITH_PUNCTUATION = re.compile(r"[.!?]$")
_ENDS_WITH_NUMBER = re.compile(r"(\d|\b(one|two|three|four|five|six|seven|eight|nine|ten))$", re.IGNORECASE)

DEFINITELY_COMPLETE = tuple(re.compile(p, re.IGNORECASE) for p in (
    r"^(yes|yeah|yep|yup|no|nope|nah|okay|ok|sure|thanks|thank you|bye|goodbye|hello|hi|hey)$",
    r"^(that's all|that's it|nothing else|no thanks|yes please|no thank you)$",
    r"^(one|two|three|four|five|six|seven|eight|nine|ten|\d+)\s*"
    r"(night|nights|day|days|person|people|guest|guests)?$",
    r"^(tomorrow|today|tonight|monday|tuesday|wednesday|thursday|friday|saturday|sunday)$",
    r"^(just me|just one|for one|for two)$",
))

DEFINITELY_INCOMPLETE = tuple(re.compile(p, re.IGNORECASE) for p in (
    r"\b(i want to|i need to|i'd like to|can you|could you|would you|let me|i'm going to)$",
    r"\b(and|but|or|so|because|if|when|then|also)$",
    r"\b(the|a|an|my|your|this|that|for|from|to|in|on|at|with)$",
    r"\b(i|we|they|he|she|it|you)$",
    r"\b(like|well)$",
    r"\b(some|any|few|more|less)$",
))

_ASKED_FOR_NAME = re.compile(r"(name|spell|spelling)", re.IGNORECASE)
_ASKED_FOR_CONTACT = re.compile(r"(phone|number|address|zip|email)", re.IGNORECASE)
_ASKED_FOR_DATE = re.compile(r"(date|when|check.?in|check.?out)", re.IGNORECASE)


class Completeness(Enum):
    COMPLETE = "complete"
    INCOMPLETE = "incomplete"
    FILLER = "filler"
    MAYBE = "maybe"


def is_acknowledgement(text: str) -> bool:
    return text.strip().lower().rstrip(".!?,") in ACKNOWLEDGEMENT_PHRASES


def check_utterance_completeness(text: str) -> Completeness:
    """Classify an accumulated transcript.

    complete   -> process now
    incomplete -> caller is mid-thought, wait INCOMPLETE_WAIT_MS
    filler     -> caller is thinking, wait FILLER_WAIT_MS
    maybe      -> wait the endpointing timeout, then process
    """
    trimmed = text.strip()
    lower = trimmed.lower()

    if len(trimmed) < 4:
        return Completeness.INCOMPLETE

    if _TRAILING_FILLER.search(lower) or _ONLY_FILLERS.match(lower):
        return Completeness.FILLER

    if _ENDS_WITH_PUNCTUATION.search(trimmed):
        return Completeness.COMPLETE

    if any(p.search(lower) for p in DEFINITELY_COMPLETE):
        return Completeness.COMPLETE

    if any(p.search(lower) for p in DEFINITELY_INCOMPLETE):
        return Completeness.INCOMPLETE

    if len(trimmed.split()) >= 4:
        # "Three days. For three" -- a short fragment after the last sentence
        last_end = max(trimmed.rfind("."), trimmed.rfind("!"), trimmed.rfind("?"))
        if 0 < last_end < len(trimmed) - 1:
            fragment = trimmed[last_end + 1:].strip()
            if fragment and len(fragment.split()) <= 3:
                return Completeness.MAYBE
        return Completeness.COMPLETE

    return Completeness.MAYBE


def endpointing_timeout_ms(text: str, last_assistant: str | None = None) -> int:
    """How long to wait in silence before treating ``text`` as finished."""
    if last_assistant:
        if _ASKED_FOR_NAME.search(last_assistant) or _ASKED_FOR_CONTACT.search(last_assistant):
            return STRUCTURED_DATA_WAIT_MS
        if _ASKED_FOR_DATE.search(last_assistant):
            return DATE_COLLECTION_WAIT_MS

    trimmed = text.strip()
    if _TRAILING_FILLER.search(trimmed.lower()):
        return FILLER_WAIT_MS
    if _ENDS_WITH_PUNCTUATION.search(trimmed):
        return ON_PUNCTUATION_MS
    if _ENDS_WITH_NUMBER.search(trimmed):
        return ON_NUMBER_MS
    return ON_NO_PUNCTUATION_MS


def completeness_wait_ms(
    completeness: Completeness, text: str, last_assistant: str | None = None
) -> int:
    if completeness is Completeness.FILLER:
        return FILLER_WAIT_MS
    if completeness is Completeness.INCOMPLETE:
        return INCOMPLETE_WAIT_MS
    if completeness is Completeness.MAYBE:
        return endpointing_timeout_ms(text, last_assistant)
    return 0
