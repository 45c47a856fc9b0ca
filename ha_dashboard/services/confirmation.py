import hashlib
import json
import re
from dataclasses import dataclass, replace
from typing import Any

from ha_dashboard.models.schemas import ConversationMessage, ToolInvocation


AFFIRMATIVE_PHRASES = (
    "yes",
    "yes please",
    "yep",
    "yeah",
    "y",
    "sure",
    "ok",
    "okay",
    "confirm",
    "confirmed",
    "i confirm",
    "go ahead",
    "do it",
    "please do",
    "proceed",
    "sounds good",
    "correct",
    "that's right",
    "affirmative",
)

_PUNCTUATION = re.compile(r"[^\w\s']")
_VOCABULARY = frozenset(word for phrase in AFFIRMATIVE_PHRASES for word in phrase.split())
_APPROVING_WORDS = frozenset({"yes", "yep", "yeah", "y", "sure", "ok", "okay", "confirm", "confirmed", "proceed", "affirmative"})


def _normalize(text: str) -> str:
    return " ".join(_PUNCTUATION.sub(" ", text.lower()).split())


def is_affirmative(text: str) -> bool:
    """True for short replies like "Yes, go ahead!" that approve the pending action."""
    normalized = _normalize(text)
    if not normalized:
        return False
    if normalized in AFFIRMATIVE_PHRASES:
        return True
    # "yes go ahead", "ok do it": every word belongs to an affirmative phrase.
    words = set(normalized.split())
    return len(words) <= 6 and words <= _VOCABULARY and bool(words & _APPROVING_WORDS)


def action_fingerprint(invocation: ToolInvocation) -> str:
    canonical = json.dumps(
        {"tool": invocation.tool_name, "arguments": invocation.arguments},
        sort_keys=True,
        ensure_ascii=False,
        separators=(",", ":"),
    )
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class ConfirmationGate:
    """Decides whether a mutating tool call may run on this turn.

    A turn is confirmed when the user's last message approves the assistant
    message right before it. Only targets named in that assistant message
    (entity ids, ``domain.service`` or automation ids) are unlocked, and only
    for the first tool round; ``consumed()`` closes the gate afterwards.
    """

    enabled: bool
    confirmed: bool
    proposal: str = ""

    @classmethod
    def from_history(cls, messages: list[ConversationMessage], *, enabled: bool) -> "ConfirmationGate":
        confirmed = (
            len(messages) >= 2
            and messages[-1].role == "user"
            and messages[-2].role == "assistant"
            and is_affirmative(messages[-1].content)
        )
        return cls(enabled=enabled, confirmed=confirmed, proposal=messages[-2].content if confirmed else "")

    def consumed(self) -> "ConfirmationGate":
        return replace(self, confirmed=False, proposal="")

    def proposes(self, target: str) -> bool:
        if not target:
            return False
        # Whole-token match: light.kitchen must not unlock light.kitchen_island.
        pattern = rf"(?<![\w.]){re.escape(target)}(?!\w)"
        return re.search(pattern, self.proposal, re.IGNORECASE) is not None

    def refusal(self, invocation: ToolInvocation, *, target: str | None = None) -> dict[str, Any] | None:
        if not self.enabled:
            return None
        if self.confirmed and (target is None or self.proposes(target)):
            return None

        if self.confirmed:
            message = (
                f"This action was not executed: {target} was not part of the action the user confirmed. "
                "Describe it and ask the user to confirm it separately."
            )
        else:
            message = (
                "This action was not executed. Describe exactly what you are about to do and "
                "ask the user to confirm; run it only after they reply yes."
            )
        return {
            "success": False,
            "error": "confirmation_required",
            "message": message,
            "fingerprint": action_fingerprint(invocation)[:16],
        }
