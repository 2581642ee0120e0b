"""
Conversation Engine - Intent Detector
=====================================

Stateless keyword classifier mapping raw user text to a routing target.

Order of evaluation:
1. Escalation markers win outright (human, confidence 0.95, high urgency).
2. Each role counts case-insensitive substring hits on its keyword list.
3. The role with the most hits wins; ties go to the earlier role in
   ROLE_KEYWORDS order.
4. Zero hits everywhere → ROUTER (undetermined), confidence 0.4.
"""

import logging
from typing import List, NamedTuple, Optional, Tuple

from conversation_engine.models import AgentRole, DetectedIntent, Urgency

logger = logging.getLogger(__name__)

MAX_CONFIDENCE = 0.95
ESCALATION_CONFIDENCE = 0.95
UNDETERMINED_CONFIDENCE = 0.4

# Matched against the original text (case-sensitive)
ESCALATION_MARKERS_EXACT = ("URGENT", "!!!")
# Matched against the lowercased text
ESCALATION_MARKERS = ("angry", "very upset", "unacceptable", "lost customer", "cancel")

URGENCY_MARKERS = ("asap", "immediately", "urgent", "down")
# Urgent messages with fewer hits than this go to a human
HUMAN_MATCH_THRESHOLD = 2


class RoleKeywords(NamedTuple):
    role: AgentRole
    base_confidence: float
    per_match_bonus: float
    keywords: Tuple[str, ...]


ROLE_KEYWORDS: List[RoleKeywords] = [
    RoleKeywords(AgentRole.SUPPORT, 0.6, 0.1, (
        "bug", "error", "not working", "doesn't work", "issue", "problem",
        "broken", "crash", "failed", "timeout", "how to", "how do i",
        "help me", "confused", "not sure", "api error", "database",
        "connection", "authentication",
    )),
    RoleKeywords(AgentRole.SDR, 0.5, 0.12, (
        "interested in", "tell me about", "pricing", "plans", "demo", "trial",
        "sign up", "how much", "what does it do", "features", "comparison",
        "alternative", "competitor", "first time", "new customer",
        "free trial", "schedule a call",
    )),
    RoleKeywords(AgentRole.AE, 0.5, 0.12, (
        "deal", "contract", "negotiate", "discount", "pricing flexibility",
        "quote", "proposal", "msa", "terms", "enterprise", "volume discount",
        "annual commitment", "custom plan", "special pricing", "budget",
    )),
    RoleKeywords(AgentRole.CSM, 0.5, 0.12, (
        "expand", "upgrade", "add more", "more seats", "scale", "integration",
        "feature request", "custom workflow", "training", "onboarding",
        "adoption", "best practices", "growth", "usage analytics", "roi",
        "value realization",
    )),
]


class IntentDetector:
    """Keyword-scoring intent classifier. Pure: same text, same result."""

    def __init__(self, role_keywords: Optional[List[RoleKeywords]] = None):
        self.role_keywords = role_keywords if role_keywords is not None else ROLE_KEYWORDS

    def detect(self, text: str) -> DetectedIntent:
        text = text or ""
        lowered = text.lower()

        if self.has_escalation_marker(text):
            return DetectedIntent(
                primary_agent=AgentRole.HUMAN,
                confidence=ESCALATION_CONFIDENCE,
                reason="Escalation signal detected - high urgency",
                urgency=Urgency.HIGH,
                requires_human=True,
            )

        scores = [
            (entry, sum(1 for kw in entry.keywords if kw in lowered))
            for entry in self.role_keywords
        ]
        # sorted() is stable, so equal counts keep list order
        ranked = sorted(scores, key=lambda pair: pair[1], reverse=True)
        top, top_count = ranked[0]

        if top_count == 0:
            return DetectedIntent(
                primary_agent=AgentRole.ROUTER,
                confidence=UNDETERMINED_CONFIDENCE,
                reason="Ambiguous intent - router will analyze context",
                urgency=Urgency.MEDIUM,
            )

        urgency = Urgency.HIGH if any(m in lowered for m in URGENCY_MARKERS) else Urgency.MEDIUM
        confidence = min(MAX_CONFIDENCE, top.base_confidence + top_count * top.per_match_bonus)
        runner_up, runner_up_count = ranked[1] if len(ranked) > 1 else (None, 0)

        intent = DetectedIntent(
            primary_agent=top.role,
            confidence=max(0.0, confidence),
            reason=f"Detected {top.role.value} keywords ({top_count} matches)",
            secondary_agent=runner_up.role if runner_up_count > 0 else None,
            urgency=urgency,
            requires_human=urgency == Urgency.HIGH and top_count < HUMAN_MATCH_THRESHOLD,
            match_count=top_count,
        )
        logger.debug(f"[IntentDetector] {intent.primary_agent.value} ({intent.confidence:.2f}): {intent.reason}")
        return intent

    @staticmethod
    def has_escalation_marker(text: str) -> bool:
        lowered = text.lower()
        return any(m in text for m in ESCALATION_MARKERS_EXACT) or any(
            m in lowered for m in ESCALATION_MARKERS
        )
