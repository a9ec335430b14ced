"""
Automatic continuation of assistant turns.

Assistants often stop to announce what they are about to do ("let me gather
the latest data...") instead of doing it. When a session opts in, such
turns are answered with an approval so the report gets produced without a
round trip to the user.
"""

import re
from abc import ABC, abstractmethod
from typing import List, Optional

from ..models import SessionPolicy


APPROVAL_REPLY = (
    "Yes, proceed immediately with all data collection and generate the complete report. "
    "Do not ask for any more confirmations."
)

_CONFIRMATION_PATTERNS = [
    r"should i search",
    r"may i search",
    r"can i search",
    r"let me search",
    r"i'll search",
    r"i will search",
    r"i need to gather",
    r"i'll need to collect",
    r"i need to collect",
    r"i'll gather",
    r"i will gather",
    r"let me gather",
    r"would you like me to",
    r"shall i proceed",
    r"allow me to",
    r"i'll proceed",
    r"i will proceed",
    r"to ensure accuracy",
    r"to gather.*data",
    r"i need.*real.*time.*data",
    r"comprehensive.*data",
    r"i'll create.*report",
    r"i will create.*report",
    r"let me create",
    r"i'll generate",
    r"i will generate",
    r"to provide.*accurate",
    r"i'll analyze",
    r"i will analyze",
    r"let me analyze",
    r"i'll compile",
    r"i will compile",
    r"i'll look up",
    r"i will look up",
    r"let me look",
    r"i'll fetch",
    r"i will fetch",
    r"to get.*latest",
    r"to retrieve",
    r"i'll retrieve",
    r"i will retrieve",
]

_DATA_REQUEST_PATTERNS = [
    ("stock_price", r"price|stock|quote"),
    ("financials", r"financial|revenue|profit"),
    ("analyst_ratings", r"analyst|rating|target"),
    ("news", r"news|recent|latest"),
    ("technical", r"technical|rsi|macd"),
    ("peers", r"peer|competitor"),
]


class IntentClassifier(ABC):
    """
    Decides whether an assistant message is asking for permission to continue.
    """

    @abstractmethod
    def is_confirmation_request(self, text: str) -> bool:
        pass


class PatternIntentClassifier(IntentClassifier):
    """
    Regex-based classifier. Fast, but brittle; swap it out freely.
    """

    def __init__(self, patterns: Optional[List[str]] = None):
        self.patterns = [re.compile(p, re.IGNORECASE) for p in (patterns or _CONFIRMATION_PATTERNS)]

    def is_confirmation_request(self, text: str) -> bool:
        return any(pattern.search(text) for pattern in self.patterns)


class AutoContinueHandler:
    """
    Answers confirmation requests for sessions that enabled auto-approval.
    """

    def __init__(self, classifier: Optional[IntentClassifier] = None):
        self.classifier = classifier or PatternIntentClassifier()

    def auto_reply(self, assistant_text: str, policy: SessionPolicy) -> Optional[str]:
        """
        Get the automatic reply to an assistant message, if any.

        Args:
            assistant_text: The assistant's latest message
            policy: The session's policy

        Returns:
            The approval reply, or None when the user should answer
        """
        if not policy.auto_approve:
            return None
        if self.classifier.is_confirmation_request(assistant_text):
            return APPROVAL_REPLY
        return None


def detect_data_requests(text: str) -> List[str]:
    """
    List the data categories a user message asks for.

    Args:
        text: User instruction

    Returns:
        Categories such as "stock_price" or "news", in a fixed order
    """
    return [
        category for category, pattern in _DATA_REQUEST_PATTERNS
        if re.search(pattern, text, re.IGNORECASE)
    ]
