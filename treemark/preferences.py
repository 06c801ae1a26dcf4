"""
Preference quiz questions, answers and their on-disk store
"""

import json
import logging
import os
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List

from dateutil.parser import isoparse
from dateutil.relativedelta import relativedelta

logger = logging.getLogger(__name__)

DEFAULT_TTL_DAYS = 30


@dataclass
class QuizQuestion:
    id: str
    question: str
    options: List[str] = field(default_factory=list)
    source: str = "initial"  # "initial" or "dynamic"

    @classmethod
    def from_dict(cls, data: Dict[str, Any], source: str = "initial") -> "QuizQuestion":
        return cls(
            id=str(data.get("id", "")),
            question=str(data.get("question", "")),
            options=[str(option) for option in data.get("options") or []],
            source=data.get("source") or source,
        )


@dataclass
class QuizAnswer:
    question_id: str
    question_text: str
    selected_option: str


DEFAULT_QUESTIONS = [
    QuizQuestion("1", "How do you prefer to group technology links?",
                 ["By Language (JS, Python)", "By Domain (Frontend, Backend)", "By Project", "Flat List (All in Tech)"]),
    QuizQuestion("2", "What should happen to old/uncategorized links?",
                 ["Archive folder", "Delete them", "Try to categorize everything", "Leave in Unsorted"]),
    QuizQuestion("3", "Do you prefer broad or deep structures?",
                 ["Broad (Few folders, many items)", "Deep (Many nested subfolders)", "Balanced",
                  "Minimalist (Max 5 folders)"]),
]


class PreferenceStore:
    """Answers persisted as JSON with a fixed expiry, rewritten on every update"""

    def __init__(self, path: str, ttl_days: int = DEFAULT_TTL_DAYS):
        self.path = path
        self.ttl_days = ttl_days

    def load(self) -> List[QuizAnswer]:
        """Saved answers, or an empty list if missing, expired or unreadable"""
        if not os.path.exists(self.path):
            return []
        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                data = json.load(f)
            expires_at = isoparse(data["expires_at"])
            if expires_at <= datetime.now(timezone.utc):
                logger.info(f"Stored preferences in {self.path} expired at {expires_at.isoformat()}")
                return []
            answers = [QuizAnswer(**answer) for answer in data.get("answers", [])]
        except (OSError, ValueError, KeyError, TypeError) as e:
            logger.warning(f"Could not load stored preferences from {self.path}: {e}")
            return []
        logger.info(f"Loaded {len(answers)} persisted quiz answers")
        return answers

    def save(self, answers: List[QuizAnswer]):
        expires_at = datetime.now(timezone.utc) + relativedelta(days=self.ttl_days)
        payload = {
            "expires_at": expires_at.isoformat(),
            "answers": [asdict(answer) for answer in answers],
        }
        directory = os.path.dirname(self.path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        with open(self.path, 'w', encoding='utf-8') as f:
            json.dump(payload, f, indent=2, ensure_ascii=False)
