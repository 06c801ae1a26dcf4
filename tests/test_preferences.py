import json
from datetime import datetime, timedelta, timezone

from dateutil.parser import isoparse

from treemark.preferences import DEFAULT_QUESTIONS, PreferenceStore, QuizAnswer, QuizQuestion


def answers():
    return [
        QuizAnswer("1", "How do you prefer to group technology links?", "By Project"),
        QuizAnswer("q-dyn", "Keep recipes with travel?", "No"),
    ]


def test_save_then_load(tmp_path):
    store = PreferenceStore(str(tmp_path / "nested" / "prefs.json"))
    store.save(answers())
    assert store.load() == answers()


def test_expiry_is_ttl_days_ahead(tmp_path):
    path = tmp_path / "prefs.json"
    PreferenceStore(str(path), ttl_days=30).save(answers())
    expires_at = isoparse(json.loads(path.read_text())["expires_at"])
    remaining = expires_at - datetime.now(timezone.utc)
    assert timedelta(days=29) < remaining <= timedelta(days=30)


def test_expired_answers_are_ignored(tmp_path):
    path = tmp_path / "prefs.json"
    past = (datetime.now(timezone.utc) - timedelta(days=1)).isoformat()
    path.write_text(json.dumps({"expires_at": past, "answers": [
        {"question_id": "1", "question_text": "Q", "selected_option": "A"}]}))
    assert PreferenceStore(str(path)).load() == []


def test_missing_or_corrupt_file_loads_empty(tmp_path):
    assert PreferenceStore(str(tmp_path / "absent.json")).load() == []
    corrupt = tmp_path / "corrupt.json"
    corrupt.write_text("{not json")
    assert PreferenceStore(str(corrupt)).load() == []


def test_question_from_dict():
    question = QuizQuestion.from_dict({"id": 3, "question": "Broad?", "options": ["a", "b", "c", "d"]}, source="dynamic")
    assert question.id == "3"
    assert question.source == "dynamic"
    assert question.options == ["a", "b", "c", "d"]


def test_default_questions_have_four_options():
    assert len(DEFAULT_QUESTIONS) == 3
    assert all(len(question.options) == 4 for question in DEFAULT_QUESTIONS)
