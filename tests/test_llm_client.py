import asyncio
import json
from types import SimpleNamespace

import pytest

from treemark.agent import AgentAction
from treemark.errors import LLMResponseError, StructureProposalError
from treemark.llm_client import LLMClient, attempt_json_repair, extract_json_object, parse_llm_json
from treemark.llm_templates import LLMConfig
from treemark.models import BookmarkNode
from treemark.preferences import DEFAULT_QUESTIONS


class FakeCompletions:
    def __init__(self, replies):
        self.replies = list(replies)
        self.requests = []

    async def create(self, **kwargs):
        self.requests.append(kwargs)
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return SimpleNamespace(
            choices=[SimpleNamespace(message=SimpleNamespace(content=reply))],
            usage=SimpleNamespace(prompt_tokens=10, completion_tokens=5, total_tokens=15),
        )


class FakeOpenAI:
    def __init__(self, *replies):
        self.chat = SimpleNamespace(completions=FakeCompletions(replies))

    @property
    def requests(self):
        return self.chat.completions.requests


class FakeMessages:
    def __init__(self, replies):
        self.replies = list(replies)
        self.requests = []

    async def create(self, **kwargs):
        self.requests.append(kwargs)
        return SimpleNamespace(content=[SimpleNamespace(text=self.replies.pop(0))],
                               usage=SimpleNamespace(input_tokens=10, output_tokens=5))


def openai_client(*replies):
    fake = FakeOpenAI(*replies)
    return LLMClient(LLMConfig(provider="openai", api_key="sk-test"), client=fake), fake


def links(count):
    return [BookmarkNode.link(f"Site {i}", f"https://site{i}.example", id=f"L{i}") for i in range(count)]


def test_parse_llm_json_strips_prose_and_repairs_commas():
    content = 'Sure! Here it is:\n```json\n{"Tech": ["1", "2",],\n "Misc": ["3"],}\n```'
    assert parse_llm_json(content) == {"Tech": ["1", "2"], "Misc": ["3"]}


def test_repair_adds_missing_commas_between_lines():
    broken = '{\n"a": "1"\n"b": "2"\n}'
    assert json.loads(attempt_json_repair(broken)) == {"a": "1", "b": "2"}


def test_unparseable_responses_raise():
    with pytest.raises(LLMResponseError):
        extract_json_object("no json here")
    with pytest.raises(LLMResponseError):
        parse_llm_json("{this is: not json}")


def test_enrich_bookmarks_maps_results_by_id():
    client, fake = openai_client(json.dumps({"results": [
        {"id": "L0", "title": "Site Zero", "description": "The zeroth site."},
        {"title": "no id"},
    ]}))
    result = asyncio.run(client.enrich_bookmarks(links(2)))
    assert result == {"L0": {"title": "Site Zero", "description": "The zeroth site."}}
    assert fake.requests[0]["response_format"] == {"type": "json_object"}
    assert '"originalTitle": "Site 1"' in fake.requests[0]["messages"][1]["content"]


def test_enrich_failure_returns_empty_map():
    client, _ = openai_client(RuntimeError("rate limited"))
    assert asyncio.run(client.enrich_bookmarks(links(2))) == {}


def test_quiz_falls_back_to_default_questions():
    client, _ = openai_client("I cannot do that")
    assert asyncio.run(client.generate_preferences_quiz(links(3))) == list(DEFAULT_QUESTIONS)


def test_quiz_questions_from_response():
    client, _ = openai_client(json.dumps({"questions": [
        {"id": "q1", "question": "Broad?", "options": ["a", "b", "c", "d"]}]}))
    questions = asyncio.run(client.generate_preferences_quiz(links(30)))
    assert [(q.id, q.source) for q in questions] == [("q1", "initial")]


def test_periodic_question_needs_four_options():
    good = json.dumps({"question": {"id": "x", "question": "Split recipes?", "options": ["a", "b", "c", "d"]}})
    short = json.dumps({"question": {"id": "y", "question": "Split?", "options": ["a", "b"]}})
    client, _ = openai_client(good, short, "{}")

    question = asyncio.run(client.generate_periodic_question(links(2), ["Broad?"]))
    assert question.question == "Split recipes?"
    assert question.source == "dynamic"
    assert question.id != "x"

    assert asyncio.run(client.generate_periodic_question(links(2), [])) is None
    assert asyncio.run(client.generate_periodic_question(links(2), [])) is None


def test_propose_structure_caps_links_and_passes_token_budget():
    client, fake = openai_client(json.dumps({"Tech": ["L0", "L1"]}))
    structure = asyncio.run(client.propose_structure(links(5), limit=2, depth="Deep", max_tokens=28000))

    assert structure == {"Tech": ["L0", "L1"]}
    prompt = fake.requests[0]["messages"][1]["content"]
    assert '"id": "L1"' in prompt
    assert '"id": "L2"' not in prompt
    assert fake.requests[0]["max_tokens"] == 28000


@pytest.mark.parametrize("reply", ["not json at all", "{}", RuntimeError("timeout")])
def test_propose_structure_failures_raise(reply):
    client, _ = openai_client(reply)
    with pytest.raises(StructureProposalError):
        asyncio.run(client.propose_structure(links(2)))


def test_raw_structure_response_can_be_saved(tmp_path):
    raw_file = tmp_path / "raw.json"
    fake = FakeOpenAI('{"Tech": ["L0"]}')
    client = LLMClient(LLMConfig(api_key="sk-test"), output_raw_response=True,
                       raw_output_file=str(raw_file), client=fake)
    asyncio.run(client.propose_structure(links(1)))
    assert json.loads(raw_file.read_text(encoding="utf-8")) == {"Tech": ["L0"]}


def test_folder_name_suggestion_and_fallbacks():
    client, fake = openai_client('"Python Tools"\n', "   ", RuntimeError("down"))
    assert asyncio.run(client.suggest_folder_name(links(2))) == "Python Tools"
    assert "response_format" not in fake.requests[0]
    assert asyncio.run(client.suggest_folder_name(links(2))) == "New Folder"
    assert asyncio.run(client.suggest_folder_name(links(2))) == "New Group"


def test_optimize_titles():
    client, _ = openai_client(json.dumps({"results": [{"id": "L0", "newTitle": "Clean Title"}, {"id": "L1"}]}))
    assert asyncio.run(client.optimize_titles(links(2))) == {"L0": "Clean Title"}


def test_parse_agent_command_and_fallback():
    client, _ = openai_client(
        json.dumps({"action": "MOVE", "targetName": "Video", "filter": {"keyword": "youtube", "type": "link"}}),
        RuntimeError("down"),
    )
    command = asyncio.run(client.parse_agent_command("move youtube to Video"))
    assert command.action is AgentAction.MOVE and command.target_name == "Video"

    fallback = asyncio.run(client.parse_agent_command("whatever"))
    assert fallback.action is AgentAction.UNKNOWN


def test_anthropic_requests_use_messages_api():
    messages = FakeMessages(['{"results": [{"id": "L0", "newTitle": "Better"}]}'])
    client = LLMClient(LLMConfig(provider="anthropic", model="claude-3-5-sonnet-latest", api_key="ak", max_tokens=None),
                       client=SimpleNamespace(messages=messages))

    assert asyncio.run(client.optimize_titles(links(1))) == {"L0": "Better"}
    request = messages.requests[0]
    assert request["max_tokens"] == 8000
    assert "JSON" in request["system"]
    assert request["messages"][0]["role"] == "user"


def test_unsupported_provider():
    with pytest.raises(ValueError):
        LLMClient(LLMConfig(provider="gemini", api_key="x"))
