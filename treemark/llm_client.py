"""
LLM Client Implementation for Bookmark Enrichment and Organization
"""

import json
import logging
import random
import re
import uuid
from typing import Any, Dict, List, Optional, Sequence

from .agent import AgentCommand
from .errors import LLMResponseError, StructureProposalError
from .llm_templates import (
    AGENT_TEMPLATE,
    ENRICH_TEMPLATE,
    FOLDER_NAME_TEMPLATE,
    PERIODIC_QUESTION_TEMPLATE,
    QUIZ_TEMPLATE,
    TITLE_TEMPLATE,
    LLMConfig,
    build_structure_prompt,
    fill,
    prepare_links_for_enrichment,
    summarize_links,
    top_folder_titles,
)
from .models import BookmarkNode
from .preferences import DEFAULT_QUESTIONS, QuizAnswer, QuizQuestion
from .tree import flatten_links

SYSTEM_PROMPT = "You are an expert at organizing bookmark collections. Respond with the exact JSON structure requested."

DEFAULT_GROUP_NAME = "New Group"
EMPTY_GROUP_NAME = "New Folder"


def extract_json_object(content: str) -> str:
    """Slice from the first '{' to the last '}' (models like to wrap JSON in prose)"""
    first = content.find('{')
    last = content.rfind('}')
    if first == -1 or last == -1 or last < first:
        raise LLMResponseError(f"Could not extract valid JSON from LLM response: {content[:200]}...")
    return content[first:last + 1]


def attempt_json_repair(json_str: str) -> str:
    """Attempt to repair common JSON formatting issues"""
    if not json_str:
        return json_str

    # Fix trailing commas before closing brackets/braces
    json_str = re.sub(r',(\s*[}\]])', r'\1', json_str)

    # If this line ends with a quote and the next line starts with a quote,
    # and there's no comma, add one
    lines = json_str.split('\n')
    repaired_lines = []
    for i, line in enumerate(lines):
        stripped = line.strip()
        if (i < len(lines) - 1 and
                stripped.endswith('"') and not stripped.endswith('",') and
                lines[i + 1].strip().startswith('"')):
            repaired_lines.append(line + ',')
        else:
            repaired_lines.append(line)

    return '\n'.join(repaired_lines)


def parse_llm_json(content: str) -> Dict[str, Any]:
    """Decode the JSON object in an LLM response, repairing it once if needed"""
    json_str = extract_json_object(content or "")
    try:
        data = json.loads(json_str)
    except json.JSONDecodeError:
        try:
            data = json.loads(attempt_json_repair(json_str))
        except json.JSONDecodeError as e:
            raise LLMResponseError(f"JSON parsing error: {e}. Attempted to parse: {json_str[:200]}...")
    if not isinstance(data, dict):
        raise LLMResponseError(f"Expected a JSON object, got {type(data).__name__}")
    return data


class LLMClient:
    """Every external content oracle the pipeline uses, backed by one provider.

    Apart from propose_structure, methods never raise: on any failure they
    log and return their documented fallback.
    """

    def __init__(self, config: LLMConfig, output_raw_response: bool = False, raw_output_file: str = None,
                 debug_prompt: bool = False, client: Any = None):
        self.config = config
        self.output_raw_response = output_raw_response
        self.raw_output_file = raw_output_file
        self.debug_prompt = debug_prompt
        self.logger = logging.getLogger("treemark.llm_client")
        self.logger.info(f"Initializing LLMClient with provider: {config.provider}, model: {config.model}")

        if client is not None:
            self.client = client
        elif config.provider == 'openai':
            import openai
            self.client = openai.AsyncOpenAI(
                api_key=config.api_key,
                timeout=300.0  # 5 minute timeout
            )
            self.logger.info("Successfully initialized OpenAI client")
        elif config.provider == 'anthropic':
            import anthropic
            self.client = anthropic.AsyncAnthropic(
                api_key=config.api_key,
                timeout=300.0  # 5 minute timeout
            )
            self.logger.info("Successfully initialized Anthropic client")
        else:
            raise ValueError(f"Unsupported LLM provider: {config.provider}")

    async def _complete(self, prompt: str, max_tokens: Optional[int] = None, json_mode: bool = True) -> str:
        """Send one prompt and return the text of the reply"""
        max_tokens = max_tokens or self.config.max_tokens
        self.logger.info(f"Request to {self.config.provider}/{self.config.model}, prompt length: {len(prompt)} characters")
        self.logger.debug(f"Full prompt:\n{prompt}")

        if self.config.provider == 'anthropic':
            request_data = {
                "model": self.config.model,
                "temperature": self.config.temperature,
                "system": SYSTEM_PROMPT if json_mode else "You are a helpful assistant.",
                "messages": [{"role": "user", "content": prompt}],
                # Anthropic requires max_tokens
                "max_tokens": max_tokens or 8000,
            }
            response = await self.client.messages.create(**request_data)
            content = response.content[0].text
            usage = response.usage
            self.logger.info(f"Tokens used - Input: {usage.input_tokens}, Output: {usage.output_tokens}")
        else:
            request_data = {
                "model": self.config.model,
                "messages": [
                    {"role": "system", "content": SYSTEM_PROMPT if json_mode else "You are a helpful assistant."},
                    {"role": "user", "content": prompt},
                ],
                "temperature": self.config.temperature,
            }
            # Only add max_tokens if it's set
            if max_tokens:
                request_data["max_tokens"] = max_tokens
            if json_mode:
                request_data["response_format"] = {"type": "json_object"}
            response = await self.client.chat.completions.create(**request_data)
            content = response.choices[0].message.content or ""
            usage = response.usage
            if usage is not None:
                self.logger.info(f"Tokens used - Input: {usage.prompt_tokens}, Output: {usage.completion_tokens}, "
                                 f"Total: {usage.total_tokens}")

        self.logger.info(f"Response length: {len(content)} characters")
        self.logger.debug(f"Full response:\n{content}")
        return content

    async def _complete_json(self, prompt: str, max_tokens: Optional[int] = None) -> Dict[str, Any]:
        return parse_llm_json(await self._complete(prompt, max_tokens=max_tokens))

    async def enrich_bookmarks(self, links: Sequence[BookmarkNode]) -> Dict[str, Dict[str, str]]:
        """id -> {title, description}; ids the model skipped are simply absent"""
        prompt = fill(ENRICH_TEMPLATE, payload=prepare_links_for_enrichment(links))
        try:
            data = await self._complete_json(prompt)
        except Exception as e:
            # Silent fail is okay here, the batch just stays unenriched
            self.logger.warning(f"Enrichment failed for batch of {len(links)}: {e}")
            return {}

        results = {}
        for entry in data.get('results') or []:
            if isinstance(entry, dict) and entry.get('id'):
                results[str(entry['id'])] = {
                    "title": str(entry.get('title') or ""),
                    "description": str(entry.get('description') or ""),
                }
        return results

    async def generate_preferences_quiz(self, nodes: Sequence[BookmarkNode]) -> List[QuizQuestion]:
        links = flatten_links(nodes)
        sample = random.sample(links, min(20, len(links)))
        prompt = fill(
            QUIZ_TEMPLATE,
            top_folders=", ".join(top_folder_titles(nodes)),
            sample_links="\n".join(link.url for link in sample),
        )
        try:
            data = await self._complete_json(prompt)
            questions = [QuizQuestion.from_dict(q, source="initial") for q in data.get('questions') or []
                         if isinstance(q, dict)]
        except Exception as e:
            self.logger.error(f"Quiz generation failed, using default questions: {e}")
            return list(DEFAULT_QUESTIONS)
        return questions

    async def generate_periodic_question(self, items: Sequence[BookmarkNode],
                                         existing_questions: Sequence[str]) -> Optional[QuizQuestion]:
        """A follow-up question about an ambiguity in this batch, or None"""
        prompt = fill(
            PERIODIC_QUESTION_TEMPLATE,
            summary=summarize_links(items, with_description=True),
            existing_questions="\n- ".join(existing_questions),
        )
        try:
            data = await self._complete_json(prompt)
        except Exception as e:
            self.logger.debug(f"Periodic question generation failed: {e}")
            return None

        question = data.get('question')
        if isinstance(question, dict) and question.get('question') and len(question.get('options') or []) == 4:
            result = QuizQuestion.from_dict(question, source="dynamic")
            result.id = str(uuid.uuid4())
            result.source = "dynamic"
            return result
        return None

    async def propose_structure(self, links: Sequence[BookmarkNode], limit: int = 2000,
                                answers: Sequence[QuizAnswer] = (), depth: str = "Balanced",
                                max_tokens: Optional[int] = 28000) -> Dict[str, Any]:
        """Nested {folder: [ids] | {subfolder: ...}} grouping. Raises StructureProposalError."""
        prompt = build_structure_prompt(self.config, list(links)[:limit], answers, depth)

        if self.debug_prompt:
            prompt_file = "debug_prompt.txt"
            with open(prompt_file, 'w', encoding='utf-8') as f:
                f.write(prompt)
            print(f"📝 Debug prompt saved to: {prompt_file}")

        try:
            content = await self._complete(prompt, max_tokens=max_tokens)
        except Exception as e:
            raise StructureProposalError(f"Structure request failed: {e}") from e

        if self.output_raw_response and self.raw_output_file:
            with open(self.raw_output_file, 'w', encoding='utf-8') as f:
                f.write(content)
            print(f"✅ Raw LLM response saved to: {self.raw_output_file}")

        try:
            structure = parse_llm_json(content)
        except LLMResponseError as e:
            raise StructureProposalError(str(e)) from e
        if not structure:
            raise StructureProposalError("Structure proposal was empty")
        return structure

    async def suggest_folder_name(self, items: Sequence[BookmarkNode]) -> str:
        prompt = fill(FOLDER_NAME_TEMPLATE, summary=summarize_links(items))
        try:
            content = await self._complete(prompt, max_tokens=20, json_mode=False)
        except Exception as e:
            self.logger.warning(f"Folder name suggestion failed: {e}")
            return DEFAULT_GROUP_NAME
        name = content.strip().strip('"').strip()
        return name or EMPTY_GROUP_NAME

    async def optimize_titles(self, items: Sequence[BookmarkNode]) -> Dict[str, str]:
        payload = json.dumps([{"id": i.id, "url": i.url, "currentTitle": i.title} for i in items], ensure_ascii=False)
        try:
            data = await self._complete_json(fill(TITLE_TEMPLATE, payload=payload))
        except Exception as e:
            self.logger.error(f"Title optimization failed: {e}")
            return {}
        return {
            str(entry['id']): str(entry['newTitle'])
            for entry in data.get('results') or []
            if isinstance(entry, dict) and entry.get('id') and entry.get('newTitle')
        }

    async def parse_agent_command(self, command: str) -> AgentCommand:
        try:
            data = await self._complete_json(fill(AGENT_TEMPLATE, command=command))
        except Exception as e:
            self.logger.error(f"Agent parsing failed: {e}")
            return AgentCommand.unknown("Failed to parse command.")
        return AgentCommand.from_dict(data)


def create_llm_client(output_raw_response: bool = False, raw_output_file: str = None,
                      debug_prompt: bool = False) -> LLMClient:
    """Factory function to create LLM client from environment"""
    config = LLMConfig.from_env()
    return LLMClient(config, output_raw_response, raw_output_file, debug_prompt)
