"""
LLM Templates and Configuration for Bookmark Analysis
"""

import json
import os
from dataclasses import dataclass
from typing import List, Optional, Sequence

# Load .env file
from dotenv import load_dotenv
load_dotenv()  # This will load .env from current directory or parent directories

from .models import BookmarkNode
from .preferences import QuizAnswer

TREE_DEPTHS = ("Shallow", "Balanced", "Deep")


@dataclass
class LLMConfig:
    """Configuration for LLM providers"""
    provider: str = "openai"  # "openai" or "anthropic"
    model: str = "gpt-4.1"  # or "claude-3-5-sonnet-latest"
    api_key: Optional[str] = None
    temperature: float = 0.1
    max_tokens: Optional[int] = 2000
    custom_template: Optional[str] = None

    @classmethod
    def from_env(cls) -> 'LLMConfig':
        """Create config from environment variables"""
        provider = os.environ.get('BOOKMARK_LLM_PROVIDER', 'openai').lower()

        if provider == 'openai':
            api_key = os.environ['OPENAI_API_KEY']
            model = os.environ.get('BOOKMARK_LLM_MODEL', 'gpt-4.1')
        elif provider == 'anthropic':
            api_key = os.environ['ANTHROPIC_API_KEY']
            model = os.environ.get('BOOKMARK_LLM_MODEL', 'claude-3-5-sonnet-latest')
        else:
            raise ValueError(f"Unsupported LLM provider: {provider}. Supported: 'openai', 'anthropic'")

        max_tokens = os.environ.get('BOOKMARK_LLM_MAX_TOKENS', '').strip()
        return cls(
            provider=provider,
            model=model,
            api_key=api_key,
            temperature=float(os.environ.get('BOOKMARK_LLM_TEMPERATURE', '0.1')),
            max_tokens=int(max_tokens) if max_tokens else None,
            custom_template=os.environ.get('BOOKMARK_LLM_TEMPLATE')  # This is optional
        )


def _env_int(name: str, default: int) -> int:
    value = os.environ.get(name, '').strip()
    return int(value) if value else default


def _env_float(name: str, default: float) -> float:
    value = os.environ.get(name, '').strip()
    return float(value) if value else default


@dataclass
class PipelineConfig:
    """Tunables for the batch phases and the structure proposal"""
    concurrency: int = 10
    liveness_workers: int = 1
    probe_timeout: float = 2.0
    liveness_pace_delay: float = 0.02
    enrichment_batch_size: int = 25
    enrichment_workers: int = 4
    insight_threshold: int = 60
    structure_link_limit: int = 2000
    structure_max_tokens: int = 28000
    tree_depth: str = "Balanced"
    preferences_file: str = "./.treemark/preferences.json"
    preferences_ttl_days: int = 30

    def __post_init__(self):
        if self.tree_depth not in TREE_DEPTHS:
            raise ValueError(f"Unsupported tree depth: {self.tree_depth}. Supported: {', '.join(TREE_DEPTHS)}")
        self.concurrency = max(1, self.concurrency)

    @property
    def liveness_batch_size(self) -> int:
        return self.concurrency

    @classmethod
    def from_env(cls) -> 'PipelineConfig':
        return cls(
            concurrency=_env_int('BOOKMARK_CONCURRENCY', 10),
            liveness_workers=_env_int('BOOKMARK_LIVENESS_WORKERS', 1),
            probe_timeout=_env_float('BOOKMARK_PROBE_TIMEOUT', 2.0),
            liveness_pace_delay=_env_float('BOOKMARK_LIVENESS_PACE', 0.02),
            enrichment_batch_size=_env_int('BOOKMARK_ENRICH_BATCH_SIZE', 25),
            enrichment_workers=_env_int('BOOKMARK_ENRICH_WORKERS', 4),
            insight_threshold=_env_int('BOOKMARK_INSIGHT_THRESHOLD', 60),
            structure_link_limit=_env_int('BOOKMARK_STRUCTURE_LIMIT', 2000),
            structure_max_tokens=_env_int('BOOKMARK_STRUCTURE_MAX_TOKENS', 28000),
            tree_depth=os.environ.get('BOOKMARK_TREE_DEPTH', 'Balanced'),
            preferences_file=os.environ.get('BOOKMARK_PREFERENCES_FILE', './.treemark/preferences.json'),
            preferences_ttl_days=_env_int('BOOKMARK_PREFERENCES_TTL_DAYS', 30),
        )


ENRICH_TEMPLATE = """
You are a web crawler agent.
For each URL provided in the JSON list:
1. Identify the likely content of the page based on the URL and original title.
2. Generate a clean, human-readable Title (remove "Index of", "Home", tracking info).
3. Generate a concise (1 sentence) description of what this page is.

If you don't recognize the URL, make a best guess based on the domain name.

Input JSON: {payload}
Output JSON Schema:
{ "results": [{ "id": "string", "title": "string", "description": "string" }] }
"""

QUIZ_TEMPLATE = """
You are a professional Digital Archivist.
Analyze the user's current bookmark collection summary below.
Generate 3 separate multiple-choice questions to help you understand how they want their new structure organized.

Goals:
1. Determine if they prefer broad categories vs specific niches.
2. Determine how to handle "Time-sensitive" items (e.g., News, Read Later).
3. Determine technical depth (e.g., separate languages or group by project).

REQUIREMENTS:
- Exactly 4 distinct options per question.

Current Top Folders: {top_folders}
Sample Links:
{sample_links}

Output JSON Schema:
{ "questions": [ { "id": "q1", "question": "...", "options": ["Option A", "Option B", "Option C", "Option D"] } ] }
"""

PERIODIC_QUESTION_TEMPLATE = """
You are an organization assistant watching a bookmark scanning process.
We just enriched a batch of bookmarks with the following content:
{summary}

We have already asked the user:
- {existing_questions}

Task:
Identify ONE specific ambiguity or organizational preference dilemma raised by this batch that hasn't been addressed.
Generate 1 multiple choice question (with 4 options) to resolve it.

If the content is generic or covered by previous questions, return an empty JSON object.

Output JSON Schema:
{ "question": { "id": "string", "question": "...", "options": ["A", "B", "C", "D"] } }
"""

STRUCTURE_TEMPLATE = """
Analyze the provided table of bookmarks.
Organize these into a logical, recursive, nested folder tree structure.

USER PREFERENCES (STRICTLY FOLLOW THESE):
{preferences}

STRUCTURAL MANDATE (Depth: {depth}):
{depth_instruction}

GENERAL RULES:
1. Use the "description" field to understand context.
2. Return a JSON object where keys are folder names and values are EITHER arrays of IDs (leaf nodes) OR sub-objects (subfolders).
3. You MUST include as many IDs from the input as possible.

Bookmarks:
{payload}

Output JSON only.
"""

FOLDER_NAME_TEMPLATE = """Suggest a short, concise folder name (max 3 words) that best describes this group of bookmarks:

{summary}"""

TITLE_TEMPLATE = """
You are a bookmark title optimizer.
For each bookmark provided, analyze the URL and current title.
Goal: Replace cryptic, generic, or messy titles (e.g. "Index of /", "Home", "Welcome", filenames) with clear, descriptive, human-readable titles.
If the current title is already good, keep it similar but cleaned up.

Input JSON: {payload}
Output JSON Schema: { "results": [ { "id": "string", "newTitle": "string" } ] }
"""

AGENT_TEMPLATE = """
You are a command parser for a bookmark manager.
User Command: "{command}"

Supported Actions:
1. MOVE: Move items matching a keyword to a specific folder.
2. DELETE: Delete items matching a keyword.
3. CREATE_FOLDER: Create a new folder.

Output JSON Schema:
{
  "action": "MOVE" | "DELETE" | "CREATE_FOLDER" | "UNKNOWN",
  "targetName": "string (Folder name to move to or create)",
  "filter": {
    "keyword": "string (What to search for to select items)",
    "type": "link" | "folder" | "all"
  },
  "reason": "Short explanation of your plan"
}

Example: "Move all youtube videos to Video folder"
Result: { "action": "MOVE", "targetName": "Video", "filter": { "keyword": "youtube", "type": "link" } }
"""

DEPTH_INSTRUCTIONS = {
    'Shallow': 'Strictly broad categories. Avoid nesting deeper than 2 levels. Consolidate small folders.',
    'Balanced': 'Create a standard logical hierarchy. Group related items. Nesting up to 3-4 levels is acceptable.',
    'Deep': 'Highly granular structure. Create specific sub-folders for every niche. Nesting up to 5-6 levels is encouraged.',
}


def fill(template: str, **values: str) -> str:
    """Safe placeholder replacement; JSON braces in templates are left alone"""
    for key, value in values.items():
        template = template.replace('{' + key + '}', value)
    return template


def prepare_links_for_enrichment(links: Sequence[BookmarkNode]) -> str:
    payload = [{"id": link.id, "url": link.url, "originalTitle": link.title} for link in links]
    return json.dumps(payload, ensure_ascii=False)


def prepare_links_for_structure(links: Sequence[BookmarkNode]) -> str:
    """Datatable sent to the structure oracle (ids, titles, urls, descriptions, old path)"""
    payload = [
        {
            "id": link.id,
            "title": link.title,
            "url": link.url,
            "description": link.description or "No description",
            "original": "/".join(link.original_path),
        }
        for link in links
    ]
    return json.dumps(payload, ensure_ascii=False)


def format_preferences(answers: Sequence[QuizAnswer]) -> str:
    if not answers:
        return "None provided"
    return "\n\n".join(f"Q: {a.question_text}\nUser Preference: {a.selected_option}" for a in answers)


def summarize_links(links: Sequence[BookmarkNode], with_description: bool = False) -> str:
    lines = []
    for link in links:
        line = f"{link.title} ({link.url})"
        if with_description:
            line += f" - {link.description}"
        lines.append(line)
    return "\n".join(lines)


def get_template(config: LLMConfig) -> str:
    """Structure prompt template, overridable by file path or inline text"""
    template_files = [
        config.custom_template,         # Environment variable override
        './llm_template.txt',           # Local project config
    ]

    for template_path in template_files:
        if template_path and os.path.exists(template_path):
            with open(template_path, 'r', encoding='utf-8') as f:
                return f.read()

    # If custom_template is set but not a file, treat as inline template
    if config.custom_template:
        return config.custom_template

    return STRUCTURE_TEMPLATE


def build_structure_prompt(
    config: LLMConfig,
    links: Sequence[BookmarkNode],
    answers: Sequence[QuizAnswer],
    depth: str,
) -> str:
    return fill(
        get_template(config),
        preferences=format_preferences(answers),
        depth=depth,
        depth_instruction=DEPTH_INSTRUCTIONS.get(depth, DEPTH_INSTRUCTIONS['Balanced']),
        payload=prepare_links_for_structure(links),
    )


def top_folder_titles(nodes: Sequence[BookmarkNode]) -> List[str]:
    return [node.title for node in nodes if node.is_folder]
