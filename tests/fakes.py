"""
Deterministic stand-ins for the network probe and the LLM oracle
"""

import asyncio
from typing import Dict, List, Optional

from treemark.agent import AgentCommand
from treemark.errors import StructureProposalError
from treemark.models import BookmarkNode
from treemark.preferences import QuizQuestion


class FakeProbe:
    def __init__(self, dead=(), broken=(), slow=(), delay: float = 1.0):
        self.dead = set(dead)
        self.broken = set(broken)
        self.slow = set(slow)
        self.delay = delay
        self.calls: List[str] = []

    async def is_reachable(self, url: str) -> bool:
        self.calls.append(url)
        if url in self.broken:
            raise RuntimeError("connection reset")
        if url in self.slow:
            await asyncio.sleep(self.delay)
        return url not in self.dead


class FakeOracle:
    """Every oracle method, answering from canned data"""

    def __init__(self, structure=None, quiz=None, periodic=None, command: Optional[AgentCommand] = None,
                 folder_name: str = "Grouped", titles: Optional[Dict[str, str]] = None):
        self.structure = structure
        self.quiz = quiz if quiz is not None else [QuizQuestion("q1", "Broad or deep?", ["A", "B", "C", "D"])]
        self.periodic = periodic
        self.command = command
        self.folder_name = folder_name
        self.titles = titles or {}
        self.structure_calls = []
        self.enriched_batches: List[List[str]] = []

    async def enrich_bookmarks(self, links: List[BookmarkNode]):
        self.enriched_batches.append([link.id for link in links])
        return {link.id: {"title": f"{link.title} (enriched)", "description": f"About {link.url}"}
                for link in links}

    async def generate_preferences_quiz(self, nodes):
        return list(self.quiz)

    async def generate_periodic_question(self, items, existing_questions):
        if self.periodic is None:
            return None
        return await self.periodic(items, existing_questions)

    async def propose_structure(self, links, limit=2000, answers=(), depth="Balanced", max_tokens=None):
        self.structure_calls.append({"links": list(links), "limit": limit, "answers": list(answers),
                                     "depth": depth, "max_tokens": max_tokens})
        if self.structure is None:
            raise StructureProposalError("architect unavailable")
        if callable(self.structure):
            return self.structure(links)
        return self.structure

    async def suggest_folder_name(self, items):
        return self.folder_name

    async def optimize_titles(self, items):
        return dict(self.titles)

    async def parse_agent_command(self, command: str) -> AgentCommand:
        return self.command or AgentCommand.unknown("I did not understand that.")
