#!/usr/bin/env python3
"""
Bookmark Tree Cleanup Tool
Runs an exported bookmark file through duplicate removal, dead link detection,
enrichment and a proposed reorganization that the user reviews before export.
"""

import argparse
import asyncio
import json
import logging
import os
import sys
from datetime import datetime
from enum import Enum
from typing import AbstractSet, Callable, Dict, List, Optional, Sequence, Set

from tqdm import tqdm

from .actions import auto_group, first_folder_id, move_nodes, smart_rename
from .activity_log import ActivityLog, setup_logger
from .agent import CommandResult, execute_command
from .bookmark_parser import parse_bookmarks, serialize_bookmarks
from .dedup import deduplicate_nodes
from .dispatcher import BatchDispatcher, Progress
from .errors import BookmarkParseError, InvalidMoveError, StructureProposalError
from .liveness import HttpLivenessProbe, LivenessReport, check_links
from .llm_templates import TREE_DEPTHS, PipelineConfig
from .models import BookmarkNode
from .preferences import PreferenceStore, QuizAnswer, QuizQuestion
from .reconciler import ReconcileResult, extract_grouping, reconcile
from .topology import merge_junk_folders
from .tree import copy_forest, count_links, flatten_folders, flatten_links
from .wizard import all_folder_ids, resolve_structure

logger = logging.getLogger(__name__)

ProgressCallback = Optional[Callable[[Progress], None]]


class AppState(str, Enum):
    UPLOAD = "upload"
    LIVENESS_CHECK = "liveness_check"
    AI_ENRICHMENT = "ai_enrichment"
    AI_ANALYSIS = "ai_analysis"
    WIZARD_REVIEW = "wizard_review"
    MANAGER = "manager"


class BookmarkManager:
    """Explicit state container for one pass through the pipeline.

    Each phase takes the current forest and replaces it with the next one.
    Every phase boundary bumps ``generation``; fire-and-forget requests
    (quiz and insight questions) remember the generation they were issued
    under and their results are dropped once it is stale.
    """

    def __init__(self, oracle=None, probe=None, config: Optional[PipelineConfig] = None,
                 preferences: Optional[PreferenceStore] = None, activity: Optional[ActivityLog] = None):
        self.config = config or PipelineConfig()
        self.oracle = oracle
        self.probe = probe
        self.preferences = preferences
        self.activity = activity or ActivityLog()

        self.state = AppState.UPLOAD
        self.nodes: List[BookmarkNode] = []
        self.proposed: List[BookmarkNode] = []
        self.backup: List[BookmarkNode] = []
        self.active_folder_id: Optional[str] = None
        self.is_processed_export = False
        self.duplicates_removed = 0

        self.quiz_questions: List[QuizQuestion] = []
        self.answers: List[QuizAnswer] = preferences.load() if preferences else []

        self.progress = 0.0
        self.generation = 0
        self._background: Set[asyncio.Future] = set()

    # ------------------------------------------------------------------
    # Bookkeeping
    # ------------------------------------------------------------------

    def _next_generation(self) -> int:
        self.generation += 1
        return self.generation

    def _is_current(self, generation: int) -> bool:
        return generation == self.generation

    def _spawn(self, coro) -> asyncio.Future:
        """Start a background request without awaiting it"""
        task = asyncio.ensure_future(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    async def drain_background(self):
        """Wait for outstanding background requests (their results may still be discarded)"""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    def _track_progress(self, on_progress: ProgressCallback) -> Callable[[Progress], None]:
        def update(progress: Progress):
            self.progress = progress.percent
            if on_progress:
                on_progress(progress)
        return update

    def _get_probe(self):
        if self.probe is None:
            self.probe = HttpLivenessProbe(timeout=self.config.probe_timeout)
        return self.probe

    # ------------------------------------------------------------------
    # Phases
    # ------------------------------------------------------------------

    def load_html(self, html_content: str, dedupe: bool = True) -> List[BookmarkNode]:
        """Parse an export and prune obvious duplicates. Nothing is committed if parsing fails."""
        self.activity.clear()
        self.activity.add("Initiating file parser sequence...")
        result = parse_bookmarks(html_content)
        self.activity.add(f"Parsed {len(result.nodes)} root elements.")

        nodes = result.nodes
        removed = 0
        if dedupe:
            dedup = deduplicate_nodes(nodes)
            nodes, removed = dedup.nodes, dedup.removed_count
            self.activity.add(f"Initial clean: Pruned {removed} obvious duplicates.")

        self._next_generation()
        self.nodes = nodes
        self.proposed = []
        self.backup = []
        self.is_processed_export = result.is_processed_export
        self.duplicates_removed = removed
        self.state = AppState.LIVENESS_CHECK
        if result.is_processed_export:
            self.activity.add("Detected a previously organized export.")
        return self.nodes

    def open_in_manager(self):
        """Import bypass for files this tool already organized"""
        self._next_generation()
        self.active_folder_id = first_folder_id(self.nodes)
        self.state = AppState.MANAGER
        self.activity.add("Manager Active.")

    def normalize_topology(self, dedupe: bool = True) -> int:
        """Merge the browser's import containers, then catch duplicates the merge revealed"""
        self.activity.add("Topology: Scanning for 'Imported/Other' bookmark containers to dissolve...")
        merged = merge_junk_folders(self.nodes)
        self.activity.add("Topology: 'Imported' containers merged into main structure.")
        removed = 0
        if dedupe:
            self.activity.add("Sanitization: Re-scanning for duplicate links post-merge...")
            dedup = deduplicate_nodes(merged)
            merged, removed = dedup.nodes, dedup.removed_count
            if removed:
                self.activity.add(f"Sanitization: Identified and removed {removed} additional duplicates.")
            else:
                self.activity.add("Sanitization: No additional duplicates found.")
        self.nodes = merged
        self.duplicates_removed += removed
        return removed

    async def run_liveness_check(self, on_progress: ProgressCallback = None, dedupe: bool = True) -> LivenessReport:
        self.state = AppState.LIVENESS_CHECK
        self._next_generation()
        self.progress = 0.0
        links = flatten_links(self.nodes)
        self.activity.add(f"Starting Liveness Protocol. Concurrency Level: {self.config.concurrency}")

        dispatcher = BatchDispatcher(
            batch_size=self.config.liveness_batch_size,
            max_in_flight=self.config.liveness_workers,
            pace_delay=self.config.liveness_pace_delay,
        )

        def on_dead(node: BookmarkNode):
            self.activity.add(f"Dead Link Detected: {node.title} ({(node.url or '')[:20]}...)")

        report = await check_links(
            links,
            self._get_probe(),
            dispatcher,
            deadline=self.config.probe_timeout,
            on_progress=self._track_progress(on_progress),
            on_dead=on_dead,
        )
        self.activity.add(f"Liveness Protocol concluded. {len(report.dead)} of {report.checked} links unreachable.")
        self.normalize_topology(dedupe=dedupe)
        return report

    async def _initial_quiz(self, generation: int):
        self.activity.add("Preference Agent: Analyzing current topology for profiling...")
        try:
            questions = await self.oracle.generate_preferences_quiz(self.nodes)
        except Exception as e:
            self.activity.warning(f"Preference Agent: Quiz failed: {e}")
            return
        if not self._is_current(generation):
            self.activity.add("Preference Agent: Discarded questionnaire from a finished phase.")
            return
        if questions:
            self.quiz_questions.extend(questions)
            self.activity.add("Preference Agent: Generated initial profile questionnaire.")

    async def _periodic_question(self, batch: List[BookmarkNode], generation: int):
        existing = [question.question for question in self.quiz_questions]
        try:
            question = await self.oracle.generate_periodic_question(batch, existing)
        except Exception as e:
            self.activity.warning(f"Insight Agent: Question failed: {e}")
            return
        if question is None:
            return
        if not self._is_current(generation):
            self.activity.add("Insight Agent: Discarded late question from a finished phase.")
            return
        self.quiz_questions.append(question)
        self.activity.add("Insight Agent: Ambiguity detected. Dynamic question generated.")

    async def run_enrichment(self, on_progress: ProgressCallback = None) -> int:
        """Rewrite titles and descriptions in place; returns how many links were enriched"""
        self.state = AppState.AI_ENRICHMENT
        self.backup = copy_forest(self.nodes)
        generation = self._next_generation()
        self.progress = 0.0
        self.quiz_questions = []
        self.activity.add("Initializing Swarm Intelligence for content enrichment...")

        self._spawn(self._initial_quiz(generation))

        links = flatten_links(self.nodes)
        counters = {"enriched": 0, "since_insight": 0}

        async def process(batch: List[BookmarkNode]):
            enriched = await self.oracle.enrich_bookmarks(batch)
            count = 0
            for node in batch:
                info = enriched.get(node.id)
                if info:
                    node.title = info.get("title") or node.title
                    node.description = info.get("description") or ""
                    count += 1
            counters["enriched"] += count
            self.activity.add(f'Swarm Agent: Enriched {count} nodes. Sample: "{batch[0].title}"')

            counters["since_insight"] += len(batch)
            if counters["since_insight"] >= self.config.insight_threshold:
                counters["since_insight"] = 0
                self.activity.add("Insight Agent: Detecting organizational ambiguity in recent batch...")
                self._spawn(self._periodic_question(list(batch), generation))

        def on_batch_error(batch: List[BookmarkNode], error: BaseException):
            self.activity.warning(f"Swarm Agent: Batch of {len(batch)} left unenriched: {error}")

        dispatcher = BatchDispatcher(
            batch_size=self.config.enrichment_batch_size,
            max_in_flight=self.config.enrichment_workers,
        )
        batches = -(-len(links) // dispatcher.batch_size)
        self.activity.add(f"Swarm Controller: Dispatching {batches} batches to "
                          f"{dispatcher.max_in_flight} concurrent agents.")
        await dispatcher.run(links, process, on_progress=self._track_progress(on_progress),
                             on_batch_error=on_batch_error)

        # Anything still in flight from here on is stale
        self._next_generation()
        self.activity.add("Enrichment Phase Complete. All nodes contain metadata.")
        return counters["enriched"]

    def pending_questions(self) -> List[QuizQuestion]:
        answered = {answer.question_id for answer in self.answers}
        return [question for question in self.quiz_questions if question.id not in answered]

    def record_answers(self, answers: Sequence[QuizAnswer]):
        """Merge answers by question id and persist the whole set"""
        by_id: Dict[str, QuizAnswer] = {answer.question_id: answer for answer in self.answers}
        for answer in answers:
            by_id[answer.question_id] = answer
        self.answers = list(by_id.values())
        if self.preferences:
            self.preferences.save(self.answers)

    async def propose_structure(self, depth: Optional[str] = None) -> Optional[ReconcileResult]:
        """Ask for a new layout and reconcile it. On failure the current tree becomes the proposal."""
        depth = depth or self.config.tree_depth
        if depth not in TREE_DEPTHS:
            raise ValueError(f"Unsupported tree depth: {depth}. Supported: {', '.join(TREE_DEPTHS)}")

        self.state = AppState.AI_ANALYSIS
        self._next_generation()
        self.progress = 0.0
        self.activity.add(f"Architect: Compiling user preferences and topological constraints. Depth Mode: {depth}")

        try:
            response = await self.oracle.propose_structure(
                flatten_links(self.nodes),
                limit=self.config.structure_link_limit,
                answers=self.answers,
                depth=depth,
                max_tokens=self.config.structure_max_tokens,
            )
            grouping = extract_grouping(response)
            if not grouping:
                raise StructureProposalError("Proposal contained no folders")
        except Exception as e:
            self.activity.warning(f"Error: Architect failure ({e}). Reverting to safe backup.")
            self.proposed = copy_forest(self.nodes)
            self.state = AppState.WIZARD_REVIEW
            return None

        self.activity.add("Architect: Structural blueprint generated.")
        self.activity.add("System: Materializing new folder hierarchy...")
        result = reconcile(self.nodes, grouping)
        self.activity.add("System: Verifying data integrity...")
        if result.recovered_ids:
            self.activity.add(f"System: Detected {len(result.recovered_ids)} orphan links excluded by "
                              f"Architect. Recovering...")
        else:
            self.activity.add("System: Integrity Check Passed. 100% data preservation.")

        self.proposed = result.nodes
        self.activity.add("Transitioning to Review Phase.")
        self.state = AppState.WIZARD_REVIEW
        return result

    def confirm_wizard(self, keep_folder_ids: Optional[AbstractSet[str]] = None) -> List[BookmarkNode]:
        """Adopt the proposal, dissolving every folder not kept (all are kept by default)"""
        keep = all_folder_ids(self.proposed) if keep_folder_ids is None else set(keep_folder_ids)
        self._next_generation()
        self.nodes = resolve_structure(self.proposed, keep)
        self.proposed = []
        self.active_folder_id = first_folder_id(self.nodes)
        self.state = AppState.MANAGER
        self.activity.add("Structure finalized. Manager Active.")
        return self.nodes

    def cancel_wizard(self) -> List[BookmarkNode]:
        self._next_generation()
        self.nodes = copy_forest(self.backup) if self.backup else self.nodes
        self.proposed = []
        self.active_folder_id = first_folder_id(self.nodes)
        self.state = AppState.MANAGER
        self.activity.add("Changes discarded. Restored original topology.")
        return self.nodes

    async def organize(self, check_links: bool = True, depth: Optional[str] = None,
                       on_progress: ProgressCallback = None) -> Optional[ReconcileResult]:
        """Liveness (or plain normalization), enrichment and the structure proposal in one go"""
        if check_links:
            await self.run_liveness_check(on_progress=on_progress)
        else:
            self.normalize_topology()
        await self.run_enrichment(on_progress=on_progress)
        return await self.propose_structure(depth=depth)

    # ------------------------------------------------------------------
    # Manager state
    # ------------------------------------------------------------------

    async def execute_agent_command(self, command: str) -> CommandResult:
        self.activity.add(f'Agent: Processing command: "{command}"')
        parsed = await self.oracle.parse_agent_command(command)
        result = execute_command(self.nodes, parsed, self.active_folder_id)
        self.nodes = result.nodes
        for line in result.message.splitlines():
            self.activity.add(line)
        return result

    def move(self, node_ids: Sequence[str], target_folder_id: str) -> bool:
        try:
            self.nodes = move_nodes(self.nodes, node_ids, target_folder_id)
        except InvalidMoveError as e:
            self.activity.warning(f"Move rejected: {e}")
            return False
        self.activity.add(f"Moved {len(node_ids)} items.")
        return True

    async def auto_group(self, parent_id: str, node_ids: AbstractSet[str]):
        self.nodes = await auto_group(self.nodes, parent_id, node_ids, self.oracle)

    async def smart_rename(self, node_ids: AbstractSet[str]):
        self.activity.add(f"Optimizing titles for {len(node_ids)} items...")
        self.nodes = await smart_rename(self.nodes, node_ids, self.oracle)

    def export_html(self) -> str:
        return serialize_bookmarks(self.nodes)

    def save_state(self, state_file: str):
        """Save processing state to intermediate file"""
        state = {
            "state": self.state.value,
            "active_folder_id": self.active_folder_id,
            "nodes": [node.to_dict() for node in self.nodes],
            "proposed": [node.to_dict() for node in self.proposed],
            "saved_at": datetime.now().isoformat(),
        }
        with open(state_file, 'w', encoding='utf-8') as f:
            json.dump(state, f, indent=2, ensure_ascii=False)

    def load_state(self, state_file: str):
        with open(state_file, 'r', encoding='utf-8') as f:
            state = json.load(f)
        self._next_generation()
        self.state = AppState(state.get("state", AppState.MANAGER.value))
        self.nodes = [BookmarkNode.from_dict(item) for item in state.get("nodes", [])]
        self.proposed = [BookmarkNode.from_dict(item) for item in state.get("proposed", [])]
        self.active_folder_id = state.get("active_folder_id")


# ----------------------------------------------------------------------
# Console helpers
# ----------------------------------------------------------------------

def progress_bar(desc: str):
    """tqdm bar driven by dispatcher progress callbacks"""
    bar = tqdm(total=0, desc=desc, unit="link")

    def update(progress: Progress):
        bar.total = progress.total
        bar.n = progress.completed
        bar.refresh()

    return bar, update


def display_tree(nodes: Sequence[BookmarkNode], indent: str = "", numbered: Optional[Dict[str, int]] = None):
    """Recursively display folder tree structure"""
    for node in nodes:
        if not node.is_folder:
            continue
        label = f"[{numbered[node.id]}] " if numbered else ""
        print(f"{indent}📁 {label}{node.title}/ ({count_links(node.children)} bookmarks)")
        display_tree(node.children, indent + "  ", numbered)
    loose = [node for node in nodes if node.is_link]
    if loose and indent == "":
        print(f"📄 {len(loose)} bookmarks at top level")


def ask_quiz(questions: Sequence[QuizQuestion]) -> List[QuizAnswer]:
    answers = []
    for question in questions:
        print(f"\n❓ {question.question}")
        for i, option in enumerate(question.options, 1):
            print(f"  {i}. {option}")
        while True:
            choice = input(f"Choose 1-{len(question.options)} (Enter to skip): ").strip()
            if not choice:
                break
            if choice.isdigit() and 1 <= int(choice) <= len(question.options):
                answers.append(QuizAnswer(question.id, question.question, question.options[int(choice) - 1]))
                break
            print("Please enter a valid option number")
    return answers


def review_folders(proposed: Sequence[BookmarkNode]) -> Optional[Set[str]]:
    """Ask which proposed folders to dissolve. None means the proposal was rejected."""
    folders = flatten_folders(proposed)
    numbered = {folder.id: i for i, folder in enumerate(folders, 1)}
    print(f"\n🗂️ PROPOSED FOLDER STRUCTURE:")
    display_tree(proposed, numbered=numbered)

    while True:
        response = input("\nFolders to dissolve (comma-separated numbers), Enter to keep all, "
                         "'n' to discard the proposal: ").strip().lower()
        if response in ('n', 'no'):
            return None
        if not response:
            return set(numbered)
        try:
            dissolve = {int(part) for part in response.replace(' ', '').split(',') if part}
        except ValueError:
            print("Please enter folder numbers separated by commas")
            continue
        return {folder.id for folder in folders if numbered[folder.id] not in dissolve}


def write_output(manager: BookmarkManager, output_file: str):
    with open(output_file, 'w', encoding='utf-8') as f:
        f.write(manager.export_html())
    print(f"💾 Saved {count_links(manager.nodes)} bookmarks to: {output_file}")


async def run_interactive(manager: BookmarkManager, args) -> bool:
    """Full pipeline with console prompts; returns False if the proposal was discarded"""
    if args.skip_link_check:
        manager.normalize_topology(dedupe=not args.skip_duplicate_check)
    else:
        bar, update = progress_bar("Checking links")
        with bar:
            report = await manager.run_liveness_check(on_progress=update, dedupe=not args.skip_duplicate_check)
        print(f"🔗 {len(report.dead)} of {report.checked} links look dead")

    bar, update = progress_bar("Enriching")
    with bar:
        enriched = await manager.run_enrichment(on_progress=update)
    print(f"✨ Enriched {enriched} bookmarks")

    pending = manager.pending_questions()
    if pending and not args.yes:
        print(f"\n📋 A few questions to guide the new structure:")
        manager.record_answers(ask_quiz(pending))

    print(f"\n🤖 Proposing a {args.depth or manager.config.tree_depth} folder structure...")
    result = await manager.propose_structure(depth=args.depth)
    if result is not None and result.recovered_ids:
        print(f"🛟 {len(result.recovered_ids)} bookmarks were left out and moved to a recovery folder")

    if args.yes:
        display_tree(manager.proposed)
        manager.confirm_wizard()
        return True

    keep = review_folders(manager.proposed)
    if keep is None:
        manager.cancel_wizard()
        print("❌ Restructure cancelled, original topology restored")
        return False
    manager.confirm_wizard(keep)
    print("✅ Restructure approved")
    return True


def main():
    parser = argparse.ArgumentParser(description="Bookmark Tree Cleanup Tool")
    parser.add_argument("bookmark_file", help="Path to an exported bookmarks HTML file")
    parser.add_argument("--output", "-o", help="Output file for reorganized bookmarks")
    parser.add_argument("--model", help="LLM model to use (e.g., gpt-4.1, claude-3-5-sonnet-latest)")
    parser.add_argument("--depth", choices=list(TREE_DEPTHS), help="How deep the proposed folder tree may go")
    parser.add_argument("--concurrency", type=int, help="Links probed at once during the liveness check")
    parser.add_argument("--skip-link-check", action="store_true", help="Skip broken link validation")
    parser.add_argument("--skip-duplicate-check", action="store_true", help="Skip duplicate bookmark detection")
    parser.add_argument("--dedupe-only", action="store_true", help="Only remove duplicates and merge import folders")
    parser.add_argument("--agent", metavar="COMMAND", help="Apply one free-text command (e.g. 'move youtube links to Video')")
    parser.add_argument("--yes", "-y", action="store_true", help="Skip the quiz and keep every proposed folder")
    parser.add_argument("--force", action="store_true", help="Reorganize even a file this tool already exported")
    parser.add_argument("--output-llm-response", help="Save the raw structure proposal to this file")
    parser.add_argument("--debug-prompt", action="store_true", help="Save the structure prompt being sent to LLM")
    parser.add_argument("--state-file", help="Save the final state as JSON for later inspection")

    args = parser.parse_args()

    if not os.path.exists(args.bookmark_file):
        print(f"Error: Bookmark file '{args.bookmark_file}' not found.")
        return 1

    setup_logger()

    if args.model:
        os.environ['BOOKMARK_LLM_MODEL'] = args.model

    config = PipelineConfig.from_env()
    if args.depth:
        config.tree_depth = args.depth
    if args.concurrency:
        config.concurrency = max(1, args.concurrency)

    output_file = args.output
    if not output_file:
        base_name = os.path.splitext(args.bookmark_file)[0]
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        output_file = f"{base_name}_organized_{timestamp}.html"

    activity = ActivityLog(listener=lambda message: tqdm.write(f"  · {message}"))
    manager = BookmarkManager(
        config=config,
        preferences=PreferenceStore(config.preferences_file, config.preferences_ttl_days),
        activity=activity,
    )

    with open(args.bookmark_file, 'r', encoding='utf-8') as f:
        html_content = f.read()

    try:
        manager.load_html(html_content, dedupe=not args.skip_duplicate_check)
    except BookmarkParseError as e:
        print(f"❌ Failed to parse bookmark file: {e}")
        return 1

    print(f"📚 Loaded {count_links(manager.nodes)} bookmarks "
          f"({manager.duplicates_removed} duplicates removed)")

    if args.dedupe_only:
        manager.normalize_topology(dedupe=not args.skip_duplicate_check)
        write_output(manager, output_file)
        return 0

    if manager.is_processed_export and not args.force and not args.agent:
        print("📎 This file was already organized by treemark. Use --force to run the full pipeline again.")
        return 0

    # Only now is an API key required
    from .llm_client import create_llm_client
    try:
        manager.oracle = create_llm_client(
            output_raw_response=bool(args.output_llm_response),
            raw_output_file=args.output_llm_response,
            debug_prompt=args.debug_prompt,
        )
    except KeyError as e:
        print(f"❌ Missing API key environment variable: {e}")
        return 1

    if args.agent:
        manager.open_in_manager()
        result = asyncio.run(manager.execute_agent_command(args.agent))
        if not result.applied:
            print("⚠️ Command made no changes")
        write_output(manager, output_file)
        return 0

    asyncio.run(run_interactive(manager, args))
    write_output(manager, output_file)
    if args.state_file:
        manager.save_state(args.state_file)
        print(f"📄 State saved to: {args.state_file}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
