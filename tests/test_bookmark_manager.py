import asyncio

import pytest

from fakes import FakeOracle, FakeProbe
from treemark.agent import AgentAction, AgentCommand, CommandFilter
from treemark.bookmark_manager import AppState, BookmarkManager
from treemark.bookmark_parser import parse_bookmarks
from treemark.errors import BookmarkParseError
from treemark.llm_templates import PipelineConfig
from treemark.models import LinkStatus
from treemark.preferences import PreferenceStore, QuizAnswer, QuizQuestion
from treemark.reconciler import RECOVERY_FOLDER_TITLE
from treemark.tree import find_node, flatten_folders, flatten_links

EXPORT = """<!DOCTYPE NETSCAPE-Bookmark-file-1>
<TITLE>Bookmarks</TITLE>
<DL><p>
    <DT><H3 PERSONAL_TOOLBAR_FOLDER="true">Bookmarks bar</H3>
    <DL><p>
        <DT><A HREF="https://python.org/">Python</A>
        <DT><A HREF="https://dead.example/">Old blog</A>
    </DL><p>
    <DT><H3>Other Bookmarks</H3>
    <DL><p>
        <DT><A HREF="https://python.org/?utm_source=feed">Python again</A>
        <DT><A HREF="https://rust-lang.org/">Rust</A>
        <DT><A HREF="https://news.example/">News</A>
    </DL><p>
</DL><p>
"""


def make_config(**overrides):
    values = dict(liveness_pace_delay=0.0, enrichment_batch_size=2, probe_timeout=0.5)
    values.update(overrides)
    return PipelineConfig(**values)


def tech_grouping(links):
    by_title = {link.title: link.id for link in links}
    return {"folder_structure": {"Programming": {
        "Python": [by_title["Python (enriched)"]],
        "Rust": [by_title["Rust (enriched)"]],
    }}}


def make_manager(oracle=None, **config):
    return BookmarkManager(
        oracle=oracle or FakeOracle(structure=tech_grouping),
        probe=FakeProbe(dead={"https://dead.example/"}),
        config=make_config(**config),
    )


def test_load_html_parses_and_prunes_duplicates():
    manager = make_manager()
    manager.load_html(EXPORT)

    assert manager.state is AppState.LIVENESS_CHECK
    # python.org in the toolbar wins over the tracked copy in "Other Bookmarks"
    assert manager.duplicates_removed == 1
    assert [link.title for link in flatten_links(manager.nodes)] == ["Python", "Old blog", "Rust", "News"]
    assert not manager.is_processed_export


def test_parse_failure_commits_nothing():
    manager = make_manager()
    manager.load_html(EXPORT)
    before = [link.id for link in flatten_links(manager.nodes)]
    with pytest.raises(BookmarkParseError):
        manager.load_html("<html>nothing</html>")
    assert [link.id for link in flatten_links(manager.nodes)] == before


def test_liveness_marks_dead_links_and_merges_import_folders():
    manager = make_manager()
    manager.load_html(EXPORT)
    report = asyncio.run(manager.run_liveness_check())

    assert [node.url for node in report.dead] == ["https://dead.example/"]
    assert all(link.status in (LinkStatus.ACTIVE, LinkStatus.DEAD) for link in flatten_links(manager.nodes))
    assert [folder.title for folder in flatten_folders(manager.nodes)] == ["Bookmarks bar"]
    assert manager.progress == 100.0
    assert any("Dead Link Detected: Old blog" in entry for entry in manager.activity.entries)


def test_full_pipeline_reconciles_and_confirms():
    oracle = FakeOracle(structure=tech_grouping)
    manager = make_manager(oracle)
    manager.load_html(EXPORT)
    result = asyncio.run(manager.organize())

    assert manager.state is AppState.WIZARD_REVIEW
    assert [node.title for node in manager.proposed] == ["Programming", RECOVERY_FOLDER_TITLE]
    recovered = [link.title for link in manager.proposed[1].children]
    assert recovered == ["Old blog (enriched)", "News (enriched)"]
    assert len(result.recovered_ids) == 2
    assert oracle.structure_calls[0]["depth"] == "Balanced"
    assert oracle.structure_calls[0]["max_tokens"] == 28000
    assert [q.id for q in manager.quiz_questions] == ["q1"]

    final = manager.confirm_wizard()
    assert manager.state is AppState.MANAGER
    assert manager.active_folder_id == final[0].id
    assert sorted(link.title for link in flatten_links(final)) == [
        "News (enriched)", "Old blog (enriched)", "Python (enriched)", "Rust (enriched)"]
    html = manager.export_html()
    assert parse_bookmarks(html).is_processed_export


def test_confirm_with_selection_dissolves_unkept_folders():
    manager = make_manager()
    manager.load_html(EXPORT)
    asyncio.run(manager.organize(check_links=False))

    programming = manager.proposed[0]
    manager.confirm_wizard({programming.id})

    assert [folder.title for folder in flatten_folders(manager.nodes)] == ["Programming"]
    assert len(flatten_links(manager.nodes)) == 4


def test_structure_failure_keeps_current_tree_for_review():
    manager = make_manager(FakeOracle(structure=None))
    manager.load_html(EXPORT)
    result = asyncio.run(manager.organize(check_links=False))

    assert result is None
    assert manager.state is AppState.WIZARD_REVIEW
    assert [link.id for link in flatten_links(manager.proposed)] == [link.id for link in flatten_links(manager.nodes)]
    assert manager.proposed[0] is not manager.nodes[0]
    assert any("Architect failure" in entry for entry in manager.activity.entries)


def raise_write_error(links):
    raise OSError("cannot write raw output")


def test_unexpected_architect_error_still_reaches_review():
    manager = make_manager(FakeOracle(structure=raise_write_error))
    manager.load_html(EXPORT)
    result = asyncio.run(manager.organize(check_links=False))

    assert result is None
    assert manager.state is AppState.WIZARD_REVIEW
    assert [link.id for link in flatten_links(manager.proposed)] == [link.id for link in flatten_links(manager.nodes)]
    assert any("cannot write raw output" in entry for entry in manager.activity.entries)


def test_empty_proposal_counts_as_failure():
    manager = make_manager(FakeOracle(structure={"folder_structure": {}}))
    manager.load_html(EXPORT)
    assert asyncio.run(manager.organize(check_links=False)) is None
    assert manager.state is AppState.WIZARD_REVIEW


def test_cancel_restores_pre_enrichment_backup():
    manager = make_manager()
    manager.load_html(EXPORT)
    asyncio.run(manager.organize(check_links=False))

    restored = manager.cancel_wizard()
    assert manager.state is AppState.MANAGER
    assert [link.title for link in flatten_links(restored)] == ["Python", "Old blog", "Rust", "News"]


def test_enrichment_rewrites_titles_in_batches():
    oracle = FakeOracle(structure=tech_grouping)
    manager = make_manager(oracle)
    manager.load_html(EXPORT)
    enriched = asyncio.run(manager.run_enrichment())

    assert enriched == 4
    assert sorted(len(batch) for batch in oracle.enriched_batches) == [2, 2]
    assert all(link.description.startswith("About ") for link in flatten_links(manager.nodes))


def test_late_insight_question_is_discarded():
    async def scenario():
        release = asyncio.Event()

        async def slow_question(items, existing):
            await release.wait()
            return QuizQuestion("late", "Too late?", ["a", "b", "c", "d"], source="dynamic")

        manager = make_manager(FakeOracle(structure=tech_grouping, periodic=slow_question), insight_threshold=2)
        manager.load_html(EXPORT)
        await manager.run_enrichment()
        release.set()
        await manager.drain_background()
        return manager

    manager = asyncio.run(scenario())
    assert [q.id for q in manager.quiz_questions] == ["q1"]
    assert any("Discarded late question" in entry for entry in manager.activity.entries)


def test_insight_question_during_enrichment_is_kept():
    async def quick_question(items, existing):
        return QuizQuestion("dyn", "Split news?", ["a", "b", "c", "d"], source="dynamic")

    manager = make_manager(FakeOracle(structure=tech_grouping, periodic=quick_question), insight_threshold=2)
    manager.load_html(EXPORT)
    asyncio.run(manager.run_enrichment())
    assert "dyn" in [q.id for q in manager.quiz_questions]


def test_answers_are_merged_and_persisted(tmp_path):
    store = PreferenceStore(str(tmp_path / "prefs.json"))
    manager = BookmarkManager(oracle=FakeOracle(), preferences=store, config=make_config())
    manager.quiz_questions = [QuizQuestion("q1", "Broad?", ["a", "b", "c", "d"]),
                              QuizQuestion("q2", "Deep?", ["a", "b", "c", "d"])]

    manager.record_answers([QuizAnswer("q1", "Broad?", "a")])
    manager.record_answers([QuizAnswer("q1", "Broad?", "b")])

    assert [q.id for q in manager.pending_questions()] == ["q2"]
    assert store.load() == [QuizAnswer("q1", "Broad?", "b")]
    assert BookmarkManager(preferences=store).answers == [QuizAnswer("q1", "Broad?", "b")]


def test_answers_reach_the_structure_request():
    oracle = FakeOracle(structure=tech_grouping)
    manager = make_manager(oracle)
    manager.answers = [QuizAnswer("q1", "Broad?", "Deep")]
    manager.load_html(EXPORT)
    asyncio.run(manager.organize(check_links=False, depth="Shallow"))
    assert oracle.structure_calls[0]["answers"] == [QuizAnswer("q1", "Broad?", "Deep")]
    assert oracle.structure_calls[0]["depth"] == "Shallow"


def test_agent_command_updates_live_tree():
    command = AgentCommand(AgentAction.MOVE, target_name="Snakes", filter=CommandFilter("python", "link"))
    manager = make_manager(FakeOracle(command=command))
    manager.load_html(EXPORT)
    manager.open_in_manager()

    result = asyncio.run(manager.execute_agent_command("put python links in Snakes"))

    assert result.applied
    assert manager.nodes[0].title == "Snakes"
    assert [link.title for link in manager.nodes[0].children] == ["Python"]
    assert 'Agent: Moved 1 items to "Snakes"' in manager.activity.entries


def test_invalid_move_is_rejected_in_place():
    manager = make_manager()
    manager.load_html(EXPORT)
    bar = manager.nodes[0]
    before = [link.id for link in flatten_links(manager.nodes)]

    assert not manager.move([bar.id], "nowhere")
    assert not manager.move([bar.id], bar.children[0].id)
    assert [link.id for link in flatten_links(manager.nodes)] == before
    assert manager.activity.entries[-1].startswith("Move rejected")


def test_processed_export_is_detected():
    manager = make_manager()
    manager.load_html(EXPORT)
    exported = manager.export_html()

    again = make_manager()
    again.load_html(exported)
    again.open_in_manager()
    assert again.is_processed_export
    assert again.state is AppState.MANAGER
    assert again.active_folder_id == again.nodes[0].id


def test_state_snapshot_round_trip(tmp_path):
    manager = make_manager()
    manager.load_html(EXPORT)
    manager.open_in_manager()
    state_file = str(tmp_path / "state.json")
    manager.save_state(state_file)

    restored = BookmarkManager()
    restored.load_state(state_file)
    assert restored.state is AppState.MANAGER
    assert [node.id for node in flatten_links(restored.nodes)] == [node.id for node in flatten_links(manager.nodes)]
    assert find_node(manager.active_folder_id, restored.nodes).title == "Bookmarks bar"


def test_smart_rename_and_auto_group_through_manager():
    manager = make_manager(FakeOracle(folder_name="Languages", titles={}))
    manager.load_html(EXPORT)
    manager.normalize_topology()
    python, rust = flatten_links(manager.nodes)[0], flatten_links(manager.nodes)[2]

    manager.oracle.titles = {python.id: "Python.org"}
    asyncio.run(manager.smart_rename({python.id}))
    assert find_node(python.id, manager.nodes).title == "Python.org"

    old_blog = flatten_links(manager.nodes)[1]
    asyncio.run(manager.auto_group(manager.nodes[0].id, {python.id, old_blog.id}))
    assert manager.nodes[0].children[0].title == "Languages"
    assert rust.id in [link.id for link in flatten_links(manager.nodes)]
