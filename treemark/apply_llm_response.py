#!/usr/bin/env python3

"""
Apply a saved structure proposal to bookmarks without re-querying the LLM
"""

import json
import sys

from .bookmark_parser import parse_bookmarks, serialize_bookmarks
from .dedup import deduplicate_nodes
from .errors import TreemarkError
from .llm_client import parse_llm_json
from .reconciler import count_assigned_ids, count_grouping_folders, extract_grouping, reconcile
from .tree import count_links


def load_proposal(path: str) -> dict:
    """Read a proposal file; raw LLM output with prose around the JSON is accepted too"""
    with open(path, 'r', encoding='utf-8') as f:
        content = f.read()
    try:
        return json.loads(content)
    except json.JSONDecodeError:
        return parse_llm_json(content)


def main(argv=None):
    argv = sys.argv[1:] if argv is None else argv
    if len(argv) != 3:
        print("Usage: treemark-apply <bookmarks.html> <proposal.json> <output.html>")
        print("Example: treemark-apply bookmarks.html raw_response.json organized.html")
        return 1

    bookmarks_file, proposal_file, output_file = argv

    print(f"📄 Loading structure proposal from: {proposal_file}")
    try:
        grouping = extract_grouping(load_proposal(proposal_file))
    except (OSError, TreemarkError) as e:
        print(f"❌ Could not read proposal: {e}")
        return 1
    print(f"🗂️ Proposal has {count_grouping_folders(grouping)} folders and "
          f"{count_assigned_ids(grouping)} bookmark references")

    print(f"📚 Loading bookmarks from: {bookmarks_file}")
    try:
        with open(bookmarks_file, 'r', encoding='utf-8') as f:
            parsed = parse_bookmarks(f.read())
    except (OSError, TreemarkError) as e:
        print(f"❌ Failed to load bookmarks from {bookmarks_file}: {e}")
        return 1
    print(f"📊 Total bookmarks found: {count_links(parsed.nodes)}")

    # Remove duplicates (like the main flow does)
    dedup = deduplicate_nodes(parsed.nodes)
    if dedup.removed_count:
        print(f"✂️ After removing {dedup.removed_count} duplicates: {count_links(dedup.nodes)} bookmarks")

    print("🤖 Applying reorganization with bookmark preservation...")
    result = reconcile(dedup.nodes, grouping)
    if result.unknown_ids:
        print(f"⚠️ Skipped {len(result.unknown_ids)} ids that match no bookmark")
    if result.recovered_ids:
        print(f"🛟 {len(result.recovered_ids)} bookmarks not in the proposal went to the recovery folder")

    print(f"💾 Saving reorganized bookmarks to: {output_file}")
    with open(output_file, 'w', encoding='utf-8') as f:
        f.write(serialize_bookmarks(result.nodes))

    print("✅ Successfully applied reorganization!")
    return 0


if __name__ == "__main__":
    sys.exit(main())
