"""
Tests for importer.py - depth ordering, parent resolution, tags and error collection.
"""
import itertools
import sqlite3
import pytest
import sys
import os
from datetime import date

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import database
from csv_codec import CSV_HEADERS, export_tasks_to_csv
from database import create_tag_db, create_task_db, get_all_tags, get_all_tasks, get_task_tree
from importer import compute_depth, import_batch, order_by_depth
from models import DraftRecord

OWNER = "owner-1"

HEADER = ",".join(CSV_HEADERS)


def line(name, parent="", importance="25", complexity="5", planned="", due="", tags="", colors=""):
    return f",{name},,,{importance},{complexity},,{planned},{due},,,,{parent},{tags},{colors}"


def csv_text(*lines):
    return "\n".join([HEADER, *lines]) + "\n"


def draft(name, parent=None, line_number=2):
    return DraftRecord(line_number=line_number, name=name, importance=25, complexity=5, parent_name=parent)


def by_name(tasks):
    return {task.name: task for task in tasks}


class TestDepthOrdering:
    """Tests for compute_depth and order_by_depth."""

    def test_depth_counts_in_batch_ancestors(self):
        drafts = [draft("Leaf", "Mid"), draft("Mid", "Root"), draft("Root")]
        names = {d.name.lower(): d for d in drafts}

        assert compute_depth(drafts[2], names) == 0
        assert compute_depth(drafts[1], names) == 1
        assert compute_depth(drafts[0], names) == 2

    def test_missing_parent_has_depth_zero(self):
        orphan = draft("Orphan", "Nobody")
        assert compute_depth(orphan, {"orphan": orphan}) == 0

    def test_self_reference_has_depth_zero(self):
        loner = draft("Loner", "loner")
        assert compute_depth(loner, {"loner": loner}) == 0

    def test_cycle_terminates(self):
        a, b = draft("A", "B"), draft("B", "A")
        names = {"a": a, "b": b}
        assert compute_depth(a, names) == 1
        assert compute_depth(b, names) == 1

    def test_parent_lookup_ignores_case(self):
        child = draft("Child", "gtd PROJECT")
        parent = draft("GTD Project")
        assert compute_depth(child, {"gtd project": parent, "child": child}) == 1

    def test_order_is_stable_within_depth(self):
        drafts = [draft("C2", "P"), draft("Z"), draft("C1", "P"), draft("P")]
        assert [d.name for d in order_by_depth(drafts)] == ["Z", "P", "C2", "C1"]

    def test_ancestors_first_for_every_permutation(self):
        chain = [draft("Root"), draft("Mid", "Root"), draft("Leaf", "Mid")]
        for perm in itertools.permutations(chain):
            assert [d.name for d in order_by_depth(list(perm))] == ["Root", "Mid", "Leaf"]


class TestImportBatch:
    """Tests for import_batch against a real database."""

    def test_imports_flat_rows(self, test_db):
        result = import_batch(csv_text(line("One"), line("Two", importance="50", complexity="1")), OWNER)

        assert result.imported_count == 2
        assert result.errors == []
        tasks = by_name(get_all_tasks(OWNER))
        assert tasks["Two"].points == 500
        assert tasks["One"].points == 50

    def test_child_before_parent(self, test_db):
        content = csv_text(line("Child", parent="Parent"), line("Parent"))
        result = import_batch(content, OWNER)

        assert result.imported_count == 2
        tasks = by_name(get_all_tasks(OWNER))
        assert tasks["Child"].parent_id == tasks["Parent"].id

    def test_three_level_chain_in_any_order(self, test_db):
        rows = [line("Root"), line("Mid", parent="Root"), line("Leaf", parent="Mid")]
        for index, perm in enumerate(itertools.permutations(rows)):
            owner = f"perm-{index}"
            result = import_batch(csv_text(*perm), owner)

            assert result.imported_count == 3
            assert result.errors == []
            tree = get_task_tree(owner)
            assert [t.name for t in tree] == ["Root"]
            assert tree[0].subtasks[0].name == "Mid"
            assert tree[0].subtasks[0].subtasks[0].name == "Leaf"

    def test_parent_names_match_case_insensitively(self, test_db):
        content = csv_text(
            line("GTD Project"),
            line("First", parent="gtd project"),
            line("Second", parent="GTD PROJECT"),
        )
        import_batch(content, OWNER)

        tree = get_task_tree(OWNER)
        assert len(tree) == 1
        assert sorted(t.name for t in tree[0].subtasks) == ["First", "Second"]

    def test_orphan_becomes_root_without_error(self, test_db):
        result = import_batch(csv_text(line("Orphan", parent="Missing")), OWNER)

        assert result.imported_count == 1
        assert result.errors == []
        assert get_all_tasks(OWNER)[0].parent_id is None

    def test_self_reference_becomes_root(self, test_db):
        result = import_batch(csv_text(line("Loop", parent="loop")), OWNER)

        assert result.imported_count == 1
        assert get_all_tasks(OWNER)[0].parent_id is None

    def test_two_task_cycle_imports_both(self, test_db):
        result = import_batch(csv_text(line("A", parent="B"), line("B", parent="A")), OWNER)

        assert result.imported_count == 2
        assert result.errors == []
        tasks = by_name(get_all_tasks(OWNER))
        assert tasks["A"].parent_id is None
        assert tasks["B"].parent_id == tasks["A"].id

    def test_parse_errors_do_not_block_valid_rows(self, test_db):
        content = csv_text(
            line("Good"),
            line("", importance="10"),
            line("Bad", complexity="12"),
            line("Also good", due="2025-06-20"),
        )
        result = import_batch(content, OWNER)

        assert result.imported_count == 2
        assert result.errors == [
            "Line 3: Task name is required",
            "Line 4: complexity must be between 1 and 9",
        ]
        assert by_name(get_all_tasks(OWNER))["Also good"].due_date == date(2025, 6, 20)

    def test_materialization_failure_is_reported_per_row(self, test_db, monkeypatch):
        real_create = database.create_task_db

        def flaky_create(task_id, owner_id, name, **kwargs):
            if name == "Broken":
                raise sqlite3.OperationalError("disk I/O error")
            return real_create(task_id, owner_id, name, **kwargs)

        monkeypatch.setattr(database, "create_task_db", flaky_create)
        result = import_batch(csv_text(line("Fine"), line("Broken"), line("Child", parent="Broken")), OWNER)

        assert result.imported_count == 2
        assert result.errors == ['Failed to import "Broken": disk I/O error']
        # Parent failed, so the child falls back to a root
        assert by_name(get_all_tasks(OWNER))["Child"].parent_id is None

    def test_empty_content(self, test_db):
        result = import_batch("", OWNER)
        assert result.imported_count == 0
        assert result.errors == ["CSV content cannot be empty"]

    def test_header_only(self, test_db):
        result = import_batch(HEADER + "\n", OWNER)
        assert result.imported_count == 0
        assert result.errors == ["CSV must contain at least a header and one data row"]

    def test_long_note_imports_with_neighbours(self, test_db):
        note = "x" * 200_000
        content = csv_text(f',Big,,"{note}",10,1,,,,,,,,,', line("Small"))

        result = import_batch(content, OWNER)

        assert result.imported_count == 2
        assert result.errors == []
        assert len(by_name(get_all_tasks(OWNER))["Big"].note) == 200_000

    def test_unbalanced_quote_reported_and_rest_imported(self, test_db):
        content = csv_text(',"Bad,,,10,1,,,,,,,,,', line("Child", parent="Parent"), line("Parent"))

        result = import_batch(content, OWNER)

        assert result.imported_count == 2
        assert len(result.errors) == 1
        assert result.errors[0].startswith("Line 2: Malformed CSV record")
        tasks = by_name(get_all_tasks(OWNER))
        assert tasks["Child"].parent_id == tasks["Parent"].id

    def test_tags_created_with_colors(self, test_db):
        result = import_batch(csv_text(line("Tagged", tags="work;home", colors="#111")), OWNER)

        assert result.errors == []
        tags = {tag.name: tag.color for tag in get_all_tags(OWNER)}
        assert tags == {"work": "#111", "home": "#3B82F6"}
        task = get_all_tasks(OWNER)[0]
        assert [tag.name for tag in task.tags] == ["work", "home"]

    def test_existing_tag_reused(self, test_db):
        create_tag_db("tag-1", "work", OWNER, "#000")
        import_batch(csv_text(line("One", tags="work"), line("Two", tags="work")), OWNER)

        assert len(get_all_tags(OWNER)) == 1
        assert all(task.tags[0].id == "tag-1" for task in get_all_tasks(OWNER))
        # No color in the file leaves the stored color alone
        assert get_all_tags(OWNER)[0].color == "#000"

    def test_last_color_wins(self, test_db):
        import_batch(csv_text(
            line("One", tags="work", colors="#111"),
            line("Two", tags="work", colors="#222"),
        ), OWNER)

        tags = get_all_tags(OWNER)
        assert len(tags) == 1
        assert tags[0].color == "#222"

    def test_tags_are_scoped_to_owner(self, test_db):
        create_tag_db("other-tag", "work", "someone-else", "#999")
        import_batch(csv_text(line("Mine", tags="work")), OWNER)

        mine = get_all_tags(OWNER)
        assert len(mine) == 1
        assert mine[0].id != "other-tag"


class TestRoundTrip:
    """Exporting and re-importing keeps names, dates, tags and structure."""

    def test_export_then_import(self, test_db):
        create_tag_db("t-work", "work", OWNER, "#111")
        create_tag_db("t-home", "home", OWNER, "#222")
        create_task_db("p", OWNER, "Project, big", importance=40, complexity=2,
                       planned_date=date(2025, 6, 1), due_date=date(2025, 6, 30),
                       note='Say "hi"\nthen leave', tag_ids=["t-work", "t-home"])
        create_task_db("c", OWNER, "Step one", importance=10, complexity=3,
                       parent_id="p", link="https://example.com")
        create_task_db("g", OWNER, "Detail", parent_id="c")

        result = import_batch(export_tasks_to_csv(get_all_tasks(OWNER)), "restored")

        assert result.imported_count == 3
        assert result.errors == []

        original = by_name(get_all_tasks(OWNER))
        restored = by_name(get_all_tasks("restored"))
        assert restored.keys() == original.keys()
        for name, task in restored.items():
            source = original[name]
            assert task.id != source.id
            for field in ("link", "note", "importance", "complexity", "points", "planned_date", "due_date"):
                assert getattr(task, field) == getattr(source, field)
            assert [(t.name, t.color) for t in task.tags] == [(t.name, t.color) for t in source.tags]
            assert task.parent_name == source.parent_name

        tree = get_task_tree("restored")
        assert tree[0].name == "Project, big"
        assert tree[0].subtasks[0].subtasks[0].name == "Detail"
