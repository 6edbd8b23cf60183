#!/usr/bin/env python3
"""
Tests for branch bookkeeping and targeted graph edits on mindmap documents.
"""

import unittest

from mindsync.errors import ErrorKind, ForbiddenError, NotFoundError, ValidationError
from mindsync.mindmap import editing
from mindsync.mindmap.branches import (
    create_branch, get_branch_data, set_branch_data, switch_branch, validate_branch_name,
)
from mindsync.mindmap.models import BranchSnapshot, Edge, MindMapDoc, Node, NodeUpdate


def make_doc() -> MindMapDoc:
    doc = MindMapDoc(domain_id="acme", mmid=7, title="Plan")
    set_branch_data(doc, "main", BranchSnapshot(
        nodes=[Node(id="r", text="Plan"), Node(id="a", text="A", parent_id="r")],
        edges=[Edge(id="e1", source="r", target="a")],
    ))
    return doc


class TestBranchData(unittest.TestCase):

    def test_main_falls_back_to_top_level_fields(self):
        doc = MindMapDoc(domain_id="acme", mmid=1, nodes=[Node(id="legacy", text="Old")])
        self.assertEqual([n.id for n in get_branch_data(doc, "main").nodes], ["legacy"])
        self.assertEqual(get_branch_data(doc, "feature").nodes, [])

    def test_writing_main_updates_both_places(self):
        doc = make_doc()
        self.assertEqual([n.id for n in doc.nodes], ["r", "a"])
        self.assertEqual([n.id for n in doc.branch_data["main"].nodes], ["r", "a"])

    def test_returned_data_is_a_copy(self):
        doc = make_doc()
        snapshot = get_branch_data(doc, "main")
        snapshot.nodes[0].text = "changed"
        self.assertEqual(doc.branch_data["main"].nodes[0].text, "Plan")
        self.assertEqual(doc.nodes[0].text, "Plan")

    def test_non_main_write_leaves_top_level_alone(self):
        doc = make_doc()
        set_branch_data(doc, "feature", BranchSnapshot(nodes=[Node(id="x")]))
        self.assertEqual([n.id for n in doc.nodes], ["r", "a"])
        self.assertIn("feature", doc.branches)


class TestCreateBranch(unittest.TestCase):

    def test_copies_main_and_switches(self):
        doc = make_doc()
        create_branch(doc, "feature")
        self.assertEqual(doc.current_branch, "feature")
        self.assertEqual(doc.branches, ["main", "feature"])
        self.assertEqual(get_branch_data(doc, "feature"), get_branch_data(doc, "main"))

    def test_branches_are_isolated(self):
        doc = make_doc()
        create_branch(doc, "feature")
        editing.add_node(doc, "feature", "Only on feature", parent_id="a")

        self.assertEqual(len(get_branch_data(doc, "feature").nodes), 3)
        self.assertEqual(len(get_branch_data(doc, "main").nodes), 2)
        self.assertEqual(len(doc.nodes), 2)

    def test_rejected_names(self):
        doc = make_doc()
        for name in ("", "  ", "main", "bad name", "a..b", "-x", "x.lock", "end/", "a:b"):
            with self.assertRaises(ValidationError, msg=name):
                create_branch(doc, name)
        self.assertEqual(doc.branches, ["main"])

    def test_existing_branch_is_validation_error(self):
        doc = make_doc()
        create_branch(doc, "feature")
        switch_branch(doc, "main")
        with self.assertRaises(ValidationError) as ctx:
            create_branch(doc, "feature")
        self.assertEqual(ctx.exception.error_code, "BRANCH_EXISTS")

    def test_only_from_main(self):
        doc = make_doc()
        create_branch(doc, "feature")
        with self.assertRaises(ForbiddenError) as ctx:
            create_branch(doc, "other")
        self.assertEqual(ctx.exception.kind, ErrorKind.FORBIDDEN)

    def test_switch_to_unknown_branch(self):
        with self.assertRaises(NotFoundError):
            switch_branch(make_doc(), "ghost")

    def test_valid_names_pass(self):
        for name in ("feature", "feature/login", "v1.2", "user_42-x"):
            self.assertEqual(validate_branch_name(name), name)


class TestEditing(unittest.TestCase):

    def setUp(self):
        self.doc = make_doc()

    def snapshot(self):
        return get_branch_data(self.doc, "main")

    def test_find_root(self):
        self.assertEqual(editing.find_root(self.snapshot()).id, "r")
        self.assertIsNone(editing.find_root(BranchSnapshot()))

    def test_add_node_links_to_parent(self):
        node = editing.add_node(self.doc, "main", "B", parent_id="r")
        snapshot = self.snapshot()
        self.assertEqual(node.parent_id, "r")
        self.assertEqual(node.order, 1)
        self.assertIn(("r", node.id), {(e.source, e.target) for e in snapshot.edges})

    def test_add_node_unknown_parent(self):
        with self.assertRaises(NotFoundError):
            editing.add_node(self.doc, "main", "B", parent_id="missing")

    def test_update_node(self):
        editing.update_node(self.doc, "main", "a", NodeUpdate(text="Renamed", x=10))
        node = {n.id: n for n in self.snapshot().nodes}["a"]
        self.assertEqual((node.text, node.x), ("Renamed", 10))

    def test_delete_node_cascades(self):
        b = editing.add_node(self.doc, "main", "B", parent_id="a")
        c = editing.add_node(self.doc, "main", "C", parent_id=b.id)
        editing.add_node(self.doc, "main", "Keep", parent_id="r")

        deleted = editing.delete_node(self.doc, "main", "a")

        self.assertEqual(deleted, {"a", b.id, c.id})
        snapshot = self.snapshot()
        self.assertEqual(sorted(n.text for n in snapshot.nodes), ["Keep", "Plan"])
        self.assertTrue(all(e.source not in deleted and e.target not in deleted for e in snapshot.edges))
        self.assertEqual(editing.validate_forest(snapshot), [])

    def test_add_edge_checks(self):
        b = editing.add_node(self.doc, "main", "B")
        with self.assertRaises(ValidationError):
            editing.add_edge(self.doc, "main", "r", "a")
        with self.assertRaises(ValidationError):
            editing.add_edge(self.doc, "main", b.id, "a")
        with self.assertRaises(ValidationError):
            editing.add_edge(self.doc, "main", "a", "r")
        with self.assertRaises(NotFoundError):
            editing.add_edge(self.doc, "main", "r", "ghost")

        edge = editing.add_edge(self.doc, "main", "a", b.id)
        node = {n.id: n for n in self.snapshot().nodes}[b.id]
        self.assertEqual(node.parent_id, "a")

        editing.delete_edge(self.doc, "main", edge.id)
        node = {n.id: n for n in self.snapshot().nodes}[b.id]
        self.assertIsNone(node.parent_id)
        with self.assertRaises(NotFoundError):
            editing.delete_edge(self.doc, "main", edge.id)


if __name__ == "__main__":
    unittest.main()
