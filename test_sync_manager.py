#!/usr/bin/env python3
"""
End-to-end tests for MindMapSyncManager.

Each test gets its own data directory and a local bare repository acting
as the GitHub remote.
"""

import shutil
import tempfile
import threading
import unittest
from pathlib import Path
from unittest.mock import patch

from git import Repo

from mindsync.config import Config
from mindsync.errors import ErrorKind
from mindsync.file_lock import sync_lock
from mindsync.git_sync.manager import MindMapSyncManager
from mindsync.git_sync.repository_info import GitRepoState
from mindsync.mindmap.branches import get_branch_data
from mindsync.mindmap.models import Actor, CardUpdate, FullStateUpdate, NodeUpdate


DOMAIN = "acme"
ANA = Actor(user_id=5, username="ana")


class SyncManagerTestCase(unittest.TestCase):

    def setUp(self):
        self.temp_dir = Path(tempfile.mkdtemp())
        self.config = Config(data_dir=self.temp_dir / "data", git_retry_attempts=1, git_retry_delay=0.0)
        self.remote = self.temp_dir / "remote.git"
        Repo.init(self.remote, bare=True)
        self.manager = MindMapSyncManager(self.config)

        created = self.manager.create_mindmap(DOMAIN, "Plan", owner=5, content="# Plan\n",
                                              github_repo=str(self.remote))
        self.assertTrue(created.success, created.message)
        self.mmid = created.data["mmid"]
        self.root_id = created.data["rootId"]

    def tearDown(self):
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def doc(self):
        return self.manager.store.get_mindmap(DOMAIN, self.mmid)

    def add_node(self, text, parent_id=None, branch=None):
        result = self.manager.add_node(DOMAIN, self.mmid, text, parent_id or self.root_id, branch=branch)
        self.assertTrue(result.success, result.message)
        return result.data["node"]["id"]

    def workdir(self, branch="main"):
        return self.manager.workdir(DOMAIN, self.mmid, branch)

    def collaborator(self, name="other"):
        repo = Repo.clone_from(str(self.remote), str(self.temp_dir / name), branch="main")
        with repo.config_writer() as writer:
            writer.set_value("user", "name", "Someone Else")
            writer.set_value("user", "email", "else@example.com")
        return repo

    def push_from(self, repo, message):
        repo.git.add(A=True)
        repo.git.commit(m=message)
        repo.git.push("origin", "main")


class TestMindmapLifecycle(SyncManagerTestCase):

    def test_create_mindmap_has_root_node(self):
        doc = self.doc()
        self.assertEqual(doc.title, "Plan")
        self.assertEqual(doc.current_branch, "main")
        self.assertEqual([n.text for n in get_branch_data(doc, "main").nodes], ["Plan"])

    def test_create_mindmap_rejects_empty_title(self):
        result = self.manager.create_mindmap(DOMAIN, "   ")
        self.assertFalse(result.success)
        self.assertEqual(result.error_kind, ErrorKind.VALIDATION)

    def test_update_mindmap(self):
        result = self.manager.update_mindmap(DOMAIN, self.mmid, title="Roadmap", content="new")
        self.assertTrue(result.success)
        self.assertEqual(self.doc().title, "Roadmap")
        self.assertEqual(self.doc().content, "new")

    def test_unknown_mindmap(self):
        result = self.manager.commit_changes(DOMAIN, 999)
        self.assertFalse(result.success)
        self.assertEqual(result.error_kind, ErrorKind.NOT_FOUND)
        self.assertEqual(self.manager.git_status(DOMAIN, 999), GitRepoState())
        self.assertEqual(self.manager.list_history(DOMAIN, 999), [])

    def test_update_mindmap_waits_for_branch_lock(self):
        self.manager.commit_changes(DOMAIN, self.mmid, message="init")
        readme = self.workdir() / "README.md"
        results = []
        with sync_lock(self.config, DOMAIN, self.mmid, "main"):
            worker = threading.Thread(target=lambda: results.append(
                self.manager.update_mindmap(DOMAIN, self.mmid, content="# Raced\n")))
            worker.start()
            worker.join(0.5)
            self.assertTrue(worker.is_alive())
            self.assertEqual(readme.read_text(encoding="utf-8"), "# Plan\n")
        worker.join(10)

        self.assertTrue(results[0].success, results[0].message)
        self.assertTrue(results[0].data["synced"])
        self.assertEqual(readme.read_text(encoding="utf-8"), "# Raced\n")

    def test_corrupt_document_fails_cleanly(self):
        target = self.config.documents_dir / DOMAIN / str(self.mmid) / "mindmap.json"
        target.write_text("{not json", encoding="utf-8")

        self.assertEqual(self.manager.git_status(DOMAIN, self.mmid), GitRepoState())
        result = self.manager.commit_changes(DOMAIN, self.mmid)
        self.assertFalse(result.success)
        self.assertEqual(result.error_kind, ErrorKind.IMPORT_PARSE_FAILURE)
        self.assertEqual(result.error_code, "DOCUMENT_CORRUPT")

    def test_unexpected_error_becomes_failed_result(self):
        self.manager.commit_changes(DOMAIN, self.mmid, message="init")
        with patch.object(self.manager.store, "list_cards", side_effect=RuntimeError("boom")):
            result = self.manager.commit_changes(DOMAIN, self.mmid, branch="main")
            status = self.manager.git_status(DOMAIN, self.mmid)

        self.assertFalse(result.success)
        self.assertEqual(result.error_code, "UNEXPECTED_ERROR")
        self.assertEqual(result.branch, "main")
        self.assertEqual(status, GitRepoState())


class TestSave(SyncManagerTestCase):

    def test_position_only_save_is_not_substantive(self):
        nodes = get_branch_data(self.doc(), "main").nodes
        nodes[0].x = 500
        result = self.manager.save(DOMAIN, self.mmid, FullStateUpdate(nodes=nodes, viewport={"zoom": 2}))

        self.assertTrue(result.success)
        self.assertFalse(result.data["hasNonPositionChanges"])
        self.assertFalse(result.data["synced"])
        doc = self.doc()
        self.assertEqual(doc.nodes[0].x, 500)
        self.assertEqual(doc.viewport, {"zoom": 2})
        self.assertEqual(doc.history[0].description, "auto save")

    def test_substantive_save_syncs_existing_workdir(self):
        self.manager.commit_changes(DOMAIN, self.mmid, message="init")
        snapshot = get_branch_data(self.doc(), "main")
        snapshot.nodes[0].text = "Renamed"
        result = self.manager.save(DOMAIN, self.mmid, FullStateUpdate(
            nodes=snapshot.nodes, description="rename root"), actor=ANA)

        self.assertTrue(result.data["hasNonPositionChanges"])
        self.assertTrue(result.data["synced"])
        entry = self.doc().history[0]
        self.assertEqual((entry.kind, entry.username, entry.description), ("save", "ana", "rename root"))

    def test_save_without_workdir_does_not_create_one(self):
        snapshot = get_branch_data(self.doc(), "main")
        snapshot.nodes[0].text = "Renamed"
        result = self.manager.save(DOMAIN, self.mmid, FullStateUpdate(nodes=snapshot.nodes))
        self.assertTrue(result.data["hasNonPositionChanges"])
        self.assertFalse(result.data["synced"])
        self.assertFalse(self.workdir().exists())

    def test_concurrent_saves_on_two_branches_keep_every_entry(self):
        self.assertTrue(self.manager.create_branch(DOMAIN, self.mmid, "feature").success)
        errors = []

        def save_many(branch):
            for i in range(5):
                snapshot = get_branch_data(self.doc(), branch)
                snapshot.nodes[0].text = f"{branch} {i}"
                result = self.manager.save(DOMAIN, self.mmid, FullStateUpdate(nodes=snapshot.nodes, branch=branch))
                if not result.success:
                    errors.append(result.message)

        threads = [threading.Thread(target=save_many, args=(b,)) for b in ("main", "feature")]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        self.assertEqual(errors, [])
        doc = self.doc()
        self.assertEqual(len(doc.history), 10)
        self.assertEqual(get_branch_data(doc, "main").nodes[0].text, "main 4")
        self.assertEqual(get_branch_data(doc, "feature").nodes[0].text, "feature 4")


class TestCommitAndPush(SyncManagerTestCase):

    def test_status_before_first_commit(self):
        self.assertEqual(self.manager.git_status(DOMAIN, self.mmid), GitRepoState())
        self.assertFalse(self.workdir().exists())

    def test_commit_writes_tree_and_history(self):
        self.add_node("Ideas")
        result = self.manager.commit_changes(DOMAIN, self.mmid, message="msg", actor=ANA)

        self.assertTrue(result.success, result.message)
        self.assertTrue(result.data["committed"])
        workdir = self.workdir()
        self.assertEqual((workdir / "README.md").read_text(encoding="utf-8"), "# Plan\n")
        self.assertTrue((workdir / "Ideas" / ".keep").exists())

        repo = Repo(workdir)
        self.assertEqual(repo.head.commit.message.strip(), "acme/5/ana: msg")
        self.assertEqual(repo.head.commit.hexsha, result.data["commit"])

        history = self.manager.list_history(DOMAIN, self.mmid)
        self.assertEqual(history[0]["type"], "commit")
        self.assertEqual(history[0]["description"], "acme/5/ana: msg")

    def test_sync_without_commit(self):
        skipped = self.manager.sync_without_commit(DOMAIN, self.mmid)
        self.assertTrue(skipped.success)
        self.assertFalse(skipped.data["synced"])

        self.manager.commit_changes(DOMAIN, self.mmid, message="init")
        self.manager.update_mindmap(DOMAIN, self.mmid, content="# Changed\n")
        (self.workdir() / "README.md").write_text("local edit", encoding="utf-8")

        result = self.manager.sync_without_commit(DOMAIN, self.mmid, branch="main")

        self.assertTrue(result.data["synced"])
        self.assertEqual(result.data["written"], 1)
        self.assertEqual((self.workdir() / "README.md").read_text(encoding="utf-8"), "# Changed\n")
        self.assertTrue(Repo(self.workdir()).is_dirty())

    def test_commit_without_changes(self):
        self.manager.commit_changes(DOMAIN, self.mmid, message="first")
        result = self.manager.commit_changes(DOMAIN, self.mmid, message="again")
        self.assertTrue(result.success)
        self.assertFalse(result.data["committed"])
        self.assertIsNone(result.data["commit"])
        self.assertEqual(len([h for h in self.doc().history if h.kind == "commit"]), 1)

    def test_commit_rejects_invalid_branch_name(self):
        result = self.manager.commit_changes(DOMAIN, self.mmid, branch="bad..name")
        self.assertFalse(result.success)
        self.assertEqual(result.error_kind, ErrorKind.VALIDATION)

    def test_push_uses_default_message(self):
        self.add_node("Ideas")
        result = self.manager.push(DOMAIN, self.mmid)

        self.assertTrue(result.success, result.message)
        remote = Repo(self.remote)
        self.assertEqual(remote.git.log("-1", "--format=%s", "main"), "acme/0/unknown: Update mindmap 1")
        self.assertIn("Ideas/.keep", remote.git.ls_tree("-r", "--name-only", "main").splitlines())

    def test_push_without_remote(self):
        created = self.manager.create_mindmap(DOMAIN, "Local only")
        result = self.manager.push(DOMAIN, created.data["mmid"])
        self.assertFalse(result.success)
        self.assertEqual(result.error_kind, ErrorKind.VALIDATION)
        self.assertEqual(result.error_code, "REMOTE_NOT_CONFIGURED")
        self.assertEqual(result.branch, None)

    def test_push_to_github_without_token(self):
        self.manager.update_mindmap(DOMAIN, self.mmid, github_repo="acme/notes")
        result = self.manager.push(DOMAIN, self.mmid, branch="main")
        self.assertFalse(result.success)
        self.assertEqual(result.error_kind, ErrorKind.REMOTE_AUTH_FAILURE)
        self.assertEqual(result.branch, "main")
        self.assertEqual(result.to_dict()["errorKind"], "remote_auth_failure")

    def test_status_after_commit_and_push(self):
        self.manager.push(DOMAIN, self.mmid, message="first")
        status = self.manager.git_status(DOMAIN, self.mmid)
        self.assertTrue(status.has_local_repo)
        self.assertTrue(status.has_remote_branch)
        self.assertEqual((status.ahead, status.behind), (0, 0))
        self.assertFalse(status.uncommitted_changes)

        self.add_node("Later")
        status = self.manager.git_status(DOMAIN, self.mmid)
        self.assertTrue(status.uncommitted_changes)
        self.assertIn("Later/.keep", status.changes.added)

        self.manager.commit_changes(DOMAIN, self.mmid, message="second")
        status = self.manager.git_status(DOMAIN, self.mmid)
        self.assertEqual((status.ahead, status.behind), (1, 0))
        self.assertEqual(status.last_commit_message, "acme/0/unknown: second")


class TestPull(SyncManagerTestCase):

    def setUp(self):
        super().setUp()
        self.ideas_id = self.add_node("Ideas")
        result = self.manager.push(DOMAIN, self.mmid, message="seed")
        self.assertTrue(result.success, result.message)

    def test_pull_imports_remote_changes(self):
        other = self.collaborator()
        work = Path(other.working_tree_dir)
        (work / "Ideas" / "idea.md").write_text("# Idea\n", encoding="utf-8")
        (work / "README.md").write_text("# Plan v2\n", encoding="utf-8")
        self.push_from(other, "add idea")

        result = self.manager.pull(DOMAIN, self.mmid)

        self.assertTrue(result.success, result.message)
        self.assertEqual(result.data["nodes"], 2)
        self.assertEqual(result.data["cards"], 1)
        self.assertEqual(result.data["commit"], other.head.commit.hexsha)

        doc = self.doc()
        snapshot = get_branch_data(doc, "main")
        self.assertEqual([n.text for n in snapshot.nodes], ["Root", "Ideas"])
        self.assertEqual(doc.nodes, snapshot.nodes)
        self.assertEqual(doc.content, "# Plan v2\n")

        cards = self.manager.store.list_cards(DOMAIN, self.mmid)
        self.assertEqual([(c.title, c.content, c.owner) for c in cards], [("idea", "# Idea\n", 5)])
        self.assertEqual(cards[0].node_id, snapshot.nodes[1].id)

    def test_unreadable_tree_leaves_document_untouched(self):
        self.manager.create_card(DOMAIN, self.mmid, self.ideas_id, "Keep me")
        before = self.doc()

        other = self.collaborator()
        (Path(other.working_tree_dir) / "Ideas" / "bad.md").write_bytes(b"\xff\xfe\xfa")
        self.push_from(other, "binary")

        result = self.manager.pull(DOMAIN, self.mmid)

        self.assertFalse(result.success)
        self.assertEqual(result.error_kind, ErrorKind.IMPORT_PARSE_FAILURE)
        after = self.doc()
        self.assertEqual(get_branch_data(after, "main"), get_branch_data(before, "main"))
        self.assertEqual([c.title for c in self.manager.store.list_cards(DOMAIN, self.mmid)], ["Keep me"])

    def test_pull_missing_remote_branch(self):
        result = self.manager.pull(DOMAIN, self.mmid, branch="nowhere")
        self.assertFalse(result.success)
        self.assertEqual(result.error_kind, ErrorKind.NOT_FOUND)
        self.assertEqual(result.branch, "nowhere")


class TestBranchesAndHistory(SyncManagerTestCase):

    def test_create_branch_starts_at_main_tip(self):
        self.add_node("Ideas")
        commit = self.manager.commit_changes(DOMAIN, self.mmid, message="base")

        result = self.manager.create_branch(DOMAIN, self.mmid, "feature")

        self.assertTrue(result.success, result.message)
        self.assertEqual(result.data["branches"], ["main", "feature"])
        self.assertEqual(self.doc().current_branch, "feature")
        feature = Repo(self.workdir("feature"))
        self.assertEqual(feature.active_branch.name, "feature")
        self.assertEqual(feature.head.commit.hexsha, commit.data["commit"])
        self.assertTrue((self.workdir("feature") / "Ideas" / ".keep").exists())

    def test_create_branch_before_any_commit(self):
        result = self.manager.create_branch(DOMAIN, self.mmid, "feature")
        self.assertTrue(result.success)
        self.assertFalse(self.workdir("feature").exists())

    def test_create_branch_rules(self):
        reserved = self.manager.create_branch(DOMAIN, self.mmid, "main")
        self.assertEqual(reserved.error_kind, ErrorKind.VALIDATION)

        self.manager.create_branch(DOMAIN, self.mmid, "feature")
        from_feature = self.manager.create_branch(DOMAIN, self.mmid, "other")
        self.assertFalse(from_feature.success)
        self.assertEqual(from_feature.error_kind, ErrorKind.FORBIDDEN)
        self.assertEqual(self.doc().branches, ["main", "feature"])

    def test_switch_back_to_main_allows_another_branch(self):
        self.manager.create_branch(DOMAIN, self.mmid, "feature")

        switched = self.manager.switch_branch(DOMAIN, self.mmid, "main")
        self.assertTrue(switched.success, switched.message)
        self.assertEqual(switched.data["currentBranch"], "main")
        self.assertEqual(self.doc().current_branch, "main")

        second = self.manager.create_branch(DOMAIN, self.mmid, "second")
        self.assertTrue(second.success, second.message)
        self.assertEqual(self.doc().branches, ["main", "feature", "second"])

        self.manager.switch_branch(DOMAIN, self.mmid, "feature")
        self.add_node("On feature")
        self.assertEqual(len(get_branch_data(self.doc(), "feature").nodes), 2)
        self.assertEqual(len(get_branch_data(self.doc(), "main").nodes), 1)

    def test_switch_to_unknown_branch(self):
        result = self.manager.switch_branch(DOMAIN, self.mmid, "nowhere")
        self.assertFalse(result.success)
        self.assertEqual(result.error_kind, ErrorKind.NOT_FOUND)
        self.assertEqual(self.doc().current_branch, "main")

    def test_branch_edits_do_not_touch_main(self):
        self.manager.create_branch(DOMAIN, self.mmid, "feature")
        self.add_node("Only on feature", branch="feature")
        doc = self.doc()
        self.assertEqual(len(get_branch_data(doc, "feature").nodes), 2)
        self.assertEqual(len(get_branch_data(doc, "main").nodes), 1)

    def test_restore_history(self):
        snapshot = get_branch_data(self.doc(), "main")
        self.manager.save(DOMAIN, self.mmid, FullStateUpdate(nodes=snapshot.nodes, description="original"))
        snapshot.nodes[0].text = "Changed"
        self.manager.save(DOMAIN, self.mmid, FullStateUpdate(nodes=snapshot.nodes, description="changed"))

        history = self.manager.list_history(DOMAIN, self.mmid)
        self.assertEqual([h["description"] for h in history], ["changed", "original"])

        result = self.manager.restore_history(DOMAIN, self.mmid, history[1]["id"])

        self.assertTrue(result.success, result.message)
        doc = self.doc()
        self.assertEqual(get_branch_data(doc, "main").nodes[0].text, "Plan")
        self.assertEqual(len(doc.history), 2)

    def test_restore_unknown_entry(self):
        result = self.manager.restore_history(DOMAIN, self.mmid, "hist_missing")
        self.assertFalse(result.success)
        self.assertEqual(result.error_code, "HISTORY_NOT_FOUND")


class TestGraphAndCards(SyncManagerTestCase):

    def setUp(self):
        super().setUp()
        self.ideas_id = self.add_node("Ideas")
        self.manager.commit_changes(DOMAIN, self.mmid, message="init")

    def test_card_lifecycle_is_mirrored(self):
        created = self.manager.create_card(DOMAIN, self.mmid, self.ideas_id, "Note", "body")
        self.assertTrue(created.success, created.message)
        self.assertTrue(created.data["synced"])
        note = self.workdir() / "Ideas" / "Note.md"
        self.assertEqual(note.read_text(encoding="utf-8"), "body")
        self.assertFalse((self.workdir() / "Ideas" / ".keep").exists())

        doc_id = created.data["card"]["docId"]
        self.manager.update_card(DOMAIN, self.mmid, doc_id, CardUpdate(content="edited"))
        self.assertEqual(note.read_text(encoding="utf-8"), "edited")

        self.manager.delete_card(DOMAIN, self.mmid, doc_id)
        self.assertFalse(note.exists())
        self.assertTrue((self.workdir() / "Ideas" / ".keep").exists())

    def test_card_for_unknown_node(self):
        result = self.manager.create_card(DOMAIN, self.mmid, "node_missing", "Note")
        self.assertFalse(result.success)
        self.assertEqual(result.error_code, "NODE_NOT_FOUND")

    def test_node_edits_are_mirrored(self):
        self.manager.update_node(DOMAIN, self.mmid, self.ideas_id, NodeUpdate(text="Thoughts"))
        self.assertTrue((self.workdir() / "Thoughts").is_dir())
        self.assertFalse((self.workdir() / "Ideas").exists())

        result = self.manager.delete_node(DOMAIN, self.mmid, self.ideas_id)
        self.assertEqual(result.data["deleted"], [self.ideas_id])
        self.assertFalse((self.workdir() / "Thoughts").exists())

    def test_edge_rules(self):
        child = self.add_node("Child", parent_id=self.ideas_id)
        cycle = self.manager.add_edge(DOMAIN, self.mmid, child, self.ideas_id)
        self.assertFalse(cycle.success)
        self.assertEqual(cycle.error_kind, ErrorKind.VALIDATION)

        missing = self.manager.delete_edge(DOMAIN, self.mmid, "edge_missing")
        self.assertEqual(missing.error_kind, ErrorKind.NOT_FOUND)


if __name__ == "__main__":
    unittest.main()
