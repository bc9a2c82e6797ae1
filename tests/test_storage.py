from __future__ import annotations

import json
import re
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

from pipeline import storage
from schemas.project import ProjectState


class ProjectStorageTests(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self._patch = patch.object(storage, "DB_PATH", Path(self._tmp.name) / "projects.db")
        self._patch.start()
        storage.reset_storage_connection_for_tests()
        storage.init_db()

    def tearDown(self):
        storage.reset_storage_connection_for_tests()
        self._patch.stop()
        self._tmp.cleanup()

    def test_save_assigns_id_and_bumps_version(self):
        first = storage.save_project(ProjectState(name="LumbarPro launch", script="Stop scrolling."))
        self.assertRegex(first.project_id, r"^proj_\d+_[a-z0-9]{9}$")
        self.assertEqual(first.version, 1)

        second = storage.save_project(first.model_copy(update={"script": "New hook.", "created_at": "ignored"}))
        self.assertEqual(second.project_id, first.project_id)
        self.assertEqual(second.version, 2)
        self.assertEqual(second.created_at, first.created_at)

        loaded = storage.get_project(first.project_id)
        self.assertEqual(loaded.script, "New hook.")
        self.assertEqual(loaded.version, 2)

    def test_list_and_delete(self):
        a = storage.save_project(ProjectState(name="A"))
        b = storage.save_project(ProjectState(name="B"))

        ids = {row["project_id"] for row in storage.list_projects()}
        self.assertEqual(ids, {a.project_id, b.project_id})
        self.assertEqual(len(storage.list_projects(limit=1)), 1)

        self.assertTrue(storage.delete_project(a.project_id))
        self.assertFalse(storage.delete_project(a.project_id))
        self.assertIsNone(storage.get_project(a.project_id))

    def test_export_is_pretty_json(self):
        saved = storage.save_project(ProjectState(name="Export me", voice_id="voice_1"))
        exported = storage.export_project(saved.project_id)

        self.assertEqual(json.loads(exported)["voice_id"], "voice_1")
        self.assertIn("\n  ", exported)
        self.assertIsNone(storage.export_project("proj_missing"))

    def test_new_project_ids_are_unique(self):
        ids = {storage.new_project_id() for _ in range(50)}
        self.assertEqual(len(ids), 50)
        self.assertTrue(all(re.match(r"^proj_\d+_[a-z0-9]{9}$", i) for i in ids))


if __name__ == "__main__":
    unittest.main()
