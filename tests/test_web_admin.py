import asyncio
import os
import sys
import tempfile
import unittest

from fastapi.testclient import TestClient


ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
SRC = os.path.join(ROOT, "src")
if SRC not in sys.path:
    sys.path.insert(0, SRC)

from fakes import FakeEngine, make_maid_plugin, write_file  # noqa: E402
from character_service import CharacterService  # noqa: E402
from command_tree import CommandTree  # noqa: E402
from data_store import DataStore  # noqa: E402
from database import RecordStore, init_database  # noqa: E402
from extension_service import ExtensionService  # noqa: E402
from game_session_service import GameSessionService  # noqa: E402
from web_admin import TOKEN_COOKIE, TOKEN_HEADER, create_app  # noqa: E402

TOKEN = "s3cret"


class WebAdminTests(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        plugins = os.path.join(self._tmp.name, "plugins")
        self.plugin_path = make_maid_plugin(plugins)
        db_path = os.path.join(self._tmp.name, "test.db")
        init_database(db_path)
        records = RecordStore(db_path)
        store = DataStore()
        self.service = ExtensionService(
            plugins, FakeEngine(), CommandTree(), store,
            CharacterService(records, store), GameSessionService(records),
        )
        asyncio.run(self.service.initialize())
        self.client = TestClient(create_app(self.service, TOKEN))
        self.auth = {TOKEN_HEADER: TOKEN}

    def tearDown(self):
        self._tmp.cleanup()

    def test_requests_without_token_are_rejected(self):
        for path in ("/api/plugins", "/api/rules"):
            r = self.client.get(path)
            self.assertEqual(r.status_code, 403)
            self.assertFalse(r.json()["ok"])
        self.assertEqual(self.client.get("/api/plugins", headers={TOKEN_HEADER: "wrong"}).status_code, 403)

    def test_empty_configured_token_rejects_everything(self):
        client = TestClient(create_app(self.service, ""))
        self.assertEqual(client.get("/api/plugins", headers={TOKEN_HEADER: ""}).status_code, 403)

    def test_cookie_token(self):
        client = TestClient(create_app(self.service, TOKEN), cookies={TOKEN_COOKIE: TOKEN})
        self.assertEqual(client.get("/api/plugins").status_code, 200)

    def test_list_plugins(self):
        r = self.client.get("/api/plugins", headers=self.auth)
        self.assertEqual(r.status_code, 200)
        plugins = r.json()["plugins"]
        self.assertEqual([p["name"] for p in plugins], ["Maid-TRPG"])
        self.assertEqual(plugins[0]["commands"], 1)

    def test_plugin_detail(self):
        r = self.client.get("/api/plugins/Maid-TRPG", headers=self.auth)
        self.assertEqual(r.status_code, 200)
        data = r.json()
        self.assertEqual(data["script_names"], ["Maid-TRPG.Maid.team"])
        self.assertEqual(data["commands"][0]["trigger"], ".team")
        self.assertEqual(data["commands"][0]["limit"], {"game": True})
        self.assertEqual(self.client.get("/api/plugins/Nope", headers=self.auth).status_code, 404)

    def test_reload(self):
        write_file(os.path.join(self.plugin_path, "rulebook", "maid.yaml"), "rule: Maid\nmanual:\n  宠爱: 新说明\n")
        r = self.client.post("/api/plugins/Maid-TRPG/reload", headers=self.auth)
        self.assertEqual(r.status_code, 200)
        self.assertTrue(r.json()["ok"])
        self.assertEqual(self.service.query_plugin_rule("Maid", "宠爱"), "新说明")

    def test_reload_failures(self):
        self.assertEqual(self.client.post("/api/plugins/Nope/reload", headers=self.auth).status_code, 404)
        write_file(os.path.join(self.plugin_path, "descriptor.json"), "{")
        r = self.client.post("/api/plugins/Maid-TRPG/reload", headers=self.auth)
        self.assertEqual(r.status_code, 400)
        self.assertIsNotNone(self.service.get_plugin("Maid-TRPG"))

    def test_rules(self):
        r = self.client.get("/api/rules", headers=self.auth)
        self.assertEqual(r.json()["rules"], [{"name": "Maid", "entries": 1}])

        r = self.client.get("/api/rules/Maid/宠爱", headers=self.auth)
        self.assertEqual(r.status_code, 200)
        self.assertEqual(r.json()["text"], "女仆从主人处获得的宠爱")
        self.assertEqual(self.client.get("/api/rules/Maid/不存在", headers=self.auth).status_code, 404)


if __name__ == "__main__":
    unittest.main()
