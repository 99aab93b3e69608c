import os
import shutil
import sys
import tempfile
import unittest


ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
SRC = os.path.join(ROOT, "src")
if SRC not in sys.path:
    sys.path.insert(0, SRC)

from fakes import DEMO_PLUGIN, DummySender  # noqa: E402
from character_service import CharacterService  # noqa: E402
from command_handler import CommandHandler  # noqa: E402
from command_tree import CommandTree  # noqa: E402
from data_store import DataStore  # noqa: E402
from database import RecordStore, init_database  # noqa: E402
from extension_service import ExtensionService  # noqa: E402
from game_session_service import GameSessionService  # noqa: E402
from script_engine import LuaScriptEngine  # noqa: E402


def _msg(content, person="u1", area="g1", username="Bob"):
    return {
        "channel": area or f"dm-{person}",
        "area": area,
        "person": person,
        "username": username,
        "content": content,
        "platform": "qq",
    }


class CommandHandlerTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        plugins = os.path.join(self._tmp.name, "plugins")
        shutil.copytree(DEMO_PLUGIN, os.path.join(plugins, "Demo-TRPG"))
        db_path = os.path.join(self._tmp.name, "test.db")
        init_database(db_path)
        records = RecordStore(db_path)
        self.store = DataStore()
        self.service = ExtensionService(
            plugins,
            LuaScriptEngine(),
            CommandTree(),
            self.store,
            CharacterService(records, self.store),
            GameSessionService(records),
        )
        await self.service.initialize()
        self.sender = DummySender()
        self.handler = CommandHandler(self.sender, self.service, admin_uids=("admin",))

    async def asyncTearDown(self):
        self._tmp.cleanup()

    async def _say(self, content, **kwargs) -> str:
        before = len(self.sender.messages)
        await self.handler.handle(_msg(content, **kwargs))
        if len(self.sender.messages) == before:
            return ""
        return self.sender.last

    # -- 插件命令（真实 Lua 脚本） --------------------------------------------

    async def test_favor_reads_character_through_aliases(self):
        self.assertIn("已创建角色卡 Alice", await self._say("/pc new Alice Maid"))
        reply = await self._say(".favor")
        self.assertTrue(reply.startswith("Alice 的宠爱为 0，压力为 5"), reply)
        self.assertIn("女仆从主人处获得的宠爱", reply)

    async def test_favor_without_card(self):
        self.assertEqual(await self._say(".favor"), "Bob 还没有角色卡")

    async def test_team_lists_teammates(self):
        await self._say("/pc new Alice Maid")
        await self._say("/game new 茶会")
        await self._say("/game join")
        await self._say("/game join", person="u2", username="Ann")

        reply = await self._say(".team")
        self.assertEqual(reply.splitlines(), ["队伍一览", "u1: Alice 宠爱 0", "u2: （无角色卡）"])
        self.assertEqual(await self._say(".team.show"), reply)

    async def test_team_without_game(self):
        self.assertEqual(await self._say(".team list"), "当前群组没有进行中的游戏")

    async def test_team_set_updates_card_text(self):
        reply = await self._say(".team.set 勇敢的女仆")
        self.assertEqual(reply, "Bob 的卡片已更新: 勇敢的女仆")
        self.assertEqual(await self.store.get_card_text("u1"), "勇敢的女仆")

    async def test_plain_chat_is_ignored(self):
        self.assertEqual(await self._say("hello"), "")
        self.assertEqual(await self._say(".unknown"), "")

    # -- /ext ---------------------------------------------------------------

    async def test_ext_requires_admin(self):
        self.assertIn("无权限", await self._say("/ext list"))
        self.assertIn("Demo-TRPG v1.0.0", await self._say("/ext list", person="admin"))

    async def test_ext_info_shows_commands_and_limits(self):
        reply = await self._say("/ext info Demo-TRPG", person="admin")
        self.assertIn("女仆跑团示例 (Demo-TRPG) v1.0.0", reply)
        self.assertIn(".team -> Demo-TRPG.Demo.team (限制未生效)", reply)
        self.assertIn("规则: Maid", reply)
        self.assertIn("[x] 插件未加载", await self._say("/ext info Nope", person="admin"))

    async def test_ext_unload_load_reload(self):
        self.assertEqual(await self._say("/ext unload Demo-TRPG", person="admin"), "[ok] 已卸载: Demo-TRPG")
        self.assertEqual(await self._say(".favor"), "")
        self.assertEqual(await self._say("/ext load Demo-TRPG", person="admin"), "[ok] 已加载: Demo-TRPG")
        self.assertEqual(await self._say("/ext reload Demo-TRPG", person="admin"), "[ok] 已重载: Demo-TRPG")
        self.assertEqual(await self._say(".favor"), "Bob 还没有角色卡")

    async def test_ext_load_rejects_paths(self):
        self.assertIn("不合法", await self._say("/ext load ../secret", person="admin"))
        self.assertIn("不存在", await self._say("/ext load Missing", person="admin"))

    async def test_ext_scripts(self):
        reply = await self._say("/ext scripts", person="admin")
        self.assertIn("Demo-TRPG.Demo.team", reply)
        self.assertIn("Demo.favor", reply)

    # -- /rule /pc /game /help ------------------------------------------------

    async def test_rule_lookup(self):
        self.assertTrue((await self._say("/rule 宠爱")).startswith("[Maid] 女仆从主人处获得的宠爱"))
        self.assertTrue((await self._say("/rule Maid 压力")).startswith("[Maid] 女仆累积的压力"))
        self.assertEqual(await self._say("/rule 不存在"), "[x] 未找到规则: 不存在")
        self.assertIn("Maid", await self._say("/rule"))

    async def test_pc_commands(self):
        self.assertEqual(await self._say("/pc new Alice Nope"), "[x] 模板不存在: Nope")
        await self._say("/pc new Alice Maid")
        await self._say("/pc new Alicia")
        self.assertIn("[x] 角色卡 Alice 已存在", await self._say("/pc new Alice"))
        self.assertEqual(await self._say("/pc switch Alicia"), "[ok] 当前角色: Alicia")
        self.assertEqual(await self._say("/pc bind Alice"), "[ok] 已在本群绑定 Alice")
        self.assertEqual(await self._say("/pc bind", area=""), "[x] 只能在群聊中绑定角色卡")
        listing = await self._say("/pc list")
        self.assertIn("* Alicia", listing)
        self.assertIn("Alice [Maid]", listing)

    async def test_game_lifecycle(self):
        self.assertIn("当前群组没有进行中的游戏", await self._say("/game join"))
        self.assertEqual(await self._say("/game new 茶会"), "[ok] 已创建游戏 茶会，你是 GM")
        self.assertIn("[x]", await self._say("/game new 另一个"))
        self.assertEqual(await self._say("/game join", person="u2"), "[ok] 已加入游戏")
        self.assertEqual(await self._say("/game join", person="u2"), "[x] 你已经在游戏中")
        status = await self._say("/game")
        self.assertIn("GM: u1", status)
        self.assertIn("玩家: u2", status)
        self.assertEqual(await self._say("/game end", person="u2"), "[x] 只有 GM 可以结束游戏")
        self.assertEqual(await self._say("/game end"), "[ok] 游戏 茶会 已结束")

    async def test_game_membership_and_areas(self):
        await self._say("/game new 茶会")
        self.assertEqual(await self._say("/game ob", person="u3"), "[ok] 已开始旁观")
        self.assertEqual(await self._say("/game ob", person="u3"), "[x] 你已经在旁观")
        await self._say("/game join", person="u2")
        self.assertIn("旁观: u3", await self._say("/game"))

        self.assertEqual(await self._say("/game leave", person="u2"), "[ok] 已退出游戏")
        self.assertEqual(await self._say("/game leave", person="u3"), "[ok] 已退出游戏")
        self.assertEqual(await self._say("/game leave", person="u3"), "[x] 你不在游戏中")
        status = await self._say("/game")
        self.assertIn("玩家: （无）", status)
        self.assertIn("旁观: （无）", status)

        self.assertEqual(await self._say("/game link g2", person="u2"), "[x] 只有 GM 可以关联群组")
        self.assertEqual(await self._say("/game link g2"), "[ok] 已关联群组 g2")
        self.assertIn("GM: u1", await self._say("/game", area="g2"))
        self.assertEqual(await self._say("/game unlink g1"), "[x] 不能取消当前群组的关联")
        self.assertEqual(await self._say("/game unlink g2"), "[ok] 已取消关联 g2")
        self.assertIn("当前群组没有进行中的游戏", await self._say("/game", area="g2"))

    async def test_help_lists_primary_plugin_commands_only(self):
        reply = await self._say("/help")
        self.assertIn(".team", reply)
        self.assertIn(".favor", reply)
        self.assertNotIn(".team.show", reply)
        self.assertNotIn("管理员", reply)
        self.assertIn("管理员", await self._say("/help", person="admin"))


if __name__ == "__main__":
    unittest.main()
