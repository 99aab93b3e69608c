import os
import sys
import unittest


ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
SRC = os.path.join(ROOT, "src")
if SRC not in sys.path:
    sys.path.insert(0, SRC)

from card_alias import AliasedCard  # noqa: E402
from context_builder import GROUP, USER, ExecutionContext  # noqa: E402
from data_store import DataStore  # noqa: E402
from plugin_base import InterpreterError, ScriptDialect  # noqa: E402
from result_processor import ResultPostProcessor  # noqa: E402
from script_engine import LuaScriptEngine  # noqa: E402
from script_wrapper import wrap_lua_script  # noqa: E402

MAID_ALIASES = {"Maid": {"Favor": "宠爱"}}


def _context(tail="", **kwargs):
    return ExecutionContext(argument_tail=tail, user_id="u1", group_id="g1", username="Bob", **kwargs)


class LuaScriptEngineTests(unittest.TestCase):
    def setUp(self):
        self.engine = LuaScriptEngine()

    def _load_bare(self, name, source):
        self.assertTrue(self.engine.load_script(name, wrap_lua_script(source), ScriptDialect.LUA))

    def test_wrapped_function_receives_message(self):
        self.assertTrue(self.engine.load_script(
            "P.echo", "return function(msg) return 'hi ' .. msg.suffix .. '@' .. msg.gid end", ScriptDialect.LUA,
        ))
        self.assertEqual(self.engine.call_script("P.echo", _context("there")), "hi there@g1")
        self.assertEqual(self.engine.list_scripts(), ["P.echo"])

    def test_character_aliases_resolve_in_lua(self):
        self._load_bare("P.favor", 'return "{pc}:" .. tostring(msg.char.Favor) .. "/" .. tostring(msg.char["宠爱"])')
        card = AliasedCard({"__Name": "Alice", "type": "Maid", "宠爱": 5}, MAID_ALIASES["Maid"])
        context = _context(active_character=card, alias_maps=MAID_ALIASES)
        self.assertEqual(self.engine.call_script("P.favor", context), "Alice:5/5")

    def test_teammate_card_lookup(self):
        self._load_bare("P.team", "\n".join([
            'local c = getPlayerCard("B")',
            'local missing = getPlayerCard("C")',
            'return c.__Name .. c.Favor .. tostring(missing)',
        ]))
        context = _context(
            teammate_cards={"B": {"__Name": "Bea", "type": "Maid", "宠爱": 2}},
            alias_maps=MAID_ALIASES,
        )
        self.assertEqual(self.engine.call_script("P.team", context), "Bea2nil")

    def test_player_list_totable(self):
        self._load_bare("P.pls", "return #msg.game.pls:totable()")
        context = _context(game={"name": "茶会", "pls": ["A", "B"]})
        self.assertEqual(self.engine.call_script("P.pls", context), "2")

    def test_data_writes_are_deferred(self):
        self._load_bare("P.set", '\n'.join([
            'setUserData(msg.uid, "card", 7)',
            'setGroupData(msg.gid, "turn", "u1")',
            'return tostring(getUserData(msg.uid, "card"))',
        ]))
        context = _context()
        self.assertEqual(self.engine.call_script("P.set", context), "7")
        self.assertEqual(
            [(w.scope, w.owner, w.key, w.value) for w in context.pending_writes],
            [(USER, "u1", "card", "7"), (GROUP, "g1", "turn", "u1")],
        )

    def test_dice_api_table_conversion(self):
        self.assertTrue(self.engine.load_script("P.api", "\n".join([
            "return function(msg)",
            '  dice.setUserData(msg.uid, "list", {1, 2, 3})',
            '  dice.setUserData(msg.uid, "map", {hp = 3})',
            "  return nil",
            "end",
        ]), ScriptDialect.LUA))
        context = _context()
        self.assertEqual(self.engine.call_script("P.api", context), "")
        self.assertEqual(context.pending_writes[0].value, [1, 2, 3])
        self.assertEqual(context.pending_writes[1].value, {"hp": 3})

    def test_query_rule_prefers_plugin_rules(self):
        self._load_bare("P.rule", 'return queryRule("宠爱") or "none"')
        context = _context(rules={"Maid": {"宠爱": "宠爱说明"}})
        self.assertEqual(self.engine.call_script("P.rule", context), "宠爱说明")
        self.assertEqual(self.engine.call_script("P.rule", _context()), "none")

    def test_card_placeholder_is_left_for_post_processing(self):
        self._load_bare("P.card", 'return "{pc}: {card}"')
        card = AliasedCard({"__Name": "Alice%", "type": "Maid"}, {})
        context = _context(active_character=card, cached_card_text="旧卡片")
        self.assertEqual(self.engine.call_script("P.card", context), "Alice%: {card}")

    def test_runtime_error_becomes_interpreter_error(self):
        self._load_bare("P.boom", 'error("boom")')
        with self.assertRaises(InterpreterError) as ctx:
            self.engine.call_script("P.boom", _context())
        self.assertIn("boom", str(ctx.exception))

    def test_unrecognised_result(self):
        self._load_bare("P.table", "return {}")
        with self.assertRaises(InterpreterError):
            self.engine.call_script("P.table", _context())

    def test_load_failures(self):
        self.assertFalse(self.engine.load_script("P.bad", "return function(", ScriptDialect.LUA))
        self.assertFalse(self.engine.load_script("P.value", "return 1", ScriptDialect.LUA))
        self.assertFalse(self.engine.load_script("P.js", "function f() {}", ScriptDialect.JS))
        self.assertFalse(self.engine.has_script("P.bad"))
        with self.assertRaises(InterpreterError):
            self.engine.call_script("P.bad", _context())

    def test_unload(self):
        self._load_bare("P.x", 'return "x"')
        self.assertTrue(self.engine.unload_script("P.x"))
        self.assertFalse(self.engine.unload_script("P.x"))


class LuaResultProcessingTests(unittest.IsolatedAsyncioTestCase):
    async def test_card_text_written_by_wrapped_script(self):
        engine = LuaScriptEngine()
        engine.load_script("P.card", wrap_lua_script('setUserData(msg.uid, "card", "new")\nreturn "card={card}"'), ScriptDialect.LUA)
        store = DataStore()
        await store.set_user_data("u1", "card", "old")
        context = _context(cached_card_text="old")

        result = engine.call_script("P.card", context)
        reply = await ResultPostProcessor(store).finish(context, result)
        self.assertEqual(reply, "card=new")
        self.assertEqual(await store.get_card_text("u1"), "new")


if __name__ == "__main__":
    unittest.main()
