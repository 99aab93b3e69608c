import os
import sys
import unittest


ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
SRC = os.path.join(ROOT, "src")
if SRC not in sys.path:
    sys.path.insert(0, SRC)

from lua_literal import parse_embedded_literal, to_embedded_table  # noqa: E402


class EncodeTests(unittest.TestCase):
    def test_identifier_keys_are_bare(self):
        self.assertEqual(to_embedded_table({"a": 1, "b": "x"}), '{a=1,b="x"}')

    def test_non_identifier_keys_are_bracketed(self):
        self.assertEqual(to_embedded_table({"宠爱": 5, "end": True}), '{["宠爱"]=5,["end"]=true}')

    def test_list_and_empty_container(self):
        self.assertEqual(to_embedded_table([1, 2]), "{1,2}")
        self.assertEqual(to_embedded_table({}), "{}")
        self.assertEqual(to_embedded_table([]), "{}")

    def test_string_escapes(self):
        self.assertEqual(to_embedded_table('a"b\n'), '"a\\"b\\n"')

    def test_cycle_is_rejected(self):
        data = {}
        data["self"] = data
        with self.assertRaises(ValueError):
            to_embedded_table(data)

    def test_nan_is_rejected(self):
        with self.assertRaises(ValueError):
            to_embedded_table(float("nan"))


class DecodeTests(unittest.TestCase):
    def test_keyed_table(self):
        self.assertEqual(parse_embedded_literal('{a=1,b="x"}'), {"a": 1, "b": "x"})

    def test_positional_table_becomes_list(self):
        self.assertEqual(parse_embedded_literal("{1, 2, 3}"), [1, 2, 3])

    def test_empty_table_is_empty_dict(self):
        self.assertEqual(parse_embedded_literal("{}"), {})

    def test_mixed_table(self):
        self.assertEqual(parse_embedded_literal("{10, x=2}"), {1: 10, "x": 2})

    def test_bracketed_unicode_key(self):
        self.assertEqual(parse_embedded_literal('{["宠爱"]=5}'), {"宠爱": 5})

    def test_json_shape_is_tolerated(self):
        self.assertEqual(parse_embedded_literal('{"a": [1, 2], "b": null}'), {"a": [1, 2]})

    def test_return_prefix_and_comments(self):
        self.assertEqual(parse_embedded_literal("return { -- 注释\n x = 1.5 }"), {"x": 1.5})

    def test_card_snapshot_survives_encoding(self):
        card = {"__Name": "Alice", "type": "Maid", "宠爱": 5, "tags": ["a", "b"], "note": 'say "hi"\n'}
        self.assertEqual(parse_embedded_literal(to_embedded_table(card)), card)

    def test_corrupted_input_returns_none(self):
        self.assertIsNone(parse_embedded_literal("{a="))
        self.assertIsNone(parse_embedded_literal('{a="unterminated}'))
        self.assertIsNone(parse_embedded_literal("{a=1} trailing"))
        self.assertIsNone(parse_embedded_literal(""))
        self.assertIsNone(parse_embedded_literal(None))

    def test_table_keys_and_bad_unicode_escapes_return_none(self):
        for text in ("{[{}]=1}", "{[[1]]=2}", r'"\u{FFFFFFFFFFFFFFFFFFFFFFFF}"', r'"\u{110000}"', r'"\u{zz}"'):
            self.assertIsNone(parse_embedded_literal(text), text)

    def test_braced_unicode_escape(self):
        self.assertEqual(parse_embedded_literal(r'"\u{5BA0}\u{7231}"'), "宠爱")


class RoundTripTests(unittest.TestCase):
    def test_json_values(self):
        # (原值, 解码结果)；空容器与 nil 字段是有损的
        cases = [
            (None, None),
            (True, True),
            (0, 0),
            (-12, -12),
            (1.5, 1.5),
            (1e20, 1e20),
            ("", ""),
            ("宠爱\t\x01\x7f\\", "宠爱\t\x01\x7f\\"),
            ([1, "a", False], [1, "a", False]),
            ([1, None, 2], [1, None, 2]),
            ([[1], [2, 3]], [[1], [2, 3]]),
            ({"a": {"b": [1, {"c": "d"}]}}, {"a": {"b": [1, {"c": "d"}]}}),
            ({"end": 1, "1x": 2, "名字": 3}, {"end": 1, "1x": 2, "名字": 3}),
            ({}, {}),
            ([], {}),
            ({"a": []}, {"a": {}}),
            ({"a": {"b": []}}, {"a": {"b": {}}}),
            ({"a": None}, {}),
            ({"a": 1, "b": None}, {"a": 1}),
        ]
        for value, expected in cases:
            text = to_embedded_table(value)
            self.assertEqual(parse_embedded_literal(text), expected, text)


if __name__ == "__main__":
    unittest.main()
