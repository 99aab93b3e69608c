import os
import sys
import tempfile
import unittest


ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
SRC = os.path.join(ROOT, "src")
if SRC not in sys.path:
    sys.path.insert(0, SRC)

from fakes import write_file  # noqa: E402
from plugin_registry import RuleRegistry  # noqa: E402
from rulebook_loader import load_rulebooks, parse_rulebook, read_rulebooks  # noqa: E402


class ParseRulebookTests(unittest.TestCase):
    def test_flat_manual(self):
        rule, manual = parse_rulebook("rule: Maid\nmanual:\n  宠爱: 文本\n  空条目:\n  数字: 3\n")
        self.assertEqual(rule, "Maid")
        self.assertEqual(manual, {"宠爱": "文本", "空条目": "", "数字": "3"})

    def test_missing_fields(self):
        self.assertIsNone(parse_rulebook("rule: Maid\n"))
        self.assertIsNone(parse_rulebook("manual:\n  a: b\n"))
        self.assertIsNone(parse_rulebook("- just a list\n"))


class LoadRulebookTests(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.dir = os.path.join(self._tmp.name, "rulebook")

    def tearDown(self):
        self._tmp.cleanup()

    def test_empty_or_missing_directory_is_not_an_error(self):
        self.assertEqual(read_rulebooks(self.dir), [])
        os.makedirs(self.dir)
        self.assertEqual(load_rulebooks(self.dir, "P", RuleRegistry()), [])

    def test_bad_file_is_skipped(self):
        write_file(os.path.join(self.dir, "a.yaml"), "rule: Maid\nmanual:\n  宠爱: 文本\n")
        write_file(os.path.join(self.dir, "b.yaml"), "rule: [unclosed\n")
        write_file(os.path.join(self.dir, "c.yml"), "rule: Other\n")
        write_file(os.path.join(self.dir, "d.txt"), "ignored")
        registry = RuleRegistry()
        self.assertEqual(load_rulebooks(self.dir, "P", registry), ["Maid"])
        self.assertEqual(registry.query("Maid", "宠爱"), "文本")


class RuleRegistryTests(unittest.TestCase):
    def test_last_loaded_wins_and_withdraw_restores(self):
        registry = RuleRegistry()
        registry.merge("A", "Maid", {"宠爱": "A 的说明", "压力": "压力说明"})
        registry.merge("B", "Maid", {"宠爱": "B 的说明"})
        self.assertEqual(registry.query("Maid", "宠爱"), "B 的说明")
        self.assertEqual(registry.query("Maid", "压力"), "压力说明")
        self.assertEqual(registry.contributors("Maid"), ["A", "B"])

        registry.withdraw("B")
        self.assertEqual(registry.query("Maid", "宠爱"), "A 的说明")
        registry.withdraw("A")
        self.assertEqual(registry.systems(), [])

    def test_search_across_systems(self):
        registry = RuleRegistry()
        registry.merge("A", "Maid", {"宠爱": "x"})
        registry.merge("A", "CoC", {"理智": "y"})
        self.assertEqual(registry.search("理智"), ("CoC", "y"))
        self.assertIsNone(registry.search("不存在"))
        self.assertEqual(registry.systems_of("A"), ["Maid", "CoC"])

    def test_snapshot_is_a_copy(self):
        registry = RuleRegistry()
        registry.merge("A", "Maid", {"宠爱": "x"})
        snapshot = registry.snapshot()
        snapshot["Maid"]["宠爱"] = "changed"
        self.assertEqual(registry.query("Maid", "宠爱"), "x")


if __name__ == "__main__":
    unittest.main()
