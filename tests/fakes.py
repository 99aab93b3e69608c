"""测试共用的假对象与插件目录构造工具"""

import json
import os
import sys

ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
SRC = os.path.join(ROOT, "src")
if SRC not in sys.path:
    sys.path.insert(0, SRC)

from plugin_base import InterpreterError, ScriptDialect  # noqa: E402
from script_engine import ScriptEngine  # noqa: E402

DEMO_PLUGIN = os.path.join(ROOT, "plugins", "Demo-TRPG")


class DummySender:
    def __init__(self):
        self.messages = []

    def send_message(self, text, channel=None, area=None, **kwargs):
        self.messages.append({"text": text, "channel": channel, "area": area, "kwargs": kwargs})

    @property
    def last(self) -> str:
        return self.messages[-1]["text"] if self.messages else ""


class FakeEngine(ScriptEngine):
    """
    记录加载过的脚本；调用时交给 handlers[name](context)，
    没有 handler 时返回 "<name>:<参数尾>"。
    """

    def __init__(self, reject=()):
        self.sources = {}
        self.handlers = {}
        self.calls = []
        self.reject = set(reject)

    def load_script(self, name, source, dialect):
        if name in self.reject or dialect != ScriptDialect.LUA:
            return False
        self.sources[name] = source
        return True

    def unload_script(self, name):
        return self.sources.pop(name, None) is not None

    def has_script(self, name):
        return name in self.sources

    def list_scripts(self):
        return sorted(self.sources)

    def call_script(self, name, context):
        self.calls.append((name, context.argument_tail))
        if name not in self.sources:
            raise InterpreterError(f"脚本不存在: {name}")
        handler = self.handlers.get(name)
        if handler is None:
            return f"{name}:{context.argument_tail}"
        return handler(context)


def write_file(path, text):
    os.makedirs(os.path.dirname(path), exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        f.write(text)


def make_plugin(parent, dir_name, name=None, version="1.0", scripts=None, reply=None, rulebooks=None, templates=None):
    """在 parent 下生成一个插件目录，返回其路径。"""
    root = os.path.join(parent, dir_name)
    write_file(
        os.path.join(root, "descriptor.json"),
        json.dumps({"name": name or dir_name, "ver": version}, ensure_ascii=False),
    )
    for rel, source in (scripts or {}).items():
        write_file(os.path.join(root, "script", rel), source)
    if reply:
        write_file(os.path.join(root, "reply", "commands.toml"), reply)
    for filename, text in (rulebooks or {}).items():
        write_file(os.path.join(root, "rulebook", filename), text)
    for filename, text in (templates or {}).items():
        write_file(os.path.join(root, "template", filename), text)
    return root


TEAM_REPLY = """
[reply.team]
rule = "Maid"
keyword = { prefix = ".team" }
echo = { lua = "Maid.team" }
limit = { game = true }
"""

MAID_RULEBOOK = """
rule: Maid
manual:
  宠爱: 女仆从主人处获得的宠爱
"""

MAID_TEMPLATE = """
<model name="Maid">
  <property>
    <any name="宠爱" alias="Favor" default="3"/>
    <any name="压力" alias="Stress" text="javascript">this.Favor * 2</any>
  </property>
</model>
"""


def make_maid_plugin(parent, dir_name="Maid-TRPG", name=None, version="1.0"):
    return make_plugin(
        parent,
        dir_name,
        name=name,
        version=version,
        scripts={"Maid/team.lua": 'return "team " .. msg.suffix\n'},
        reply=TEAM_REPLY,
        rulebooks={"maid.yaml": MAID_RULEBOOK},
        templates={"maid.xml": MAID_TEMPLATE},
    )
