"""
规则插件契约：描述文件、命令定义、已加载插件聚合与异常分类

插件是一个目录（descriptor + script/ + rulebook/ + reply/ + template/），
不是 Python 模块；这里只定义加载后在内存中流转的数据结构。
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional


class ExtensionError(Exception):
    """扩展子系统异常基类。"""


class InvalidManifest(ExtensionError):
    """descriptor 缺失、无法解析或缺少必填字段。整个插件加载中止。"""


class ScriptLoadFailure(ExtensionError):
    """单个脚本加载失败。只记录日志，不影响同插件其它脚本。"""


class InterpreterError(ExtensionError):
    """脚本执行抛错或返回了无法识别的结果。转为用户可见的错误回复。"""


class CacheCorruption(ExtensionError):
    """缓存中的字面量无法解析。按缓存未命中处理。"""


class CircularFormula(ExtensionError):
    """模板公式之间存在循环引用。"""

    def __init__(self, fields: list[str]):
        self.fields = list(fields)
        super().__init__("公式循环引用: " + " -> ".join(self.fields))


class ScriptDialect(str, Enum):
    """脚本方言：决定使用解释器的哪个加载入口。"""

    LUA = "lua"
    JS = "js"

    @classmethod
    def from_suffix(cls, suffix: str) -> Optional["ScriptDialect"]:
        suffix = (suffix or "").lower().lstrip(".")
        for dialect in cls:
            if dialect.value == suffix:
                return dialect
        return None


# 通用子命令：全部转发到同一脚本，子命令名作为参数首词注入
GENERIC_SUBCOMMANDS = ("show", "list", "add", "remove", "del", "set")


@dataclass(frozen=True)
class PluginDescriptor:
    """插件描述信息，name 为插件身份键。重载时整体替换。"""
    name: str
    version: str
    title: str = ""
    author: str = ""
    brief: str = ""
    description: str = ""
    repository: str = ""

    @property
    def display_name(self) -> str:
        return self.title or self.name


@dataclass(frozen=True)
class CommandDefinition:
    """reply 配置中的一条命令声明。"""
    command_key: str
    prefix: str
    target_script: str
    dialect: ScriptDialect = ScriptDialect.LUA
    rule_system: str = ""
    kind: str = ""
    # 声明但未执行的访问限制（如 "仅限游戏进行中"），原样保留供展示
    access_limits: Optional[dict[str, Any]] = None

    @property
    def trigger(self) -> str:
        return self.prefix if self.prefix.startswith(".") else f".{self.prefix}"


@dataclass
class PluginPackage:
    """从磁盘读出的插件原始内容，尚未注册到解释器与命令树。"""
    path: str
    descriptor: PluginDescriptor
    scripts: dict[str, str] = field(default_factory=dict)  # 限定名(含扩展名) -> 源码
    rulebooks: list[tuple[str, dict[str, str]]] = field(default_factory=list)  # (规则名, 手册)
    commands: dict[str, CommandDefinition] = field(default_factory=dict)
    templates: list[Any] = field(default_factory=list)  # CharacterTemplate


@dataclass
class LoadedPlugin:
    """服务持有的已加载插件聚合。加载时创建，重载时替换，卸载时移除。"""
    name: str
    path: str
    descriptor: PluginDescriptor
    scripts: dict[str, str] = field(default_factory=dict)  # 限定名(无扩展名) -> 源码
    commands: dict[str, CommandDefinition] = field(default_factory=dict)
    rule_systems: list[str] = field(default_factory=list)
    templates: list[str] = field(default_factory=list)

    def summary(self) -> dict:
        """列表展示用的扁平信息。"""
        d = self.descriptor
        return {
            "name": self.name,
            "title": d.display_name,
            "version": d.version,
            "author": d.author,
            "brief": d.brief,
            "scripts": len(self.scripts),
            "commands": len(self.commands),
            "rule_systems": list(self.rule_systems),
            "templates": list(self.templates),
        }


@dataclass(frozen=True)
class ChatIdentity:
    """一条聊天消息的发送者与所在位置。群组键取 area，没有 area 时退回 channel。"""
    user_id: str
    platform: str = ""
    group_id: str = ""
    channel_id: str = ""
    username: str = ""
    is_private: bool = False

    @classmethod
    def from_message(cls, msg_data: dict, default_platform: str = "") -> "ChatIdentity":
        area = str(msg_data.get("area") or "")
        channel = str(msg_data.get("channel") or "")
        return cls(
            user_id=str(msg_data.get("person") or ""),
            platform=str(msg_data.get("platform") or default_platform),
            group_id=area or channel,
            channel_id=channel,
            username=str(msg_data.get("username") or ""),
            is_private=not area,
        )
