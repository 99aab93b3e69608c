"""
点号命令树

命令以触发词注册（如 ".team"、".team.show"），消息按最长触发词匹配，
触发词之后的部分作为参数尾传给处理函数。
"""

from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from logger_config import get_logger
from plugin_base import ChatIdentity

logger = get_logger("CommandTree")

Handler = Callable[[ChatIdentity, str], Awaitable[str]]


@dataclass(frozen=True)
class RegisteredCommand:
    trigger: str
    name: str  # 命令全名，如 Maid-TRPG.team 或 Maid-TRPG.team.show
    owner: str  # 注册方（插件名）
    handler: Handler
    description: str = ""
    subcommand: str = ""  # 通用子命令名，主命令为空


class CommandTree:

    def __init__(self):
        self._commands: dict[str, RegisteredCommand] = {}

    @staticmethod
    def _normalize(trigger: str) -> str:
        return trigger.strip().lower()

    def register(
        self,
        trigger: str,
        handler: Handler,
        *,
        owner: str,
        name: str,
        description: str = "",
        subcommand: str = "",
    ) -> RegisteredCommand:
        key = self._normalize(trigger)
        if not key:
            raise ValueError("触发词不能为空")
        previous = self._commands.get(key)
        if previous is not None and previous.owner != owner:
            logger.warning("命令 %s 已由 %s 注册，改由 %s 接管", trigger, previous.owner, owner)
        command = RegisteredCommand(
            trigger=trigger.strip(), name=name, owner=owner, handler=handler,
            description=description, subcommand=subcommand,
        )
        self._commands[key] = command
        return command

    def unregister_owner(self, owner: str) -> int:
        keys = [k for k, c in self._commands.items() if c.owner == owner]
        for key in keys:
            del self._commands[key]
        return len(keys)

    def get(self, trigger: str) -> Optional[RegisteredCommand]:
        return self._commands.get(self._normalize(trigger))

    def list_commands(self, owner: Optional[str] = None) -> list[RegisteredCommand]:
        commands = sorted(self._commands.values(), key=lambda c: c.trigger)
        if owner is None:
            return commands
        return [c for c in commands if c.owner == owner]

    def resolve(self, text: str) -> Optional[tuple[RegisteredCommand, str]]:
        """
        按最长触发词匹配消息。触发词后必须紧跟空白或消息结尾，
        所以 ".team" 不会误匹配 ".teamwork"。
        """
        stripped = text.strip()
        lowered = stripped.lower()
        best: Optional[RegisteredCommand] = None
        for key, command in self._commands.items():
            if not lowered.startswith(key):
                continue
            rest = lowered[len(key):]
            if rest and not rest[0].isspace():
                continue
            if best is None or len(key) > len(best.trigger):
                best = command
        if best is None:
            return None
        return best, stripped[len(best.trigger):].strip()

    async def dispatch(self, identity: ChatIdentity, text: str) -> Optional[str]:
        """匹配并执行命令；没有匹配时返回 None。"""
        resolved = self.resolve(text)
        if resolved is None:
            return None
        command, tail = resolved
        return await command.handler(identity, tail)
