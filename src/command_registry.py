"""
插件命令注册

每条 CommandDefinition 注册为：

- 主命令：触发词为 prefix（如 ".team"），命令名 <插件>.<key>，参数尾原样传给脚本
- 通用子命令：".team.show" / ".team.list" / ...，把子命令名作为参数首词注入，
  所以 ".team.show Alice" 与 ".team show Alice" 对脚本完全等价

处理流程：构建上下文 -> 同步调用脚本（异常转为 "[error] <消息>"）
-> 写回延迟写入、重读卡片文本、替换占位符 -> 返回回复。

命令定义里的 limit（访问限制）只保存和展示，不做拦截。
"""

from functools import partial

from command_tree import CommandTree
from context_builder import ContextBuilder
from logger_config import get_logger
from plugin_base import GENERIC_SUBCOMMANDS, ChatIdentity, CommandDefinition
from result_processor import ResultPostProcessor
from script_engine import ScriptEngine

logger = get_logger("CommandRegistry")

ERROR_PREFIX = "[error]"


def describe(definition: CommandDefinition, plugin_title: str) -> str:
    text = f"[{definition.rule_system}] {plugin_title}" if definition.rule_system else plugin_title
    if definition.access_limits:
        text += f" (限制: {definition.access_limits})"
    return text


class CommandRegistrar:

    def __init__(
        self,
        tree: CommandTree,
        context_builder: ContextBuilder,
        engine: ScriptEngine,
        post_processor: ResultPostProcessor,
    ):
        self.tree = tree
        self.context_builder = context_builder
        self.engine = engine
        self.post_processor = post_processor

    async def invoke(self, definition: CommandDefinition, identity: ChatIdentity, tail: str) -> str:
        context = await self.context_builder.build(identity, tail)
        try:
            logger.debug("调用 %s，参数: %r", definition.target_script, context.argument_tail)
            result = self.engine.call_script(definition.target_script, context)
        except Exception as e:
            logger.error(f"脚本执行出错 ({definition.target_script}): {e}")
            if context.pending_writes:
                logger.warning("脚本出错，丢弃 %d 条未写回的数据", len(context.pending_writes))
                context.pending_writes.clear()
            return f"{ERROR_PREFIX} {e}"
        return await self.post_processor.finish(context, result)

    async def _primary(self, definition: CommandDefinition, identity: ChatIdentity, tail: str) -> str:
        return await self.invoke(definition, identity, tail)

    async def _subcommand(self, definition: CommandDefinition, sub: str, identity: ChatIdentity, tail: str) -> str:
        return await self.invoke(definition, identity, f"{sub} {tail}".strip())

    def register(self, plugin_name: str, definitions: dict[str, CommandDefinition], plugin_title: str = "") -> list[str]:
        """注册插件的全部命令，返回注册的命令全名。单条失败不影响其它命令。"""
        names: list[str] = []
        title = plugin_title or plugin_name
        for key, definition in definitions.items():
            try:
                description = describe(definition, title)
                name = f"{plugin_name}.{key}"
                self.tree.register(
                    definition.trigger,
                    partial(self._primary, definition),
                    owner=plugin_name,
                    name=name,
                    description=description,
                )
                names.append(name)
                for sub in GENERIC_SUBCOMMANDS:
                    self.tree.register(
                        f"{definition.trigger}.{sub}",
                        partial(self._subcommand, definition, sub),
                        owner=plugin_name,
                        name=f"{name}.{sub}",
                        description=description,
                        subcommand=sub,
                    )
                    names.append(f"{name}.{sub}")
                logger.info("[%s] 注册命令 %s -> %s", plugin_name, definition.trigger, definition.target_script)
            except Exception:
                logger.exception("[%s] 注册命令 %s 失败", plugin_name, key)
        return names

    def unregister(self, plugin_name: str) -> int:
        removed = self.tree.unregister_owner(plugin_name)
        if removed:
            logger.info("[%s] 已移除 %d 个命令", plugin_name, removed)
        return removed
