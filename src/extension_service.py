"""
扩展服务：发现、加载、卸载、重载规则插件

加载顺序：描述文件 -> 脚本 -> 规则书 -> 模板 -> 命令。
磁盘读取整体放到线程池里一次完成，注册过程只在事件循环里进行。
单个插件失败只影响它自己；管理入口统一返回 (成功, 消息)。
"""

import asyncio
import os
from typing import Optional

from character_service import CharacterService
from command_registry import CommandRegistrar
from command_tree import CommandTree
from context_builder import ContextBuilder
from data_store import DataStore
from game_session_service import GameSessionService
from logger_config import get_logger
from plugin_base import InvalidManifest, LoadedPlugin, PluginPackage
from plugin_loader import discover_plugins, read_plugin_package
from plugin_registry import PluginRegistry, RuleRegistry, TemplateRegistry
from result_processor import ResultPostProcessor
from rulebook_loader import merge_rulebooks
from script_engine import ScriptEngine
from script_loader import load_scripts, strip_extension, unload_scripts
from template_parser import CharacterTemplate

logger = get_logger("ExtensionService")


class ExtensionService:

    def __init__(
        self,
        plugin_dir: str,
        engine: ScriptEngine,
        tree: CommandTree,
        data_store: DataStore,
        characters: CharacterService,
        sessions: GameSessionService,
    ):
        self.plugin_dir = plugin_dir
        self.engine = engine
        self.tree = tree
        self.data_store = data_store
        self.characters = characters
        self.sessions = sessions

        self.plugins = PluginRegistry()
        self.rules = RuleRegistry()
        self.templates = TemplateRegistry()
        # 短名 -> 当前占用它的限定名
        self.script_aliases: dict[str, str] = {}

        # 新建角色卡时按卡类型取模板默认值
        characters.template_lookup = self.get_template

        self.context_builder = ContextBuilder(
            characters, sessions, data_store,
            rule_snapshot=self.rule_snapshot,
            alias_snapshot=self.alias_snapshot,
        )
        self.registrar = CommandRegistrar(tree, self.context_builder, engine, ResultPostProcessor(data_store))

    # ------------------------------------------------------------------
    # 加载
    # ------------------------------------------------------------------

    async def initialize(self) -> list[str]:
        """扫描插件目录并逐个加载，返回加载成功的插件名。"""
        logger.info("初始化扩展系统")
        try:
            os.makedirs(self.plugin_dir, exist_ok=True)
        except OSError as e:
            logger.error(f"创建插件目录失败: {e}")
            return []
        paths = discover_plugins(self.plugin_dir)
        logger.info(f"发现 {len(paths)} 个插件目录: {self.plugin_dir}")

        for path in paths:
            try:
                ok, msg = await self.load_plugin(path)
            except Exception as e:
                logger.exception(f"加载插件 {os.path.basename(path)} 异常")
                ok, msg = False, str(e)
            if not ok:
                logger.warning(f"跳过插件 {os.path.basename(path)}: {msg}")
        logger.info(f"扩展系统就绪，已加载 {len(self.plugins)} 个插件")
        return [p.name for p in self.plugins.values()]

    async def _read(self, path: str) -> PluginPackage:
        return await asyncio.to_thread(read_plugin_package, path)

    async def load_plugin(self, path: str) -> tuple[bool, str]:
        """加载单个插件目录。同名插件已加载时先卸载旧的再装入新的。"""
        try:
            package = await self._read(path)
        except InvalidManifest as e:
            logger.error(f"加载插件失败 ({path}): {e}")
            return False, str(e)
        if package.descriptor.name in self.plugins:
            self._uninstall(package.descriptor.name)
        plugin = self._install(package)
        return True, plugin.name

    def _install(self, package: PluginPackage) -> LoadedPlugin:
        descriptor = package.descriptor
        name = descriptor.name
        logger.info(f"加载插件: {descriptor.display_name} v{descriptor.version}")

        scripts = load_scripts(self.engine, name, package.scripts, self.script_aliases)
        if len(scripts) < len(package.scripts):
            logger.warning(f"[{name}] {len(package.scripts) - len(scripts)} 个脚本加载失败")

        rule_systems = merge_rulebooks(self.rules, name, package.rulebooks)

        template_names = []
        for template in package.templates:
            self.templates.add(name, template)
            template_names.append(template.name)

        self.registrar.register(name, package.commands, descriptor.display_name)

        plugin = LoadedPlugin(
            name=name,
            path=package.path,
            descriptor=descriptor,
            scripts=scripts,
            commands=dict(package.commands),
            rule_systems=rule_systems,
            templates=template_names,
        )
        self.plugins.register(plugin)
        logger.info(
            f"插件已加载: {name}（脚本 {len(scripts)}，命令 {len(plugin.commands)}，"
            f"规则 {len(rule_systems)}，模板 {len(template_names)}）"
        )
        return plugin

    def _uninstall(self, name: str) -> Optional[LoadedPlugin]:
        plugin = self.plugins.get(name)
        if plugin is None:
            return None
        unload_scripts(self.engine, name, [strip_extension(s) for s in plugin.scripts], self.script_aliases)
        self.registrar.unregister(name)
        self.rules.withdraw(name)
        self.templates.withdraw(name)
        return self.plugins.unregister(name)

    async def unload_plugin(self, name: str) -> tuple[bool, str]:
        if self._uninstall(name) is None:
            return False, f"插件未加载: {name}"
        logger.info(f"插件已卸载: {name}")
        return True, f"已卸载: {name}"

    async def reload_plugin(self, name: str) -> tuple[bool, str]:
        """
        从原路径重新读取并替换插件。新包读取失败（如描述文件损坏）时
        保留旧版本继续工作。
        """
        plugin = self.plugins.get(name)
        if plugin is None:
            logger.warning(f"插件不存在: {name}")
            return False, f"插件未加载: {name}"
        try:
            package = await self._read(plugin.path)
        except InvalidManifest as e:
            logger.error(f"重载插件 {name} 失败，保留旧版本: {e}")
            return False, f"重载失败: {e}"
        self._uninstall(name)
        if package.descriptor.name != name and package.descriptor.name in self.plugins:
            self._uninstall(package.descriptor.name)
        self._install(package)
        return True, f"已重载: {package.descriptor.name}"

    # ------------------------------------------------------------------
    # 查询
    # ------------------------------------------------------------------

    def list_plugins(self) -> list[LoadedPlugin]:
        return self.plugins.values()

    def get_plugin(self, name: str) -> Optional[LoadedPlugin]:
        return self.plugins.get(name)

    def query_plugin_rule(self, rule_system: str, keyword: str) -> Optional[str]:
        return self.rules.query(rule_system, keyword)

    def search_rule(self, keyword: str) -> Optional[tuple[str, str]]:
        return self.rules.search(keyword)

    def list_plugin_rules(self) -> list[str]:
        return self.rules.systems()

    def get_template(self, name: str) -> Optional[CharacterTemplate]:
        return self.templates.get(name)

    def rule_snapshot(self) -> dict[str, dict[str, str]]:
        return self.rules.snapshot()

    def alias_snapshot(self) -> dict[str, dict[str, str]]:
        return self.templates.alias_snapshot()

    def list_scripts(self) -> list[str]:
        return self.engine.list_scripts()
