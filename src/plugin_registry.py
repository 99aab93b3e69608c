"""
注册表：已加载插件、规则书、角色卡模板

- 插件表按名称去重：同名重复注册直接替换，不会出现两份
- 规则与模板按「贡献插件」分别记录，卸载/重载时只撤回该插件的条目，
  再按加载顺序重新合并（同一关键词后加载者覆盖）
- 写入只发生在加载/重载/卸载，命令处理期间只读
"""

from typing import Optional

from logger_config import get_logger
from plugin_base import LoadedPlugin
from template_parser import create_alias_map

logger = get_logger("PluginRegistry")


class PluginRegistry:
    """插件名 -> LoadedPlugin，保留加载顺序。"""

    def __init__(self) -> None:
        self._plugins: dict[str, LoadedPlugin] = {}
        self._order: list[str] = []

    def register(self, plugin: LoadedPlugin) -> bool:
        """注册插件。同名已存在时替换原条目（位置不变）。"""
        name = plugin.name
        if not name.strip():
            logger.warning("PluginRegistry: 拒绝注册无 name 的插件")
            return False
        if name in self._plugins:
            logger.info("PluginRegistry: 替换已加载插件 %s", name)
        else:
            self._order.append(name)
        self._plugins[name] = plugin
        return True

    def unregister(self, name: str) -> Optional[LoadedPlugin]:
        plugin = self._plugins.pop(name, None)
        if plugin is not None:
            self._order = [n for n in self._order if n != name]
        return plugin

    def get(self, name: str) -> Optional[LoadedPlugin]:
        return self._plugins.get(name)

    def values(self) -> list[LoadedPlugin]:
        return [self._plugins[n] for n in self._order]

    def __contains__(self, name: str) -> bool:
        return name in self._plugins

    def __len__(self) -> int:
        return len(self._plugins)


class _ContributionRegistry:
    """按插件记录贡献，合并视图按贡献顺序重建。"""

    def __init__(self) -> None:
        # [(插件名, 键, 值)]，按贡献先后排列
        self._contributions: list[tuple[str, str, object]] = []

    def _add(self, plugin_name: str, key: str, value) -> None:
        self._contributions.append((plugin_name, key, value))

    def withdraw(self, plugin_name: str) -> int:
        """撤回某插件的全部贡献，返回撤回条数。"""
        before = len(self._contributions)
        self._contributions = [c for c in self._contributions if c[0] != plugin_name]
        return before - len(self._contributions)

    def contributors(self, key: str) -> list[str]:
        seen = []
        for plugin_name, k, _ in self._contributions:
            if k == key and plugin_name not in seen:
                seen.append(plugin_name)
        return seen


class RuleRegistry(_ContributionRegistry):
    """
    规则系统名 -> {关键词: 文本}。

    多个插件可以向同一规则系统贡献条目，关键词冲突时后加载者覆盖。
    """

    def merge(self, plugin_name: str, rule_system: str, manual: dict[str, str]) -> None:
        self._add(plugin_name, rule_system, {str(k): str(v) for k, v in manual.items()})

    def _merged(self) -> dict[str, dict[str, str]]:
        merged: dict[str, dict[str, str]] = {}
        for _, system, manual in self._contributions:
            merged.setdefault(system, {}).update(manual)
        return merged

    def snapshot(self) -> dict[str, dict[str, str]]:
        """合并后的规则表副本（供执行上下文使用）。"""
        return self._merged()

    def systems(self) -> list[str]:
        return list(self._merged())

    def query(self, rule_system: str, keyword: str) -> Optional[str]:
        return self._merged().get(rule_system, {}).get(keyword)

    def search(self, keyword: str) -> Optional[tuple[str, str]]:
        """跨所有规则系统查找关键词，返回 (规则系统, 文本)。"""
        for system, manual in self._merged().items():
            if keyword in manual:
                return system, manual[keyword]
        return None


class TemplateRegistry(_ContributionRegistry):
    """模板名 -> CharacterTemplate。同名模板后加载者生效。"""

    def add(self, plugin_name: str, template) -> None:
        self._add(plugin_name, template.name, template)

    def _merged(self) -> dict:
        merged = {}
        for _, name, template in self._contributions:
            merged[name] = template
        return merged

    def get(self, name: str):
        return self._merged().get(name)

    def alias_snapshot(self) -> dict[str, dict[str, str]]:
        """模板名 -> {别名: 显示名}。"""
        return {name: create_alias_map(t) for name, t in self._merged().items()}
