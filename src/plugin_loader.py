"""
插件包读取：从 plugins 目录发现插件，读取描述文件与各子目录

插件目录结构::

    <插件>/
      descriptor.json | descriptor.toml | descriptor.yaml
      script/**/*.lua | *.js
      rulebook/*.yaml
      reply/*.toml
      template/*.xml

本模块只读磁盘、不碰解释器与命令树；注册由 extension_service 完成。
"""

import json
import os
import tomllib
from typing import Any, Callable, Optional

import yaml

from logger_config import get_logger
from plugin_base import (
    CircularFormula,
    CommandDefinition,
    InvalidManifest,
    PluginDescriptor,
    PluginPackage,
    ScriptDialect,
)
from rulebook_loader import read_rulebooks
from script_loader import collect_scripts
from template_parser import CharacterTemplate, check_formulas, parse_template

logger = get_logger("PluginLoader")

DESCRIPTOR_BASENAME = "descriptor"


def _load_json(text: str) -> Any:
    return json.loads(text)


def _load_toml(text: str) -> Any:
    return tomllib.loads(text)


def _load_yaml(text: str) -> Any:
    return yaml.safe_load(text)


# 描述文件变体：按扩展名分发，顺序即查找优先级
_MANIFEST_FORMATS: dict[str, Callable[[str], Any]] = {
    ".json": _load_json,
    ".toml": _load_toml,
    ".yaml": _load_yaml,
    ".yml": _load_yaml,
}
_MANIFEST_ERRORS = (ValueError, tomllib.TOMLDecodeError, yaml.YAMLError, UnicodeDecodeError)


def discover_plugins(plugins_dir: str) -> list[str]:
    """返回 plugins_dir 下所有插件目录（排除 _ 和 . 开头），目录不存在时为空。"""
    if not os.path.isdir(plugins_dir):
        return []
    found = []
    for name in sorted(os.listdir(plugins_dir)):
        if name.startswith(("_", ".")):
            continue
        path = os.path.join(plugins_dir, name)
        if os.path.isdir(path):
            found.append(path)
    return found


def find_descriptor(plugin_root: str) -> Optional[str]:
    for suffix in _MANIFEST_FORMATS:
        path = os.path.join(plugin_root, DESCRIPTOR_BASENAME + suffix)
        if os.path.isfile(path):
            return path
    return None


def _text(data: dict, *keys: str) -> str:
    for key in keys:
        value = data.get(key)
        if value is not None and str(value).strip():
            return str(value).strip()
    return ""


def read_descriptor(plugin_root: str) -> PluginDescriptor:
    """
    读取插件描述文件。

    缺失、无法解析、或缺少 name / ver(version) 时抛 InvalidManifest。
    """
    path = find_descriptor(plugin_root)
    if path is None:
        raise InvalidManifest(f"未找到描述文件: {plugin_root}")
    loader = _MANIFEST_FORMATS[os.path.splitext(path)[1]]
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = loader(f.read())
    except OSError as e:
        raise InvalidManifest(f"读取描述文件失败: {e}") from e
    except _MANIFEST_ERRORS as e:
        raise InvalidManifest(f"描述文件格式错误 ({os.path.basename(path)}): {e}") from e

    if not isinstance(data, dict):
        raise InvalidManifest(f"描述文件顶层必须是对象: {path}")
    name = _text(data, "name")
    version = _text(data, "ver", "version")
    if not name:
        raise InvalidManifest(f"描述文件缺少 name: {path}")
    if not version:
        raise InvalidManifest(f"描述文件缺少 ver: {path}")

    return PluginDescriptor(
        name=name,
        version=version,
        title=_text(data, "title"),
        author=_text(data, "author"),
        brief=_text(data, "brief"),
        description=_text(data, "desc", "description"),
        repository=_text(data, "repo", "repository"),
    )


def parse_reply_config(config: dict, plugin_name: str) -> dict[str, CommandDefinition]:
    """
    把一份 reply 配置解析为命令定义::

        [reply.team]
        type = "Game"
        rule = "Maid"
        keyword = { prefix = ".team" }
        echo = { lua = "Maid.team" }

    没有指定脚本的命令跳过并告警。
    """
    commands: dict[str, CommandDefinition] = {}
    section = config.get("reply")
    if not isinstance(section, dict):
        return commands

    for key, entry in section.items():
        if not isinstance(entry, dict):
            continue
        keyword = entry.get("keyword") if isinstance(entry.get("keyword"), dict) else {}
        echo = entry.get("echo") if isinstance(entry.get("echo"), dict) else {}
        prefix = str(keyword.get("prefix") or f".{key}")

        if echo.get("lua"):
            target, dialect = str(echo["lua"]), ScriptDialect.LUA
        elif echo.get("js"):
            target, dialect = str(echo["js"]), ScriptDialect.JS
        else:
            logger.warning("[%s] 命令 %s 未指定脚本，已跳过", plugin_name, key)
            continue
        if not target.startswith(f"{plugin_name}."):
            target = f"{plugin_name}.{target}"

        limit = entry.get("limit")
        if limit is not None and not isinstance(limit, dict):
            limit = {"limit": limit}

        commands[key] = CommandDefinition(
            command_key=key,
            prefix=prefix,
            target_script=target,
            dialect=dialect,
            rule_system=str(entry.get("rule") or ""),
            kind=str(entry.get("type") or ""),
            access_limits=limit,
        )
    return commands


def read_reply_configs(reply_dir: str, plugin_name: str) -> dict[str, CommandDefinition]:
    commands: dict[str, CommandDefinition] = {}
    if not os.path.isdir(reply_dir):
        return commands
    for filename in sorted(os.listdir(reply_dir)):
        if not filename.endswith(".toml"):
            continue
        path = os.path.join(reply_dir, filename)
        try:
            with open(path, "rb") as f:
                config = tomllib.load(f)
        except (OSError, tomllib.TOMLDecodeError) as e:
            logger.error("[%s] 读取命令配置失败 %s: %s", plugin_name, filename, e)
            continue
        commands.update(parse_reply_config(config, plugin_name))
    return commands


def read_templates(template_dir: str, plugin_name: str) -> list[CharacterTemplate]:
    templates: list[CharacterTemplate] = []
    if not os.path.isdir(template_dir):
        return templates
    for filename in sorted(os.listdir(template_dir)):
        if not filename.lower().endswith(".xml"):
            continue
        path = os.path.join(template_dir, filename)
        try:
            with open(path, "r", encoding="utf-8") as f:
                template = parse_template(f.read())
        except (OSError, UnicodeDecodeError) as e:
            logger.error("[%s] 读取模板失败 %s: %s", plugin_name, filename, e)
            continue
        if template is None:
            logger.warning("[%s] 模板无效，已跳过: %s", plugin_name, filename)
            continue
        try:
            check_formulas(template)
        except CircularFormula as e:
            logger.warning("[%s] 模板 %s: %s", plugin_name, template.name, e)
        templates.append(template)
    return templates


def read_plugin_package(plugin_root: str) -> PluginPackage:
    """一次性读出插件的全部磁盘内容。描述文件无效时抛 InvalidManifest。"""
    descriptor = read_descriptor(plugin_root)
    name = descriptor.name
    return PluginPackage(
        path=plugin_root,
        descriptor=descriptor,
        scripts=collect_scripts(os.path.join(plugin_root, "script"), name),
        rulebooks=read_rulebooks(os.path.join(plugin_root, "rulebook")),
        commands=read_reply_configs(os.path.join(plugin_root, "reply"), name),
        templates=read_templates(os.path.join(plugin_root, "template"), name),
    )
