"""
插件脚本扫描与注册

script/ 下的文件按相对路径得到限定名::

    script/Maid/team.lua  ->  Maid-TRPG.Maid.team.lua  (收集阶段保留扩展名)
                          ->  Maid-TRPG.Maid.team      (注册名)
                          ->  Maid.team                (短名)
"""

import os
from typing import Optional

from logger_config import get_logger
from plugin_base import ScriptDialect, ScriptLoadFailure
from script_engine import ScriptEngine
from script_wrapper import wrap_lua_script

logger = get_logger("ScriptLoader")


def collect_scripts(scripts_root: str, plugin_name: str) -> dict[str, str]:
    """递归读取脚本源码，返回 {限定名(含扩展名): 源码}。目录不存在时返回空表。"""
    scripts: dict[str, str] = {}
    if not os.path.isdir(scripts_root):
        return scripts
    for dirpath, dirnames, filenames in os.walk(scripts_root):
        dirnames.sort()
        for filename in sorted(filenames):
            suffix = os.path.splitext(filename)[1]
            if ScriptDialect.from_suffix(suffix) is None:
                continue
            full_path = os.path.join(dirpath, filename)
            relative = os.path.relpath(full_path, scripts_root)
            qualified = f"{plugin_name}.{relative.replace(os.sep, '.').replace('/', '.')}"
            try:
                with open(full_path, "r", encoding="utf-8") as f:
                    scripts[qualified] = f.read()
            except (OSError, UnicodeDecodeError) as e:
                logger.error("读取脚本失败 %s: %s", full_path, e)
    return scripts


def strip_extension(qualified_name: str) -> str:
    base, suffix = os.path.splitext(qualified_name)
    if ScriptDialect.from_suffix(suffix) is not None:
        return base
    return qualified_name


def short_name(plugin_name: str, registered_name: str) -> Optional[str]:
    """限定名以 "<插件名>." 开头时返回去掉前缀的短名，否则 None。"""
    prefix = f"{plugin_name}."
    if registered_name.startswith(prefix) and len(registered_name) > len(prefix):
        return registered_name[len(prefix):]
    return None


def _load_one(
    engine: ScriptEngine,
    plugin_name: str,
    qualified: str,
    source: str,
    aliases: Optional[dict[str, str]] = None,
) -> str:
    dialect = ScriptDialect.from_suffix(os.path.splitext(qualified)[1])
    if dialect is None:
        raise ScriptLoadFailure(f"未知脚本类型: {qualified}")
    name = strip_extension(qualified)
    code = wrap_lua_script(source) if dialect == ScriptDialect.LUA else source

    if not engine.load_script(name, code, dialect):
        raise ScriptLoadFailure(f"解释器拒绝加载: {name}")
    alias = short_name(plugin_name, name)
    if not alias:
        return name
    owner = aliases.get(alias) if aliases is not None else None
    if owner and owner != name:
        logger.warning("短名 %s 已由 %s 占用，改由 %s 接管", alias, owner, name)
    if not engine.load_script(alias, code, dialect):
        logger.warning("短名注册失败: %s", alias)
    elif aliases is not None:
        aliases[alias] = name
    return name


def load_scripts(
    engine: ScriptEngine,
    plugin_name: str,
    collected: dict[str, str],
    aliases: Optional[dict[str, str]] = None,
) -> dict[str, str]:
    """
    把收集到的脚本注册进解释器。

    返回 {注册名(无扩展名): 源码}，只包含加载成功的脚本；
    单个脚本失败记录日志后继续。aliases 记录 {短名: 限定名}，
    多个插件撞短名时后加载者接管。
    """
    loaded: dict[str, str] = {}
    for qualified, source in collected.items():
        try:
            name = _load_one(engine, plugin_name, qualified, source, aliases)
        except ScriptLoadFailure as e:
            logger.warning("[%s] %s", plugin_name, e)
            continue
        except Exception:
            logger.exception("[%s] 加载脚本异常: %s", plugin_name, qualified)
            continue
        loaded[name] = source
        logger.info("[%s] 已加载脚本: %s", plugin_name, name)
    return loaded


def unload_scripts(
    engine: ScriptEngine,
    plugin_name: str,
    names,
    aliases: Optional[dict[str, str]] = None,
) -> int:
    """
    卸载脚本，返回移除的注册名数量。

    短名只在仍归属本插件时移除；传入 aliases 时以其中记录为准。
    """
    removed = 0
    for name in names:
        name = strip_extension(name)
        if engine.unload_script(name):
            removed += 1
        alias = short_name(plugin_name, name)
        if not alias:
            continue
        if aliases is not None:
            if aliases.get(alias) != name:
                continue
            del aliases[alias]
        if engine.unload_script(alias):
            removed += 1
    return removed
