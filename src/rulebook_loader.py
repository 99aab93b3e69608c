"""
规则书加载

rulebook/*.yaml 格式::

    rule: Maid
    manual:
      宠爱: 女仆对主人的好感程度……
      压力: ……
"""

import os
from typing import Optional

import yaml

from logger_config import get_logger
from plugin_registry import RuleRegistry

logger = get_logger("RulebookLoader")

_SUFFIXES = (".yaml", ".yml")


def parse_rulebook(text: str) -> Optional[tuple[str, dict[str, str]]]:
    """解析单个规则书文本，返回 (规则系统名, 手册)；缺字段或格式不对返回 None。"""
    data = yaml.safe_load(text)
    if not isinstance(data, dict):
        return None
    rule = data.get("rule")
    manual = data.get("manual")
    if not rule or not isinstance(manual, dict):
        return None
    return str(rule), {str(k): "" if v is None else str(v) for k, v in manual.items()}


def read_rulebooks(rulebook_dir: str) -> list[tuple[str, dict[str, str]]]:
    """读取目录下所有规则书。目录不存在或为空不算错误；单个坏文件跳过。"""
    books: list[tuple[str, dict[str, str]]] = []
    if not os.path.isdir(rulebook_dir):
        return books
    for filename in sorted(os.listdir(rulebook_dir)):
        if not filename.lower().endswith(_SUFFIXES):
            continue
        path = os.path.join(rulebook_dir, filename)
        try:
            with open(path, "r", encoding="utf-8") as f:
                parsed = parse_rulebook(f.read())
        except (OSError, UnicodeDecodeError, yaml.YAMLError) as e:
            logger.error("读取规则书失败 %s: %s", path, e)
            continue
        if parsed is None:
            logger.warning("规则书缺少 rule/manual 字段，已跳过: %s", path)
            continue
        books.append(parsed)
    return books


def merge_rulebooks(registry: RuleRegistry, plugin_name: str, books) -> list[str]:
    """把规则书并入注册表，返回涉及的规则系统名。"""
    systems = []
    for rule, manual in books:
        registry.merge(plugin_name, rule, manual)
        if rule not in systems:
            systems.append(rule)
        logger.info("[%s] 已加载规则书 %s（%d 条）", plugin_name, rule, len(manual))
    return systems


def load_rulebooks(rulebook_dir: str, plugin_name: str, registry: RuleRegistry) -> list[str]:
    return merge_rulebooks(registry, plugin_name, read_rulebooks(rulebook_dir))
