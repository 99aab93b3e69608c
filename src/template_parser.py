"""
角色卡模板解析器

解析插件 template/ 目录下的 XML 模板::

    <model name="Maid">
      <property>
        <any name="宠爱" alias="Favor" default="0"/>
        <any name="压力" alias="Stress" text="javascript">this.Favor * 2</any>
      </property>
    </model>

生成默认属性时按依赖顺序计算公式，只允许算术运算。
"""

import ast
import math
import operator
import re
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from typing import Optional, Union

from logger_config import get_logger
from plugin_base import CircularFormula

logger = get_logger("TemplateParser")

Number = Union[int, float]

_THIS_REF = re.compile(r"this\.([^\s\+\-\*/%\(\),<>=!&|?:\[\]]+)")

_BIN_OPS = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
    ast.FloorDiv: operator.floordiv,
    ast.Mod: operator.mod,
    ast.Pow: operator.pow,
}
_UNARY_OPS = {ast.UAdd: operator.pos, ast.USub: operator.neg}
_MATH_FUNCS = {
    "floor": math.floor,
    "ceil": math.ceil,
    "round": lambda x: math.floor(x + 0.5),
    "abs": abs,
    "max": max,
    "min": min,
}


@dataclass(frozen=True)
class TemplateField:
    display_name: str  # 存储键（本地化名，如 宠爱）
    alias: str  # 跨插件稳定标识（如 Favor）
    formula: Optional[str] = None
    dialect: Optional[str] = None
    default: Number = 0


@dataclass
class CharacterTemplate:
    name: str
    fields: list[TemplateField] = field(default_factory=list)

    def field_by_ref(self, ref: str) -> Optional[TemplateField]:
        for f in self.fields:
            if f.alias == ref or f.display_name == ref:
                return f
        return None


def _parse_number(text: Optional[str]) -> Number:
    if text is None or not text.strip():
        return 0
    try:
        value = float(text.strip())
    except ValueError:
        return 0
    return int(value) if value.is_integer() else value


def parse_template(xml_text: str) -> Optional[CharacterTemplate]:
    """解析 XML 模板，格式不合法或缺少模板名时返回 None。"""
    try:
        root = ET.fromstring(xml_text)
    except ET.ParseError as e:
        logger.error("解析模板失败: %s", e)
        return None
    if root.tag != "model":
        root = root.find(".//model")
        if root is None:
            return None
    name = (root.get("name") or "").strip()
    if not name:
        return None

    template = CharacterTemplate(name=name)
    seen_names: set[str] = set()
    seen_aliases: set[str] = set()
    for node in root.iter("any"):
        display_name = (node.get("name") or "").strip()
        alias = (node.get("alias") or "").strip()
        if not display_name or not alias:
            continue
        if display_name in seen_names or alias in seen_aliases:
            logger.warning("模板 %s 存在重复字段 %s/%s，已忽略", name, display_name, alias)
            continue
        seen_names.add(display_name)
        seen_aliases.add(alias)

        dialect = node.get("text")
        formula = None
        if dialect and node.text and node.text.strip():
            formula = node.text.strip()
        template.fields.append(TemplateField(
            display_name=display_name,
            alias=alias,
            formula=formula,
            dialect=dialect or None,
            default=_parse_number(node.get("default")),
        ))
    return template


def create_alias_map(template: CharacterTemplate) -> dict[str, str]:
    """别名 -> 显示名。"""
    return {f.alias: f.display_name for f in template.fields}


# ---------------------------------------------------------------------------
# 公式
# ---------------------------------------------------------------------------

def _formula_refs(formula: str) -> list[str]:
    return _THIS_REF.findall(formula)


def _evaluation_order(template: CharacterTemplate) -> list[TemplateField]:
    """公式字段的拓扑序；存在循环时抛 CircularFormula。"""
    formula_fields = [f for f in template.fields if f.formula]
    order: list[TemplateField] = []
    state: dict[str, int] = {}  # 0 未访问 / 1 访问中 / 2 完成

    def visit(f: TemplateField, path: list[str]):
        mark = state.get(f.display_name, 0)
        if mark == 2:
            return
        if mark == 1:
            start = path.index(f.display_name)
            raise CircularFormula(path[start:] + [f.display_name])
        state[f.display_name] = 1
        for ref in _formula_refs(f.formula):
            dep = template.field_by_ref(ref)
            if dep is not None and dep.formula:
                visit(dep, path + [f.display_name])
        state[f.display_name] = 2
        order.append(f)

    for f in formula_fields:
        visit(f, [])
    return order


def check_formulas(template: CharacterTemplate) -> None:
    """加载期校验：公式存在循环引用时抛 CircularFormula。"""
    _evaluation_order(template)


def _eval_node(node: ast.AST) -> Number:
    if isinstance(node, ast.Expression):
        return _eval_node(node.body)
    if isinstance(node, ast.Constant) and isinstance(node.value, (int, float)) and not isinstance(node.value, bool):
        return node.value
    if isinstance(node, ast.BinOp) and type(node.op) in _BIN_OPS:
        return _BIN_OPS[type(node.op)](_eval_node(node.left), _eval_node(node.right))
    if isinstance(node, ast.UnaryOp) and type(node.op) in _UNARY_OPS:
        return _UNARY_OPS[type(node.op)](_eval_node(node.operand))
    if (
        isinstance(node, ast.Call)
        and isinstance(node.func, ast.Attribute)
        and isinstance(node.func.value, ast.Name)
        and node.func.value.id == "Math"
        and node.func.attr in _MATH_FUNCS
        and not node.keywords
    ):
        return _MATH_FUNCS[node.func.attr](*[_eval_node(a) for a in node.args])
    raise ValueError(f"公式中不允许的表达式: {ast.dump(node)[:60]}")


def evaluate_arithmetic(expression: str) -> Number:
    """只求值算术表达式（数字、四则、幂、取模、括号、Math.floor 等）。"""
    tree = ast.parse(expression.strip(), mode="eval")
    result = _eval_node(tree)
    if isinstance(result, float) and result.is_integer():
        return int(result)
    return result


def generate_default_attributes(template: CharacterTemplate) -> dict[str, Number]:
    """
    生成默认属性（键为显示名）。

    第一遍给无公式字段赋字面默认值；第二遍按依赖顺序计算公式，
    把 this.<别名> / this.<显示名> 替换为已算出的数值后做算术求值。
    公式循环引用抛 CircularFormula；单个公式求值失败记 0。
    """
    attributes: dict[str, Number] = {}
    for f in template.fields:
        if not f.formula:
            attributes[f.display_name] = f.default

    for f in _evaluation_order(template):
        def substitute(match: re.Match) -> str:
            ref = template.field_by_ref(match.group(1))
            if ref is None:
                raise ValueError(f"未知字段 {match.group(1)}")
            return f"({attributes.get(ref.display_name, 0)})"

        try:
            expression = _THIS_REF.sub(substitute, f.formula)
            attributes[f.display_name] = evaluate_arithmetic(expression)
        except (ValueError, SyntaxError, TypeError, ZeroDivisionError, OverflowError) as e:
            logger.warning("计算公式失败 (%s): %s", f.display_name, e)
            attributes[f.display_name] = 0

    # 按模板声明顺序输出
    return {f.display_name: attributes[f.display_name] for f in template.fields}
