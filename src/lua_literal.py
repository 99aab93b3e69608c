"""
Lua 表字面量编解码

宿主值 <-> Lua 字面量文本，用于把角色卡快照以 player_card#<uid> 形式
缓存进群组数据，供解释器侧直接读取。不是通用 RPC 格式。

语法（解码端同时容忍 JSON 形状）::

    value  := nil | true | false | null | number | string | table | array
    table  := '{' [ field { (',' | ';') field } [',' | ';'] ] '}'
    field  := Name '=' value | '[' value ']' '=' value | string ':' value | value
    array  := '[' [ value { ',' value } [','] ] ']'
    string := '"' ... '"' | "'" ... "'"

不支持长字符串 [[...]]。往返时有两处有损：

- 空表 {} 统一解码为空 dict，任意层级的空列表也因此变成空 dict
- 值为 nil/null 的表字段按 Lua 语义视为不存在，解码时丢弃（列表里的 nil 保留）
"""

import math
import re
from typing import Any, Optional

from logger_config import get_logger

logger = get_logger("LuaLiteral")

_IDENT_RE = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")
_NUMBER_RE = re.compile(
    r"-?(?:0[xX][0-9a-fA-F]+|(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?)"
)
_LUA_KEYWORDS = frozenset((
    "and", "break", "do", "else", "elseif", "end", "false", "for", "function",
    "goto", "if", "in", "local", "nil", "not", "or", "repeat", "return", "then",
    "true", "until", "while",
))

_ESCAPES_OUT = {
    "\\": "\\\\",
    '"': '\\"',
    "\n": "\\n",
    "\r": "\\r",
    "\t": "\\t",
}

_ESCAPES_IN = {
    "n": "\n", "r": "\r", "t": "\t", "a": "\a", "b": "\b", "f": "\f", "v": "\v",
    "\\": "\\", '"': '"', "'": "'", "/": "/", "\n": "\n",
}


# ---------------------------------------------------------------------------
# 编码
# ---------------------------------------------------------------------------

def _quote(text: str) -> str:
    out = []
    for ch in text:
        if ch in _ESCAPES_OUT:
            out.append(_ESCAPES_OUT[ch])
        elif ord(ch) < 0x20 or ord(ch) == 0x7F:
            out.append("\\%03d" % ord(ch))
        else:
            out.append(ch)
    return '"' + "".join(out) + '"'


def _encode_key(key: Any) -> str:
    if isinstance(key, str):
        if _IDENT_RE.fullmatch(key) and key not in _LUA_KEYWORDS:
            return key
        return f"[{_quote(key)}]"
    if isinstance(key, int) and not isinstance(key, bool):
        return f"[{key}]"
    raise TypeError(f"不支持的表键类型: {type(key).__name__}")


def _encode(value: Any, stack: set) -> str:
    if value is None:
        return "nil"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        if math.isnan(value) or math.isinf(value):
            raise ValueError("NaN/Infinity 无法表示为字面量")
        return repr(value)
    if isinstance(value, str):
        return _quote(value)
    if isinstance(value, (dict, list, tuple)):
        marker = id(value)
        if marker in stack:
            raise ValueError("检测到循环引用")
        stack.add(marker)
        try:
            if isinstance(value, dict):
                parts = [f"{_encode_key(k)}={_encode(v, stack)}" for k, v in value.items()]
            else:
                parts = [_encode(v, stack) for v in value]
        finally:
            stack.discard(marker)
        return "{" + ",".join(parts) + "}"
    raise TypeError(f"不支持的值类型: {type(value).__name__}")


def to_embedded_table(value: Any) -> str:
    """宿主值 -> Lua 字面量文本。遇到循环引用或不可表示的值抛 ValueError/TypeError。"""
    return _encode(value, set())


# ---------------------------------------------------------------------------
# 解码
# ---------------------------------------------------------------------------

class _ParseError(ValueError):
    pass


class _Parser:
    def __init__(self, text: str):
        self.text = text
        self.pos = 0

    def error(self, msg: str):
        raise _ParseError(f"{msg} (位置 {self.pos})")

    def peek(self, offset: int = 0) -> str:
        i = self.pos + offset
        return self.text[i] if i < len(self.text) else ""

    def skip_ws(self):
        text = self.text
        while self.pos < len(text):
            ch = text[self.pos]
            if ch.isspace():
                self.pos += 1
            elif text.startswith("--", self.pos):
                end = text.find("\n", self.pos)
                self.pos = len(text) if end < 0 else end + 1
            else:
                break

    def expect(self, ch: str):
        self.skip_ws()
        if self.peek() != ch:
            self.error(f"期望 {ch!r}")
        self.pos += 1

    def parse_document(self) -> Any:
        self.skip_ws()
        if self.text.startswith("return", self.pos) and not _IDENT_RE.match(self.peek(6) or " "):
            self.pos += 6
        value = self.parse_value()
        self.skip_ws()
        if self.pos != len(self.text):
            self.error("字面量后存在多余内容")
        return value

    def parse_value(self) -> Any:
        self.skip_ws()
        ch = self.peek()
        if not ch:
            self.error("意外的结尾")
        if ch == "{":
            return self.parse_table()
        if ch == "[":
            return self.parse_array()
        if ch in "\"'":
            return self.parse_string()
        if ch == "-" or ch == "." or ch.isdigit():
            return self.parse_number()
        m = _IDENT_RE.match(self.text, self.pos)
        if m:
            word = m.group(0)
            if word == "true":
                self.pos = m.end()
                return True
            if word == "false":
                self.pos = m.end()
                return False
            if word in ("nil", "null"):
                self.pos = m.end()
                return None
        self.error("无法识别的值")

    def parse_number(self) -> Any:
        m = _NUMBER_RE.match(self.text, self.pos)
        if not m:
            self.error("非法数字")
        token = m.group(0)
        self.pos = m.end()
        body = token.lstrip("-")
        if body[:2].lower() == "0x":
            value = int(body, 16)
            return -value if token.startswith("-") else value
        if any(c in token for c in ".eE"):
            return float(token)
        return int(token)

    def parse_string(self) -> str:
        quote = self.peek()
        self.pos += 1
        out = []
        text = self.text
        while True:
            if self.pos >= len(text):
                self.error("字符串未闭合")
            ch = text[self.pos]
            if ch == quote:
                self.pos += 1
                return "".join(out)
            if ch == "\n":
                self.error("字符串中出现未转义换行")
            if ch != "\\":
                out.append(ch)
                self.pos += 1
                continue
            self.pos += 1
            esc = self.peek()
            if not esc:
                self.error("转义不完整")
            if esc in _ESCAPES_IN:
                out.append(_ESCAPES_IN[esc])
                self.pos += 1
            elif esc.isdigit():
                m = re.match(r"\d{1,3}", text[self.pos:])
                code = int(m.group(0))
                if code > 255:
                    self.error("十进制转义超出范围")
                out.append(chr(code))
                self.pos += len(m.group(0))
            elif esc == "x":
                digits = text[self.pos + 1:self.pos + 3]
                if not re.fullmatch(r"[0-9a-fA-F]{2}", digits):
                    self.error("非法 \\x 转义")
                out.append(chr(int(digits, 16)))
                self.pos += 3
            elif esc == "u":
                out.append(self._parse_unicode_escape())
            elif esc == "z":
                self.pos += 1
                while self.pos < len(text) and text[self.pos].isspace():
                    self.pos += 1
            else:
                self.error(f"未知转义 \\{esc}")

    def _parse_unicode_escape(self) -> str:
        text = self.text
        self.pos += 1  # 跳过 u
        if self.peek() == "{":
            end = text.find("}", self.pos)
            if end < 0:
                self.error("\\u{ 未闭合")
            digits = text[self.pos + 1:end]
            if not re.fullmatch(r"[0-9a-fA-F]{1,8}", digits) or int(digits, 16) > 0x10FFFF:
                self.error("非法 \\u{} 转义")
            self.pos = end + 1
            return chr(int(digits, 16))
        digits = text[self.pos:self.pos + 4]
        if not re.fullmatch(r"[0-9a-fA-F]{4}", digits):
            self.error("非法 \\u 转义")
        code = int(digits, 16)
        self.pos += 4
        # JSON 代理对
        if 0xD800 <= code < 0xDC00 and text.startswith("\\u", self.pos):
            low = text[self.pos + 2:self.pos + 6]
            if re.fullmatch(r"[0-9a-fA-F]{4}", low) and 0xDC00 <= int(low, 16) < 0xE000:
                self.pos += 6
                code = 0x10000 + ((code - 0xD800) << 10) + (int(low, 16) - 0xDC00)
        return chr(code)

    def parse_array(self) -> list:
        self.pos += 1
        items = []
        while True:
            self.skip_ws()
            if self.peek() == "]":
                self.pos += 1
                return items
            items.append(self.parse_value())
            self.skip_ws()
            if self.peek() == ",":
                self.pos += 1
            elif self.peek() != "]":
                self.error("数组元素之间缺少逗号")

    def parse_table(self) -> Any:
        self.pos += 1
        keyed: dict = {}
        positional: list = []
        while True:
            self.skip_ws()
            ch = self.peek()
            if ch == "}":
                self.pos += 1
                break
            if ch == "[":
                self.pos += 1
                key = self.parse_value()
                self.expect("]")
                self.expect("=")
                value = self.parse_value()
                if key is None:
                    self.error("表键不能为 nil")
                if isinstance(key, (dict, list)):
                    self.error("表键不能是表")
                if value is not None:
                    keyed[key] = value
            elif ch in "\"'":
                text_value = self.parse_string()
                self.skip_ws()
                if self.peek() == ":":
                    self.pos += 1
                    value = self.parse_value()
                    if value is not None:
                        keyed[text_value] = value
                else:
                    positional.append(text_value)
            else:
                m = _IDENT_RE.match(self.text, self.pos)
                is_field = False
                if m:
                    after = m.end()
                    while after < len(self.text) and self.text[after].isspace():
                        after += 1
                    is_field = (
                        self.text[after:after + 1] == "="
                        and self.text[after:after + 2] != "=="
                    )
                if is_field:
                    self.pos = m.end()
                    self.expect("=")
                    value = self.parse_value()
                    if value is not None:
                        keyed[m.group(0)] = value
                else:
                    positional.append(self.parse_value())
            self.skip_ws()
            sep = self.peek()
            if sep in (",", ";"):
                self.pos += 1
            elif sep != "}":
                self.error("表字段之间缺少分隔符")

        if positional and not keyed:
            return positional
        for index, item in enumerate(positional, start=1):
            if item is not None:
                keyed[index] = item
        return keyed


def parse_embedded_literal(text: Optional[str]) -> Any:
    """
    Lua 字面量（或近似 JSON）文本 -> 宿主值。
    任何格式问题都返回 None，不抛异常：单条损坏的缓存不应影响命令执行。
    """
    if not isinstance(text, str) or not text.strip():
        return None
    try:
        return _Parser(text).parse_document()
    except (ValueError, IndexError, TypeError, OverflowError, RecursionError) as e:
        logger.debug("字面量解析失败，按缓存未命中处理: %s", e)
        return None
