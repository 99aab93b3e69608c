"""
脚本解释器

ScriptEngine 是命令桥接层依赖的最小接口（加载 / 卸载 / 调用 / 查询）；
LuaScriptEngine 基于 lupa 实现 Lua 方言。调用是同步的：脚本执行期间
能读到的一切状态都必须事先放进执行上下文。
"""

from abc import ABC, abstractmethod
from typing import Any, Optional

from lupa import LuaError, LuaRuntime, lua_type

from logger_config import get_logger
from plugin_base import InterpreterError, ScriptDialect

logger = get_logger("ScriptEngine")

# 给角色卡表挂别名回退：字面键优先，缺失时按别名表取显示名对应的值
_ALIAS_METATABLE_LUA = """
function(tbl, aliases)
  return setmetatable(tbl, {
    __index = function(t, key)
      local real = aliases[key]
      if real ~= nil then
        return rawget(t, real)
      end
      return nil
    end
  })
end
"""


class ScriptEngine(ABC):
    """解释器原语。name 为脚本注册名（限定名或短名）。"""

    @abstractmethod
    def load_script(self, name: str, source: str, dialect: ScriptDialect) -> bool:
        ...

    @abstractmethod
    def unload_script(self, name: str) -> bool:
        ...

    @abstractmethod
    def call_script(self, name: str, context) -> str:
        """执行脚本并返回文本结果；脚本出错时抛 InterpreterError。"""

    @abstractmethod
    def has_script(self, name: str) -> bool:
        ...

    @abstractmethod
    def list_scripts(self) -> list[str]:
        ...


class LuaScriptEngine(ScriptEngine):
    """
    lupa 驱动的 Lua 引擎。

    每个脚本加载后必须求值为一个函数 ``function(msg)``（裸脚本由
    script_wrapper 包装）。调用时注入全局 ``dice`` 表，其读写方法转发到
    执行上下文的同步回调上。
    """

    def __init__(self):
        self._lua = LuaRuntime(unpack_returned_tuples=True)
        self._functions: dict[str, Any] = {}
        self._apply_aliases = self._lua.eval(_ALIAS_METATABLE_LUA)

    # ------------------------------------------------------------------
    # 加载
    # ------------------------------------------------------------------

    def load_script(self, name: str, source: str, dialect: ScriptDialect) -> bool:
        if dialect != ScriptDialect.LUA:
            logger.warning("Lua 引擎不支持 %s 脚本，跳过: %s", dialect.value, name)
            return False
        try:
            chunk = self._lua.execute(source)
        except LuaError as e:
            logger.error("编译脚本失败 (%s): %s", name, e)
            return False
        if lua_type(chunk) != "function":
            logger.warning("脚本未返回函数，无法注册: %s", name)
            return False
        self._functions[name] = chunk
        return True

    def unload_script(self, name: str) -> bool:
        return self._functions.pop(name, None) is not None

    def has_script(self, name: str) -> bool:
        return name in self._functions

    def list_scripts(self) -> list[str]:
        return sorted(self._functions)

    # ------------------------------------------------------------------
    # 调用
    # ------------------------------------------------------------------

    def call_script(self, name: str, context) -> str:
        fn = self._functions.get(name)
        if fn is None:
            raise InterpreterError(f"脚本不存在: {name}")

        msg = self._to_lua(context.to_message())
        if context.active_character is not None:
            msg.char = self._card_table(context.active_character, context.alias_maps)
        self._lua.globals().dice = self._build_api(context)

        try:
            result = fn(msg)
        except LuaError as e:
            raise InterpreterError(str(e)) from e
        finally:
            self._lua.globals().dice = None

        if isinstance(result, tuple):
            result = result[0] if result else None
        if result is None:
            return ""
        if isinstance(result, bool) or not isinstance(result, (str, int, float)):
            raise InterpreterError(f"脚本返回了无法识别的结果: {lua_type(result) or type(result).__name__}")
        return str(result)

    def _build_api(self, context):
        """每次调用新建的 dice 表，闭包绑定到本次执行上下文。"""
        lua = self._lua

        def query_rule(query):
            text = context.query_rule(str(query))
            if text is None:
                return self._to_lua({"success": False})
            return self._to_lua({"success": True, "content": text})

        def get_group_data(gid, key):
            return self._to_lua(context.get_group_data(str(gid), str(key)))

        def set_group_data(gid, key, value):
            context.set_group_data(str(gid), str(key), self._from_lua(value))

        def get_user_data(uid, key):
            return self._to_lua(context.get_user_data(str(uid), str(key)))

        def set_user_data(uid, key, value):
            context.set_user_data(str(uid), str(key), self._from_lua(value))

        def get_player_card(uid, gid=None):
            card = context.get_player_card(str(uid), str(gid) if gid is not None else None)
            if card is None:
                return None
            return self._card_table(card, context.alias_maps)

        def log(text):
            logger.info("[script] %s", text)

        api = lua.table()
        api.queryRule = query_rule
        api.getGroupData = get_group_data
        api.setGroupData = set_group_data
        api.getUserData = get_user_data
        api.setUserData = set_user_data
        api.getPlayerCard = get_player_card
        api.log = log
        return api

    # ------------------------------------------------------------------
    # 值转换
    # ------------------------------------------------------------------

    def _card_table(self, card, alias_maps):
        aliases = (alias_maps or {}).get(card.get("type") or "") or {}
        return self._apply_aliases(self._to_lua(dict(card)), self._to_lua(dict(aliases)))

    def _to_lua(self, value: Any):
        if isinstance(value, dict):
            table = self._lua.table()
            for k, v in value.items():
                if v is not None:
                    table[k] = self._to_lua(v)
            return table
        if isinstance(value, (list, tuple)):
            table = self._lua.table()
            for index, item in enumerate(value, start=1):
                table[index] = self._to_lua(item)
            return table
        return value

    def _from_lua(self, value: Any) -> Optional[Any]:
        if lua_type(value) != "table":
            return value
        items = {k: self._from_lua(v) for k, v in value.items()}
        if items and all(isinstance(k, int) for k in items) and sorted(items) == list(range(1, len(items) + 1)):
            return [items[i] for i in range(1, len(items) + 1)]
        return items
