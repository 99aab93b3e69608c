"""
Lua 脚本兼容层

社区插件脚本按旧版骰娘的写法直接使用 queryRule / getGroupData 等全局函数，
并期望 msg 作为入参。这里把裸脚本包进 ``return function(msg) ... end``，
把这些函数桥接到每次调用时注入的 ``dice`` 全局表上。
"""

import re

_ALREADY_WRAPPED = re.compile(r"^return\s+function\b")

_SHIM_HEAD = """return function(msg)
  local function queryRule(query)
    if msg.pluginRules then
      for _, manual in pairs(msg.pluginRules) do
        if type(manual) == "table" and manual[query] then
          return manual[query]
        end
      end
    end
    local result = dice.queryRule(query)
    if result and result.success then
      return result.content
    end
    return nil
  end

  local function setGroupConf(gid, key, value)
    dice.setGroupData(gid, key, tostring(value))
  end
  local function getGroupConf(gid, key)
    return dice.getGroupData(gid, key)
  end
  local function setGroupData(gid, key, value)
    dice.setGroupData(gid, key, tostring(value))
  end
  local function getGroupData(gid, key)
    return dice.getGroupData(gid, key)
  end
  local function setUserData(uid, key, value)
    dice.setUserData(uid, key, tostring(value))
  end
  local function getUserData(uid, key)
    return dice.getUserData(uid, key)
  end
  local function getPlayerCard(uid, gid)
    return dice.getPlayerCard(uid, gid)
  end

  if msg.game and msg.game.pls then
    setmetatable(msg.game.pls, {
      __index = {
        totable = function(self)
          return self
        end
      }
    })
  end

  local __result = (function()
"""

_SHIM_TAIL = """
  end)()

  -- {card} 留给宿主在写回后替换
  if type(__result) == "string" then
    local pc = tostring(msg.char and msg.char.__Name or ""):gsub("%%", "%%%%")
    __result = __result:gsub("{pc}", pc)
  end

  return __result
end"""


def wrap_lua_script(source: str) -> str:
    """已经是 ``return function`` 形式的脚本原样返回（去掉首尾空白）。"""
    trimmed = source.strip()
    if _ALREADY_WRAPPED.match(trimmed):
        return trimmed
    return _SHIM_HEAD + source + _SHIM_TAIL
