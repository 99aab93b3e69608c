"""
DiceBot 配置文件示例
复制此文件为 config.py 并填写真实配置
"""

# Redis 配置（群组/用户数据、角色卡缓存）；连接失败时自动使用内存存储
REDIS_CONFIG = {
    "host": "127.0.0.1",
    "port": 6379,
    "password": "",
    "db": 0,
    "decode_responses": True,
}

# SQLite 配置（角色卡、群组绑定、游戏会话）
DATABASE_CONFIG = {
    "path": "data/dicebot.db",   # 相对于项目根目录
}

# 扩展插件配置
EXTENSION_CONFIG = {
    "plugin_dir": "plugins",     # 插件目录，相对于项目根目录
    "platform": "console",       # 消息未携带平台时使用的默认平台名
}

# Web 管理接口配置
WEB_ADMIN_CONFIG = {
    "enabled": False,
    "host": "127.0.0.1",  # 监听地址，对外开放请改为 0.0.0.0 并务必设置 token
    "port": 8090,
    "token": "",          # 访问令牌（请求头 X-Admin-Token 或 cookie admin_token），留空则接口全部拒绝
}

# Bot 管理员列表（只有这些用户可以执行 /ext 指令）
# 填入用户 UID，留空则不做权限限制（所有人可用）
ADMIN_UIDS = [
    # "用户UID",
]
