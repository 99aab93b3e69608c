"""
群组 / 用户键值数据
脚本通过 setGroupData / setUserData 写入的数据，以及 player_card#<uid> 角色卡缓存
"""

import json
from typing import Any, Optional

import redis.asyncio as redis

from logger_config import get_logger

logger = get_logger("DataStore")

# Redis 键名（hash，field 为数据键）
KEY_GROUP = "dice:group:{}"
KEY_USER = "dice:user:{}"

# 用户数据里的「卡片文本」键，脚本维护、回复时替换 {card}
CARD_TEXT_KEY = "card"
PLAYER_CARD_KEY = "player_card#{}"


class _InMemoryRedis:
    """
    简易的内存版 Redis，用于 Redis 无法连接时的降级。
    只实现当前项目用到的 hash 方法。
    """

    def __init__(self):
        self._hashes: dict[str, dict[str, str]] = {}

    async def ping(self):
        return True

    async def hget(self, key: str, field: str):
        return self._hashes.get(key, {}).get(field)

    async def hset(self, key: str, field: str, value):
        self._hashes.setdefault(key, {})[field] = value
        return 1

    async def hgetall(self, key: str) -> dict:
        return dict(self._hashes.get(key, {}))

    async def hdel(self, key: str, *fields):
        bucket = self._hashes.get(key, {})
        return sum(1 for f in fields if bucket.pop(f, None) is not None)

    async def aclose(self):
        self._hashes.clear()


def encode_value(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False)


def decode_value(raw: Optional[str]) -> Any:
    """存储的是 JSON 文本；历史遗留的裸字符串原样返回。"""
    if raw is None:
        return None
    try:
        return json.loads(raw)
    except (TypeError, ValueError):
        return raw


class DataStore:
    """基于 Redis 的群组/用户数据（Redis 不可用时自动回退到内存）"""

    def __init__(self, client=None):
        self.redis = client if client is not None else _InMemoryRedis()

    @classmethod
    async def connect(cls, redis_config: Optional[dict] = None) -> "DataStore":
        if redis_config is None:
            return cls()
        client = redis.Redis(**{**redis_config, "decode_responses": True})
        try:
            await client.ping()
            logger.info("Redis 连接成功")
        except Exception as e:
            logger.error(f"Redis 连接失败，将使用内存存储: {e}")
            await client.aclose()
            return cls()
        return cls(client)

    async def close(self):
        await self.redis.aclose()

    # ------------------------------------------------------------------
    # 群组数据
    # ------------------------------------------------------------------

    async def get_group_data(self, group_id: str, key: str) -> Any:
        return decode_value(await self.redis.hget(KEY_GROUP.format(group_id), key))

    async def set_group_data(self, group_id: str, key: str, value: Any):
        await self.redis.hset(KEY_GROUP.format(group_id), key, encode_value(value))

    async def delete_group_data(self, group_id: str, key: str):
        await self.redis.hdel(KEY_GROUP.format(group_id), key)

    async def group_snapshot(self, group_id: str) -> dict[str, Any]:
        raw = await self.redis.hgetall(KEY_GROUP.format(group_id))
        return {k: decode_value(v) for k, v in raw.items()}

    # ------------------------------------------------------------------
    # 用户数据
    # ------------------------------------------------------------------

    async def get_user_data(self, user_id: str, key: str) -> Any:
        return decode_value(await self.redis.hget(KEY_USER.format(user_id), key))

    async def set_user_data(self, user_id: str, key: str, value: Any):
        await self.redis.hset(KEY_USER.format(user_id), key, encode_value(value))

    async def user_snapshot(self, user_id: str) -> dict[str, Any]:
        raw = await self.redis.hgetall(KEY_USER.format(user_id))
        return {k: decode_value(v) for k, v in raw.items()}

    async def get_card_text(self, user_id: str) -> str:
        value = await self.get_user_data(user_id, CARD_TEXT_KEY)
        return "" if value is None else str(value)
