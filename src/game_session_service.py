"""
游戏会话服务
一个会话覆盖若干群组（areas），记录 GM / 玩家 / 旁观者与会话配置
"""

from typing import Any, Optional

from database import GAME_SESSION, RecordStore, cn_now
from logger_config import get_logger
from plugin_base import ChatIdentity

logger = get_logger("GameSession")

_ROLE_COLUMNS = {
    "gm": "gm_list",
    "player": "player_list",
    "observer": "observer_list",
    "area": "areas",
}


def session_key(identity: ChatIdentity) -> str:
    """会话归属的群组键：私聊时退回用户 ID。"""
    return identity.group_id or identity.user_id


class GameSessionService:

    def __init__(self, records: RecordStore):
        self.records = records
        self._counter = 0

    async def get_session(self, identity: ChatIdentity) -> Optional[dict]:
        """查找 areas 中包含当前群组的会话"""
        key = session_key(identity)
        for session in await self.records.get(GAME_SESSION, {"platform": identity.platform}):
            if key in session["areas"]:
                return session
        return None

    async def get_session_by_name(self, name: str, platform: str) -> Optional[dict]:
        return await self.records.get_one(GAME_SESSION, {"name": name, "platform": platform})

    async def get_by_id(self, game_id: int) -> Optional[dict]:
        return await self.records.get_one(GAME_SESSION, {"id": game_id})

    async def create_session(self, identity: ChatIdentity, name: Optional[str] = None) -> dict:
        key = session_key(identity)
        if not name:
            self._counter += 1
            name = f"新游戏#{self._counter}"
        if await self.get_session_by_name(name, identity.platform) is not None:
            raise ValueError(f'游戏 "{name}" 已存在')
        if await self.get_session(identity) is not None:
            raise ValueError("当前群组已在进行中的游戏里")

        now = cn_now()
        created = await self.records.create(GAME_SESSION, {
            "name": name,
            "group_id": key,
            "platform": identity.platform,
            "gm_list": [],
            "player_list": [],
            "observer_list": [],
            "areas": [key],
            "config": {},
            "roulette": {},
            "is_logging": False,
            "created_at": now,
            "updated_at": now,
        })
        logger.info(f"创建游戏会话: {name} ({key})")
        return created

    async def destroy_session(self, game_id: int) -> bool:
        removed = await self.records.remove(GAME_SESSION, {"id": game_id})
        logger.info(f"销毁游戏会话: {game_id}")
        return removed > 0

    # ------------------------------------------------------------------
    # 成员与区域
    # ------------------------------------------------------------------

    async def _add_member(self, game_id: int, role: str, value: str) -> bool:
        column = _ROLE_COLUMNS[role]
        game = await self.get_by_id(game_id)
        if game is None:
            return False
        members = list(game[column])
        if value in members:
            return False
        members.append(value)
        await self.records.set(GAME_SESSION, {"id": game_id}, {column: members, "updated_at": cn_now()})
        return True

    async def _remove_member(self, game_id: int, role: str, value: str) -> bool:
        column = _ROLE_COLUMNS[role]
        game = await self.get_by_id(game_id)
        if game is None or value not in game[column]:
            return False
        members = [m for m in game[column] if m != value]
        await self.records.set(GAME_SESSION, {"id": game_id}, {column: members, "updated_at": cn_now()})
        return True

    async def add_gm(self, game_id: int, user_id: str) -> bool:
        return await self._add_member(game_id, "gm", user_id)

    async def remove_gm(self, game_id: int, user_id: str) -> bool:
        return await self._remove_member(game_id, "gm", user_id)

    async def add_player(self, game_id: int, user_id: str) -> bool:
        return await self._add_member(game_id, "player", user_id)

    async def remove_player(self, game_id: int, user_id: str) -> bool:
        return await self._remove_member(game_id, "player", user_id)

    async def add_observer(self, game_id: int, user_id: str) -> bool:
        return await self._add_member(game_id, "observer", user_id)

    async def remove_observer(self, game_id: int, user_id: str) -> bool:
        return await self._remove_member(game_id, "observer", user_id)

    async def add_area(self, game_id: int, group_id: str) -> bool:
        return await self._add_member(game_id, "area", group_id)

    async def remove_area(self, game_id: int, group_id: str) -> bool:
        return await self._remove_member(game_id, "area", group_id)

    # ------------------------------------------------------------------
    # 配置
    # ------------------------------------------------------------------

    async def set_config(self, game_id: int, key: str, value: Any) -> bool:
        game = await self.get_by_id(game_id)
        if game is None:
            return False
        config = dict(game["config"])
        config[key] = value
        await self.records.set(GAME_SESSION, {"id": game_id}, {"config": config, "updated_at": cn_now()})
        return True

    async def get_config(self, game_id: int, key: str) -> Any:
        game = await self.get_by_id(game_id)
        return None if game is None else game["config"].get(key)

    @staticmethod
    def to_view(game: dict) -> dict:
        """脚本看到的会话视图。config 平铺在顶层，固定字段不会被覆盖。"""
        view: dict[str, Any] = dict(game.get("config") or {})
        view.update({
            "name": game["name"],
            "gm": list(game.get("gm_list") or []),
            "pls": list(game.get("player_list") or []),
            "obs": list(game.get("observer_list") or []),
            "areas": list(game.get("areas") or []),
            "roulette": dict(game.get("roulette") or {}),
            "isLogging": bool(game.get("is_logging")),
        })
        return view
