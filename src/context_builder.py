"""
执行上下文构建

解释器调用是同步的，不能 await。所以脚本可能读到的一切都要在调用前
异步取好放进 ExecutionContext：

1. 当前角色卡（群内绑定卡优先，其次全局激活卡）
2. 所在群的游戏会话视图，以及会话内每个玩家的角色卡（一次性预取）
3. 模板别名表
4. 卡片文本、合并后的规则表、本群/本人的键值数据快照

脚本发起的写入不会立即落库，而是排进 pending_writes，调用结束后由
ResultPostProcessor 统一写回。任何一步取数失败只会让对应字段缺省，不会中断构建。
"""

import asyncio
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from card_alias import AliasedCard, resolve_card
from character_service import CharacterService, card_to_dict
from data_store import CARD_TEXT_KEY, PLAYER_CARD_KEY, DataStore
from game_session_service import GameSessionService
from logger_config import get_logger
from lua_literal import parse_embedded_literal
from plugin_base import CacheCorruption, ChatIdentity

logger = get_logger("ContextBuilder")

GROUP = "group"
USER = "user"


def decode_card_blob(blob: Any) -> dict:
    """解析 player_card#<uid> 缓存；无法解析时抛 CacheCorruption。"""
    if isinstance(blob, dict):
        return blob
    parsed = parse_embedded_literal(str(blob))
    if not isinstance(parsed, dict):
        raise CacheCorruption(f"角色卡缓存无法解析: {str(blob)[:40]}")
    return parsed


@dataclass(frozen=True)
class PendingWrite:
    scope: str  # group / user
    owner: str  # 群组 ID 或用户 ID
    key: str
    value: Any


@dataclass
class ExecutionContext:
    """单次命令调用的快照。调用前创建，调用后丢弃，从不持久化。"""
    argument_tail: str
    user_id: str
    group_id: str = ""
    is_private: bool = False
    platform: str = ""
    username: str = ""
    active_character: Optional[AliasedCard] = None
    cached_card_text: str = ""
    game: Optional[dict] = None
    rules: dict[str, dict[str, str]] = field(default_factory=dict)
    alias_maps: dict[str, dict[str, str]] = field(default_factory=dict)
    teammate_cards: dict[str, dict] = field(default_factory=dict)
    group_data: dict[str, Any] = field(default_factory=dict)
    user_data: dict[str, Any] = field(default_factory=dict)
    pending_writes: list[PendingWrite] = field(default_factory=list)

    @property
    def card_name(self) -> str:
        if self.active_character is None:
            return ""
        return str(self.active_character.get("__Name") or self.active_character.get("name") or "")

    # ------------------------------------------------------------------
    # 同步回调（解释器侧调用）
    # ------------------------------------------------------------------

    def _pending(self, scope: str, owner: str, key: str):
        for write in reversed(self.pending_writes):
            if write.scope == scope and write.owner == owner and write.key == key:
                return True, write.value
        return False, None

    def get_group_data(self, group_id: str, key: str) -> Any:
        found, value = self._pending(GROUP, group_id, key)
        if found:
            return value
        if group_id == self.group_id:
            return self.group_data.get(key)
        logger.debug("读取未预取的群组数据 %s/%s，返回空", group_id, key)
        return None

    def set_group_data(self, group_id: str, key: str, value: Any):
        self.pending_writes.append(PendingWrite(GROUP, group_id, key, value))

    def get_user_data(self, user_id: str, key: str) -> Any:
        found, value = self._pending(USER, user_id, key)
        if found:
            return value
        if user_id == self.user_id:
            return self.user_data.get(key)
        logger.debug("读取未预取的用户数据 %s/%s，返回空", user_id, key)
        return None

    def set_user_data(self, user_id: str, key: str, value: Any):
        self.pending_writes.append(PendingWrite(USER, user_id, key, value))

    def get_player_card(self, user_id: str, group_id: Optional[str] = None) -> Optional[dict]:
        """
        先查预取的队友卡，再查本人当前卡，最后解析群组数据里的
        player_card#<uid> 缓存。缓存损坏按未命中处理，返回 None。
        """
        card = self.teammate_cards.get(user_id)
        if card is not None:
            return card
        if user_id == self.user_id and self.active_character is not None:
            return self.active_character.to_dict()
        blob = self.get_group_data(group_id or self.group_id, PLAYER_CARD_KEY.format(user_id))
        if blob is None:
            return None
        try:
            return decode_card_blob(blob)
        except CacheCorruption as e:
            logger.warning("player_card#%s 按未命中处理: %s", user_id, e)
            return None

    def query_rule(self, keyword: str) -> Optional[str]:
        for manual in self.rules.values():
            if keyword in manual:
                return manual[keyword]
        return None

    def to_message(self) -> dict:
        """脚本入参 msg 的内容（角色卡由解释器另行挂别名元表）。"""
        return {
            "suffix": self.argument_tail,
            "uid": self.user_id,
            "gid": self.group_id,
            "private": self.is_private,
            "platform": self.platform,
            "nick": self.username,
            "card": self.cached_card_text,
            "char": self.active_character.to_dict() if self.active_character is not None else None,
            "game": dict(self.game) if self.game else {},
            "pluginRules": {k: dict(v) for k, v in self.rules.items()},
        }


class ContextBuilder:

    def __init__(
        self,
        characters: CharacterService,
        sessions: GameSessionService,
        data_store: DataStore,
        rule_snapshot: Callable[[], dict],
        alias_snapshot: Callable[[], dict],
    ):
        self.characters = characters
        self.sessions = sessions
        self.data_store = data_store
        self.rule_snapshot = rule_snapshot
        self.alias_snapshot = alias_snapshot

    async def build(self, identity: ChatIdentity, argument_tail: str) -> ExecutionContext:
        context = ExecutionContext(
            argument_tail=argument_tail,
            user_id=identity.user_id,
            group_id=identity.group_id,
            is_private=identity.is_private,
            platform=identity.platform,
            username=identity.username,
        )
        context.alias_maps = self.alias_snapshot()
        context.rules = self.rule_snapshot()

        try:
            card = await self.characters.resolve_card(identity)
            if card is not None:
                context.active_character = resolve_card(card_to_dict(card), context.alias_maps)
        except Exception as e:
            logger.debug(f"获取角色卡失败: {e}")

        try:
            game = await self.sessions.get_session(identity)
            if game is not None:
                context.game = self.sessions.to_view(game)
                context.teammate_cards = await self._prefetch_teammates(identity, context.game["pls"])
        except Exception as e:
            logger.debug(f"获取游戏会话失败: {e}")

        if context.group_id:
            try:
                context.group_data = await self.data_store.group_snapshot(context.group_id)
            except Exception as e:
                logger.warning(f"读取群组数据失败: {e}")
        try:
            context.user_data = await self.data_store.user_snapshot(context.user_id)
        except Exception as e:
            logger.warning(f"读取用户数据失败: {e}")
        card_text = context.user_data.get(CARD_TEXT_KEY)
        context.cached_card_text = "" if card_text is None else str(card_text)
        return context

    async def _prefetch_teammates(self, identity: ChatIdentity, players: list[str]) -> dict[str, dict]:
        """会话内每个玩家的当前卡；没有卡或查询失败的玩家直接缺席。"""
        players = [str(p) for p in players]
        results = await asyncio.gather(
            *(self.characters.resolve_card_of(uid, identity.platform, identity.group_id) for uid in players),
            return_exceptions=True,
        )
        cards: dict[str, dict] = {}
        for uid, result in zip(players, results):
            if isinstance(result, Exception):
                logger.debug(f"预取队友 {uid} 的角色卡失败: {result}")
                continue
            if result is not None:
                cards[uid] = card_to_dict(result)
        return cards
