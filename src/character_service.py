"""
角色卡服务

- 每个用户可以有多张卡，其中一张为全局激活卡
- 在群内可以绑定一张卡，群内优先使用绑定卡
- 绑定时把卡片快照以 Lua 表字面量写入群组数据 player_card#<uid>，
  供脚本同步读取队友数据
"""

from typing import Any, Callable, Optional

from data_store import PLAYER_CARD_KEY, DataStore
from database import BINDING, CHARACTER, RecordStore, cn_now
from logger_config import get_logger
from lua_literal import to_embedded_table
from plugin_base import ChatIdentity
from template_parser import CharacterTemplate, generate_default_attributes

logger = get_logger("CharacterService")


def card_to_dict(card: dict) -> dict:
    """数据库记录 -> 脚本看到的角色卡 {__Name, name, type, 属性...}"""
    data: dict[str, Any] = {
        "__Name": card["card_name"],
        "name": card["card_name"],
        "type": card.get("card_type") or "",
    }
    data.update(card.get("attributes") or {})
    return data


class CharacterService:

    def __init__(
        self,
        records: RecordStore,
        data_store: DataStore,
        template_lookup: Optional[Callable[[str], Optional[CharacterTemplate]]] = None,
    ):
        self.records = records
        self.data_store = data_store
        self.template_lookup = template_lookup

    # ------------------------------------------------------------------
    # 查询
    # ------------------------------------------------------------------

    async def get_active_card_of(self, user_id: str, platform: str) -> Optional[dict]:
        return await self.records.get_one(
            CHARACTER, {"user_id": user_id, "platform": platform, "is_active": True},
        )

    async def get_card_of(self, user_id: str, platform: str, card_name: str) -> Optional[dict]:
        return await self.records.get_one(
            CHARACTER, {"user_id": user_id, "platform": platform, "card_name": card_name},
        )

    async def get_bound_card_of(self, user_id: str, platform: str, group_id: str) -> Optional[dict]:
        if not group_id:
            return None
        binding = await self.records.get_one(
            BINDING, {"user_id": user_id, "platform": platform, "group_id": group_id},
        )
        if binding is None:
            return None
        return await self.get_card_of(user_id, platform, binding["card_name"])

    async def resolve_card_of(self, user_id: str, platform: str, group_id: str = "") -> Optional[dict]:
        """群内绑定卡优先，其次全局激活卡。"""
        card = await self.get_bound_card_of(user_id, platform, group_id)
        if card is not None:
            return card
        return await self.get_active_card_of(user_id, platform)

    async def get_active_card(self, identity: ChatIdentity) -> Optional[dict]:
        return await self.get_active_card_of(identity.user_id, identity.platform)

    async def get_card(self, identity: ChatIdentity, card_name: str) -> Optional[dict]:
        return await self.get_card_of(identity.user_id, identity.platform, card_name)

    async def get_bound_card(self, identity: ChatIdentity) -> Optional[dict]:
        if identity.is_private:
            return None
        return await self.get_bound_card_of(identity.user_id, identity.platform, identity.group_id)

    async def resolve_card(self, identity: ChatIdentity) -> Optional[dict]:
        group_id = "" if identity.is_private else identity.group_id
        return await self.resolve_card_of(identity.user_id, identity.platform, group_id)

    async def list_cards(self, identity: ChatIdentity) -> list[dict]:
        return await self.records.get(
            CHARACTER, {"user_id": identity.user_id, "platform": identity.platform},
        )

    # ------------------------------------------------------------------
    # 修改
    # ------------------------------------------------------------------

    def default_attributes(self, card_type: str) -> dict:
        if not card_type or self.template_lookup is None:
            return {}
        template = self.template_lookup(card_type)
        if template is None:
            return {}
        return generate_default_attributes(template)

    async def create_card(
        self,
        identity: ChatIdentity,
        card_name: str,
        card_type: str = "",
        attributes: Optional[dict] = None,
    ) -> dict:
        """
        新建角色卡。card_type 对应已加载的模板时，先填入模板默认值，
        再用 attributes 覆盖。用户还没有激活卡时新卡自动激活。
        """
        card_name = card_name.strip()
        if not card_name:
            raise ValueError("角色卡名不能为空")
        if await self.get_card(identity, card_name) is not None:
            raise ValueError(f"角色卡 {card_name} 已存在")

        values = self.default_attributes(card_type)
        values.update(attributes or {})
        now = cn_now()
        created = await self.records.create(CHARACTER, {
            "user_id": identity.user_id,
            "platform": identity.platform,
            "card_name": card_name,
            "card_type": card_type,
            "is_active": await self.get_active_card(identity) is None,
            "attributes": values,
            "created_at": now,
            "updated_at": now,
        })
        logger.info(f"创建角色卡: {identity.user_id}@{identity.platform} -> {card_name} ({card_type or '无模板'})")
        return created

    async def switch_card(self, identity: ChatIdentity, card_name: str) -> dict:
        card = await self.get_card(identity, card_name)
        if card is None:
            raise ValueError(f"角色卡 {card_name} 不存在")
        owner = {"user_id": identity.user_id, "platform": identity.platform}
        await self.records.set(CHARACTER, owner, {"is_active": False})
        await self.records.set(
            CHARACTER, {**owner, "card_name": card_name}, {"is_active": True, "updated_at": cn_now()},
        )
        card["is_active"] = True
        return card

    async def bind_card(self, identity: ChatIdentity, card_name: Optional[str] = None) -> dict:
        """
        在当前群绑定角色卡（不指定卡名时绑定当前激活卡），
        并刷新群组数据里的 player_card#<uid> 缓存。
        """
        if identity.is_private:
            raise ValueError("只能在群聊中绑定角色卡")
        if card_name:
            card = await self.get_card(identity, card_name)
        else:
            card = await self.get_active_card(identity)
        if card is None:
            raise ValueError("未找到角色卡")

        key = {"user_id": identity.user_id, "platform": identity.platform, "group_id": identity.group_id}
        if await self.records.get_one(BINDING, key) is not None:
            await self.records.set(BINDING, key, {"card_name": card["card_name"]})
        else:
            await self.records.create(BINDING, {**key, "card_name": card["card_name"]})
        logger.info(f"绑定角色卡: {identity.user_id} -> {card['card_name']} 在 {identity.group_id}")

        try:
            await self.data_store.set_group_data(
                identity.group_id,
                PLAYER_CARD_KEY.format(identity.user_id),
                to_embedded_table(card_to_dict(card)),
            )
        except Exception as e:
            logger.error(f"缓存角色卡失败: {e}")
        return card

    async def unbind_card(self, identity: ChatIdentity) -> bool:
        if identity.is_private:
            return False
        removed = await self.records.remove(BINDING, {
            "user_id": identity.user_id, "platform": identity.platform, "group_id": identity.group_id,
        })
        return removed > 0
