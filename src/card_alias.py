"""
角色卡属性别名解析

脚本按模板里稳定的英文别名（如 Favor）读取属性，卡上实际存的是
显示名（如 宠爱）。字面键永远优先，别名只在字面键缺失时兜底。
"""

from typing import Any, Mapping, Optional


class AliasedCard(dict):
    """
    带别名回退的角色卡只读视图::

        card = AliasedCard({"宠爱": 5}, {"Favor": "宠爱"})
        card.Favor == card["Favor"] == 5
    """

    def __init__(self, data: Optional[Mapping[str, Any]] = None, aliases: Optional[Mapping[str, str]] = None):
        super().__init__(data or {})
        object.__setattr__(self, "_aliases", dict(aliases or {}))

    @property
    def aliases(self) -> dict[str, str]:
        return dict(self._aliases)

    def resolve_key(self, key: str) -> Optional[str]:
        """返回 key 在卡上实际对应的存储键；都不存在时返回 None。"""
        if dict.__contains__(self, key):
            return key
        target = self._aliases.get(key)
        if target is not None and dict.__contains__(self, target):
            return target
        return None

    def __missing__(self, key):
        target = self.__dict__.get("_aliases", {}).get(key)
        if target is not None and dict.__contains__(self, target):
            return dict.__getitem__(self, target)
        raise KeyError(key)

    def __contains__(self, key) -> bool:
        return self.resolve_key(key) is not None

    def get(self, key, default=None):
        real = self.resolve_key(key)
        return dict.__getitem__(self, real) if real is not None else default

    def __getattr__(self, name: str):
        if name.startswith("_"):
            raise AttributeError(name)
        try:
            return self[name]
        except KeyError:
            raise AttributeError(name) from None

    def __setattr__(self, name, value):
        raise AttributeError("AliasedCard 为只读快照")

    def to_dict(self) -> dict:
        return dict(self)


def resolve_card(card: Optional[Mapping[str, Any]], alias_maps: Mapping[str, Mapping[str, str]]) -> Optional[AliasedCard]:
    """按卡上的 type 字段选择模板别名表，包装为 AliasedCard。"""
    if card is None:
        return None
    card_type = card.get("type") or ""
    return AliasedCard(card, alias_maps.get(card_type) or {})
