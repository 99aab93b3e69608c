"""
脚本结果后处理：写回延迟写入、重读卡片文本、替换占位符
"""

from typing import Optional

from context_builder import GROUP, ExecutionContext
from data_store import DataStore
from logger_config import get_logger

logger = get_logger("ResultProcessor")


def replace_placeholders(
    text: str,
    username: str = "",
    user_id: str = "",
    group_id: str = "",
    char_name: str = "",
    card_text: str = "",
) -> str:
    """
    {self} / {nick}  昵称，缺省用户 ID，再缺省「你」
    {uid} / {gid}    用户 / 群组 ID
    {card}           卡片文本，缺省角色名，再缺省「角色卡」
    {pc}             角色名
    """
    nick = username or user_id or "你"
    return (
        text.replace("{self}", nick)
        .replace("{nick}", nick)
        .replace("{uid}", user_id)
        .replace("{gid}", group_id)
        .replace("{card}", card_text or char_name or "角色卡")
        .replace("{pc}", char_name)
    )


class ResultPostProcessor:

    def __init__(self, data_store: DataStore):
        self.data_store = data_store

    async def flush(self, context: ExecutionContext) -> int:
        """按顺序写回脚本请求的写入，返回成功条数。单条失败只记日志。"""
        written = 0
        for write in context.pending_writes:
            try:
                if write.scope == GROUP:
                    await self.data_store.set_group_data(write.owner, write.key, write.value)
                else:
                    await self.data_store.set_user_data(write.owner, write.key, write.value)
                written += 1
            except Exception as e:
                logger.error(f"写回{write.scope}数据失败 ({write.owner}/{write.key}): {e}")
        context.pending_writes.clear()
        return written

    async def finish(self, context: ExecutionContext, result: Optional[str]) -> str:
        await self.flush(context)
        try:
            card_text = await self.data_store.get_card_text(context.user_id)
        except Exception as e:
            logger.error(f"重读卡片文本失败: {e}")
            card_text = context.cached_card_text
        if not result:
            return ""
        return replace_placeholders(
            result,
            username=context.username,
            user_id=context.user_id,
            group_id=context.group_id,
            char_name=context.card_name,
            card_text=card_text,
        )
