"""
DiceBot 入口
加载规则插件后进入控制台交互，可选启动 Web 管理接口
"""

import os
import sys
import asyncio

if sys.platform == "win32":
    os.system("chcp 65001 >nul 2>&1")

ROOT = os.path.dirname(os.path.abspath(__file__))
sys.path.insert(0, os.path.join(ROOT, "src"))

from logger_config import setup_logger
from database import RecordStore, init_database
from data_store import DataStore
from script_engine import LuaScriptEngine
from command_tree import CommandTree
from character_service import CharacterService
from game_session_service import GameSessionService
from extension_service import ExtensionService
from command_handler import CommandHandler
from web_admin import create_app, serve as serve_web_admin

logger = setup_logger("Main")

CONSOLE_UID = "console"


class ConsoleSender:
    """把回复打印到控制台，接口与聊天平台发送器一致。"""

    def send_message(self, text: str, channel: str = None, area: str = None):
        where = f"{area}/{channel}" if area else (channel or "私聊")
        print(f"[{where}] {text}", flush=True)


def parse_console_line(line: str) -> dict:
    """
    控制台输入格式::

        .team show Alice            以默认身份在默认群发送
        @uid#group .team show       指定用户和群（省略 #group 则为私聊）
    """
    user, area = CONSOLE_UID, "console-group"
    content = line.strip()
    if content.startswith("@"):
        head, _, content = content.partition(" ")
        user, _, area = head[1:].partition("#")
        user = user or CONSOLE_UID
    return {
        "channel": area or f"dm-{user}",
        "area": area,
        "person": user,
        "username": user,
        "content": content.strip(),
    }


async def console_loop(handler: CommandHandler):
    logger.info("控制台已就绪，输入 /help 查看指令，Ctrl+C 退出")
    while True:
        try:
            line = await asyncio.to_thread(input, "> ")
        except EOFError:
            return
        if not line.strip():
            continue
        await handler.handle(parse_console_line(line))


async def run():
    from config import REDIS_CONFIG, DATABASE_CONFIG, EXTENSION_CONFIG, WEB_ADMIN_CONFIG, ADMIN_UIDS

    db_path = os.path.join(ROOT, DATABASE_CONFIG.get("path", "data/dicebot.db"))
    init_database(db_path)
    records = RecordStore(db_path)
    data_store = await DataStore.connect(REDIS_CONFIG)

    characters = CharacterService(records, data_store)
    sessions = GameSessionService(records)
    service = ExtensionService(
        os.path.join(ROOT, EXTENSION_CONFIG.get("plugin_dir", "plugins")),
        LuaScriptEngine(),
        CommandTree(),
        data_store,
        characters,
        sessions,
    )
    loaded = await service.initialize()
    logger.info(f"已加载插件: {', '.join(loaded) or '（无）'}")

    handler = CommandHandler(
        ConsoleSender(),
        service,
        admin_uids=ADMIN_UIDS,
        default_platform=EXTENSION_CONFIG.get("platform", "console"),
    )

    web_task = None
    if WEB_ADMIN_CONFIG.get("enabled"):
        if not WEB_ADMIN_CONFIG.get("token"):
            logger.warning("Web 管理接口未设置 token，所有 /api 请求都会被拒绝")
        app = create_app(service, WEB_ADMIN_CONFIG.get("token", ""))
        web_task = asyncio.create_task(serve_web_admin(
            app,
            host=WEB_ADMIN_CONFIG.get("host", "127.0.0.1"),
            port=WEB_ADMIN_CONFIG.get("port", 8090),
        ))

    try:
        await console_loop(handler)
    finally:
        if web_task is not None:
            web_task.cancel()
        await data_store.close()


def main():
    logger.info("=" * 50)
    logger.info("DiceBot 正在启动...")
    logger.info("=" * 50)
    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        logger.info("收到退出信号，正在关闭...")
    logger.info("DiceBot 已停止")


if __name__ == "__main__":
    main()
