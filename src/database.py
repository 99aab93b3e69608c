"""
SQLite 记录存储
角色卡、群内绑定、游戏会话三个集合；对外提供异步的 get / create / set / remove
"""

import asyncio
import json
import os
import sqlite3
from datetime import datetime, timezone, timedelta
from typing import Any, Optional

from logger_config import get_logger

logger = get_logger("Database")

_PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
DB_PATH = os.path.join(_PROJECT_ROOT, "data", "dicebot.db")

# 中国时区 (UTC+8)
CN_TZ = timezone(timedelta(hours=8))

CHARACTER = "dice_character"
BINDING = "dice_character_binding"
GAME_SESSION = "dice_game_session"


def cn_now() -> str:
    """返回当前中国时间字符串"""
    return datetime.now(CN_TZ).strftime("%Y-%m-%d %H:%M:%S")


_SCHEMAS = {
    CHARACTER: """
        CREATE TABLE IF NOT EXISTS dice_character (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            user_id TEXT NOT NULL,
            platform TEXT NOT NULL DEFAULT '',
            card_name TEXT NOT NULL,
            card_type TEXT DEFAULT '',
            is_active INTEGER DEFAULT 0,
            attributes TEXT DEFAULT '{}',
            created_at TEXT,
            updated_at TEXT,
            UNIQUE(user_id, platform, card_name)
        )
    """,
    BINDING: """
        CREATE TABLE IF NOT EXISTS dice_character_binding (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            user_id TEXT NOT NULL,
            platform TEXT NOT NULL DEFAULT '',
            group_id TEXT NOT NULL,
            card_name TEXT NOT NULL,
            UNIQUE(user_id, platform, group_id)
        )
    """,
    GAME_SESSION: """
        CREATE TABLE IF NOT EXISTS dice_game_session (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            name TEXT NOT NULL,
            group_id TEXT NOT NULL,
            platform TEXT NOT NULL DEFAULT '',
            gm_list TEXT DEFAULT '[]',
            player_list TEXT DEFAULT '[]',
            observer_list TEXT DEFAULT '[]',
            areas TEXT DEFAULT '[]',
            config TEXT DEFAULT '{}',
            roulette TEXT DEFAULT '{}',
            is_logging INTEGER DEFAULT 0,
            created_at TEXT,
            updated_at TEXT
        )
    """,
}

_COLUMNS = {
    CHARACTER: ("id", "user_id", "platform", "card_name", "card_type", "is_active",
                "attributes", "created_at", "updated_at"),
    BINDING: ("id", "user_id", "platform", "group_id", "card_name"),
    GAME_SESSION: ("id", "name", "group_id", "platform", "gm_list", "player_list",
                   "observer_list", "areas", "config", "roulette", "is_logging",
                   "created_at", "updated_at"),
}

# 以 JSON 文本存储的列
_JSON_COLUMNS = {
    CHARACTER: {"attributes": dict},
    GAME_SESSION: {
        "gm_list": list, "player_list": list, "observer_list": list,
        "areas": list, "config": dict, "roulette": dict,
    },
}
_BOOL_COLUMNS = {CHARACTER: ("is_active",), GAME_SESSION: ("is_logging",)}


def get_connection(db_path: str = DB_PATH) -> sqlite3.Connection:
    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL")
    return conn


def init_database(db_path: str = DB_PATH):
    """创建所有数据表"""
    directory = os.path.dirname(db_path)
    if directory:
        os.makedirs(directory, exist_ok=True)
    conn = get_connection(db_path)
    for ddl in _SCHEMAS.values():
        conn.execute(ddl)
    conn.commit()
    conn.close()
    logger.info(f"数据库已初始化: {db_path}")


class RecordStore:
    """
    按集合名读写记录。查询条件是「列 = 值」的 AND 组合。
    每次调用新建连接，在线程池中执行，不阻塞事件循环。
    """

    def __init__(self, db_path: str = DB_PATH):
        self.db_path = db_path

    # -- 列校验与编解码 --------------------------------------------------

    @staticmethod
    def _check(collection: str, keys) -> None:
        columns = _COLUMNS.get(collection)
        if columns is None:
            raise KeyError(f"未知集合: {collection}")
        for key in keys:
            if key not in columns:
                raise KeyError(f"集合 {collection} 没有列 {key}")

    @staticmethod
    def _encode(collection: str, row: dict) -> dict:
        out = dict(row)
        for column in _JSON_COLUMNS.get(collection, {}):
            if column in out and not isinstance(out[column], str):
                out[column] = json.dumps(out[column], ensure_ascii=False)
        for column in _BOOL_COLUMNS.get(collection, ()):
            if column in out:
                out[column] = 1 if out[column] else 0
        return out

    @staticmethod
    def _decode(collection: str, row: sqlite3.Row) -> dict:
        out = dict(row)
        for column, kind in _JSON_COLUMNS.get(collection, {}).items():
            raw = out.get(column)
            try:
                value = json.loads(raw) if raw else kind()
            except (TypeError, ValueError):
                logger.warning("记录 %s#%s 的 %s 列无法解析，按空值处理", collection, out.get("id"), column)
                value = kind()
            out[column] = value if isinstance(value, kind) else kind()
        for column in _BOOL_COLUMNS.get(collection, ()):
            if column in out:
                out[column] = bool(out[column])
        return out

    @staticmethod
    def _where(query: dict) -> tuple[str, list]:
        if not query:
            return "", []
        return " WHERE " + " AND ".join(f"{k}=?" for k in query), list(query.values())

    # -- 同步实现 ----------------------------------------------------------

    def _get(self, collection: str, query: dict) -> list[dict]:
        self._check(collection, query)
        query = self._encode(collection, query)
        where, params = self._where(query)
        conn = get_connection(self.db_path)
        try:
            rows = conn.execute(f"SELECT * FROM {collection}{where} ORDER BY id", params).fetchall()
        finally:
            conn.close()
        return [self._decode(collection, r) for r in rows]

    def _create(self, collection: str, row: dict) -> dict:
        self._check(collection, row)
        data = self._encode(collection, {k: v for k, v in row.items() if k != "id"})
        columns = ", ".join(data)
        marks = ", ".join("?" for _ in data)
        conn = get_connection(self.db_path)
        try:
            cursor = conn.execute(
                f"INSERT INTO {collection} ({columns}) VALUES ({marks})", list(data.values()),
            )
            conn.commit()
            new_id = cursor.lastrowid
            created = conn.execute(f"SELECT * FROM {collection} WHERE id=?", (new_id,)).fetchone()
        finally:
            conn.close()
        return self._decode(collection, created)

    def _set(self, collection: str, query: dict, updates: dict) -> int:
        self._check(collection, query)
        self._check(collection, updates)
        if not updates:
            return 0
        query = self._encode(collection, query)
        updates = self._encode(collection, updates)
        where, params = self._where(query)
        assignments = ", ".join(f"{k}=?" for k in updates)
        conn = get_connection(self.db_path)
        try:
            cursor = conn.execute(
                f"UPDATE {collection} SET {assignments}{where}", list(updates.values()) + params,
            )
            conn.commit()
            return cursor.rowcount
        finally:
            conn.close()

    def _remove(self, collection: str, query: dict) -> int:
        self._check(collection, query)
        query = self._encode(collection, query)
        where, params = self._where(query)
        conn = get_connection(self.db_path)
        try:
            cursor = conn.execute(f"DELETE FROM {collection}{where}", params)
            conn.commit()
            return cursor.rowcount
        finally:
            conn.close()

    # -- 异步接口 ----------------------------------------------------------

    async def get(self, collection: str, query: Optional[dict] = None) -> list[dict]:
        return await asyncio.to_thread(self._get, collection, dict(query or {}))

    async def get_one(self, collection: str, query: dict) -> Optional[dict]:
        rows = await self.get(collection, query)
        return rows[0] if rows else None

    async def create(self, collection: str, row: dict) -> dict:
        return await asyncio.to_thread(self._create, collection, dict(row))

    async def set(self, collection: str, query: dict, updates: dict[str, Any]) -> int:
        return await asyncio.to_thread(self._set, collection, dict(query), dict(updates))

    async def remove(self, collection: str, query: dict) -> int:
        return await asyncio.to_thread(self._remove, collection, dict(query))
