"""
命令解析与路由
/ 开头为内置命令（扩展管理、规则查询、角色卡、游戏会话），
. 开头交给插件注册的命令树
"""

import os
import re
from typing import Optional

from command_tree import CommandTree
from extension_service import ExtensionService
from logger_config import get_logger
from plugin_base import ChatIdentity, CircularFormula

logger = get_logger("CommandHandler")

_PLUGIN_DIR_NAME = re.compile(r"[A-Za-z0-9_\-][A-Za-z0-9_\-.]*")


class CommandHandler:
    """
    消息命令路由器。

    在 main.py 中将此实例的 handle() 方法注册为消息回调；
    回复统一经 sender.send_message(text, channel=..., area=...) 发出。
    """

    def __init__(self, sender, service: ExtensionService, admin_uids=(), default_platform: str = ""):
        self.sender = sender
        self.service = service
        self.tree: CommandTree = service.tree
        self.admin_uids = set(admin_uids or ())
        self.default_platform = default_platform

    def _is_admin(self, user: str) -> bool:
        """检查用户是否为授权管理员。admin_uids 为空时不做限制。"""
        if not self.admin_uids:
            return True
        return user in self.admin_uids

    def _reply(self, text: str, channel: str, area: str):
        if text:
            self.sender.send_message(text, channel=channel, area=area)

    async def handle(self, msg_data: dict):
        """
        处理一条聊天消息。

        msg_data 结构::
            {
                "channel": "频道ID",
                "area": "域ID（私聊为空）",
                "person": "用户ID",
                "content": "消息文本",
                "platform": "平台（可选）",
                "username": "昵称（可选）",
            }
        """
        content = (msg_data.get("content") or "").strip()
        if not content:
            return
        channel = msg_data.get("channel")
        area = msg_data.get("area")
        identity = ChatIdentity.from_message(msg_data, self.default_platform)

        if content.startswith("/"):
            await self._dispatch_command(content, identity, channel, area)
            return

        if content.startswith("."):
            try:
                reply = await self.tree.dispatch(identity, content)
            except Exception as e:
                logger.exception("插件命令处理异常: %s", content[:40])
                reply = f"[error] {e}"
            if reply:
                self._reply(reply, channel, area)

    # ------------------------------------------------------------------
    # / 命令分发
    # ------------------------------------------------------------------

    async def _dispatch_command(self, content: str, identity: ChatIdentity, channel: str, area: str):
        parts = content.split()
        command = parts[0].lower()
        args = parts[1:]

        if command == "/ext":
            if not self._is_admin(identity.user_id):
                logger.info(f"非管理员用户 {identity.user_id} 尝试执行指令: {content[:40]}")
                self._reply("[x] 无权限，仅管理员可使用指令", channel, area)
                return
            await self._cmd_ext(args, channel, area)
            return
        if command == "/rule":
            self._cmd_rule(args, channel, area)
            return
        if command == "/pc":
            await self._cmd_pc(args, identity, channel, area)
            return
        if command == "/game":
            await self._cmd_game(args, identity, channel, area)
            return
        if command == "/help":
            self._cmd_help(identity.user_id, channel, area)
            return

    # ------------------------------------------------------------------
    # /ext 扩展管理
    # ------------------------------------------------------------------

    async def _cmd_ext(self, args: list[str], channel: str, area: str):
        sub = args[0].lower() if args else "list"
        name = " ".join(args[1:]).strip()

        if sub == "list":
            self._cmd_ext_list(channel, area)
        elif sub == "info":
            if not name:
                self._reply("用法: /ext info <插件名>", channel, area)
                return
            self._cmd_ext_info(name, channel, area)
        elif sub in ("reload", "unload", "load"):
            if not name:
                self._reply(f"用法: /ext {sub} <插件名>", channel, area)
                return
            if sub == "reload":
                ok, msg = await self.service.reload_plugin(name)
            elif sub == "unload":
                ok, msg = await self.service.unload_plugin(name)
            else:
                ok, msg = await self._load_by_dir(name)
            prefix = "[ok]" if ok else "[x]"
            self._reply(f"{prefix} {msg}", channel, area)
        elif sub == "scripts":
            scripts = self.service.list_scripts()
            lines = [f"已加载脚本: {len(scripts)} 个"]
            lines.extend(f"  {s}" for s in scripts)
            self._reply("\n".join(lines), channel, area)
        else:
            self._reply("用法: /ext list | info <名> | load <目录> | reload <名> | unload <名> | scripts", channel, area)

    async def _load_by_dir(self, dir_name: str) -> tuple[bool, str]:
        """按插件目录名加载，仅允许 plugins 目录下的直接子目录。"""
        if not _PLUGIN_DIR_NAME.fullmatch(dir_name) or ".." in dir_name:
            return False, "插件目录名不合法"
        path = os.path.join(self.service.plugin_dir, dir_name)
        if not os.path.isdir(path):
            return False, f"插件目录不存在: {dir_name}"
        ok, msg = await self.service.load_plugin(path)
        return ok, (f"已加载: {msg}" if ok else msg)

    def _cmd_ext_list(self, channel: str, area: str):
        plugins = self.service.list_plugins()
        lines = ["扩展插件", "---", f"已加载: {len(plugins)} 个"]
        if plugins:
            for p in plugins:
                info = p.summary()
                brief = f" - {info['brief']}" if info["brief"] else ""
                lines.append(f"  {info['name']} v{info['version']}{brief}")
        else:
            lines.append("  （无）")
        rules = self.service.list_plugin_rules()
        if rules:
            lines.append("")
            lines.append("规则系统: " + ", ".join(rules))
        lines.append("")
        lines.append("用法: /ext info <名>  /ext reload <名>")
        self._reply("\n".join(lines), channel, area)

    def _cmd_ext_info(self, name: str, channel: str, area: str):
        plugin = self.service.get_plugin(name)
        if plugin is None:
            self._reply(f"[x] 插件未加载: {name}", channel, area)
            return
        d = plugin.descriptor
        lines = [f"{d.display_name} ({d.name}) v{d.version}"]
        if d.author:
            lines.append(f"作者: {d.author}")
        if d.brief:
            lines.append(f"简介: {d.brief}")
        if d.description:
            lines.append(d.description)
        if d.repository:
            lines.append(f"仓库: {d.repository}")
        lines.append(f"脚本: {len(plugin.scripts)} 个")
        if plugin.commands:
            lines.append("命令:")
            for definition in plugin.commands.values():
                limit = " (限制未生效)" if definition.access_limits else ""
                lines.append(f"  {definition.trigger} -> {definition.target_script}{limit}")
        if plugin.rule_systems:
            lines.append("规则: " + ", ".join(plugin.rule_systems))
        if plugin.templates:
            lines.append("模板: " + ", ".join(plugin.templates))
        self._reply("\n".join(lines), channel, area)

    # ------------------------------------------------------------------
    # /rule 规则查询
    # ------------------------------------------------------------------

    def _cmd_rule(self, args: list[str], channel: str, area: str):
        if not args:
            rules = self.service.list_plugin_rules()
            text = "可查询规则: " + ", ".join(rules) if rules else "当前没有加载任何规则书"
            self._reply(text + "\n用法: /rule <关键词> 或 /rule <规则> <关键词>", channel, area)
            return

        found: Optional[tuple[str, str]] = None
        if len(args) >= 2:
            text = self.service.query_plugin_rule(args[0], " ".join(args[1:]))
            if text is not None:
                found = (args[0], text)
        if found is None:
            found = self.service.search_rule(" ".join(args))
        if found is None:
            self._reply(f"[x] 未找到规则: {' '.join(args)}", channel, area)
            return
        system, text = found
        self._reply(f"[{system}] {text}", channel, area)

    # ------------------------------------------------------------------
    # /pc 角色卡
    # ------------------------------------------------------------------

    async def _cmd_pc(self, args: list[str], identity: ChatIdentity, channel: str, area: str):
        characters = self.service.characters
        sub = args[0].lower() if args else "list"
        try:
            if sub == "new":
                if len(args) < 2:
                    self._reply("用法: /pc new <角色名> [模板]", channel, area)
                    return
                card_type = args[2] if len(args) > 2 else ""
                if card_type and self.service.get_template(card_type) is None:
                    self._reply(f"[x] 模板不存在: {card_type}", channel, area)
                    return
                card = await characters.create_card(identity, args[1], card_type)
                active = "，已设为当前角色" if card["is_active"] else ""
                self._reply(f"[ok] 已创建角色卡 {card['card_name']}{active}", channel, area)
            elif sub == "switch":
                if len(args) < 2:
                    self._reply("用法: /pc switch <角色名>", channel, area)
                    return
                card = await characters.switch_card(identity, args[1])
                self._reply(f"[ok] 当前角色: {card['card_name']}", channel, area)
            elif sub == "bind":
                card = await characters.bind_card(identity, args[1] if len(args) > 1 else None)
                self._reply(f"[ok] 已在本群绑定 {card['card_name']}", channel, area)
            elif sub == "list":
                cards = await characters.list_cards(identity)
                if not cards:
                    self._reply("你还没有角色卡，使用 /pc new <角色名> 创建", channel, area)
                    return
                lines = ["角色卡列表"]
                for card in cards:
                    mark = "*" if card["is_active"] else " "
                    kind = f" [{card['card_type']}]" if card["card_type"] else ""
                    lines.append(f" {mark} {card['card_name']}{kind}")
                self._reply("\n".join(lines), channel, area)
            else:
                self._reply("用法: /pc new <名> [模板] | switch <名> | bind [名] | list", channel, area)
        except (ValueError, CircularFormula) as e:
            self._reply(f"[x] {e}", channel, area)

    # ------------------------------------------------------------------
    # /game 游戏会话
    # ------------------------------------------------------------------

    async def _cmd_game(self, args: list[str], identity: ChatIdentity, channel: str, area: str):
        sessions = self.service.sessions
        sub = args[0].lower() if args else ""
        try:
            if sub == "new":
                game = await sessions.create_session(identity, " ".join(args[1:]).strip() or None)
                await sessions.add_gm(game["id"], identity.user_id)
                self._reply(f"[ok] 已创建游戏 {game['name']}，你是 GM", channel, area)
                return

            game = await sessions.get_session(identity)
            if game is None:
                self._reply("[x] 当前群组没有进行中的游戏，使用 /game new [名称] 创建", channel, area)
                return

            if sub == "join":
                ok = await sessions.add_player(game["id"], identity.user_id)
                self._reply("[ok] 已加入游戏" if ok else "[x] 你已经在游戏中", channel, area)
            elif sub == "gm":
                ok = await sessions.add_gm(game["id"], identity.user_id)
                self._reply("[ok] 已成为 GM" if ok else "[x] 你已经是 GM", channel, area)
            elif sub == "ob":
                ok = await sessions.add_observer(game["id"], identity.user_id)
                self._reply("[ok] 已开始旁观" if ok else "[x] 你已经在旁观", channel, area)
            elif sub == "leave":
                left = False
                for remove in (sessions.remove_player, sessions.remove_gm, sessions.remove_observer):
                    left = await remove(game["id"], identity.user_id) or left
                self._reply("[ok] 已退出游戏" if left else "[x] 你不在游戏中", channel, area)
            elif sub in ("link", "unlink"):
                if identity.user_id not in game["gm_list"] and not self._is_admin(identity.user_id):
                    self._reply("[x] 只有 GM 可以关联群组", channel, area)
                    return
                if len(args) < 2:
                    self._reply(f"用法: /game {sub} <群组ID>", channel, area)
                    return
                target = args[1]
                if sub == "link":
                    ok = await sessions.add_area(game["id"], target)
                    self._reply(f"[ok] 已关联群组 {target}" if ok else f"[x] 群组 {target} 已关联", channel, area)
                elif target == identity.group_id:
                    self._reply("[x] 不能取消当前群组的关联", channel, area)
                else:
                    ok = await sessions.remove_area(game["id"], target)
                    self._reply(f"[ok] 已取消关联 {target}" if ok else f"[x] 群组 {target} 未关联", channel, area)
            elif sub == "end":
                if identity.user_id not in game["gm_list"] and not self._is_admin(identity.user_id):
                    self._reply("[x] 只有 GM 可以结束游戏", channel, area)
                    return
                await sessions.destroy_session(game["id"])
                self._reply(f"[ok] 游戏 {game['name']} 已结束", channel, area)
            else:
                view = sessions.to_view(game)
                lines = [
                    f"游戏: {view['name']}",
                    f"GM: {', '.join(view['gm']) or '（无）'}",
                    f"玩家: {', '.join(view['pls']) or '（无）'}",
                    f"旁观: {', '.join(view['obs']) or '（无）'}",
                    f"群组: {', '.join(view['areas'])}",
                    "用法: /game new [名称] | join | gm | ob | leave | link/unlink <群组> | end",
                ]
                self._reply("\n".join(lines), channel, area)
        except ValueError as e:
            self._reply(f"[x] {e}", channel, area)

    # ------------------------------------------------------------------
    # /help
    # ------------------------------------------------------------------

    def _cmd_help(self, user: str, channel: str, area: str):
        lines = [
            "骰娘指令",
            "---",
            "/rule <关键词>  查询规则书",
            "/pc new <名> [模板] | switch <名> | bind [名] | list",
            "/game new [名称] | join | gm | ob | leave | link/unlink <群组> | end",
        ]
        commands = [c for c in self.tree.list_commands() if not c.subcommand]
        if commands:
            lines.append("")
            lines.append("插件命令:")
            for c in commands:
                lines.append(f"  {c.trigger}  {c.description}")
        if self._is_admin(user):
            lines.append("")
            lines.append("管理员: /ext list | info <名> | load <目录> | reload <名> | unload <名> | scripts")
        self._reply("\n".join(lines), channel, area)
