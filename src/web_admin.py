"""
Web 管理接口（FastAPI）
查看已加载插件、重载插件、查询规则书
"""

import hmac

import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from extension_service import ExtensionService
from logger_config import get_logger

logger = get_logger("WebAdmin")

TOKEN_HEADER = "X-Admin-Token"
TOKEN_COOKIE = "admin_token"


def _plugin_detail(plugin) -> dict:
    d = plugin.descriptor
    return {
        **plugin.summary(),
        "description": d.description,
        "repository": d.repository,
        "path": plugin.path,
        "script_names": sorted(plugin.scripts),
        "commands": [
            {
                "key": c.command_key,
                "trigger": c.trigger,
                "script": c.target_script,
                "dialect": c.dialect.value,
                "rule": c.rule_system,
                "type": c.kind,
                # 访问限制仅展示，不做拦截
                "limit": c.access_limits,
            }
            for c in plugin.commands.values()
        ],
    }


def create_app(service: ExtensionService, admin_token: str = "") -> FastAPI:
    app = FastAPI(title="DiceBot Extension Admin", docs_url=None, redoc_url=None)

    @app.middleware("http")
    async def _auth_admin_api(request: Request, call_next):
        path = request.url.path or ""
        if path.startswith("/api/"):
            client_token = request.headers.get(TOKEN_HEADER) or request.cookies.get(TOKEN_COOKIE, "")
            if not admin_token or not hmac.compare_digest(client_token.encode(), admin_token.encode()):
                return JSONResponse({"ok": False, "error": "未授权"}, status_code=403)
        return await call_next(request)

    @app.get("/api/plugins")
    async def api_plugins():
        return JSONResponse({"plugins": [p.summary() for p in service.list_plugins()]})

    @app.get("/api/plugins/{name}")
    async def api_plugin(name: str):
        plugin = service.get_plugin(name)
        if plugin is None:
            return JSONResponse({"ok": False, "error": f"插件未加载: {name}"}, status_code=404)
        return JSONResponse(_plugin_detail(plugin))

    @app.post("/api/plugins/{name}/reload")
    async def api_reload(name: str):
        ok, msg = await service.reload_plugin(name)
        if not ok:
            status = 404 if service.get_plugin(name) is None else 400
            return JSONResponse({"ok": False, "error": msg}, status_code=status)
        logger.info(f"Web 重载插件: {name}")
        return JSONResponse({"ok": True, "message": msg})

    @app.get("/api/rules")
    async def api_rules():
        snapshot = service.rule_snapshot()
        return JSONResponse({
            "rules": [{"name": name, "entries": len(manual)} for name, manual in snapshot.items()],
        })

    @app.get("/api/rules/{system}/{keyword}")
    async def api_rule(system: str, keyword: str):
        text = service.query_plugin_rule(system, keyword)
        if text is None:
            return JSONResponse({"ok": False, "error": "未找到规则"}, status_code=404)
        return JSONResponse({"rule": system, "keyword": keyword, "text": text})

    return app


async def serve(app: FastAPI, host: str = "127.0.0.1", port: int = 8090):
    """在当前事件循环中运行管理接口（与命令处理共用一个循环）。"""
    display = f"[{host}]" if ":" in host else host
    logger.info(f"Web 管理接口启动: http://{display}:{port}")
    server = uvicorn.Server(uvicorn.Config(app, host=host, port=port, log_level="warning"))
    await server.serve()
