from __future__ import annotations

import json
import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Dict, Optional
from urllib.parse import parse_qs

from fastapi import FastAPI, Request, status
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse, Response

from .session import ChatSession, SessionBusyError
from .settings import SettingsManager
from .templates import render_chat_page, render_messages
from .transport import Transport, build_transport

DATA_DIR = Path("data")
DATA_DIR.mkdir(parents=True, exist_ok=True)
LOG_FILE = DATA_DIR / "server.log"
SETTINGS_PATH = DATA_DIR / "settings.json"


def _configure_logging() -> logging.Logger:
    logger = logging.getLogger("fallback_chat")
    if logger.handlers:
        return logger
    logger.setLevel(logging.DEBUG)
    formatter = logging.Formatter(
        "%(asctime)s | %(levelname)s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    file_handler = RotatingFileHandler(
        LOG_FILE, maxBytes=5 * 1024 * 1024, backupCount=3, encoding="utf-8"
    )
    file_handler.setFormatter(formatter)
    stream_handler = logging.StreamHandler()
    stream_handler.setFormatter(formatter)
    logger.addHandler(file_handler)
    logger.addHandler(stream_handler)
    logger.propagate = False
    logger.debug("Logging initialised, writing to %s", LOG_FILE)
    return logger


logger = _configure_logging()

app = FastAPI()

settings_manager = SettingsManager(SETTINGS_PATH)
session = ChatSession(failure_reply=settings_manager.settings["replies"]["failure"])
# Chosen on startup from settings["transport"]; tests may preassign it.
transport: Optional[Transport] = None


def _wants_json(request: Request) -> bool:
    content_type = request.headers.get("content-type", "").lower()
    accept = request.headers.get("accept", "").lower()
    return "application/json" in content_type or "application/json" in accept


async def _read_message(request: Request) -> Optional[str]:
    body_bytes = await request.body()
    content_type = request.headers.get("content-type", "").lower()
    if "application/json" in content_type:
        try:
            payload = json.loads(body_bytes.decode("utf-8") or "{}")
        except ValueError:
            return None
        if not isinstance(payload, dict):
            return None
        message = payload.get("message")
        return message if isinstance(message, str) else None
    form_data = parse_qs(body_bytes.decode("utf-8"))
    return (form_data.get("message") or [""])[-1]


def _state_payload() -> Dict[str, Any]:
    return {
        "messages": [message.to_dict() for message in session.messages],
        "messages_html": render_messages(session.messages, session.pending),
        "pending": session.pending,
    }


@app.on_event("startup")
async def on_startup() -> None:
    global transport
    if transport is None:
        transport = build_transport(settings_manager.settings)
    await transport.start()
    logger.info("Application startup complete (transport=%s).", transport.name)


@app.on_event("shutdown")
async def on_shutdown() -> None:
    if transport is not None:
        await transport.stop()
    logger.info("Application shutdown complete.")


@app.get("/", response_class=HTMLResponse)
async def chat_page() -> HTMLResponse:
    html = render_chat_page(
        title=settings_manager.settings.get("title", "Chat"),
        messages=session.messages,
        pending=session.pending,
        failure_reply=session.failure_reply,
    )
    return HTMLResponse(html)


@app.post("/send")
async def send_message(request: Request) -> Response:
    accepts_json = _wants_json(request)
    raw_message = await _read_message(request)
    if not raw_message or not raw_message.strip():
        if accepts_json:
            return JSONResponse(
                {"ok": False, "error": "Message must not be empty."},
                status_code=status.HTTP_400_BAD_REQUEST,
            )
        return RedirectResponse(url="/", status_code=status.HTTP_303_SEE_OTHER)
    if transport is None:
        return JSONResponse(
            {"ok": False, "error": "No transport configured."},
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        )
    try:
        reply = await session.submit(raw_message, transport)
    except SessionBusyError:
        logger.info("Rejected message while a reply is pending.")
        if accepts_json:
            return JSONResponse(
                {"ok": False, "error": "A reply is still pending."},
                status_code=status.HTTP_409_CONFLICT,
            )
        return RedirectResponse(url="/", status_code=status.HTTP_303_SEE_OTHER)
    logger.info(
        "Answered message via %s (%d messages in session)",
        transport.name,
        len(session.messages),
    )
    if accepts_json:
        payload = _state_payload()
        payload.update({"ok": True, "reply": reply.text if reply else ""})
        return JSONResponse(payload)
    return RedirectResponse(url="/", status_code=status.HTTP_303_SEE_OTHER)


@app.get("/state", response_class=JSONResponse)
async def state_endpoint() -> JSONResponse:
    return JSONResponse(_state_payload())


@app.get("/health", response_class=JSONResponse)
async def health() -> JSONResponse:
    if transport is None:
        return JSONResponse({"status": "warn", "transport": None})
    connected = getattr(transport, "connected", True)
    return JSONResponse(
        {"status": "ok" if connected else "warn", "transport": transport.name}
    )


# Convenience include for uvicorn.
__all__ = ["app"]
