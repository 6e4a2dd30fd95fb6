from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, Dict

from aiohttp import web

from .accounts import Accounts
from .errors import ChatError, Unauthorized, ValidationError
from .messages import MessageEngine
from .models import contact_entry, message_payload, public_user, settings_payload
from .presence import PresenceConfig, PresenceTracker
from .sessions import DEFAULT_SESSION_TTL_MS, Session, SessionStore, _now_ms
from .sqlite_backend import SQLiteBackend
from .sqlite_sessions import SQLiteSessionStore
from .sqlite_storage import SQLiteStorage
from .storage import MemoryStorage, Storage
from .typing_status import TypingConfig, TypingTracker

logger = logging.getLogger(__name__)

SESSION_COOKIE = "dmchat_session"

_BOOL_SETTINGS = ("darkMode", "notifications", "sound")


class Runtime:
    def __init__(
        self,
        *,
        storage: Storage,
        sessions: SessionStore | SQLiteSessionStore,
        accounts: Accounts,
        engine: MessageEngine,
        presence: PresenceTracker,
        typing: TypingTracker,
        session_ttl_ms: int,
        backend: SQLiteBackend | None = None,
    ) -> None:
        self.storage = storage
        self.sessions = sessions
        self.accounts = accounts
        self.engine = engine
        self.presence = presence
        self.typing = typing
        self.session_ttl_ms = session_ttl_ms
        self.backend = backend


RUNTIME_KEY = web.AppKey("runtime", Runtime)

Handler = Callable[[web.Request], Awaitable[web.StreamResponse]]


def _error_response(status: int, code: str, message: str) -> web.Response:
    return web.json_response({"code": code, "message": message}, status=status)


@web.middleware
async def error_middleware(request: web.Request, handler: Handler) -> web.StreamResponse:
    try:
        response = await handler(request)
    except web.HTTPException:
        raise
    except ChatError as exc:
        if exc.status >= 500:
            logger.error("%s %s failed: %s", request.method, request.path, exc.message)
            response = _error_response(exc.status, exc.code, "Internal server error")
        else:
            response = _error_response(exc.status, exc.code, exc.message)
    except Exception:
        logger.exception("unhandled error serving %s %s", request.method, request.path)
        response = _error_response(500, "internal_error", "Internal server error")
    response.headers["Cache-Control"] = "no-store"
    return response


def _session_token(request: web.Request) -> str | None:
    auth_header = request.headers.get("Authorization")
    if auth_header and auth_header.startswith("Bearer "):
        return auth_header[len("Bearer ") :].strip()
    return request.cookies.get(SESSION_COOKIE)


def _authenticate_request(request: web.Request) -> Session | None:
    runtime = request.app[RUNTIME_KEY]
    token = _session_token(request)
    if not token:
        return None
    session = runtime.sessions.get(token)
    if session is None or runtime.accounts.get(session.user_id) is None:
        return None
    return session


def _require_session(request: web.Request) -> Session:
    session = _authenticate_request(request)
    if session is None:
        raise Unauthorized()
    return session


async def _read_json(request: web.Request) -> Dict[str, Any]:
    try:
        body = await request.json()
    except Exception as exc:
        raise ValidationError("malformed json") from exc
    if not isinstance(body, dict):
        raise ValidationError("request body must be a JSON object")
    return body


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _path_id(request: web.Request, name: str, message: str) -> int:
    try:
        return int(request.match_info[name])
    except ValueError as exc:
        raise ValidationError(message) from exc


async def handle_health(_: web.Request) -> web.Response:
    return web.Response(text="ok")


async def handle_login(request: web.Request) -> web.Response:
    runtime = request.app[RUNTIME_KEY]
    body = await _read_json(request)
    username = body.get("username")
    password = body.get("password")
    if not isinstance(username, str) or not username:
        raise ValidationError("Username is required")
    if not isinstance(password, str) or not password:
        raise ValidationError("Password is required")

    user = runtime.accounts.authenticate(username, password)
    if user is None:
        logger.info("rejected login for username=%s", username)
        raise Unauthorized("Invalid username or password")

    session = runtime.sessions.create(user.id)
    runtime.presence.login(user.id)
    logger.info("user id=%s logged in", user.id)

    response = web.json_response(public_user(user))
    response.set_cookie(
        SESSION_COOKIE,
        session.session_token,
        max_age=runtime.session_ttl_ms // 1000,
        httponly=True,
        samesite="Lax",
        path="/",
    )
    return response


async def handle_logout(request: web.Request) -> web.Response:
    runtime = request.app[RUNTIME_KEY]
    session = _require_session(request)
    runtime.presence.logout(session.user_id)
    runtime.typing.clear_sender(session.user_id)
    runtime.sessions.invalidate(session)
    logger.info("user id=%s logged out", session.user_id)

    response = web.json_response({"message": "Logged out successfully"})
    response.del_cookie(SESSION_COOKIE, path="/")
    return response


async def handle_logout_all(request: web.Request) -> web.Response:
    runtime = request.app[RUNTIME_KEY]
    session = _require_session(request)
    ended = runtime.sessions.invalidate_user(session.user_id)
    runtime.presence.logout(session.user_id)
    runtime.typing.clear_sender(session.user_id)
    logger.info("user id=%s ended %d sessions", session.user_id, ended)

    response = web.json_response({"message": "Logged out of all sessions", "sessionsEnded": ended})
    response.del_cookie(SESSION_COOKIE, path="/")
    return response


async def handle_auth_status(request: web.Request) -> web.Response:
    runtime = request.app[RUNTIME_KEY]
    session = _authenticate_request(request)
    user = runtime.accounts.get(session.user_id) if session is not None else None
    if user is None:
        return web.json_response({"isAuthenticated": False})
    return web.json_response({"isAuthenticated": True, "user": public_user(user)})


async def handle_users(request: web.Request) -> web.Response:
    runtime = request.app[RUNTIME_KEY]
    session = _require_session(request)
    contacts = runtime.accounts.contacts_for(session.user_id)
    return web.json_response([contact_entry(user) for user in contacts])


async def handle_conversation(request: web.Request) -> web.Response:
    runtime = request.app[RUNTIME_KEY]
    session = _require_session(request)
    contact_id = _path_id(request, "contact_id", "Invalid contact ID")
    messages = runtime.engine.list_conversation(session.user_id, contact_id)
    runtime.presence.touch(session.user_id)
    return web.json_response([message_payload(m) for m in messages])


async def handle_unread_counts(request: web.Request) -> web.Response:
    runtime = request.app[RUNTIME_KEY]
    session = _require_session(request)
    counts = runtime.engine.unread_counts(session.user_id)
    return web.json_response({str(contact_id): count for contact_id, count in counts.items()})


async def handle_send(request: web.Request) -> web.Response:
    runtime = request.app[RUNTIME_KEY]
    session = _require_session(request)
    body = await _read_json(request)
    receiver_id = body.get("receiverId")
    content = body.get("content")
    if not _is_int(receiver_id):
        raise ValidationError("receiverId must be an integer")
    if not isinstance(content, str):
        raise ValidationError("content must be a string")

    message = runtime.engine.send(session.user_id, receiver_id, content)
    runtime.presence.touch(session.user_id)
    return web.json_response(message_payload(message), status=201)


async def handle_mark_read(request: web.Request) -> web.Response:
    runtime = request.app[RUNTIME_KEY]
    session = _require_session(request)
    body = await _read_json(request)
    message_ids = body.get("messageIds")
    if not isinstance(message_ids, list) or any(not _is_int(m) for m in message_ids):
        raise ValidationError("messageIds must be a list of integers")

    runtime.engine.mark_read(message_ids, reader_id=session.user_id)
    runtime.presence.touch(session.user_id)
    return web.json_response({"success": True})


async def handle_delete(request: web.Request) -> web.Response:
    runtime = request.app[RUNTIME_KEY]
    session = _require_session(request)
    body = await _read_json(request)
    message_id = body.get("messageId")
    if not _is_int(message_id):
        raise ValidationError("messageId must be an integer")

    runtime.engine.delete_own(session.user_id, message_id)
    runtime.presence.touch(session.user_id)
    return web.json_response({"success": True})


async def handle_set_typing(request: web.Request) -> web.Response:
    runtime = request.app[RUNTIME_KEY]
    session = _require_session(request)
    body = await _read_json(request)
    receiver_id = body.get("receiverId")
    is_typing = body.get("isTyping")
    if not _is_int(receiver_id):
        raise ValidationError("receiverId must be an integer")
    if not isinstance(is_typing, bool):
        raise ValidationError("isTyping must be a boolean")
    if runtime.accounts.get(receiver_id) is None:
        raise ValidationError("Receiver does not exist")

    runtime.typing.set_typing(session.user_id, receiver_id, is_typing)
    runtime.presence.touch(session.user_id)
    logger.debug("user id=%s typing=%s to %s", session.user_id, is_typing, receiver_id)
    return web.json_response({"success": True})


async def handle_get_typing(request: web.Request) -> web.Response:
    runtime = request.app[RUNTIME_KEY]
    session = _require_session(request)
    contact_id = _path_id(request, "user_id", "Invalid user ID")
    return web.json_response({"isTyping": runtime.typing.is_typing(contact_id, session.user_id)})


async def handle_ping(request: web.Request) -> web.Response:
    runtime = request.app[RUNTIME_KEY]
    session = _require_session(request)
    runtime.presence.ping(session.user_id)
    logger.debug("ping from user id=%s", session.user_id)
    return web.json_response({"success": True})


async def handle_get_settings(request: web.Request) -> web.Response:
    runtime = request.app[RUNTIME_KEY]
    session = _require_session(request)
    return web.json_response(settings_payload(runtime.accounts.get_settings(session.user_id)))


async def handle_update_settings(request: web.Request) -> web.Response:
    runtime = request.app[RUNTIME_KEY]
    session = _require_session(request)
    body = await _read_json(request)
    for key in _BOOL_SETTINGS:
        if key in body and not isinstance(body[key], bool):
            raise ValidationError(f"{key} must be a boolean")
    if "language" in body and not isinstance(body["language"], str):
        raise ValidationError("language must be a string")

    settings = runtime.accounts.update_settings(session.user_id, body)
    return web.json_response(settings_payload(settings))


def create_app(
    *,
    db_path: str | None = None,
    storage: Storage | None = None,
    presence_config: PresenceConfig | None = None,
    typing_config: TypingConfig | None = None,
    session_ttl_ms: int = DEFAULT_SESSION_TTL_MS,
    now_func: Callable[[], int] = _now_ms,
    start_presence_sweeper: bool = True,
) -> web.Application:
    backend: SQLiteBackend | None = None
    if db_path is not None:
        backend = SQLiteBackend(db_path)
        storage = SQLiteStorage(backend)
        sessions: SessionStore | SQLiteSessionStore = SQLiteSessionStore(
            backend, ttl_ms=session_ttl_ms, now_func=now_func
        )
    else:
        storage = storage or MemoryStorage()
        sessions = SessionStore(ttl_ms=session_ttl_ms, now_func=now_func)

    presence = PresenceTracker(storage, presence_config, now_func=now_func)
    runtime = Runtime(
        storage=storage,
        sessions=sessions,
        accounts=Accounts(storage, now_func=now_func),
        engine=MessageEngine(storage, now_func=now_func),
        presence=presence,
        typing=TypingTracker(typing_config, now_func=now_func),
        session_ttl_ms=session_ttl_ms,
        backend=backend,
    )
    app = web.Application(middlewares=[error_middleware])
    app[RUNTIME_KEY] = runtime
    app.router.add_get("/healthz", handle_health)
    app.router.add_post("/api/login", handle_login)
    app.router.add_post("/api/logout", handle_logout)
    app.router.add_post("/api/logout/all", handle_logout_all)
    app.router.add_get("/api/auth/status", handle_auth_status)
    app.router.add_get("/api/users", handle_users)
    app.router.add_get("/api/messages/unread", handle_unread_counts)
    app.router.add_get("/api/messages/{contact_id}", handle_conversation)
    app.router.add_post("/api/messages", handle_send)
    app.router.add_post("/api/messages/read", handle_mark_read)
    app.router.add_post("/api/messages/delete", handle_delete)
    app.router.add_post("/api/typing", handle_set_typing)
    app.router.add_get("/api/typing/{user_id}", handle_get_typing)
    app.router.add_post("/api/ping", handle_ping)
    app.router.add_get("/api/user/settings", handle_get_settings)
    app.router.add_post("/api/user/settings", handle_update_settings)

    async def start_presence(_: web.Application) -> None:
        if start_presence_sweeper:
            presence.start_sweeper()

    async def stop_presence(_: web.Application) -> None:
        await presence.stop_sweeper()

    app.on_startup.append(start_presence)
    app.on_cleanup.append(stop_presence)

    if backend is not None:
        async def close_db(_: web.Application) -> None:
            backend.close()

        app.on_cleanup.append(close_db)
    return app
