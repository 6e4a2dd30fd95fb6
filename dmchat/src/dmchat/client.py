"""Polling chat client mirroring the browser front-end's scheduling.

There is no push channel: presence is kept alive by a heartbeat ping,
conversations are refetched after every mutation and typing status is a
debounced flag the contact polls for.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List

import aiohttp

logger = logging.getLogger(__name__)

PING_INTERVAL_SECONDS = 30.0
TYPING_IDLE_SECONDS = 2.0


class ChatClientError(Exception):
    def __init__(self, status: int, message: str) -> None:
        super().__init__(f"{status}: {message}")
        self.status = status
        self.message = message


class ChatClient:
    """Client over an ``aiohttp.ClientSession`` (or aiohttp ``TestClient``).

    The session must keep cookies: the server authenticates with a session
    cookie set by ``login``.
    """

    def __init__(self, http: Any, *, typing_idle_seconds: float = TYPING_IDLE_SECONDS) -> None:
        self._http = http
        self._owns_http = False
        self.typing_idle_seconds = typing_idle_seconds
        self.user: Dict[str, Any] | None = None
        self._cache: Dict[int, List[Dict[str, Any]]] = {}
        self._heartbeat_task: asyncio.Task | None = None
        self._typing_timer: asyncio.Task | None = None
        self._typing_to: int | None = None

    @classmethod
    def connect(cls, base_url: str, **kwargs: Any) -> ChatClient:
        # unsafe=True so cookies issued by IP-address hosts are kept.
        session = aiohttp.ClientSession(base_url=base_url, cookie_jar=aiohttp.CookieJar(unsafe=True))
        client = cls(session, **kwargs)
        client._owns_http = True
        return client

    async def close(self) -> None:
        await self.stop_heartbeat()
        if self._typing_timer is not None:
            self._typing_timer.cancel()
            self._typing_timer = None
        if self._owns_http:
            await self._http.close()

    async def _request(self, method: str, path: str, payload: Any = None) -> Any:
        async with self._http.request(method, path, json=payload) as resp:
            if resp.content_type == "application/json":
                body = await resp.json()
            else:
                body = await resp.text()
            if resp.status >= 400:
                message = body.get("message", "") if isinstance(body, dict) else str(body)
                raise ChatClientError(resp.status, message)
            return body

    # --- session ---

    async def login(self, username: str, password: str) -> Dict[str, Any]:
        self.user = await self._request("POST", "/api/login", {"username": username, "password": password})
        return self.user

    async def logout(self) -> Dict[str, Any]:
        await self.stop_heartbeat()
        body = await self._request("POST", "/api/logout")
        self.user = None
        self._cache.clear()
        return body

    async def logout_all(self) -> int:
        """End every session of the logged-in user, on all devices."""

        await self.stop_heartbeat()
        body = await self._request("POST", "/api/logout/all")
        self.user = None
        self._cache.clear()
        return body["sessionsEnded"]

    def logout_on_unload(self) -> asyncio.Task:
        """Fire a logout without waiting for it, as a closing page does.

        The returned task is never awaited here; if the request does not
        reach the server the user stays ONLINE until something else
        corrects it.
        """

        if self._heartbeat_task is not None:
            self._heartbeat_task.cancel()
            self._heartbeat_task = None
        return asyncio.create_task(self._beacon_logout())

    async def _beacon_logout(self) -> None:
        try:
            await self._request("POST", "/api/logout")
        except (ChatClientError, aiohttp.ClientError, asyncio.TimeoutError) as exc:
            logger.debug("unload logout did not complete: %s", exc)

    async def auth_status(self) -> Dict[str, Any]:
        return await self._request("GET", "/api/auth/status")

    # --- presence heartbeat ---

    async def ping_once(self) -> bool:
        try:
            await self._request("POST", "/api/ping")
        except (ChatClientError, aiohttp.ClientError, asyncio.TimeoutError) as exc:
            logger.warning("ping failed: %s", exc)
            return False
        return True

    def start_heartbeat(self, interval_seconds: float = PING_INTERVAL_SECONDS) -> None:
        if self._heartbeat_task is None:
            self._heartbeat_task = asyncio.create_task(self._heartbeat(interval_seconds))

    async def stop_heartbeat(self) -> None:
        if self._heartbeat_task is None:
            return
        self._heartbeat_task.cancel()
        try:
            await self._heartbeat_task
        except asyncio.CancelledError:
            pass
        self._heartbeat_task = None

    async def _heartbeat(self, interval_seconds: float) -> None:
        try:
            while True:
                await self.ping_once()
                await asyncio.sleep(interval_seconds)
        except asyncio.CancelledError:
            return

    # --- contacts and settings ---

    async def contacts(self) -> List[Dict[str, Any]]:
        return await self._request("GET", "/api/users")

    async def settings(self) -> Dict[str, Any]:
        return await self._request("GET", "/api/user/settings")

    async def update_settings(self, **changes: Any) -> Dict[str, Any]:
        return await self._request("POST", "/api/user/settings", changes)

    async def unread_counts(self) -> Dict[int, int]:
        body = await self._request("GET", "/api/messages/unread")
        return {int(contact_id): count for contact_id, count in body.items()}

    # --- conversations ---

    def cached_conversation(self, contact_id: int) -> List[Dict[str, Any]]:
        return list(self._cache.get(contact_id, []))

    async def fetch_conversation(self, contact_id: int) -> List[Dict[str, Any]]:
        messages = await self._request("GET", f"/api/messages/{contact_id}")
        self._cache[contact_id] = messages
        return messages

    async def select_contact(self, contact_id: int) -> List[Dict[str, Any]]:
        """Open a conversation.

        Unread inbound messages already in the local cache are acknowledged
        before refetching; the server acknowledges them again on the fetch.
        """

        unread = [
            m["id"] for m in self._cache.get(contact_id, []) if m["senderId"] == contact_id and not m["isRead"]
        ]
        if unread:
            await self.mark_read(unread)
        return await self.fetch_conversation(contact_id)

    async def mark_read(self, message_ids: List[int]) -> None:
        await self._request("POST", "/api/messages/read", {"messageIds": message_ids})

    async def send(self, contact_id: int, content: str) -> Dict[str, Any]:
        await self.stop_typing()
        message = await self._request("POST", "/api/messages", {"receiverId": contact_id, "content": content})
        await self.fetch_conversation(contact_id)
        return message

    async def delete(self, message_id: int, contact_id: int | None = None) -> None:
        await self._request("POST", "/api/messages/delete", {"messageId": message_id})
        if contact_id is not None:
            await self.fetch_conversation(contact_id)

    # --- typing ---

    @property
    def is_typing(self) -> bool:
        return self._typing_to is not None

    async def handle_typing(self, contact_id: int) -> None:
        """Record a keystroke in the conversation with ``contact_id``."""

        if self._typing_to is not None and self._typing_to != contact_id:
            await self.stop_typing()
        if self._typing_to is None:
            self._typing_to = contact_id
            await self._set_typing(contact_id, True)
        if self._typing_timer is not None:
            self._typing_timer.cancel()
        self._typing_timer = asyncio.create_task(self._typing_timeout())

    async def stop_typing(self) -> None:
        if self._typing_timer is not None:
            self._typing_timer.cancel()
            self._typing_timer = None
        contact_id, self._typing_to = self._typing_to, None
        if contact_id is not None:
            await self._set_typing(contact_id, False)

    async def _typing_timeout(self) -> None:
        try:
            await asyncio.sleep(self.typing_idle_seconds)
        except asyncio.CancelledError:
            return
        self._typing_timer = None
        await self.stop_typing()

    async def _set_typing(self, contact_id: int, is_typing: bool) -> None:
        await self._request("POST", "/api/typing", {"receiverId": contact_id, "isTyping": is_typing})

    async def is_contact_typing(self, contact_id: int) -> bool:
        body = await self._request("GET", f"/api/typing/{contact_id}")
        return bool(body["isTyping"])
