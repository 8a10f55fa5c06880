"""
Near-real-time inquiry chat over plain HTTP polling.

InquiryPoller asks the API for messages newer than the thread's last_seen every
inquiry_poll_interval_seconds, skips rounds while the view is hidden, and is cancelled on stop().
"""
import asyncio
import logging
from typing import Callable

import httpx

from adslot.core.config import settings
from adslot.core.errors import RemoteServiceError
from adslot.services.inquiries.thread import ChatMessage, InquiryThread

logger = logging.getLogger(__name__)


class InquiryClient:
    """Thin async client for the /inquiries API."""

    def __init__(
        self,
        user_id: str,
        base_url: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._client = httpx.AsyncClient(
            base_url=base_url or settings.inquiry_api_base_url,
            headers={settings.auth_user_header: user_id},
            timeout=settings.http_client_timeout,
            transport=transport,
        )

    async def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        try:
            resp = await self._client.request(method, url, **kwargs)
            resp.raise_for_status()
        except httpx.HTTPError as exc:
            raise RemoteServiceError("Inquiry API request failed", url=url, error=str(exc)) from exc
        return resp

    async def fetch_messages(self, inquiry_id: str, since=None) -> list[ChatMessage]:
        params = {"since": since.isoformat()} if since else None
        resp = await self._request("GET", f"/inquiries/{inquiry_id}/messages", params=params)
        return [ChatMessage.from_api(item) for item in resp.json()["items"]]

    async def send_message(self, inquiry_id: str, content: str, attachments: list[dict] | None = None) -> ChatMessage:
        resp = await self._request(
            "POST",
            f"/inquiries/{inquiry_id}/messages",
            json={"content": content, "attachments": attachments or []},
        )
        return ChatMessage.from_api(resp.json())

    async def mark_read(self, inquiry_id: str, message_ids: list[str]) -> int:
        resp = await self._request("POST", f"/inquiries/{inquiry_id}/read", json={"message_ids": message_ids})
        return resp.json()["updated"]

    async def aclose(self) -> None:
        await self._client.aclose()


class InquiryPoller:
    def __init__(
        self,
        client: InquiryClient,
        thread: InquiryThread,
        interval: float | None = None,
        is_visible: Callable[[], bool] = lambda: True,
        on_update: Callable[[InquiryThread], None] | None = None,
    ) -> None:
        self.client = client
        self.thread = thread
        self.interval = settings.inquiry_poll_interval_seconds if interval is None else interval
        self.is_visible = is_visible
        self.on_update = on_update
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def poll_once(self) -> list[str]:
        """One round: fetch, merge, report read. Returns ids of newly merged messages."""
        if not self.is_visible():
            return []
        incoming = await self.client.fetch_messages(self.thread.inquiry_id, since=self.thread.last_seen)
        before = {m.id for m in self.thread.messages}
        to_mark = self.thread.merge(incoming)
        if to_mark:
            await self.client.mark_read(self.thread.inquiry_id, to_mark)
        new_ids = [m.id for m in incoming if m.id not in before]
        if new_ids and self.on_update:
            self.on_update(self.thread)
        return new_ids

    async def send(self, content: str, sender_role: str, attachments: list[dict] | None = None) -> ChatMessage:
        temp = self.thread.add_optimistic(content, sender_role, attachments)
        try:
            confirmed = await self.client.send_message(self.thread.inquiry_id, content, attachments)
        except RemoteServiceError:
            self.thread.discard(temp.id)
            raise
        self.thread.confirm(temp.id, confirmed)
        return confirmed

    async def _run(self) -> None:
        while True:
            try:
                await self.poll_once()
            except RemoteServiceError:
                logger.warning("inquiry_poll_failed", extra={"inquiry_id": self.thread.inquiry_id})
            await asyncio.sleep(self.interval)

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    async def __aenter__(self) -> "InquiryPoller":
        self.start()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.stop()
