"""Apprise notifications over the Apprise API's form endpoint."""

from __future__ import annotations

import httpx

from pvefleet.config import Settings, settings
from pvefleet.errors import PveFleetError
from pvefleet.utils.logging import get_logger

log = get_logger(__name__)

DEFAULT_TITLE = "pvefleet"


class AppriseNotifier:
    def __init__(
        self,
        cfg: Settings | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._cfg = cfg or settings
        self._transport = transport

    async def send(self, title: str, body: str, urls: list[str]) -> int:
        """POST to every URL; return how many accepted it.

        Raises ``PveFleetError`` when there are no URLs or every attempt
        failed.
        """
        if not urls:
            raise PveFleetError("No Apprise URLs configured")

        form = {"title": title or DEFAULT_TITLE, "body": body or "", "tags": "all"}
        delivered = 0
        async with httpx.AsyncClient(
            timeout=self._cfg.apprise_timeout_seconds,
            transport=self._transport,
        ) as client:
            for url in urls:
                try:
                    resp = await client.post(url, data=form)
                    resp.raise_for_status()
                    delivered += 1
                except httpx.HTTPError as exc:
                    log.warning("notify.failed", url=url, error=str(exc))

        if delivered == 0:
            raise PveFleetError("All notification attempts failed")
        log.info("notify.sent", delivered=delivered, total=len(urls))
        return delivered


apprise_notifier = AppriseNotifier()
