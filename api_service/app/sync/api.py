"""
Thin async client for the shelf API.

Error envelopes come back as the same typed ShelfError subclasses the
server raised. Only the idempotent record mutations retry (transport
errors and Conflict); reorder, remove and the favorite toggle never do,
since replaying them against changed state is not safe.
"""

from __future__ import annotations

from typing import Any, Optional

import httpx
import structlog
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from app.errors import Conflict, ShelfError
from app.models.enums import MediaType, ReadingStatus, Shelf
from app.schemas.book import FavoriteResponse, FavoritesResponse
from app.schemas.shelf import (
    ReorderResponse,
    ShelfEntryResponse,
    ShelfRecordResponse,
)

logger = structlog.get_logger()

idempotent_retry = retry(
    retry=retry_if_exception_type((httpx.TransportError, Conflict)),
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=0.2, max=2),
    reraise=True,
)


class ShelfApiClient:
    def __init__(
        self,
        base_url: str,
        token: str,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = 10.0,
    ):
        self._client = httpx.AsyncClient(
            base_url=base_url,
            headers={"Authorization": f"Bearer {token}"},
            transport=transport,
            timeout=timeout,
        )

    async def __aenter__(self) -> "ShelfApiClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, url: str, **kwargs) -> Any:
        response = await self._client.request(method, url, **kwargs)
        if response.is_error:
            try:
                payload = response.json()
            except ValueError:
                payload = None
            if isinstance(payload, dict) and "error" in payload:
                error = ShelfError.from_payload(payload, response.status_code)
                logger.info(
                    "shelf_api_error",
                    method=method,
                    url=url,
                    status=response.status_code,
                    error=error.code,
                )
                raise error
            response.raise_for_status()
        return response.json()

    # ── Reads ──

    async def list_shelf(self, shelf: Optional[Shelf] = None) -> list[ShelfEntryResponse]:
        params = {"shelf": shelf.value} if shelf is not None else None
        data = await self._request("GET", "/shelf", params=params)
        return [ShelfEntryResponse.model_validate(item) for item in data]

    async def get_record(self, book_id: int) -> ShelfRecordResponse:
        data = await self._request("GET", f"/shelf/{book_id}")
        return ShelfRecordResponse.model_validate(data)

    async def get_queue(self) -> list[ShelfEntryResponse]:
        data = await self._request("GET", "/queue")
        return [ShelfEntryResponse.model_validate(item) for item in data]

    async def favorites(self) -> list[int]:
        data = await self._request("GET", "/books/favorites")
        return FavoritesResponse.model_validate(data).book_ids

    # ── Idempotent mutations ──

    @idempotent_retry
    async def set_shelf(
        self,
        book_id: int,
        shelf: Shelf,
        status: Optional[ReadingStatus] = None,
    ) -> ShelfRecordResponse:
        body = {"book_id": book_id, "shelf": shelf.value}
        if status is not None:
            body["status"] = status.value
        data = await self._request("POST", "/shelf", json=body)
        return ShelfRecordResponse.model_validate(data)

    @idempotent_retry
    async def set_comment(self, book_id: int, comment: Optional[str]) -> ShelfRecordResponse:
        data = await self._request("PATCH", f"/shelf/{book_id}/comment", json={"comment": comment})
        return ShelfRecordResponse.model_validate(data)

    @idempotent_retry
    async def set_media_type(self, book_id: int, media_type: MediaType) -> ShelfRecordResponse:
        data = await self._request(
            "PATCH", f"/shelf/{book_id}/media-type", json={"media_type": media_type.value}
        )
        return ShelfRecordResponse.model_validate(data)

    # ── Non-idempotent mutations ──

    async def remove(self, book_id: int, shelf: Optional[Shelf] = None) -> None:
        params = {"shelf": shelf.value} if shelf is not None else None
        await self._request("DELETE", f"/shelf/{book_id}", params=params)

    async def reorder(self, book_ids: list[int]) -> list[int]:
        data = await self._request("POST", "/queue/reorder", json={"book_ids": list(book_ids)})
        return ReorderResponse.model_validate(data).book_ids

    async def toggle_favorite(self, book_id: int) -> bool:
        data = await self._request("POST", f"/books/{book_id}/favorite")
        return FavoriteResponse.model_validate(data).is_favorite
