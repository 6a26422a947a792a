"""API key management for the signed-in account."""

from __future__ import annotations

from typing import Any, Mapping

from pydantic import ValidationError

from probeops.domain.models import ApiKeyModel, CreatedApiKey
from probeops.logging import logger
from probeops.services.api import ApiClient
from probeops.services.shapes import extract_api_key, extract_list

API_KEYS_PATH = "/apikeys"


class ApiKeyService:
    def __init__(self, api: ApiClient) -> None:
        self._api = api

    async def list(self) -> list[ApiKeyModel]:
        payload = await self._api.get(API_KEYS_PATH)
        keys: list[ApiKeyModel] = []
        for item in extract_list("api key list", payload, "keys"):
            try:
                keys.append(ApiKeyModel.model_validate(item))
            except ValidationError:
                logger.warning("api_key_entry_skipped", keys=sorted(item) if isinstance(item, Mapping) else None)
        return keys

    async def create(self, name: str, description: str | None = None) -> CreatedApiKey:
        name = (name or "").strip()
        if not name:
            raise ValueError("API key name must not be empty.")
        body: dict[str, Any] = {"name": name}
        if description:
            body["description"] = description

        payload = await self._api.post(API_KEYS_PATH, json=body)
        key = extract_api_key(payload)
        return CreatedApiKey(key=key, id=_key_id(payload), name=name)

    async def delete(self, key_id: int) -> None:
        await self._api.delete(f"{API_KEYS_PATH}/{int(key_id)}")
        logger.info("api_key_deleted", key_id=key_id)


def _key_id(payload: Any) -> int | None:
    if not isinstance(payload, Mapping):
        return None
    for candidate in (payload.get("id"), payload.get("api_key"), payload.get("apiKey")):
        if isinstance(candidate, Mapping):
            candidate = candidate.get("id")
        if isinstance(candidate, int) and not isinstance(candidate, bool):
            return candidate
    return None


__all__ = ["ApiKeyService"]
