"""Bridge that lets the Supabase auth client persist tokens in our store."""

from dataclasses import dataclass

from agrilink.services.storage import KeyValueStore


@dataclass
class SupabaseStorageAdapter:
    """Expose a KeyValueStore through the Supabase auth storage interface."""

    store: KeyValueStore
    prefix: str = "supabase:"

    async def get_item(self, key: str) -> str | None:
        return await self.store.get(self.prefix + key)

    async def set_item(self, key: str, value: str) -> None:
        await self.store.set(self.prefix + key, value)

    async def remove_item(self, key: str) -> None:
        await self.store.remove(self.prefix + key)
