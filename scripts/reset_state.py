"""Delete every storefront key from Redis (useful for testing)."""

import asyncio

from storefront_core.config import get_settings
from storefront_core.state.manager import StateManager


async def reset_all_state() -> None:
    """Clear all storefront data under the configured key prefix."""
    settings = get_settings()
    print(f"\n⚠️  WARNING: This will delete ALL '{settings.key_prefix}:*' keys from Redis!")
    response = input("Are you sure? (yes/no): ")

    if response.lower() != "yes":
        print("Cancelled.")
        return

    print("\nResetting state...")

    state_manager = StateManager(redis_url=settings.redis_url)
    await state_manager.connect()

    deleted = 0
    batch: list[str] = []
    async for key in state_manager.scan_keys(f"{settings.key_prefix}:*"):
        batch.append(key)
        if len(batch) >= 500:
            await state_manager.delete(*batch)
            deleted += len(batch)
            batch = []
    if batch:
        await state_manager.delete(*batch)
        deleted += len(batch)

    await state_manager.disconnect()

    print(f"✓ Deleted {deleted} keys\n")


if __name__ == "__main__":
    asyncio.run(reset_all_state())
