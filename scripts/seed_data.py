"""Seed menu item inventory into the Redis store."""

import asyncio

from storefront_core.config import get_settings
from storefront_core.state.manager import StateManager
from storefront_core.stores.redis_store import RedisStore

# item_id -> raw inventory; None means the item is not stock-tracked
MENU_INVENTORY: dict[str, int | None] = {
    "pizza_pepperoni": 50,
    "pizza_margherita": 45,
    "pizza_veggie": 40,
    "burger_cheese": 30,
    "burger_chicken": 25,
    "burger_veggie": 20,
    "salad_caesar": 20,
    "salad_greek": 15,
    "biryani_special": 5,
    "dessert_cheesecake": 3,
    "drink_soda": None,
    "drink_water": None,
}


async def seed_inventory() -> None:
    """Seed raw inventory for every menu item."""
    print("Seeding menu inventory...")

    settings = get_settings()
    state_manager = StateManager(redis_url=settings.redis_url)
    await state_manager.connect()
    store = RedisStore(state_manager, prefix=settings.key_prefix)

    for item_id, quantity in MENU_INVENTORY.items():
        await store.set_inventory(item_id, quantity)
        label = "untracked" if quantity is None else f"{quantity} units"
        print(f"  ✓ Added {item_id} ({label})")

    await state_manager.disconnect()
    print("✓ Inventory seeded successfully\n")


async def main() -> None:
    print("\n" + "=" * 50)
    print("  Seeding Storefront Data")
    print("=" * 50 + "\n")

    await seed_inventory()

    print("=" * 50)
    print("  ✓ All data seeded successfully!")
    print("=" * 50 + "\n")


if __name__ == "__main__":
    asyncio.run(main())
