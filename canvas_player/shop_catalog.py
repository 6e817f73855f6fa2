"""Sticker shop catalog."""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional

DEFAULT_STICKER_ID = "sticker.star"
FREE_ITEM_IDS = frozenset({"sticker.none", "sticker.star"})


@dataclass(frozen=True)
class ShopItem:
    id: str
    name: str
    emoji: str
    cost: int
    description: str = ""


SHOP_ITEMS: List[ShopItem] = [
    ShopItem("sticker.none", "None", "", 0, "No sticker"),
    ShopItem("sticker.star", "Starter star", "⭐", 0, "Free starter sticker"),
    ShopItem("sticker.moon", "Night shift", "\U0001f319", 102400000, "For late-night productivity"),
    ShopItem("sticker.hourglass", "On the clock", "⏳", 777600000, "Time management master"),
    ShopItem("sticker.flame", "Hot streak", "\U0001f525", 3276800000, "On fire!"),
    ShopItem("sticker.cat", "Cat mode", "\U0001f431", 5904900000, "Feline focus"),
    ShopItem("sticker.sparkles", "Sparkles", "✨", 10000000000, "Shine bright"),
    ShopItem("sticker.brain", "Deep work", "\U0001f9e0", 24883200000, "Mental mastery"),
    ShopItem("sticker.trophy", "Champion", "\U0001f3c6", 75937500000, "Ultimate achievement"),
]


def get_shop_item(item_id: str) -> Optional[ShopItem]:
    for item in SHOP_ITEMS:
        if item.id == item_id:
            return item
    return None


def free_items() -> List[ShopItem]:
    return [item for item in SHOP_ITEMS if item.cost == 0]


def paid_items() -> List[ShopItem]:
    return [item for item in SHOP_ITEMS if item.cost > 0]
