"""Explicit cart store, passed to whatever needs the cart."""

import json
from typing import List, Optional

from milko.schemas import CartItem, MAX_QUANTITY, clamp_quantity


def _same_line(item: CartItem, product_id: int, variation_id: Optional[int]) -> bool:
    return item.product_id == product_id and item.variation_id == variation_id


class CartStore:
    def __init__(self, items: Optional[List[CartItem]] = None):
        self._items: List[CartItem] = list(items or [])

    @property
    def items(self) -> List[CartItem]:
        return list(self._items)

    @property
    def count(self) -> int:
        return sum(item.quantity for item in self._items)

    def __len__(self):
        return len(self._items)

    def add(self, product_id: int, quantity: int = 1, variation_id: Optional[int] = None):
        quantity = clamp_quantity(quantity)
        for i, item in enumerate(self._items):
            if _same_line(item, product_id, variation_id):
                merged = min(MAX_QUANTITY, item.quantity + quantity)
                self._items[i] = item.model_copy(update={"quantity": merged})
                return
        self._items.append(CartItem(product_id=product_id, variation_id=variation_id, quantity=quantity))

    def set_quantity(self, product_id: int, quantity: int, variation_id: Optional[int] = None):
        quantity = clamp_quantity(quantity)
        self._items = [
            item.model_copy(update={"quantity": quantity}) if _same_line(item, product_id, variation_id) else item
            for item in self._items
        ]

    def remove(self, product_id: int, variation_id: Optional[int] = None):
        self._items = [item for item in self._items if not _same_line(item, product_id, variation_id)]

    def clear(self):
        self._items = []

    def to_json(self) -> str:
        return json.dumps([item.model_dump(by_alias=True) for item in self._items])

    @classmethod
    def from_json(cls, raw: Optional[str]) -> "CartStore":
        """Rebuild a cart from stored JSON, dropping anything malformed."""
        if not raw:
            return cls()
        try:
            parsed = json.loads(raw)
        except ValueError:
            return cls()
        if not isinstance(parsed, list):
            return cls()

        items = []
        for entry in parsed:
            if not isinstance(entry, dict):
                continue
            try:
                product_id = int(entry.get("productId"))
                quantity = int(entry.get("quantity", 1))
                variation_id = entry.get("variationId")
                variation_id = int(variation_id) if variation_id not in (None, "") else None
            except (TypeError, ValueError, OverflowError):
                continue
            if quantity <= 0:
                continue
            items.append(CartItem(product_id=product_id, variation_id=variation_id, quantity=quantity))
        return cls(items)
