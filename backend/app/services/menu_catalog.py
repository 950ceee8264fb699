"""Category and owner attribution for order items.

Items snapshot their menu reference (``menu_item_id``, ``category``,
``owner``) when the order is created.  Older items may lack it, so reports
fall back to parsing the ``{menuItemId}-{ts}-{rand}`` item id and finally
to a case-insensitive name match.  Anything still unresolved is reported as
uncategorized under the default owner instead of failing the report.
"""

import logging
from typing import Dict, Optional, Tuple

from sqlalchemy.orm import Session

from app.core.config import settings
from app.models.menu import MenuItem

logger = logging.getLogger(__name__)

UNCATEGORIZED = "Uncategorized"


def menu_id_from_item_id(item_id: Optional[str]) -> Optional[str]:
    """Strip the ``-{ts}-{rand}`` suffix from a client-generated item id."""
    if not item_id:
        return None
    head = item_id.split("-")[0].strip()
    return head or None


class MenuCatalog:
    """In-memory snapshot of the menu, indexed by id and by lowercased name."""

    def __init__(self, menu_items):
        self.by_id: Dict[str, MenuItem] = {}
        self.by_name: Dict[str, MenuItem] = {}
        for menu_item in menu_items:
            self.by_id[menu_item.id] = menu_item
            self.by_name.setdefault(menu_item.name.strip().lower(), menu_item)

    @classmethod
    def load(cls, db: Session) -> "MenuCatalog":
        return cls(db.query(MenuItem).all())

    def lookup(self, menu_item_id: Optional[str] = None, item_id: Optional[str] = None,
               name: Optional[str] = None) -> Optional[MenuItem]:
        if menu_item_id and menu_item_id in self.by_id:
            return self.by_id[menu_item_id]
        parsed = menu_id_from_item_id(item_id)
        if parsed and parsed in self.by_id:
            return self.by_id[parsed]
        if name:
            return self.by_name.get(name.strip().lower())
        return None

    def resolve(self, item) -> Tuple[str, str]:
        """Return ``(category, owner)`` for an order item."""
        category = item.category
        owner = item.owner
        if not category or not owner:
            menu_item = self.lookup(item.menu_item_id, item.id, item.name)
            if menu_item is not None:
                category = category or menu_item.category
                owner = owner or menu_item.owner
            else:
                logger.debug(f"No menu match for item '{item.name}' ({item.id})")
        return category or UNCATEGORIZED, (owner or settings.default_owner).lower()
