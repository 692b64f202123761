# src/services/category_manager.py
"""
CategoryManager - Kategorie-Baum (CRUD).

parent_id und children werden immer in derselben Transaktion gepflegt.
Beim Löschen wandern die Kinder zum Großelternteil.
"""

from __future__ import annotations

import importlib
import logging
from typing import Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import async_sessionmaker

from src.helpers.errors import NotFoundError
from src.helpers.keyed_lock import KeyedLock
from src.helpers.validation import validate_identifier

models = importlib.import_module(".02_models", "src")

logger = logging.getLogger(__name__)

# Strukturänderungen am Baum sind global serialisiert
_TREE_KEY = "category_tree"

DEFAULT_CATEGORIES = [
    {
        "name": "Technology",
        "description": "Technology news and updates",
        "icon": "computer",
        "color": "#3498db",
        "keywords": ["software", "hardware", "gadgets", "tech"],
        "children": [
            {
                "name": "AI & Machine Learning",
                "description": "Artificial intelligence and machine learning news",
                "icon": "smart_toy",
                "color": "#3498db",
                "keywords": ["ai", "llm", "neural", "model", "machine", "learning"],
            },
            {
                "name": "Web Development",
                "description": "Web development and design",
                "icon": "web",
                "color": "#3498db",
                "keywords": ["javascript", "css", "frontend", "backend", "browser"],
            },
        ],
    },
    {
        "name": "Business",
        "description": "Business insights and trends",
        "icon": "business",
        "color": "#2ecc71",
        "keywords": ["market", "company", "strategy"],
        "children": [
            {
                "name": "Startups",
                "description": "Startup news and funding",
                "icon": "rocket_launch",
                "color": "#2ecc71",
                "keywords": ["founder", "funding", "venture", "seed"],
            },
            {
                "name": "Finance",
                "description": "Financial news and market trends",
                "icon": "attach_money",
                "color": "#2ecc71",
                "keywords": ["stocks", "investing", "bank", "interest"],
            },
        ],
    },
    {
        "name": "Science",
        "description": "Scientific discoveries and research",
        "icon": "science",
        "color": "#9b59b6",
        "keywords": ["research", "study", "discovery"],
        "children": [
            {
                "name": "Physics",
                "description": "Physics discoveries and research",
                "icon": "science",
                "color": "#9b59b6",
                "keywords": ["quantum", "particle", "relativity"],
            },
            {
                "name": "Biology",
                "description": "Biology and medical research",
                "icon": "biotech",
                "color": "#9b59b6",
                "keywords": ["cell", "gene", "medical", "evolution"],
            },
        ],
    },
]

_UPDATABLE_FIELDS = ("name", "description", "icon", "color", "keywords")


class CategoryManager:
    def __init__(self, session_factory: async_sessionmaker):
        self._session_factory = session_factory
        self._locks = KeyedLock("category_tree")

    async def get_category(self, category_id: str) -> Optional[models.Category]:
        async with self._session_factory() as session:
            return await session.get(models.Category, category_id)

    async def get_categories(self) -> List[models.Category]:
        """Alle Kategorien in Erstellungsreihenfolge"""
        Category = models.Category
        async with self._session_factory() as session:
            result = await session.execute(
                select(Category).order_by(Category.created_at.asc(), Category.name.asc())
            )
            return list(result.scalars().all())

    async def get_children(self, category_id: str) -> List[models.Category]:
        Category = models.Category
        async with self._session_factory() as session:
            result = await session.execute(
                select(Category)
                .where(Category.parent_id == category_id)
                .order_by(Category.created_at.asc())
            )
            return list(result.scalars().all())

    async def add_category(
        self,
        name: str,
        description: Optional[str] = None,
        parent_id: Optional[str] = None,
        icon: Optional[str] = None,
        color: Optional[str] = None,
        keywords: Optional[List[str]] = None,
    ) -> models.Category:
        """
        Legt eine Kategorie an und hängt sie beim Parent ein.

        Raises:
            NotFoundError: parent_id unbekannt
        """
        name = validate_identifier(name, "name", max_len=100)

        async with self._locks.hold(_TREE_KEY):
            async with self._session_factory() as session:
                parent = None
                if parent_id is not None:
                    parent = await session.get(models.Category, parent_id)
                    if parent is None:
                        raise NotFoundError("Category", parent_id)

                now = models.utcnow()
                category = models.Category(
                    id=models.new_id(),
                    name=name,
                    description=description,
                    parent_id=parent_id,
                    children=[],
                    keywords=list(keywords or []),
                    icon=icon,
                    color=color,
                    created_at=now,
                    updated_at=now,
                )
                session.add(category)

                if parent is not None:
                    parent.children = list(parent.children or []) + [category.id]
                    parent.updated_at = now

                await session.commit()

        logger.info(f"✅ Kategorie angelegt: {category.name} ({category.id})")
        return category

    async def update_category(self, category_id: str, **fields) -> models.Category:
        """Aktualisiert Name/Beschreibung/Icon/Farbe/Keywords (nicht den Parent)"""
        unknown = set(fields) - set(_UPDATABLE_FIELDS)
        if unknown:
            raise ValueError(f"Nicht änderbare Felder: {', '.join(sorted(unknown))}")

        async with self._session_factory() as session:
            category = await session.get(models.Category, category_id)
            if category is None:
                raise NotFoundError("Category", category_id)
            for key, value in fields.items():
                setattr(category, key, value)
            category.updated_at = models.utcnow()
            await session.commit()
            return category

    async def delete_category(self, category_id: str) -> bool:
        """
        Löscht eine Kategorie, Kinder werden zum Großelternteil verschoben.

        Returns:
            False wenn die Kategorie nicht existiert
        """
        async with self._locks.hold(_TREE_KEY):
            async with self._session_factory() as session:
                category = await session.get(models.Category, category_id)
                if category is None:
                    return False

                now = models.utcnow()
                grandparent = None
                if category.parent_id:
                    grandparent = await session.get(models.Category, category.parent_id)

                child_ids = list(category.children or [])
                for child_id in child_ids:
                    child = await session.get(models.Category, child_id)
                    if child is not None:
                        child.parent_id = grandparent.id if grandparent else None
                        child.updated_at = now

                if grandparent is not None:
                    remaining = [c for c in (grandparent.children or []) if c != category_id]
                    grandparent.children = remaining + child_ids
                    grandparent.updated_at = now

                await session.delete(category)
                await session.commit()

        logger.info(f"Kategorie gelöscht: {category_id} ({len(child_ids)} Kinder umgehängt)")
        return True

    async def move_category(
        self, category_id: str, new_parent_id: Optional[str]
    ) -> models.Category:
        """
        Hängt eine Kategorie unter einen neuen Parent (None = Wurzel).

        Raises:
            NotFoundError: Kategorie oder neuer Parent unbekannt
            ValueError: Zyklus im Baum
        """
        async with self._locks.hold(_TREE_KEY):
            async with self._session_factory() as session:
                category = await session.get(models.Category, category_id)
                if category is None:
                    raise NotFoundError("Category", category_id)

                new_parent = None
                if new_parent_id is not None:
                    new_parent = await session.get(models.Category, new_parent_id)
                    if new_parent is None:
                        raise NotFoundError("Category", new_parent_id)
                    # Zyklus: neuer Parent darf kein Nachfahre sein
                    ancestor = new_parent
                    while ancestor is not None:
                        if ancestor.id == category_id:
                            raise ValueError(
                                f"Kategorie {category_id} kann nicht unter ihren Nachfahren verschoben werden"
                            )
                        ancestor = (
                            await session.get(models.Category, ancestor.parent_id)
                            if ancestor.parent_id
                            else None
                        )

                now = models.utcnow()
                if category.parent_id:
                    old_parent = await session.get(models.Category, category.parent_id)
                    if old_parent is not None:
                        old_parent.children = [
                            c for c in (old_parent.children or []) if c != category_id
                        ]
                        old_parent.updated_at = now

                if new_parent is not None:
                    new_parent.children = list(new_parent.children or []) + [category_id]
                    new_parent.updated_at = now

                category.parent_id = new_parent_id
                category.updated_at = now
                await session.commit()
                return category

    async def seed_default_categories(self) -> Dict[str, str]:
        """
        Legt die Standard-Kategorien an, falls noch keine existieren.

        Returns:
            name -> id der angelegten Kategorien (leer wenn schon vorhanden)
        """
        if await self.get_categories():
            return {}

        created: Dict[str, str] = {}
        for entry in DEFAULT_CATEGORIES:
            children = entry.get("children", [])
            parent = await self.add_category(
                **{k: v for k, v in entry.items() if k != "children"}
            )
            created[parent.name] = parent.id
            for child_entry in children:
                child = await self.add_category(parent_id=parent.id, **child_entry)
                created[child.name] = child.id

        logger.info(f"✅ {len(created)} Standard-Kategorien angelegt")
        return created
