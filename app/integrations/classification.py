"""
Menu classification for POS line items.
Decides whether an ordered item is a drink or an entree from its menu
category and tags, using a configurable taxonomy table.
"""

import re
from enum import Enum
from typing import Any, Iterable

import structlog

from app.config import settings

logger = structlog.get_logger()


class MenuCourse(str, Enum):
    """Courses the meal lifecycle cares about."""

    DRINK = "DRINK"
    ENTREE = "ENTREE"


class MenuClassifier:
    """
    Classify line-item labels into a MenuCourse.

    The exact category table is consulted first ("Beverages" -> DRINK).
    Keywords are the fallback for items with no label in the table and match
    whole words only ("Craft Drinks" -> DRINK, "Domaine Serene" -> nothing).
    """

    def __init__(
        self,
        category_table: dict[str, str] | None = None,
        drink_keywords: Iterable[str] = (),
        entree_keywords: Iterable[str] = (),
    ):
        self.category_table: dict[str, MenuCourse] = {
            key.strip().lower(): MenuCourse(value.upper())
            for key, value in (category_table or {}).items()
        }
        self.keywords: dict[MenuCourse, tuple[str, ...]] = {
            MenuCourse.DRINK: tuple(k.lower() for k in drink_keywords if k),
            MenuCourse.ENTREE: tuple(k.lower() for k in entree_keywords if k),
        }

    @staticmethod
    def _clean(labels: Iterable[Any]) -> list[str]:
        cleaned = []
        for label in labels:
            # Tag objects ({"name": "Entrees"}) are reduced to their name
            if isinstance(label, dict):
                label = label.get("name")
            if label is None or label == "":
                continue
            cleaned.append(str(label).strip().lower())
        return cleaned

    def _keyword_course(self, label: str) -> MenuCourse | None:
        for course in (MenuCourse.ENTREE, MenuCourse.DRINK):
            for keyword in self.keywords[course]:
                # Whole words only, plurals allowed: "Drinks" but not "Domaine"
                if re.search(rf"\b{re.escape(keyword)}(?:s|es)?\b", label):
                    return course
        return None

    def classify(self, labels: Iterable[Any]) -> MenuCourse | None:
        """
        Classify one item. ENTREE takes precedence when labels match both.

        Labels found in the category table decide the item on their own;
        keywords are only consulted when no label is in the table.
        """
        cleaned = self._clean(labels)
        courses = {self.category_table[label] for label in cleaned if label in self.category_table}
        if not courses:
            courses = {self._keyword_course(label) for label in cleaned} - {None}
        if MenuCourse.ENTREE in courses:
            return MenuCourse.ENTREE
        if MenuCourse.DRINK in courses:
            return MenuCourse.DRINK
        return None

    def matches(self, labels: Iterable[Any], course: MenuCourse) -> bool:
        """Return True if the item classifies as the given course."""
        return self.classify(labels) == course

    def has_entree(self, items: Iterable[Iterable[Any]]) -> bool:
        return any(self.matches(labels, MenuCourse.ENTREE) for labels in items)

    def has_drink(self, items: Iterable[Iterable[Any]]) -> bool:
        return any(self.matches(labels, MenuCourse.DRINK) for labels in items)


def default_classifier() -> MenuClassifier:
    """Build a classifier from the configured menu taxonomy."""
    return MenuClassifier(
        category_table=settings.menu_category_table,
        drink_keywords=settings.menu_drink_keywords,
        entree_keywords=settings.menu_entree_keywords,
    )
