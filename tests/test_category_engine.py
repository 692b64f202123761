"""Unit Tests für Kategorien: Baum, Matching, Lernen

Tests für src/services/category_manager.py, category_matcher.py,
category_learning.py und category_engine.py
"""

import asyncio
import importlib

import pytest

from src.helpers.errors import NotFoundError
from src.services.category_engine import CategoryEngine
from src.services.category_learning import CategoryLearner, decay_confidence
from src.services.category_manager import DEFAULT_CATEGORIES, CategoryManager
from src.services.category_matcher import CategoryMatcher, cosine_similarity, tokenize

models = importlib.import_module("src.02_models")


@pytest.fixture
def manager(session_factory):
    return CategoryManager(session_factory)


@pytest.fixture
def matcher(session_factory, manager, settings):
    return CategoryMatcher(
        session_factory, manager, threshold=settings.learning.category_confidence_threshold
    )


@pytest.fixture
def engine(session_factory, manager, matcher, settings):
    learner = CategoryLearner(session_factory, matcher, settings.learning)
    return CategoryEngine(manager, matcher, learner, settings.learning)


class TestCategoryManager:
    """Tests für den Kategorie-Baum"""

    async def test_add_child_updates_parent(self, manager):
        parent = await manager.add_category("Technology")
        child = await manager.add_category("AI", parent_id=parent.id, keywords=["llm"])

        stored_parent = await manager.get_category(parent.id)
        assert stored_parent.children == [child.id]
        assert (await manager.get_category(child.id)).parent_id == parent.id
        assert [c.id for c in await manager.get_children(parent.id)] == [child.id]

    async def test_unknown_parent(self, manager):
        with pytest.raises(NotFoundError):
            await manager.add_category("Orphan", parent_id="missing")

    async def test_delete_moves_children_to_grandparent(self, manager):
        root = await manager.add_category("Root")
        middle = await manager.add_category("Middle", parent_id=root.id)
        leaf = await manager.add_category("Leaf", parent_id=middle.id)

        assert await manager.delete_category(middle.id) is True

        assert await manager.get_category(middle.id) is None
        assert (await manager.get_category(leaf.id)).parent_id == root.id
        assert (await manager.get_category(root.id)).children == [leaf.id]

    async def test_delete_root_makes_children_roots(self, manager):
        root = await manager.add_category("Root")
        child = await manager.add_category("Child", parent_id=root.id)

        await manager.delete_category(root.id)

        assert (await manager.get_category(child.id)).parent_id is None

    async def test_delete_unknown(self, manager):
        assert await manager.delete_category("missing") is False

    async def test_update_category(self, manager):
        category = await manager.add_category("Finance")

        updated = await manager.update_category(category.id, keywords=["stocks"], color="#fff")

        assert updated.keywords == ["stocks"]
        assert (await manager.get_category(category.id)).color == "#fff"

    async def test_update_rejects_parent_change(self, manager):
        category = await manager.add_category("Finance")

        with pytest.raises(ValueError):
            await manager.update_category(category.id, parent_id=None)

    async def test_move_category(self, manager):
        a = await manager.add_category("A")
        b = await manager.add_category("B")
        child = await manager.add_category("Child", parent_id=a.id)

        await manager.move_category(child.id, b.id)

        assert (await manager.get_category(a.id)).children == []
        assert (await manager.get_category(b.id)).children == [child.id]
        assert (await manager.get_category(child.id)).parent_id == b.id

    async def test_move_under_descendant(self, manager):
        root = await manager.add_category("Root")
        child = await manager.add_category("Child", parent_id=root.id)

        with pytest.raises(ValueError):
            await manager.move_category(root.id, child.id)

    async def test_seed_default_categories(self, manager):
        created = await manager.seed_default_categories()

        expected = len(DEFAULT_CATEGORIES) + sum(len(c["children"]) for c in DEFAULT_CATEGORIES)
        assert len(created) == expected
        assert await manager.seed_default_categories() == {}
        technology = await manager.get_category(created["Technology"])
        assert len(technology.children) == 2


class TestCategoryMatcher:
    """Tests für Relevanz und Zuordnungen"""

    def test_tokenize_drops_stopwords(self):
        assert tokenize("The Python News and Django!") == ["python", "django"]

    def test_cosine_similarity(self):
        assert cosine_similarity({"a": 1.0}, {"a": 2.0}) == pytest.approx(1.0)
        assert cosine_similarity({"a": 1.0}, {"b": 1.0}) == 0.0
        assert cosine_similarity({}, {"a": 1.0}) == 0.0

    async def test_match_categories(self, manager, matcher):
        python = await manager.add_category("Python", keywords=["django", "flask", "pandas"])
        await manager.add_category("Cooking", keywords=["recipe", "kitchen"])
        content = models.NewsletterContent(
            newsletter_id="nl-1", title="Python Weekly", text="django and pandas tips"
        )

        candidates = await matcher.match_categories(content)

        assert [a.category_id for a in candidates] == [python.id]
        assert candidates[0].is_manual is False
        assert 0.4 <= candidates[0].confidence <= 1.0

    async def test_manual_assignment_is_not_overwritten(self, manager, matcher):
        category = await manager.add_category("Python")
        await matcher.add_category_assignment("nl-1", category.id, is_manual=True)

        result = await matcher.add_category_assignment("nl-1", category.id, confidence=0.5)

        assert result.is_manual is True
        assert result.confidence == 1.0

    async def test_manual_ignores_given_confidence(self, manager, matcher):
        category = await manager.add_category("Python")

        await matcher.add_category_assignment("nl-1", category.id, is_manual=True, confidence=0.3)

        stored = await matcher.get_categories_for_newsletter("nl-1")
        assert stored[0].confidence == 1.0
        assert stored[0].is_manual is True

    async def test_rematch_keeps_decayed_confidence(self, manager, matcher):
        """Test: Erneutes Matching hebt eine per Decay gesenkte Zuordnung nicht wieder an"""
        python = await manager.add_category("Python", keywords=["django", "pandas"])
        content = models.NewsletterContent(
            newsletter_id="nl-1", title="Python Weekly", text="django pandas"
        )
        first = (await matcher.match_categories(content))[0]
        assert first.confidence > 0.2

        await matcher.update_assignment_confidence("nl-1", python.id, 0.2)
        again = await matcher.match_categories(content)

        assert again[0].confidence == pytest.approx(0.2)
        stored = await matcher.get_categories_for_newsletter("nl-1")
        assert stored[0].confidence == pytest.approx(0.2)

    async def test_automatic_default_confidence(self, manager, matcher):
        category = await manager.add_category("Python")

        assignment = await matcher.add_category_assignment("nl-1", category.id)

        assert assignment.confidence == 0.7

    async def test_remove_assignment(self, manager, matcher):
        category = await manager.add_category("Python")
        await matcher.add_category_assignment("nl-1", category.id)

        assert await matcher.remove_category_assignment("nl-1", category.id) is True
        assert await matcher.remove_category_assignment("nl-1", category.id) is False
        assert await matcher.get_categories_for_newsletter("nl-1") == []

    async def test_newsletters_for_category(self, manager, matcher):
        category = await manager.add_category("Python")
        await matcher.add_category_assignment("nl-weak", category.id, confidence=0.2)
        await matcher.add_category_assignment("nl-auto", category.id, confidence=0.6)
        await matcher.add_category_assignment("nl-manual", category.id, is_manual=True)

        assignments = await matcher.get_newsletters_for_category(category.id)

        assert [a.newsletter_id for a in assignments] == ["nl-manual", "nl-auto"]


class TestCategoryLearning:
    """Tests für Decay und Präferenzen"""

    @pytest.mark.parametrize(
        "confidence, expected",
        [(0.9, 0.8), (0.65, 0.55), (0.15, 0.1), (0.1, 0.1)],
    )
    def test_decay_confidence(self, confidence, expected):
        assert decay_confidence(confidence, 0.1, 0.1) == pytest.approx(expected)

    async def test_assign_decays_conflicting_assignments(self, manager, engine, matcher):
        python = await manager.add_category("Python")
        rust = await manager.add_category("Rust")
        go = await manager.add_category("Go")
        await engine.link_newsletter_to_category("nl-1", rust.id, 0.9)
        await engine.link_newsletter_to_category("nl-1", go.id, 0.5)

        await engine.assign("nl-1", python.id, "user-1")

        assignments = {a.category_id: a for a in await matcher.get_categories_for_newsletter("nl-1")}
        assert assignments[python.id].confidence == 1.0
        assert assignments[python.id].is_manual is True
        assert assignments[rust.id].confidence == pytest.approx(0.8)
        assert assignments[rust.id].is_manual is False
        # unter dem Konflikt-Schwellwert: unverändert
        assert assignments[go.id].confidence == pytest.approx(0.5)

    async def test_assign_unknown_category(self, engine):
        with pytest.raises(NotFoundError):
            await engine.assign("nl-1", "missing", "user-1")

    async def test_preferences_are_clamped(self, manager, engine):
        category = await manager.add_category("Python")

        await engine.assign("nl-1", category.id, "user-1")
        await engine.assign("nl-2", category.id, "user-1")
        assert (await engine.learner.get_preferences("user-1"))[category.id] == 1.0

        await engine.remove_assignment("nl-1", category.id, "user-1")
        assert (await engine.learner.get_preferences("user-1"))[category.id] == 0.5

        await engine.remove_assignment("nl-2", category.id, "user-1")
        await engine.remove_assignment("nl-3", category.id, "user-1")
        assert (await engine.learner.get_preferences("user-1"))[category.id] == 0.0


class TestCategoryEngine:
    """Tests für categorize und Sortierung"""

    async def test_categorize(self, manager, engine):
        python = await manager.add_category("Python", keywords=["django", "pandas"])
        await manager.add_category("Cooking", keywords=["recipe"])
        content = models.NewsletterContent(
            newsletter_id="nl-1", title="Python Weekly", text="django pandas"
        )

        categories = await engine.categorize(content)

        assert [c.id for c in categories] == [python.id]

    async def test_categorize_without_match(self, manager, engine):
        await manager.add_category("Cooking", keywords=["recipe"])
        content = models.NewsletterContent(newsletter_id="nl-1", title="Quarterly report")

        assert await engine.categorize(content) == []

    async def test_categories_sorted_by_preference(self, manager, engine):
        a = await manager.add_category("Alpha")
        b = await manager.add_category("Beta")
        c = await manager.add_category("Gamma")

        await engine.assign("nl-1", c.id, "user-1")

        ordered = await engine.get_categories_for_user("user-1")
        assert [cat.id for cat in ordered] == [c.id, a.id, b.id]

        other = await engine.get_categories_for_user("user-2")
        assert [cat.id for cat in other] == [a.id, b.id, c.id]


def test_repeated_decay_never_drops_below_floor():
    confidence = 0.95
    for _ in range(100):
        confidence = decay_confidence(confidence, 0.1, 0.1)

    assert confidence == 0.1


async def test_concurrent_preference_updates(file_session_factory, settings):
    """Test: Parallele Präferenz-Updates gehen nicht verloren"""
    manager = CategoryManager(file_session_factory)
    matcher = CategoryMatcher(file_session_factory, manager)
    learner = CategoryLearner(file_session_factory, matcher, settings.learning)

    await asyncio.gather(*(learner.update_preference("user-1", "cat-1", 0.05) for _ in range(10)))

    assert (await learner.get_preferences("user-1"))["cat-1"] == pytest.approx(0.5)
