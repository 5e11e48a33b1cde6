"""Tests for the note search engine against a Bear-shaped database."""

import sqlite3

import pytest
import pytest_asyncio

from bearnotes.bear_database import core_data_to_datetime
from bearnotes.container import create_services
from bearnotes.errors import ValidationError
from bearnotes.models import (
    FullTextSearchOptions,
    NoteCriteria,
    NoteQueryOptions,
    SearchField,
    SortField,
    SortOrder,
)
from bearnotes.search_engine import escape_like


class TestFullTextSearch:
    """Test relevance-ranked search."""

    @pytest.mark.asyncio
    async def test_best_match_first(self, services):
        results = await services.search.search_notes_full_text("project plan")

        assert results[0].id == 1
        assert results[0].snippets
        assert results[0].relevance_score > results[-1].relevance_score

    @pytest.mark.asyncio
    async def test_trashed_and_archived_excluded_by_default(self, services):
        results = await services.search.search_notes_full_text("project")
        ids = {r.id for r in results}

        assert 5 not in ids
        assert 6 not in ids

        options = FullTextSearchOptions(include_archived=True, include_trashed=True)
        ids = {r.id for r in await services.search.search_notes_full_text("project", options)}
        assert {5, 6} <= ids

    @pytest.mark.asyncio
    async def test_search_fields(self, services):
        """Restricting to titles ignores content matches."""
        title_only = FullTextSearchOptions(search_fields=[SearchField.TITLE])
        content_only = FullTextSearchOptions(search_fields=[SearchField.CONTENT])

        assert await services.search.search_notes_full_text("budget", title_only) == []
        results = await services.search.search_notes_full_text("budget", content_only)
        assert [r.id for r in results] == [2]

    @pytest.mark.asyncio
    async def test_tag_filter(self, services):
        options = FullTextSearchOptions(tags=["ml"])

        results = await services.search.search_notes_full_text("training", options)

        assert [r.id for r in results] == [3]

    @pytest.mark.asyncio
    async def test_date_filter(self, services):
        options = FullTextSearchOptions(date_from=core_data_to_datetime(700000250.0))

        assert [r.id for r in await services.search.search_notes_full_text("pancakes", options)] == [4]
        assert await services.search.search_notes_full_text("project", options) == []

    @pytest.mark.asyncio
    async def test_limit_applied_after_ranking(self, services):
        results = await services.search.search_notes_full_text(
            "project plan", FullTextSearchOptions(limit=1)
        )

        assert [r.id for r in results] == [1]

    @pytest.mark.asyncio
    async def test_fuzzy_search_finds_typo(self, services):
        plain = await services.search.search_notes_full_text("pancakse")
        fuzzy = await services.search.search_notes_full_text(
            "pancakse", FullTextSearchOptions(fuzzy_match=True)
        )

        assert plain == []
        assert fuzzy[0].id == 4

    @pytest.mark.asyncio
    async def test_repeated_search_served_from_cache(self, services):
        await services.search.search_notes_full_text("project")
        hits_before = services.cache.stats().hits

        await services.search.search_notes_full_text("project")

        assert services.cache.stats().hits == hits_before + 1


class TestLimits:
    """Test limit resolution."""

    @pytest.mark.asyncio
    async def test_default_and_ceiling(self, services):
        assert services.search.resolve_limit(None) == 20
        assert services.search.resolve_limit(500) == 100
        assert services.search.resolve_limit(5) == 5

    @pytest.mark.asyncio
    async def test_non_positive_limit_rejected(self, services):
        with pytest.raises(ValidationError):
            services.search.resolve_limit(0)


class TestSuggestions:
    """Test auto-complete suggestions."""

    @pytest.mark.asyncio
    async def test_suggestions_by_field(self, services):
        suggestions = await services.search.get_search_suggestions("pro")

        assert suggestions.terms == ["project"]
        assert suggestions.titles == ["Project Plan"]
        assert suggestions.tags == []

    @pytest.mark.asyncio
    async def test_tag_prefix(self, services):
        suggestions = await services.search.get_search_suggestions("work")

        assert suggestions.tags == ["work", "work/projects"]

    @pytest.mark.asyncio
    async def test_limits_and_matching_rules(self, services):
        """Every list respects the limit and its field's matching rule."""
        for prefix in ("p", "m", "e", "work", "pl"):
            suggestions = await services.search.get_search_suggestions(prefix, limit=1)

            assert len(suggestions.terms) <= 1
            assert len(suggestions.titles) <= 1
            assert len(suggestions.tags) <= 1
            assert all(term.startswith(prefix) for term in suggestions.terms)
            assert all(prefix in title.lower() for title in suggestions.titles)
            assert all(tag.lower().startswith(prefix) for tag in suggestions.tags)

    @pytest.mark.asyncio
    async def test_wildcards_are_literal(self, services):
        suggestions = await services.search.get_search_suggestions("%")

        assert suggestions.titles == []
        assert suggestions.tags == []

    @pytest.mark.asyncio
    async def test_trashed_titles_not_suggested(self, services):
        suggestions = await services.search.get_search_suggestions("trashed")

        assert suggestions.titles == []

    def test_escape_like(self):
        assert escape_like("50%_off\\") == "50\\%\\_off\\\\"


class TestSimilarNotes:
    """Test similar-note search."""

    @pytest.mark.asyncio
    async def test_find_similar(self, services):
        results = await services.search.find_similar_notes("machine learning models training")

        assert [r.id for r in results] == [3]
        assert results[0].similarity_score == 0.5

    @pytest.mark.asyncio
    async def test_exclude_note(self, services):
        results = await services.search.find_similar_notes(
            "machine learning models training", exclude_note_id=3
        )

        assert results == []

    @pytest.mark.asyncio
    async def test_no_keywords(self, services):
        assert await services.search.find_similar_notes("the a an") == []


class TestRelatedNotes:
    """Test related-note lookup."""

    @pytest.mark.asyncio
    async def test_related_by_tags_and_content(self, services):
        related = await services.search.get_related_notes(1)

        assert [n.id for n in related.by_tags] == [2, 5]
        assert related.by_content[0].id == 5
        assert 1 not in {r.id for r in related.by_content}
        assert 6 not in {r.id for r in related.by_content}

    @pytest.mark.asyncio
    async def test_missing_note(self, services):
        related = await services.search.get_related_notes(999)

        assert related.by_tags == []
        assert related.by_content == []


class TestAdvancedQueries:
    """Test filtered listings."""

    @pytest.mark.asyncio
    async def test_defaults(self, services):
        """Trashed, archived and encrypted notes are hidden, newest first."""
        notes = await services.search.get_notes_advanced()

        assert [n.id for n in notes] == [1, 2, 3, 4]

    @pytest.mark.asyncio
    async def test_sort_by_title(self, services):
        options = NoteQueryOptions(sort_by=SortField.TITLE, sort_order=SortOrder.ASC)

        notes = await services.search.get_notes_advanced(options)

        assert [n.id for n in notes] == [3, 2, 4, 1]

    @pytest.mark.asyncio
    async def test_pagination(self, services):
        notes = await services.search.get_notes_advanced(NoteQueryOptions(limit=2, offset=1))

        assert [n.id for n in notes] == [2, 3]

    @pytest.mark.asyncio
    async def test_offset_without_limit(self, services):
        notes = await services.search.get_notes_advanced(NoteQueryOptions(offset=3))

        assert [n.id for n in notes] == [4]

    @pytest.mark.asyncio
    async def test_tag_include_and_exclude(self, services):
        included = await services.search.get_notes_advanced(NoteQueryOptions(tags=["work"]))
        excluded = await services.search.get_notes_advanced(NoteQueryOptions(exclude_tags=["work"]))

        assert [n.id for n in included] == [1, 2]
        assert [n.id for n in excluded] == [3, 4]

    @pytest.mark.asyncio
    async def test_include_encrypted(self, services):
        notes = await services.search.get_notes_advanced(NoteQueryOptions(include_encrypted=True))

        assert 7 in {n.id for n in notes}

    @pytest.mark.asyncio
    async def test_search_notes(self, services):
        assert [n.id for n in await services.search.search_notes("budget")] == [2]
        assert await services.search.search_notes("%") == []


class TestCriteriaQueries:
    """Test multi-criteria listings."""

    @pytest.mark.asyncio
    async def test_any_tags(self, services):
        notes = await services.search.get_notes_with_criteria(
            NoteCriteria(has_any_tags=["ml", "cooking"])
        )

        assert [n.id for n in notes] == [3, 4]

    @pytest.mark.asyncio
    async def test_all_tags(self, services):
        notes = await services.search.get_notes_with_criteria(
            NoteCriteria(has_all_tags=["work", "work/projects"])
        )

        assert [n.id for n in notes] == [1]

    @pytest.mark.asyncio
    async def test_status_flags(self, services):
        pinned = await services.search.get_notes_with_criteria(NoteCriteria(is_pinned=True))
        archived = await services.search.get_notes_with_criteria(NoteCriteria(is_archived=True))

        assert [n.id for n in pinned] == [1]
        assert [n.id for n in archived] == [5]

    @pytest.mark.asyncio
    async def test_title_any_of(self, services):
        notes = await services.search.get_notes_with_criteria(
            NoteCriteria(title_contains=["recipe", "secret"])
        )

        assert [n.id for n in notes] == [4, 7]

    @pytest.mark.asyncio
    async def test_max_length(self, services):
        notes = await services.search.get_notes_with_criteria(NoteCriteria(max_length=40))

        assert [n.id for n in notes] == [4, 5, 6, 7]


class TestNonAsciiCaseFolding:
    """Case-insensitive matching folds accented capitals too."""

    @pytest_asyncio.fixture
    async def eclair_services(self, app_config, url_client):
        conn = sqlite3.connect(app_config.database.bear_db_path)
        conn.execute(
            "INSERT INTO ZSFNOTE VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (
                8,
                "UUID-8",
                "Éclair recipe",
                "Choux pastry filled with CRÈME pâtissière. Makes 12 Éclairs.",
                700000000.0,
                700000000.0,
                0, 0, 0, 0,
            ),
        )  # fmt: skip
        conn.commit()
        conn.close()

        bear_services = create_services(app_config, url_client=url_client)
        await bear_services.initialize()

        yield bear_services

        await bear_services.dispose()

    @pytest.mark.asyncio
    async def test_full_text_search(self, eclair_services):
        lower = await eclair_services.search.search_notes_full_text("éclair")
        upper = await eclair_services.search.search_notes_full_text("ÉCLAIR")

        assert [r.id for r in lower] == [8]
        assert [r.id for r in upper] == [8]
        assert lower[0].title_matches == 1

    @pytest.mark.asyncio
    async def test_similar_notes(self, eclair_services):
        results = await eclair_services.search.find_similar_notes(
            "Crème brûlée", min_similarity=0.1
        )

        assert [r.id for r in results] == [8]
        assert results[0].common_keywords == ["crème"]

    @pytest.mark.asyncio
    async def test_title_suggestions(self, eclair_services):
        suggestions = await eclair_services.search.get_search_suggestions("écl")

        assert suggestions.titles == ["Éclair recipe"]

    @pytest.mark.asyncio
    async def test_simple_search(self, eclair_services):
        notes = await eclair_services.search.search_notes("ÉCLAIR")

        assert [n.id for n in notes] == [8]
