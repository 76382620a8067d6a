"""Tests for parse_search and SearchCriteria."""

import pytest

from myblog.search import SearchCriteria, parse_search


class TestBlankInput:
    @pytest.mark.parametrize("raw", [None, "", "   ", "\t\n "])
    def test_blank_yields_empty_criteria(self, raw) -> None:
        criteria = parse_search(raw)
        assert criteria.has_query is False
        assert criteria.query == ""
        assert criteria.has_tags is False
        assert criteria.tags == ()


class TestTokens:
    def test_plain_words_keep_order_and_case(self) -> None:
        criteria = parse_search("  Hello   World\tAgain ")
        assert criteria.has_query is True
        assert criteria.query == "Hello World Again"
        assert criteria.has_tags is False

    def test_tags_only(self) -> None:
        criteria = parse_search("#Java #Spring")
        assert criteria.has_query is False
        assert criteria.query == ""
        assert criteria.has_tags is True
        assert criteria.tags == ("java", "spring")

    def test_tags_are_deduplicated_case_insensitively(self) -> None:
        assert parse_search("#Java #java #JAVA").tags == ("java",)

    def test_tag_order_follows_first_occurrence(self) -> None:
        assert parse_search("#b #a #B #c").tags == ("b", "a", "c")

    def test_mixed_query_and_tags(self) -> None:
        criteria = parse_search("Spring #Java boot   #Web")
        assert criteria.query == "Spring boot"
        assert criteria.tags == ("java", "web")
        assert criteria.tag_count == 2

    def test_hash_inside_word_is_plain_text(self) -> None:
        criteria = parse_search("C# guide")
        assert criteria.query == "C# guide"
        assert criteria.has_tags is False

    def test_lone_hash_becomes_empty_tag(self) -> None:
        criteria = parse_search("java #")
        assert criteria.query == "java"
        assert criteria.has_tags is True
        assert criteria.tags == ("",)


class TestReparse:
    @pytest.mark.parametrize("raw", ["Java  Tutorial #spring", "#only #tags", "plain"])
    def test_reparsing_query_projection_is_stable(self, raw) -> None:
        first = parse_search(raw)
        second = parse_search(first.query)
        assert second.query == first.query
        assert second.has_query == first.has_query
        assert second.has_tags is False


class TestCriteriaInvariants:
    def test_default_is_empty(self) -> None:
        assert SearchCriteria() == parse_search(None)

    def test_inconsistent_query_flag_rejected(self) -> None:
        with pytest.raises(ValueError, match="has_query"):
            SearchCriteria(has_query=True, query="")

    def test_inconsistent_tags_flag_rejected(self) -> None:
        with pytest.raises(ValueError, match="has_tags"):
            SearchCriteria(has_tags=False, tags=("java",))
