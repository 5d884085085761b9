"""Tests for pull request filters."""

from datetime import timedelta

from prnotify.models.schedule import PRFilters
from prnotify.notifications.filters import (
    age_in_days,
    apply_filters,
    describe_filters,
    matches_filters,
    validate_filters,
)
from tests.helpers import NOW, make_pr


class TestAge:
    def test_rounds_down(self):
        pr = make_pr(age_days=2)
        assert age_in_days(pr, NOW + timedelta(hours=23)) == 2

    def test_opened_today(self):
        assert age_in_days(make_pr(age_days=0), NOW) == 0


class TestMatching:
    def test_label_substring_case_insensitive(self):
        pr = make_pr(labels=["Needs-Review", "backend"])
        assert matches_filters(pr, PRFilters(labels=["needs"]), NOW)
        assert not matches_filters(pr, PRFilters(labels=["frontend"]), NOW)

    def test_title_keywords(self):
        pr = make_pr(title="Fix login redirect")
        assert matches_filters(pr, PRFilters(title_keywords=["LOGIN", "oauth"]), NOW)
        assert not matches_filters(pr, PRFilters(title_keywords=["billing"]), NOW)

    def test_excluded_author_is_exact(self):
        pr = make_pr(author="dependabot")
        assert not matches_filters(pr, PRFilters(exclude_authors=["dependabot"]), NOW)
        assert matches_filters(pr, PRFilters(exclude_authors=["dependabot[bot]"]), NOW)

    def test_age_bounds_are_inclusive(self):
        pr = make_pr(age_days=3)
        assert matches_filters(pr, PRFilters(min_age=3, max_age=3), NOW)
        assert not matches_filters(pr, PRFilters(min_age=4), NOW)
        assert not matches_filters(pr, PRFilters(max_age=2), NOW)

    def test_dimensions_are_conjunctive(self):
        pr = make_pr(title="Fix login", labels=["backend"], age_days=5)
        filters = PRFilters(labels=["backend"], title_keywords=["login"], min_age=6)
        assert not matches_filters(pr, filters, NOW)
        filters = PRFilters(labels=["backend"], title_keywords=["login"], min_age=5)
        assert matches_filters(pr, filters, NOW)

    def test_pr_without_labels_fails_label_filter(self):
        assert not matches_filters(make_pr(labels=[]), PRFilters(labels=["bug"]), NOW)


class TestApplyFilters:
    def test_none_is_identity(self):
        prs = [make_pr("1"), make_pr("2")]
        assert apply_filters(prs, None, NOW) == prs

    def test_empty_filters_keep_everything(self):
        prs = [make_pr("1"), make_pr("2")]
        assert apply_filters(prs, PRFilters(), NOW) == prs

    def test_preserves_order(self):
        prs = [make_pr(str(i), author="bot" if i % 2 else "alice") for i in range(6)]
        kept = apply_filters(prs, PRFilters(exclude_authors=["bot"]), NOW)
        assert [pr.id for pr in kept] == ["0", "2", "4"]


class TestValidateFilters:
    def test_valid(self):
        assert validate_filters(PRFilters(min_age=1, max_age=10)) == {}

    def test_negative_ages(self):
        errors = validate_filters(PRFilters(min_age=-1, max_age=-2))
        assert set(errors) == {"pr_filters.min_age", "pr_filters.max_age"}

    def test_min_above_max(self):
        errors = validate_filters(PRFilters(min_age=5, max_age=2))
        assert errors == {"pr_filters.min_age": "min_age cannot be greater than max_age"}


class TestDescribeFilters:
    def test_no_filters(self):
        assert describe_filters(None) == "No filters"
        assert describe_filters(PRFilters()) == "No filters"

    def test_summary(self):
        filters = PRFilters(labels=["bug"], exclude_authors=["bot"], min_age=2)
        assert describe_filters(filters) == "Labels: bug | Excluding: bot | Age: 2+ days"
