"""
Unit tests for the fluent query builder.

Tests the QueryBuilder class to ensure:
- Clauses render in SQL order regardless of call order
- Values are bound to $n markers and never interpolated into the SQL text
- Marker numbering follows WHERE values, then LIMIT, then OFFSET
- A builder cannot be extended once built
"""
import pytest

from task_monitor.core.errors import MissingClauseError, QueryBuilderSealedError
from task_monitor.core.query_builder import QueryBuilder, query


class TestQueryRendering:
    """Tests for build() output."""

    def test_select_from_where_order_limit_offset(self):
        """
        GIVEN a builder with one WHERE value, an ORDER BY, LIMIT and OFFSET
        WHEN build is called
        THEN markers are $1 < $2 < $3 and params follow the same order
        """
        sql, params = (
            query()
            .select(["id", "state"])
            .from_("jobs")
            .where("state = ?", "done")
            .order_by("id", "DESC")
            .limit(10)
            .offset(5)
            .build()
        )

        assert sql == (
            "SELECT id, state FROM jobs WHERE state = $1 "
            "ORDER BY id DESC LIMIT $2 OFFSET $3"
        )
        assert params == ["done", 10, 5]

    def test_clause_order_is_independent_of_call_order(self):
        sql, params = (
            query()
            .offset(20)
            .limit(10)
            .where("user_id = ?", "user-1")
            .from_("jobs")
            .select("id")
            .build()
        )

        assert sql == "SELECT id FROM jobs WHERE user_id = $1 LIMIT $2 OFFSET $3"
        assert params == ["user-1", 10, 20]

    def test_multiple_where_conditions_are_anded(self):
        sql, params = (
            query()
            .select("id")
            .from_("jobs")
            .where("state = ?", "failed")
            .where("user_id = ?", "user-2")
            .build()
        )

        assert sql == "SELECT id FROM jobs WHERE state = $1 AND user_id = $2"
        assert params == ["failed", "user-2"]

    def test_static_condition_binds_no_parameter(self):
        sql, params = (
            query()
            .select("id")
            .from_("jobs")
            .where("reported IS NULL")
            .where("state = ?", "done")
            .build()
        )

        assert sql == "SELECT id FROM jobs WHERE reported IS NULL AND state = $1"
        assert params == ["done"]

    def test_none_is_bound_as_a_value(self):
        sql, params = query().select("id").from_("jobs").where("error = ?", None).build()

        assert sql == "SELECT id FROM jobs WHERE error = $1"
        assert params == [None]

    def test_repeated_placeholder_shares_one_marker(self):
        sql, params = (
            query()
            .select("*")
            .from_("task_deps")
            .where("job_id = ?", 7)
            .where("(pre_task_id = ? OR post_task_id = ?)", "a")
            .build()
        )

        assert sql == (
            "SELECT * FROM task_deps WHERE job_id = $1 "
            "AND (pre_task_id = $2 OR post_task_id = $2)"
        )
        assert params == [7, "a"]

    def test_values_are_never_interpolated(self):
        hostile = "x'; DROP TABLE jobs; --"

        sql, params = query().select("id").from_("jobs").where("user_id = ?", hostile).build()

        assert hostile not in sql
        assert params == [hostile]

    def test_join_group_by_and_multiple_order_by(self):
        sql, params = (
            query()
            .select(["j.id", "COUNT(t.task_id) AS task_count"])
            .from_("jobs j")
            .join("tasks t", "j.id = t.job_id")
            .join("task_deps d", "d.job_id = j.id", kind="inner")
            .group_by("j.id")
            .group_by(["j.state"])
            .order_by("j.state", "asc")
            .order_by("j.id", "DESC")
            .build()
        )

        assert sql == (
            "SELECT j.id, COUNT(t.task_id) AS task_count FROM jobs j "
            "LEFT JOIN tasks t ON j.id = t.job_id "
            "INNER JOIN task_deps d ON d.job_id = j.id "
            "GROUP BY j.id, j.state "
            "ORDER BY j.state ASC, j.id DESC"
        )
        assert params == []

    def test_limit_without_offset(self):
        sql, params = query().select("id").from_("streams").limit(1).build()

        assert sql == "SELECT id FROM streams LIMIT $1"
        assert params == [1]


class TestQueryBuilderMisuse:
    """Tests for invalid builder usage."""

    def test_build_without_select_raises(self):
        with pytest.raises(MissingClauseError):
            QueryBuilder().from_("jobs").build()

    def test_invalid_sort_direction_raises(self):
        with pytest.raises(ValueError):
            query().select("id").order_by("id", "SIDEWAYS")

    def test_builder_is_sealed_after_build(self):
        """
        GIVEN a builder that has been built
        WHEN another clause is added
        THEN QueryBuilderSealedError is raised and the statement is unchanged
        """
        builder = query().select("id").from_("jobs").where("state = ?", "done")
        first = builder.build()

        with pytest.raises(QueryBuilderSealedError):
            builder.where("user_id = ?", "user-1")
        with pytest.raises(QueryBuilderSealedError):
            builder.limit(5)

        assert builder.build() == first

    def test_query_returns_fresh_builders(self):
        first = query().select("id").from_("jobs").where("state = ?", "done")
        second = query().select("id").from_("jobs")

        assert first is not second
        assert second.build() == ("SELECT id FROM jobs", [])
