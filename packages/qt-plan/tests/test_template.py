"""Tests for query template validation and driver binding."""

import pytest

from qt_plan.exceptions import TemplateError
from qt_plan.template import QueryTemplate


class TestParse:
    @pytest.mark.parametrize("text,token", [
        ("SELECT * FROM employee_simple WHERE department = ?", "?"),
        ("SELECT * FROM employee_simple WHERE department = %s", "%s"),
        ("SELECT * FROM employee_simple WHERE department = $1", "$1"),
    ])
    def test_placeholder_styles(self, text, token):
        template = QueryTemplate.parse(text)
        assert template.placeholder == token
        assert template.text[template.placeholder_offset:].startswith(token)

    def test_trailing_semicolon_stripped(self):
        template = QueryTemplate.parse("  SELECT 1 WHERE 1 = ?;  \n")
        assert template.text == "SELECT 1 WHERE 1 = ?"

    @pytest.mark.parametrize("text", [
        "SELECT * FROM employee_simple",
        "SELECT * FROM t WHERE a = ? AND b = ?",
        "SELECT * FROM t WHERE a = $1 OR b = $1",
        "",
        "   ;",
    ])
    def test_wrong_placeholder_count(self, text):
        with pytest.raises(TemplateError):
            QueryTemplate.parse(text)

    def test_template_error_is_value_error(self):
        with pytest.raises(ValueError):
            QueryTemplate.parse("SELECT 1")

    def test_placeholders_in_literals_and_comments_ignored(self):
        text = (
            "SELECT '?' AS q, \"odd?col\" -- where x = ?\n"
            "FROM t /* $1 %s */ WHERE note = 'it''s ?' AND dept = ?"
        )
        template = QueryTemplate.parse(text)
        assert template.placeholder == "?"
        assert template.placeholder_offset == text.rindex("?")

    def test_dollar_ten_is_not_dollar_one(self):
        with pytest.raises(TemplateError):
            QueryTemplate.parse("SELECT * FROM t WHERE a = $10")

    @pytest.mark.parametrize("text", [
        "SELECT $$ a = ? $$ AS body FROM t WHERE dept = ?",
        "SELECT $fn$ it's ? $$ nested $fn$ AS body FROM t WHERE dept = ?",
        "SELECT E'it\\'s ?' AS note FROM t WHERE dept = ?",
    ])
    def test_dollar_quotes_and_escape_strings_skipped(self, text):
        template = QueryTemplate.parse(text)
        assert template.placeholder_offset == text.rindex("?")

    def test_jsonb_operators_with_explicit_placeholder(self):
        text = "SELECT * FROM t WHERE attrs ? 'manager' AND tags ?| array['a'] AND dept = %s"
        template = QueryTemplate.parse(text)
        assert template.placeholder == "%s"
        assert template.driver_sql().endswith("dept = %s")

    def test_jsonb_any_and_all_are_not_placeholders(self):
        text = "SELECT * FROM t WHERE tags ?& array['a'] AND dept = ?"
        template = QueryTemplate.parse(text)
        assert template.placeholder == "?"
        assert template.placeholder_offset == text.rindex("?")


class TestDriverSql:
    def test_question_mark_becomes_pyformat(self):
        template = QueryTemplate.parse("SELECT * FROM employee_simple WHERE department = ?")
        assert template.driver_sql() == "SELECT * FROM employee_simple WHERE department = %s"

    def test_dollar_placeholder(self):
        template = QueryTemplate.parse("SELECT * FROM t WHERE id = $1")
        assert template.driver_sql() == "SELECT * FROM t WHERE id = %s"

    def test_literal_percent_escaped(self):
        template = QueryTemplate.parse("SELECT * FROM t WHERE name LIKE 'A%' AND dept = ?")
        assert template.driver_sql() == "SELECT * FROM t WHERE name LIKE 'A%%' AND dept = %s"

    def test_value_never_in_sql(self):
        template = QueryTemplate.parse("SELECT * FROM t WHERE dept = %s")
        assert "Sales" not in template.driver_sql()
