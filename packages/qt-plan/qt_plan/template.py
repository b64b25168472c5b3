"""Query templates with exactly one bound substitution point.

A template is written with a single placeholder (``?``, ``%s`` or ``$1``)
outside string literals, quoted identifiers, dollar-quoted bodies and
comments. The value is only ever passed to the driver as a bound parameter;
it is never spliced into the SQL text.

``?`` is also the jsonb key-exists operator. A template that uses it must
mark its substitution point with ``%s`` or ``$1``; bare ``?`` is then read as
the operator.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from .exceptions import TemplateError


_PLACEHOLDERS = ("%s", "$1", "?")
_DOLLAR_TAG = re.compile(r"\$(?:[A-Za-z_][A-Za-z0-9_]*)?\$")


@dataclass(frozen=True)
class QueryTemplate:
    """A validated query template."""

    text: str
    placeholder_offset: int
    placeholder: str

    @classmethod
    def parse(cls, text: str) -> "QueryTemplate":
        """Validate the template and locate its single placeholder.

        Raises:
            TemplateError: if there is not exactly one placeholder.
        """
        sql = text.strip().rstrip(";").strip()
        if not sql:
            raise TemplateError("Query template is empty")

        found = list(_scan_placeholders(sql))
        if any(token != "?" for _, token in found):
            # With %s or $1 present, ? is the jsonb key-exists operator
            found = [(offset, token) for offset, token in found if token != "?"]
        if len(found) != 1:
            raise TemplateError(
                f"Query template must contain exactly one placeholder, found {len(found)}",
                details={"template": sql},
            )
        offset, token = found[0]
        return cls(text=sql, placeholder_offset=offset, placeholder=token)

    def driver_sql(self) -> str:
        """Return the template in psycopg2 pyformat style.

        Literal '%' characters are doubled so the driver does not treat them
        as format markers.
        """
        head = self.text[: self.placeholder_offset].replace("%", "%%")
        tail = self.text[self.placeholder_offset + len(self.placeholder):].replace("%", "%%")
        return f"{head}%s{tail}"


def _is_word_char(ch: str) -> bool:
    return ch.isalnum() or ch in "_$"


def _skip_quoted(sql: str, i: int, backslash_escapes: bool) -> int:
    """Return the index after the literal or identifier opened at sql[i]."""
    quote = sql[i]
    n = len(sql)
    i += 1
    while i < n:
        if backslash_escapes and sql[i] == "\\":
            i += 2
            continue
        if sql[i] == quote:
            # Doubled quotes are escapes
            if i + 1 < n and sql[i + 1] == quote:
                i += 2
                continue
            return i + 1
        i += 1
    return n


def _scan_placeholders(sql: str):
    """Yield (offset, token) for placeholders outside literals and comments.

    Skips '...' literals (E'...' with backslash escapes), "..." identifiers,
    $tag$...$tag$ bodies, and -- and /* */ comments. The jsonb operators
    ?| and ?& are never placeholders; a bare ? always is.
    """
    i = 0
    n = len(sql)
    while i < n:
        ch = sql[i]
        if ch == "'" or ch == '"':
            escaped = (
                ch == "'"
                and i > 0
                and sql[i - 1] in "Ee"
                and (i < 2 or not _is_word_char(sql[i - 2]))
            )
            i = _skip_quoted(sql, i, backslash_escapes=escaped)
            continue
        if sql.startswith("--", i):
            newline = sql.find("\n", i)
            i = n if newline == -1 else newline + 1
            continue
        if sql.startswith("/*", i):
            end = sql.find("*/", i + 2)
            i = n if end == -1 else end + 2
            continue
        if ch == "$" and (i == 0 or not _is_word_char(sql[i - 1])):
            tag = _DOLLAR_TAG.match(sql, i)
            if tag:
                end = sql.find(tag.group(), tag.end())
                i = n if end == -1 else end + len(tag.group())
                continue
        if sql.startswith(("?|", "?&"), i):
            i += 2
            continue
        for token in _PLACEHOLDERS:
            if sql.startswith(token, i):
                # '$1' must not be the prefix of '$10'
                if token == "$1" and i + 2 < n and sql[i + 2].isdigit():
                    break
                yield i, token
                i += len(token) - 1
                break
        i += 1
