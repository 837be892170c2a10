"""Tests for MarkdownV2 escaping of model output."""

import pytest

from zaya.bot.markup import escape_special_chars


@pytest.mark.parametrize(
    ("text", "expected"),
    [
        ("Hello, world", "Hello, world"),
        ("`Hello, world!`", "`Hello, world!`"),
        ("\n```Hello, world!\n```", "\n```Hello, world!\n```"),
        ("\n```Hello, `world!`\n```", "\n```Hello, \\`world!\\`\n```"),
        ("**Hello, world!**", "*Hello, world\\!*"),
        ("_Hello, world!_", "\\_Hello, world\\!\\_"),
        ("Hello, `*world*!`", "Hello, `*world*!`"),
        ("\\*Hello, world!*", "\\*Hello, world\\!\\*"),
        ("Hello, **`_world_`**!", "Hello, *`_world_`*\\!"),
        ("\n```Hello, world!", "\n```Hello, world!\n```"),
        ("`Hello`, `world!", "`Hello`, `world!`"),
        ("`Hello**`, **world!", "`Hello**`, *world\\!*"),
        ("This is `code` in a sentence.", "This is `code` in a sentence\\."),
    ],
    ids=[
        "plain",
        "inline-code",
        "code-block",
        "backtick-in-code-block",
        "bold",
        "special-chars",
        "special-chars-in-code",
        "already-escaped",
        "bold-around-code",
        "unclosed-code-block",
        "unclosed-inline-code",
        "unclosed-bold",
        "code-mid-sentence",
    ],
)
def test_escape_special_chars(text: str, expected: str) -> None:
    assert escape_special_chars(text) == expected


def test_backslash_in_code_is_escaped() -> None:
    assert escape_special_chars("`C:\\dir`") == "`C:\\\\dir`"


def test_escaped_backslash_in_code_is_kept() -> None:
    assert escape_special_chars("`a\\\\b`") == "`a\\\\b`"


def test_escaped_star_before_double_star_is_not_bold() -> None:
    assert escape_special_chars("\\**x") == "\\*\\*x"


def test_escaped_closing_double_star_is_literal() -> None:
    # The escaped pair stays literal; bold is closed at the end instead.
    assert escape_special_chars("**a\\**") == "*a\\*\\**"


def test_triple_quote_needs_leading_newline() -> None:
    # Not after a newline: the backticks open and close inline spans instead.
    assert escape_special_chars("```x```") == "```x```"


@pytest.mark.parametrize(
    "text",
    [
        "Hello, world",
        "Escaped \\_under\\_ and \\.dot\\!",
        "\\*stars\\* and \\(parens\\)",
        "`code` and text",
        "\n```\nblock\n```",
    ],
)
def test_idempotent_on_escaped_text(text: str) -> None:
    once = escape_special_chars(text)
    assert escape_special_chars(once) == once


def _unescaped(text: str, char: str) -> int:
    return sum(1 for i, c in enumerate(text) if c == char and (i == 0 or text[i - 1] != "\\"))


@pytest.mark.parametrize(
    "text",
    [
        "**bold `code",
        "`code **bold",
        "**a** **b",
        "``",
        "`",
        "**",
        "plain ** text ` with ** stray ` markers `",
        "\\**x",
        "**a\\**",
        "\\***",
        "**\\***",
    ],
)
def test_output_is_balanced(text: str) -> None:
    result = escape_special_chars(text)
    assert _unescaped(result, "`") % 2 == 0
    outside_code = "".join(part for i, part in enumerate(result.split("`")) if i % 2 == 0)
    assert _unescaped(outside_code, "*") % 2 == 0


def test_unclosed_block_and_span_both_closed() -> None:
    result = escape_special_chars("`x\n```y")
    assert result == "`x\n```y\n```" + "`"
