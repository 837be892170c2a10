"""Escape model output for Telegram MarkdownV2."""

from __future__ import annotations

# Characters MarkdownV2 treats as markup outside code spans.
SPECIAL_CHARS = "_^*[]()~>#+-|{}.!="

TRIPLE_QUOTE = "```"


def escape_special_chars(s: str) -> str:
    """Rewrite free-form model text into MarkdownV2.

    Code blocks (a "```" right after a newline) and inline code spans are
    kept, with stray backticks and backslashes inside them escaped.
    ``**bold**`` becomes ``*bold*``. Any other markup character outside code
    is escaped unless it already is. Regions still open at the end of the
    text are closed, so the result never has unbalanced markers.
    """
    result: list[str] = []
    in_triple_quote = False
    in_back_quote = False
    is_bold = False
    n = len(s)

    i = 0
    while i < n:
        c = s[i]
        prev = s[i - 1] if i > 0 else ""

        if c == "`":
            if s.startswith(TRIPLE_QUOTE, i) and prev == "\n":
                in_triple_quote = not in_triple_quote
                result.append(TRIPLE_QUOTE)
                i += 2
            elif not in_triple_quote and prev != "\\":
                in_back_quote = not in_back_quote
                result.append(c)
            else:
                if in_triple_quote and prev != "\\":
                    result.append("\\")
                result.append(c)
        elif c == "\\" and (in_triple_quote or in_back_quote):
            nxt = s[i + 1] if i + 1 < n else ""
            if prev != "\\" and nxt not in ("\\", "`"):
                result.append("\\")
            result.append(c)
        elif (
            c == "*"
            and prev != "\\"
            and i + 1 < n
            and s[i + 1] == "*"
            and not in_triple_quote
            and not in_back_quote
        ):
            is_bold = not is_bold
            result.append("*")
            i += 1
        elif not in_triple_quote and not in_back_quote and c in SPECIAL_CHARS:
            if prev != "\\":
                result.append("\\")
            result.append(c)
        else:
            result.append(c)
        i += 1

    if in_triple_quote:
        result.append("\n" + TRIPLE_QUOTE)
    if in_back_quote:
        result.append("`")
    if is_bold:
        result.append("*")

    return "".join(result)
