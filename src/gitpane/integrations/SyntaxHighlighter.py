# gitpane/integrations/SyntaxHighlighter.py
"""SyntaxHighlighter.py
========================
Pygments-backed tokenisation for the diff and blame views.

Highlighting runs inside the worker that produced the diff or blame, so it
is cancellable like any other backend work: the cancel token is checked
every ``CHECKPOINT_EVERY`` lines. The output is a tuple of
``(colour name, text)`` pairs per line. Colour names are keys of the
``[colors]`` configuration table; the UI turns them into curses attributes.
"""

import logging
from typing import TYPE_CHECKING, Iterable, Optional

from pygments import lex
from pygments.lexer import Lexer
from pygments.lexers import TextLexer, get_lexer_for_filename
from pygments.token import Token, _TokenType
from pygments.util import ClassNotFound

from gitpane.core.Snapshots import Token as StyledSegment


if TYPE_CHECKING:
    from gitpane.core.Jobs import CancelToken


CHECKPOINT_EVERY = 200

# Token type -> colour name. Lookup walks up the token tree, so
# Token.Keyword.Constant resolves through Token.Keyword.
TOKEN_COLOR_NAMES: dict[_TokenType, str] = {
    Token.Keyword: "keyword",
    Token.Operator.Word: "keyword",
    Token.Name.Function: "function",
    Token.Name.Class: "function",
    Token.Name.Decorator: "function",
    Token.Name.Builtin: "keyword",
    Token.Literal.String: "string",
    Token.Literal.String.Doc: "comment",
    Token.Literal.Number: "number",
    Token.Comment: "comment",
    Token.Error: "error",
}


def color_name_for(token_type: _TokenType) -> str:
    current: Optional[_TokenType] = token_type
    while current:
        name = TOKEN_COLOR_NAMES.get(current)
        if name is not None:
            return name
        current = current.parent
    return "default"


class SyntaxHighlighter:
    """Picks a lexer per file name and tokenises individual lines.

    Lexers are cached by file name. Instances are shared between worker
    threads; Pygments lexers hold no per-call state, so that is safe.
    """

    def __init__(self) -> None:
        self._lexers: dict[str, Lexer] = {}
        self._by_class: dict[type, Lexer] = {}

    def lexer_for(self, path: str) -> Lexer:
        # Pygments matches whole names (CMakeLists.txt, Makefile), so the
        # cache key is the base name; instances are shared per lexer class.
        name = path.replace("\\", "/").rsplit("/", 1)[-1]
        lexer = self._lexers.get(name)
        if lexer is not None:
            return lexer
        try:
            lexer = get_lexer_for_filename(name, stripnl=False, ensurenl=False)
        except ClassNotFound:
            logging.debug(f"No lexer for '{path}', using plain text.")
            lexer = TextLexer(stripnl=False, ensurenl=False)
        lexer = self._by_class.setdefault(type(lexer), lexer)
        self._lexers[name] = lexer
        return lexer

    def tokenize_line(self, line: str, lexer: Lexer) -> tuple[StyledSegment, ...]:
        """Tokenises one line into ``(colour name, text)`` segments."""
        if not line:
            return ()
        segments: list[StyledSegment] = []
        try:
            for token_type, text in lex(line, lexer):
                if not text:
                    continue
                name = color_name_for(token_type)
                if segments and segments[-1][0] == name:
                    segments[-1] = (name, segments[-1][1] + text)
                else:
                    segments.append((name, text))
        except Exception as e:
            logging.error(f"Pygments tokenization error for line '{line[:70]}...': {e}")
            return (("default", line),)
        return tuple(segments)

    def tokenize_lines(
        self,
        path: str,
        lines: Iterable[str],
        cancel_token: Optional["CancelToken"] = None,
    ) -> list[tuple[StyledSegment, ...]]:
        """Tokenises ``lines`` of ``path``, stopping if the job is cancelled."""
        lexer = self.lexer_for(path)
        out: list[tuple[StyledSegment, ...]] = []
        for index, line in enumerate(lines):
            if cancel_token is not None and index % CHECKPOINT_EVERY == 0:
                cancel_token.raise_if_cancelled()
            out.append(self.tokenize_line(line, lexer))
        return out
