#     The Certora Prover
#     Copyright (C) 2025  Certora Ltd.
#
#     This program is free software: you can redistribute it and/or modify
#     it under the terms of the GNU General Public License as published by
#     the Free Software Foundation, version 3 of the License.
#
#     This program is distributed in the hope that it will be useful,
#     but WITHOUT ANY WARRANTY; without even the implied warranty of
#     MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the
#     GNU General Public License for more details.
#
#     You should have received a copy of the GNU General Public License
#     along with this program.  If not, see <https://www.gnu.org/licenses/>.


import logging
from dataclasses import dataclass
from typing import List, Optional

from sly import Lexer  # type: ignore[import]
from sly import Parser  # type: ignore[import]
from sly.lex import Token  # type: ignore[import]
from sly.yacc import YaccProduction  # type: ignore[import]

from Shared import verifierUtils as Util

imports_logger = logging.getLogger("imports")


class ImportParseError(Util.VerifierUserInputError):
    pass


@dataclass(frozen=True)
class ImportDirective:
    path: str  # the imported path as written in the source, possibly relative
    location: str  # line:column of the import keyword


class SolidityImportLexer(Lexer):
    """
        A lexer that creates designated tokens for 'import' and 'from' keywords and string literals in a Solidity
        source. Identifiers and everything else are passed on in coarse chunks.
    """

    def __init__(self, source_name: str, source_content: str):
        self.source_name = source_name
        self.source_content = source_content

    tokens = {ANY, FROM, IMPORT, STRING, WORD}  # type: ignore # noqa: F821

    ignore = ' \t\r'

    # Ignore comments; in particular, ignore commented out imports
    ignore_comments_a = r'[/][/][^\n]*'

    @_(r'[/][*][\s\S]*?[*][/]')  # type: ignore # noqa: F821
    def ignore_comments_b(self, t: Token) -> None:
        self.lineno += t.value.count("\n")

    @_(r'"(?:[^"\\\n]|\\.)*"', r"'(?:[^'\\\n]|\\.)*'")  # type: ignore # noqa: F821
    def STRING(self, t: Token) -> Token:  # Extract the characters of the string literal, e.g., '"abc"' --> 'abc'
        t.value = t.value[1:-1]
        return t

    WORD = r'[a-zA-Z_$][a-zA-Z0-9_$]*'
    WORD['import'] = IMPORT  # type: ignore # noqa: F821
    WORD['from'] = FROM  # type: ignore # noqa: F821

    ANY = r'[^a-zA-Z_$"\'/\s]+|.'  # Default: Characters that have nothing to do with import directives

    @_(r'\n+')  # type: ignore # noqa: F821
    def ignore_newline(self, t: Token) -> None:  # Ignore new line characters; use those to compute the line number
        self.lineno += len(t.value)

    def error(self, t: Token) -> None:
        raise ImportParseError(f'{self.source_name}:{self.lineno}:{self.find_column(t.index)}: '
                               f'Encountered the illegal symbol {repr(t.value[0])}')

    # Computes the column number from the given token's index
    def find_column(self, token_index: int) -> int:
        last_cr = self.source_content.rfind('\n', 0, token_index)
        if last_cr < 0:
            last_cr = 0
        column = (token_index - last_cr) + 1
        return column


class SolidityImportParser(Parser):
    """
        A parser for the import directives of a Solidity source:
            import "path";
            import "path" as Alias;
            import * as Alias from "path";
            import {A, B as C} from "path";
        Everything that is not an import directive is skipped. The directives found are collected in `imports`, so a
        syntax error recovered from later in the file does not lose them.
    """

    def __init__(self, _lexer: SolidityImportLexer):
        self.lexer = _lexer
        self.imports: List[ImportDirective] = []
        self.parse_error_msgs: List[str] = []

    # Get the token list from the lexer (required)
    tokens = SolidityImportLexer.tokens

    @_('items item')  # type: ignore # noqa: F821,F811
    def items(self, p: YaccProduction) -> None:
        return None

    @_('')  # type: ignore # noqa: F821,F811
    def items(self, p: YaccProduction) -> None:  # noqa: F821,F811
        return None

    @_('ANY', 'WORD', 'STRING', 'FROM', 'import_directive')  # type: ignore # noqa: F821,F811
    def item(self, p: YaccProduction) -> None:
        return None

    @_('IMPORT STRING')  # type: ignore # noqa: F821,F811
    def import_directive(self, p: YaccProduction) -> None:
        self.__add_import(p.STRING, p.lineno, p.index)

    @_('IMPORT symbols FROM STRING')  # type: ignore # noqa: F821,F811
    def import_directive(self, p: YaccProduction) -> None:  # noqa: F821,F811
        self.__add_import(p.STRING, p.lineno, p.index)

    @_('symbols symbol', 'symbol')  # type: ignore # noqa: F821,F811
    def symbols(self, p: YaccProduction) -> None:
        return None

    @_('ANY', 'WORD')  # type: ignore # noqa: F821,F811
    def symbol(self, p: YaccProduction) -> None:
        return None

    def __add_import(self, path: str, lineno: int, index: int) -> None:
        self.imports.append(ImportDirective(path, f'{lineno}:{self.lexer.find_column(index)}'))

    def error(self, p: Optional[Token]) -> Optional[Token]:
        if p is None:
            self.parse_error_msgs.append(f'{self.lexer.source_name}: unexpected end of file')
            return None
        self.parse_error_msgs.append(fr'{self.lexer.source_name}:{p.lineno}:{self.lexer.find_column(p.index)}: '
                                     fr'Did not expect the symbol {repr(p.value)}')
        # Read ahead looking for an 'import' keyword, starting from the unexpected symbol itself.
        # If such a keyword is found, restart the parser in its initial state
        while p is not None and p.type != 'IMPORT':
            p = next(self.tokens, None)  # type: ignore[call-overload]
        self.restart()
        return p  # Return IMPORT as the next lookahead token


def parse_imports(source_name: str, source_content: str) -> List[ImportDirective]:
    """
    @param source_name: the source path, for error messages
    @param source_content: Solidity source code
    @return: the import directives of the source, in the order they appear
    """
    lexer = SolidityImportLexer(source_name, source_content)
    parser = SolidityImportParser(lexer)
    parser.parse(lexer.tokenize(source_content))
    for msg in parser.parse_error_msgs:
        imports_logger.debug(f"Import parsing: {msg}")
    return parser.imports
