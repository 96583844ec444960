import re

import pygments
from pygments.lexer import bygroups, RegexLexer, words
from pygments.styles import get_style_by_name
from pygments.token import Keyword, Name, Number, Operator, Punctuation, String, Text

from prompt_toolkit import print_formatted_text
from prompt_toolkit.formatted_text import PygmentsTokens
from prompt_toolkit.styles import style_from_pygments_cls

from stackforth import forth

# References:
# https://python-prompt-toolkit.readthedocs.io/en/master/pages/printing_text.html
# https://pygments.org/docs/lexerdevelopment/
# https://pygments.org/docs/tokens/

# a word only matches when it is a whole token
BEFORE = r'(?<!\S)'
AFTER = r'(?!\S)'

SYMBOLS = list(forth.ARITHMETIC_WORDS) + ['=', '<', '>', '.']
NAMED_BUILTINS = [w for w in list(forth.STACK_WORDS) + list(forth.OUTPUT_WORDS) + list(forth.BOOLEAN_WORDS)
                  if w not in SYMBOLS]


class ForthLexer(RegexLexer):
    name = 'Forth'
    aliases = ['stackforth']
    filenames = ['*.fth']
    flags = re.IGNORECASE

    symbols = SYMBOLS
    builtins = NAMED_BUILTINS
    conditionals = list(forth.CONDITIONAL_WORDS)

    tokens = {
        'root': [
            (r'\s+', Text),  # whitespace
            (r'\.\"[^"]*"?', String),  # print literals
            (r'(:)(\s+)(\S+)', bygroups(Punctuation, Text, Name.Function)),  # definition and name
            (BEFORE + r';' + AFTER, Punctuation),  # definition end
            (words(conditionals, prefix=BEFORE, suffix=AFTER), Keyword),  # conditionals
            (words(builtins, prefix=BEFORE, suffix=AFTER), Name.Builtin),  # stack / output / boolean
            (words(symbols, prefix=BEFORE, suffix=AFTER), Operator),  # arithmetic and comparisons
            (r'[+-]?[0-9]+' + AFTER, Number),  # numbers
            (r'\S+', Name),  # user words
        ],
    }


def lex(source):
    return list(pygments.lex(source, lexer=ForthLexer()))


def highlight(source, style='default'):
    style = style_from_pygments_cls(get_style_by_name(style))
    print_formatted_text(PygmentsTokens(lex(source)), style=style, include_default_pygments_style=False)
