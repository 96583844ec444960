import argparse
import os

from prompt_toolkit import PromptSession
from prompt_toolkit.history import FileHistory
from prompt_toolkit.lexers import PygmentsLexer
from pygments.util import ClassNotFound

from stackforth import forth
from stackforth.syntax import ForthLexer, highlight

HISTORY_PATH = os.path.join(os.path.expanduser('~'), '.stackforth_history')


def format_stack(stack):
    return '<{}> {}'.format(len(stack), ' '.join(str(value) for value in stack)).rstrip()


def repl(interpreter=None, session=None):
    if interpreter is None:
        interpreter = forth.Interpreter()
    if session is None:
        session = PromptSession(history=FileHistory(HISTORY_PATH), lexer=PygmentsLexer(ForthLexer))

    # the dictionary and stack live for the whole session
    while True:
        try:
            line = session.prompt('forth> ')
        except (EOFError, KeyboardInterrupt):
            break

        interpreter.interpret_line(line)
        interpreter.write(' ok {}\n'.format(format_stack(interpreter.stack)))

    return interpreter


def cli_main(argv=None):
    parser = argparse.ArgumentParser(
        description='Interactive Forth interpreter',
        prog='stackforth-repl',
    )
    parser.add_argument('stack_size', type=int, nargs='?', default=forth.DEFAULT_STACK_SIZE,
        help='stack size in bytes (default {})'.format(forth.DEFAULT_STACK_SIZE))
    parser.add_argument('--highlight', type=str, metavar='FILE', help='print a source file with syntax highlighting and exit')
    parser.add_argument('--style', type=str, default='default', help='pygments style for highlighting (default "default")')
    args = parser.parse_args(argv)

    if args.highlight:
        if not os.path.exists(args.highlight):
            raise SystemExit('missing input file: {}'.format(args.highlight))
        with open(args.highlight) as f:
            source = f.read()
        try:
            highlight(source, args.style)
        except ClassNotFound:
            raise SystemExit('unknown style: {}'.format(args.style))
        return

    if args.stack_size < 0:
        raise SystemExit('invalid stack size: {}'.format(args.stack_size))

    repl(forth.Interpreter(args.stack_size))


if __name__ == '__main__':
    cli_main()
