import abc
import argparse
import logging
import os
import re
import sys

# Python Cookbook: Section 13.12
log = logging.getLogger(__name__)
log.addHandler(logging.NullHandler())


# stack size is given in bytes, each cell takes two of them
DEFAULT_STACK_SIZE = 128 * 1024  # 128K
CELL_SIZE = 2
CELL_BITS = 16
CELL_MIN = -2**15
CELL_MAX = 2**15 - 1

STACK_REST_PATHNAME = 'stack.fth'

TRUE = -1
FALSE = 0


# low-level funcs raise ForthErrors, the interpreter reports them and moves on
class ForthError(Exception):

    tag = 'error'

    def __init__(self, message=None, line=None):
        super().__init__(message or self.tag)
        self.message = message
        self.line = line

    def __str__(self):
        return self.tag


class StackUnderflow(ForthError):
    tag = 'stack-underflow'


class StackOverflow(ForthError):
    tag = 'stack-overflow'


class InvalidWord(ForthError):
    tag = 'invalid-word'


class DivisionByZero(ForthError):
    tag = 'division-by-zero'


class UnknownWord(ForthError):
    tag = '?'


class GenericError(ForthError):
    tag = '[ERROR]'

    def __str__(self):
        return '{}: {}'.format(self.tag, self.message)


def describe_line(line):
    if line is None:
        return '<unknown>'
    return 'file {}, line {}'.format(os.path.basename(line.file), line.number)


def log_error(error):
    s = 'error: {}: {} ({})'
    s = s.format(describe_line(error.line), error, error.message or type(error).__name__)
    log.info(s)


def log_definition(line, name, body):
    s = 'define: {}: "{}" -> "{}"'
    s = s.format(describe_line(line), name, ' '.join(str(v) for v in body))
    log.info(s)


def sign_extend(value, bits):
    sign_bit = 1 << (bits - 1)
    return (value & (sign_bit - 1)) - (value & sign_bit)


# wrap an arbitrary int into a signed 16-bit cell
def to_cell(value):
    return sign_extend(value, CELL_BITS)


RE_NUMBER = re.compile(r'[+-]?[0-9]+')


def parse_number(token):
    if RE_NUMBER.fullmatch(token) is None:
        return None

    value = int(token)
    if value < CELL_MIN or value > CELL_MAX:
        return None

    return value


def is_number(token):
    return parse_number(token) is not None


def divide(dividend, divisor):
    if divisor == 0:
        raise DivisionByZero('cannot divide {} by zero'.format(dividend))

    # truncate toward zero (python's // floors)
    quotient = abs(dividend) // abs(divisor)
    if (dividend < 0) != (divisor < 0):
        quotient = -quotient
    return quotient


ARITHMETIC_WORDS = {
    '+': 'ADD',
    '-': 'SUB',
    '*': 'MUL',
    '/': 'DIV',
}

STACK_WORDS = {
    'DUP':  'DUP',
    'DROP': 'DROP',
    'SWAP': 'SWAP',
    'OVER': 'OVER',
    'ROT':  'ROT',
}

OUTPUT_WORDS = {
    '.':    'DOT',
    'EMIT': 'EMIT',
    'CR':   'CR',
}

BOOLEAN_WORDS = {
    '=':   'EQ',
    '<':   'LT',
    '>':   'GT',
    'AND': 'AND',
    'OR':  'OR',
    'NOT': 'NOT',
}

CONDITIONAL_WORDS = {
    'IF':   'IF',
    'ELSE': 'ELSE',
    'THEN': 'THEN',
}

DEFINITION_START = ':'
DEFINITION_END = ';'


class Line:

    def __init__(self, file, number, contents):
        self.file = file
        self.number = number
        self.contents = contents

    def __repr__(self):
        s = '{}({!r}, {!r}, {!r})'
        s = s.format(type(self).__name__, self.file, self.number, self.contents)
        return s


# base class for everything a token can resolve to
class Value(abc.ABC):

    @abc.abstractmethod
    def fields(self):
        """Payload used for equality and hashing"""

    def __eq__(self, other):
        return type(self) == type(other) and self.fields() == other.fields()

    def __hash__(self):
        return hash((type(self), self.fields()))

    def __repr__(self):
        s = '{}({})'
        s = s.format(type(self).__name__, ', '.join(repr(f) for f in self.fields()))
        return s


class Number(Value):

    def __init__(self, value):
        if value < CELL_MIN or value > CELL_MAX:
            raise ValueError('number must be between {} and {}: {}'.format(CELL_MIN, CELL_MAX, value))
        self.value = value

    def fields(self):
        return (self.value,)

    def __str__(self):
        return str(self.value)


# built-ins share one shape: a category (the subclass) and an op name
class Operation(Value):

    words = {}

    @classmethod
    def ops(cls):
        return set(cls.words.values())

    def __init__(self, op):
        if op not in self.ops():
            s = 'unknown {} operation: {}'
            s = s.format(type(self).__name__.lower(), op)
            raise ValueError(s)
        self.op = op

    def fields(self):
        return (self.op,)

    def __str__(self):
        for word, op in self.words.items():
            if op == self.op:
                return word
        return self.op


class Arithmetic(Operation):
    words = ARITHMETIC_WORDS


class StackOp(Operation):
    words = STACK_WORDS


class Output(Operation):
    words = OUTPUT_WORDS

    # ." is recognized by its prefix, not looked up by name
    @classmethod
    def ops(cls):
        return super().ops() | {'DOT_QUOTE'}

    def __init__(self, op, text=None):
        super().__init__(op)
        if op == 'DOT_QUOTE' and text is None:
            raise ValueError('print literal requires text')
        self.text = text

    def fields(self):
        return (self.op, self.text)

    def __str__(self):
        if self.op == 'DOT_QUOTE':
            return '." {}"'.format(self.text)
        return super().__str__()


class Boolean(Operation):
    words = BOOLEAN_WORDS


class Conditional(Operation):
    words = CONDITIONAL_WORDS


class WordRef(Value):

    def __init__(self, name):
        self.name = name.upper()

    def fields(self):
        return (self.name,)

    def __str__(self):
        return self.name


class DefinitionStart(Value):

    def fields(self):
        return ()

    def __str__(self):
        return DEFINITION_START


class DefinitionEnd(Value):

    def fields(self):
        return ()

    def __str__(self):
        return DEFINITION_END


# checked in this order after the dictionary
BUILTINS = [
    Arithmetic,
    StackOp,
    Output,
    Boolean,
    Conditional,
]


def tokenize(text):
    """
    Split a line of source into tokens.

    Tokens are separated by spaces and tabs. A ." span is read up to the
    closing quote (which is dropped) and kept as a single ."-prefixed token.
    """
    if isinstance(text, Line):
        text = text.contents

    tokens = []
    current = ''
    i, n = 0, len(text)
    while i < n:
        c = text[i]
        if c == '.' and text[i + 1:i + 2] == '"':
            if current:
                tokens.append(current)
                current = ''
            i += 2
            while i < n and text[i] == ' ':
                i += 1
            end = text.find('"', i)
            if end < 0:
                end = n
            tokens.append('."' + text[i:end])
            i = end + 1
        elif c in ' \t':
            if current:
                tokens.append(current)
                current = ''
            i += 1
        else:
            current += c
            i += 1

    if current:
        tokens.append(current)

    return tokens


def parse_token(token, dictionary):
    # print literals keep their case
    if token.startswith('."'):
        return Output('DOT_QUOTE', token[2:])

    name = token.upper()

    # user words shadow every built-in, symbols included
    if name in dictionary:
        return WordRef(name)

    for cls in BUILTINS:
        if name in cls.words:
            return cls(cls.words[name])

    if name == DEFINITION_START:
        return DefinitionStart()
    if name == DEFINITION_END:
        return DefinitionEnd()

    number = parse_number(token)
    if number is not None:
        return Number(number)

    # not defined yet, resolved when called
    return WordRef(name)


class Stack:

    def __init__(self, size=DEFAULT_STACK_SIZE):
        self.max_elements = size // CELL_SIZE
        self.data = []

    def __len__(self):
        return len(self.data)

    def __iter__(self):
        return iter(self.data)

    def __repr__(self):
        s = '{}({!r}, max_elements={})'
        s = s.format(type(self).__name__, self.data, self.max_elements)
        return s

    def push(self, value):
        if value < CELL_MIN or value > CELL_MAX:
            raise ValueError('stack value must be between {} and {}: {}'.format(CELL_MIN, CELL_MAX, value))
        if len(self.data) >= self.max_elements:
            raise StackOverflow('cannot push {} onto a full stack ({} elements)'.format(value, self.max_elements))
        self.data.append(value)

    def pop(self):
        if len(self.data) == 0:
            raise StackUnderflow('cannot pop from an empty stack')
        return self.data.pop()

    def peek(self):
        if len(self.data) == 0:
            raise StackUnderflow('cannot peek at an empty stack')
        return self.data[-1]


class WordsDictionary:

    def __init__(self):
        self.words = {}

    def __contains__(self, name):
        return name.upper() in self.words

    def __len__(self):
        return len(self.words)

    def __iter__(self):
        return iter(self.words)

    def __repr__(self):
        s = '{}({!r})'
        s = s.format(type(self).__name__, self.words)
        return s

    def get(self, name):
        return self.words.get(name.upper())

    # entries are only ever replaced wholesale
    def add_word(self, name, body):
        for value in body:
            if isinstance(value, (DefinitionStart, DefinitionEnd)):
                raise ValueError('word body cannot contain definition markers: {}'.format(name))
        self.words[name.upper()] = tuple(body)


def inline_references(body, dictionary):
    """
    Resolve the word references of a new definition.

    A reference to a word that is already defined is replaced by a copy of
    that word's current body. A reference to an unknown word (including the
    word being defined, the first time around) stays a WordRef and is looked
    up again every time the new word runs.
    """
    resolved = []
    for value in body:
        if isinstance(value, WordRef):
            definition = dictionary.get(value.name)
            if definition is not None:
                log.info('inline: "{}" -> "{}"'.format(value.name, ' '.join(str(v) for v in definition)))
                # values are immutable, so copying the sequence snapshots it
                resolved.extend(definition)
                continue
            log.info('late-bound: "{}"'.format(value.name))
        resolved.append(value)
    return resolved


def define_word(name, body, dictionary):
    if len(name) == 0 or is_number(name):
        raise InvalidWord('invalid word name: {}'.format(name))

    body = inline_references(body, dictionary)
    dictionary.add_word(name, body)
    return dictionary.get(name)


class Executing:

    def __eq__(self, other):
        return isinstance(other, Executing)

    def __repr__(self):
        return 'Executing()'


class Skipping:

    def __init__(self, depth=1):
        self.depth = depth

    def __eq__(self, other):
        return isinstance(other, Skipping) and self.depth == other.depth

    def __repr__(self):
        return 'Skipping({})'.format(self.depth)


class Stages:
    """
    Execution stages of one instruction sequence, one frame per open IF.

    The depth of a Skipping frame counts the IFs met while skipping, so that
    a nested THEN does not end the outer skip.
    """

    def __init__(self):
        self.frames = []

    def __len__(self):
        return len(self.frames)

    def __repr__(self):
        s = '{}({!r})'
        s = s.format(type(self).__name__, self.frames)
        return s

    @property
    def skipping(self):
        return len(self.frames) > 0 and isinstance(self.frames[-1], Skipping)

    def apply(self, op, stack):
        if self.skipping:
            frame = self.frames[-1]
            if op == 'IF':
                frame.depth += 1
            elif op == 'ELSE':
                if frame.depth == 1:
                    self.frames[-1] = Executing()
            elif op == 'THEN':
                if frame.depth > 1:
                    frame.depth -= 1
                else:
                    self.frames.pop()
            else:
                raise ValueError('unknown conditional operation: {}'.format(op))
            return

        if op == 'IF':
            condition = stack.pop()
            self.frames.append(Skipping() if condition == 0 else Executing())
        elif op == 'ELSE':
            # ELSE and THEN without an open IF are ignored
            if self.frames:
                self.frames[-1] = Skipping()
        elif op == 'THEN':
            if self.frames:
                self.frames.pop()
        else:
            raise ValueError('unknown conditional operation: {}'.format(op))


def execute_arithmetic(op, stack):
    a = stack.pop()
    b = stack.pop()

    if op == 'ADD':
        result = a + b
    elif op == 'SUB':
        result = b - a
    elif op == 'MUL':
        result = a * b
    elif op == 'DIV':
        result = divide(b, a)
    else:
        raise ValueError('unknown arithmetic operation: {}'.format(op))

    stack.push(to_cell(result))


def execute_stack_op(op, stack):
    if op == 'DUP':
        stack.push(stack.peek())
    elif op == 'DROP':
        stack.pop()
    elif op == 'SWAP':
        a = stack.pop()
        b = stack.pop()
        stack.push(a)
        stack.push(b)
    elif op == 'OVER':
        a = stack.pop()
        b = stack.pop()
        stack.push(b)
        stack.push(a)
        stack.push(b)
    elif op == 'ROT':
        a = stack.pop()
        b = stack.pop()
        c = stack.pop()
        stack.push(b)
        stack.push(a)
        stack.push(c)
    else:
        raise ValueError('unknown stack operation: {}'.format(op))


def execute_boolean(op, stack):
    if op == 'NOT':
        a = stack.pop()
        stack.push(FALSE if a != 0 else TRUE)
        return

    # a is the top of the stack, b the deeper operand
    a = stack.pop()
    b = stack.pop()

    if op == 'EQ':
        result = b == a
    elif op == 'LT':
        result = b < a
    elif op == 'GT':
        result = b > a
    elif op == 'AND':
        result = a == TRUE and b == TRUE
    elif op == 'OR':
        result = a == TRUE or b == TRUE
    else:
        raise ValueError('unknown boolean operation: {}'.format(op))

    stack.push(TRUE if result else FALSE)


def read_lines(path_or_source):
    if os.path.exists(path_or_source):
        log.info('reading file: {}'.format(os.path.abspath(path_or_source)))
        path = path_or_source
        with open(path) as f:
            source = f.read()
    else:
        path = '<string>'
        source = path_or_source

    lines = []
    for i, raw_line in enumerate(source.splitlines(), start=1):
        # skip empty lines
        if len(raw_line.strip()) == 0:
            continue
        lines.append(Line(path, i, raw_line))

    return lines


def write_stack(stack, path=STACK_REST_PATHNAME):
    log.info('writing stack: {}'.format(os.path.abspath(path)))
    with open(path, 'w') as f:
        f.write(' '.join(str(value) for value in stack))


class Interpreter:
    """
    One interpreter session: a bounded stack and a word dictionary.

    Errors never escape a line. Each one is handed to ``report`` (by default
    its tag is printed to ``out``) and interpretation resumes with the next
    instruction.

    :param stack_size: Stack capacity in bytes (two bytes per element)
    :param out: Text stream that receives program output
    :param report: Callable receiving every ForthError as it happens
    """

    def __init__(self, stack_size=DEFAULT_STACK_SIZE, *, out=None, report=None):
        self.stack = Stack(stack_size)
        self.dictionary = WordsDictionary()
        self.out = out if out is not None else sys.stdout
        self.on_error = report if report is not None else self.print_error
        self.call_chain = []
        self.line = None

    def print_error(self, error):
        print(error, file=self.out)

    def report(self, error):
        if error.line is None:
            error.line = self.line
        log_error(error)
        self.on_error(error)

    def write(self, text):
        self.out.write(text)
        self.out.flush()

    def execute_output(self, value):
        if value.op == 'DOT':
            self.write('{} '.format(self.stack.pop()))
        elif value.op == 'EMIT':
            self.write(chr(self.stack.pop() & 0xff))
        elif value.op == 'CR':
            self.write('\n')
        elif value.op == 'DOT_QUOTE':
            self.write(value.text)
        else:
            raise ValueError('unknown output operation: {}'.format(value.op))

    def execute_instruction(self, value, stages):
        # conditionals are the only values that matter while skipping
        if isinstance(value, Conditional):
            stages.apply(value.op, self.stack)
        elif stages.skipping:
            return
        elif isinstance(value, Number):
            self.stack.push(value.value)
        elif isinstance(value, Arithmetic):
            execute_arithmetic(value.op, self.stack)
        elif isinstance(value, StackOp):
            execute_stack_op(value.op, self.stack)
        elif isinstance(value, Output):
            self.execute_output(value)
        elif isinstance(value, Boolean):
            execute_boolean(value.op, self.stack)
        elif isinstance(value, WordRef):
            self.call_word(value.name)
        else:
            raise InvalidWord('unexpected value outside of a definition: {}'.format(value))

    def step(self, value, stages):
        try:
            self.execute_instruction(value, stages)
        except ForthError as e:
            self.report(e)

    def execute(self, values, called=False):
        """
        Run a sequence of values, following word calls.

        Nested calls are kept on an explicit frame list rather than the
        python call stack, so a long chain of late-bound words never runs
        out of recursion depth. Every frame gets its own Stages.

        :param values: Values to run
        :param called: True if ``values`` is the body of a word already
            pushed onto the call chain
        """
        depth = len(self.call_chain) - 1 if called else len(self.call_chain)
        frames = [(iter(values), Stages(), called)]
        try:
            while frames:
                values_iter, stages, entered = frames[-1]
                value = next(values_iter, None)
                if value is None:
                    frames.pop()
                    if entered:
                        self.call_chain.pop()
                    continue

                if isinstance(value, WordRef) and not stages.skipping:
                    try:
                        body = self.enter_word(value.name)
                    except ForthError as e:
                        self.report(e)
                        continue
                    if body is not None:
                        frames.append((iter(body), Stages(), True))
                    continue

                self.step(value, stages)
        finally:
            del self.call_chain[depth:]

    def enter_word(self, name):
        name = name.upper()

        # a word already on the call chain is not entered again
        if name in self.call_chain:
            log.info('recursion: skipping call to "{}"'.format(name))
            return None

        body = self.dictionary.get(name)
        if body is None:
            raise UnknownWord('unknown word: {}'.format(name))

        self.call_chain.append(name)
        return body

    def call_word(self, name):
        body = self.enter_word(name)
        if body is not None:
            self.execute(body, called=True)

    def define(self, name, body):
        try:
            body = define_word(name, body, self.dictionary)
        except ForthError as e:
            self.report(e)
            return
        log_definition(self.line, name.upper(), body)

    def interpret_line(self, line):
        if not isinstance(line, Line):
            line = Line('<string>', 1, line)
        self.line = line

        tokens = tokenize(line.contents)
        stages = Stages()

        # name of the open definition (if any) and its collected body
        name = None
        body = []

        i = 0
        while i < len(tokens):
            value = parse_token(tokens[i], self.dictionary)
            if isinstance(value, DefinitionStart):
                if name is not None:
                    self.report(InvalidWord('nested definition inside: {}'.format(name.upper())))
                elif i + 1 >= len(tokens):
                    self.report(InvalidWord('definition is missing a name'))
                    return
                elif is_number(tokens[i + 1]):
                    self.report(InvalidWord('numbers cannot be redefined: {}'.format(tokens[i + 1])))
                    return
                else:
                    name = tokens[i + 1]
                    body = []
                    i += 1
            elif isinstance(value, DefinitionEnd):
                if name is None:
                    self.report(InvalidWord('definition end without a start'))
                    return
                self.define(name, body)
                name = None
            elif name is not None:
                body.append(value)
            else:
                self.step(value, stages)
            i += 1

        # definitions never span lines
        if name is not None:
            self.report(InvalidWord('unterminated definition: {}'.format(name.upper())))

    def run(self, lines):
        for line in lines:
            self.interpret_line(line)
        return list(self.stack)

    def interpret(self, path_or_source):
        """
        Interpret a Forth program.

        :param path_or_source: Path to a source file or raw Forth source
        :returns: Residual stack as a list, top of stack last
        """
        return self.run(read_lines(path_or_source))


def interpret(path_or_source, *, stack_size=DEFAULT_STACK_SIZE, out=None, report=None):
    interpreter = Interpreter(stack_size, out=out, report=report)
    return interpreter.interpret(path_or_source)


def cli_main(argv=None):
    argv = sys.argv[1:] if argv is None else argv

    # any cleaner way to handle this w/ argparse positional args?
    if len(argv) >= 1 and argv[0] == '--version':
        from stackforth import __version__
        version = 'stackforth {}'.format(__version__)
        raise SystemExit(version)

    parser = argparse.ArgumentParser(
        description='Interpret Forth source code',
        prog='stackforth',
    )
    parser.add_argument('input_fth', type=str, help='input source file')
    parser.add_argument('stack_size', type=int, nargs='?', default=DEFAULT_STACK_SIZE,
        help='stack size in bytes (default {})'.format(DEFAULT_STACK_SIZE))
    parser.add_argument('-o', '--output', type=str, default=STACK_REST_PATHNAME,
        help='residual stack file (default "{}")'.format(STACK_REST_PATHNAME))
    parser.add_argument('-v', '--verbose', action='store_true', help='verbose interpreter output')
    parser.add_argument('--version', action='store_true', help='print interpreter version and exit')
    args = parser.parse_args(argv)

    if args.version:
        from stackforth import __version__
        version = 'stackforth {}'.format(__version__)
        raise SystemExit(version)

    log_fmt = '%(message)s'
    if args.verbose:
        logging.basicConfig(format=log_fmt, level=logging.INFO, stream=sys.stdout)

    if not os.path.exists(args.input_fth):
        raise SystemExit('missing input file: {}'.format(args.input_fth))
    if args.stack_size < 0:
        raise SystemExit('invalid stack size: {}'.format(args.stack_size))

    try:
        lines = read_lines(args.input_fth)
    except (OSError, UnicodeDecodeError):
        raise SystemExit(GenericError('Impossible to read file.fth'))

    interpreter = Interpreter(args.stack_size)
    stack = interpreter.run(lines)

    try:
        write_stack(stack, args.output)
    except OSError:
        interpreter.report(GenericError('Impossible to write stack'))
        return

    print('Residual stack {} written to {}'.format(stack, args.output))


if __name__ == '__main__':
    cli_main()
