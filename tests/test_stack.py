import io

import pytest

from stackforth import forth


def test_default_size():
    stack = forth.Stack()
    assert stack.max_elements == 65536
    assert len(stack) == 0


@pytest.mark.parametrize(
    'size,  max_elements', [
    (0,     0),
    (1,     0),
    (2,     1),
    (3,     1),
    (10,    5),
    (1024,  512),
])
def test_size_in_bytes(size, max_elements):
    assert forth.Stack(size).max_elements == max_elements


def test_overflow():
    stack = forth.Stack(10)
    for value in range(1, 6):
        stack.push(value)
    with pytest.raises(forth.StackOverflow):
        stack.push(6)
    assert list(stack) == [1, 2, 3, 4, 5]


def test_underflow():
    stack = forth.Stack(10)
    with pytest.raises(forth.StackUnderflow):
        stack.pop()
    with pytest.raises(forth.StackUnderflow):
        stack.peek()


def test_push_pop_peek():
    stack = forth.Stack(10)
    stack.push(1)
    stack.push(-2)
    assert stack.peek() == -2
    assert len(stack) == 2
    assert stack.pop() == -2
    assert stack.pop() == 1
    assert len(stack) == 0


@pytest.mark.parametrize(
    'value', [
    32768,
    -32769,
    100000,
])
def test_push_out_of_range(value):
    stack = forth.Stack(10)
    with pytest.raises(ValueError):
        stack.push(value)


def test_interpreter_overflow():
    errors = []
    interpreter = forth.Interpreter(10, out=io.StringIO(), report=errors.append)
    interpreter.interpret_line('1 2 3 4 5 6 7')
    assert list(interpreter.stack) == [1, 2, 3, 4, 5]
    assert [type(e) for e in errors] == [forth.StackOverflow, forth.StackOverflow]


def test_interpreter_overflow_on_dup():
    errors = []
    interpreter = forth.Interpreter(4, out=io.StringIO(), report=errors.append)
    interpreter.interpret_line('1 2 dup 3 +')
    assert list(interpreter.stack) == [3]
    assert [type(e) for e in errors] == [forth.StackOverflow, forth.StackOverflow]
