import pytest

from stackforth import __version__
from stackforth import forth


def test_write_stack(tmp_path):
    path = tmp_path / 'stack.fth'
    forth.write_stack([1, -2, 3], str(path))
    assert path.read_text() == '1 -2 3'


def test_write_empty_stack(tmp_path):
    path = tmp_path / 'stack.fth'
    forth.write_stack(forth.Stack(), str(path))
    assert path.read_text() == ''


def test_cli_main(tmp_path, capsys):
    source = tmp_path / 'main.fth'
    source.write_text(': sq dup * ;\n3 sq .\n1 2 +\n4\n')
    output = tmp_path / 'stack.fth'

    forth.cli_main([str(source), '-o', str(output)])

    assert output.read_text() == '3 4'
    out = capsys.readouterr().out
    assert out.startswith('9 ')
    assert 'Residual stack [3, 4] written to {}'.format(output) in out


def test_cli_main_stack_size(tmp_path, capsys):
    source = tmp_path / 'main.fth'
    source.write_text('1 2 3\n')
    output = tmp_path / 'stack.fth'

    forth.cli_main([str(source), '4', '-o', str(output)])

    assert output.read_text() == '1 2'
    assert 'stack-overflow' in capsys.readouterr().out


def test_cli_main_unwritable_output(tmp_path, capsys):
    source = tmp_path / 'main.fth'
    source.write_text('1\n')

    # a directory cannot be opened for writing
    forth.cli_main([str(source), '-o', str(tmp_path)])

    out = capsys.readouterr().out
    assert '[ERROR]: Impossible to write stack' in out
    assert 'Residual stack' not in out


def test_cli_main_unreadable_input(tmp_path):
    with pytest.raises(SystemExit) as e:
        forth.cli_main([str(tmp_path)])
    assert str(e.value.code) == '[ERROR]: Impossible to read file.fth'


def test_cli_main_missing_input(tmp_path):
    missing = tmp_path / 'missing.fth'
    with pytest.raises(SystemExit) as e:
        forth.cli_main([str(missing)])
    assert e.value.code == 'missing input file: {}'.format(missing)


def test_cli_main_invalid_stack_size(tmp_path):
    source = tmp_path / 'main.fth'
    source.write_text('1\n')
    with pytest.raises(SystemExit) as e:
        forth.cli_main([str(source), '-2'])
    assert e.value.code == 'invalid stack size: -2'


def test_cli_main_version():
    with pytest.raises(SystemExit) as e:
        forth.cli_main(['--version'])
    assert e.value.code == 'stackforth {}'.format(__version__)
