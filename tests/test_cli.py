import quip_solver
from quip_solver import main


def test_solves_with_hint(capsys, words_file):
    assert main(['-f', str(words_file), '-k', 'b=a', 'ebe eje']) == 0
    out = capsys.readouterr().out
    assert out.startswith('quip v' + quip_solver.__version__)
    assert 'Solution: dad did' in out
    assert 'did dad' not in out


def test_both_attacks_html(capsys, words_file):
    assert main(['-f', str(words_file), '-F', '-W', '-H', 'ebe eje']) == 0
    out = capsys.readouterr().out
    assert 'dad did<BR>\ndid dad<BR>\n' in out


def test_no_solutions(capsys, words_file):
    assert main(['-f', str(words_file), '-k', 'o=c', 'dro']) == 0
    assert '*** No solutions to this could be found! ***' in (
        capsys.readouterr().out)


def test_out_of_time(capsys, monkeypatch, words_file):
    monkeypatch.setattr(quip_solver.Deadline, 'expired', lambda self: True)
    assert main(['-f', str(words_file), '-T', '5', 'ebe eje']) == 0
    out = capsys.readouterr().out
    assert '*** Ran out of time after 5 sec. ***' in out
    assert 'No solutions' not in out


def test_time_limit_is_capped(capsys, monkeypatch, words_file):
    monkeypatch.setattr(quip_solver.Deadline, 'expired', lambda self: True)
    main(['-f', str(words_file), '-T', '1000', 'ebe eje'])
    assert 'after 300 sec.' in capsys.readouterr().out


def test_no_time(capsys, words_file):
    assert main(['-f', str(words_file), '-T', '0', 'ebe eje']) == 1
    assert '*** Error *** There is no time' in capsys.readouterr().out


def test_bad_hint(capsys, words_file):
    assert main(['-f', str(words_file), '-k', 'bt', 'ebe eje']) == 1
    assert '*** Error ***' in capsys.readouterr().out


def test_missing_word_list(capsys, tmp_path):
    assert main(['-f', str(tmp_path / 'missing'), 'ebe eje']) == 1
    assert '*** Error ***' in capsys.readouterr().out


def test_strict_mode(capsys, tmp_path):
    empty = tmp_path / 'empty'
    empty.write_text('')
    assert main(['-f', str(empty), 'dro']) == 0
    assert 'Solution: ***' in capsys.readouterr().out
    assert main(['-f', str(empty), '-s', 'dro']) == 0
    assert 'No solutions' in capsys.readouterr().out


def test_encrypt(capsys):
    assert main(['-e', '--seed', '3', 'the cat sat']) == 0
    lines = capsys.readouterr().out.splitlines()
    ciphertext, hint = lines[-2], lines[-1]
    assert len(ciphertext) == len('the cat sat')
    assert ciphertext != 'the cat sat'
    assert hint.startswith(' ') and hint[2] == '='


def test_encrypt_command_line(capsys):
    assert main(['-e', '-c', '-l', '--seed', '3', 'the cat sat']) == 0
    out = capsys.readouterr().out
    assert 'Generated encryption legend:' in out
    assert "quip '" in out
    assert "' -k" in out


def test_encrypt_is_repeatable(capsys):
    main(['-e', '--seed', '11', 'the cat sat'])
    first = capsys.readouterr().out
    main(['-e', '--seed', '11', 'the cat sat'])
    assert capsys.readouterr().out == first


def test_verbose(capsys, words_file):
    assert main(['-v', '-f', str(words_file), 'ebe eje']) == 0
    assert '2 cypherwords' in capsys.readouterr().err


def test_log_file(tmp_path, words_file):
    log = tmp_path / 'quip.log'
    assert main(['--log', str(log), '-f', str(words_file), 'ebe eje']) == 0
    text = log.read_text()
    assert "starting: quip='ebe eje' time=20" in text
    assert "terminating: quip='ebe eje'" in text


def test_html_error(capsys, words_file):
    assert main(['-H', '-f', str(words_file), '-T', '0', 'ebe eje']) == 1
    assert '*** Error *** There is no time to search (0 sec).<BR>' in (
        capsys.readouterr().out)
