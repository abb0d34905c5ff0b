from dockform.PARSERS.env_parser import EnvParser, parse_env_file


def test_parse_from_string():
    content = """
    KEY1=VALUE1
    KEY2 = VALUE2
    # This is a comment
    KEY3="VALUE3"
    _PRIVATE=yes
    """
    env = EnvParser.parse(content)
    assert env == {
        'KEY1': 'VALUE1',
        'KEY2': 'VALUE2',
        'KEY3': 'VALUE3',
        '_PRIVATE': 'yes',
    }


def test_invalid_lines_are_skipped():
    content = "1BAD=x\nNO_EQUALS\nWITH-DASH=x\n=empty\nGOOD=1\n"
    assert parse_env_file(content) == {'GOOD': '1'}


def test_values_keep_inner_equals_and_quotes_are_stripped():
    env = parse_env_file('DSN=postgres://u:p@h/db?sslmode=require\nQUOTED="  padded  "\nEMPTY=\n')
    assert env == {
        'DSN': 'postgres://u:p@h/db?sslmode=require',
        'QUOTED': '  padded  ',
        'EMPTY': '',
    }


def test_later_keys_override_earlier():
    assert parse_env_file("A=1\nA=2\n") == {'A': '2'}


def test_parse_file(tmp_path):
    env_file = tmp_path / ".env"
    env_file.write_text("PORT=8080\n")
    assert EnvParser.parse_file(str(env_file)) == {'PORT': '8080'}
