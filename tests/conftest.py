import pytest

WORDS = ['the', 'cat', 'sat', 'hat', 'dad', 'did', 'mom', 'pop', 'all',
         "it's", 'dog']


@pytest.fixture
def words():
    return list(WORDS)


@pytest.fixture
def words_file(tmp_path):
    path = tmp_path / 'words'
    path.write_text('\n'.join(WORDS) + '\n')
    return path
