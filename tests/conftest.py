import pytest

from lscore.storage import StorageManager


@pytest.fixture
def write_file(tmp_path):
    def _write(name, data):
        path = tmp_path / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
        return str(path)
    return _write


@pytest.fixture
def storage(tmp_path):
    return StorageManager(str(tmp_path / "data"))
