import pytest

from helpers import FlakyStorage, build_engines


@pytest.fixture
def storage(tmp_path):
    return FlakyStorage(tmp_path)


@pytest.fixture
def engines(storage):
    return build_engines(storage)
