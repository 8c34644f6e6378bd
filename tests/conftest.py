import shutil

import pytest

from landed_cost.config.settings import Settings, get_default_data_dir
from landed_cost.engine import LandedCostEngine


@pytest.fixture(scope="module")
def engine():
    """Create a single engine over the packaged reference data."""
    return LandedCostEngine(Settings.load(get_default_data_dir()))


@pytest.fixture
def data_dir(tmp_path):
    """Writable copy of the packaged reference data."""
    target = tmp_path / "reference"
    shutil.copytree(get_default_data_dir(), target)
    return target


@pytest.fixture
def settings(data_dir):
    return Settings.load(data_dir)
