import os
import sys

import pytest

# Make the package and the shared helpers importable without installing
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from helpers import Scenario  # noqa: E402


@pytest.fixture
def scenario():
    return Scenario()
