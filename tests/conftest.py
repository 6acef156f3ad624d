import sys
from pathlib import Path

import pytest

# Ensure tests can import project packages regardless of how pytest is invoked.
ROOT = Path(__file__).resolve().parents[1]
for path in (ROOT, ROOT / "tests"):
    if str(path) not in sys.path:
        sys.path.insert(0, str(path))

from fakes import FakeResolver, make_metadata  # noqa: E402


@pytest.fixture
def metadata():
    return make_metadata()


@pytest.fixture
def fake_resolver(metadata):
    return FakeResolver({metadata.id: metadata})
