from __future__ import annotations

import sys
from pathlib import Path

import pytest

# Ensure `import cfkit...` works when pytest uses importlib import mode.
REPO_ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(REPO_ROOT))

from cfkit.store import DataModel  # noqa: E402


# U1 agrees with U2 on I1..I3; U1's rating on I4 is held out.
# Resulting indices: users U1=0, U2=1, U3=2; items I4=0, I1=1, I2=2, I3=3.
TRAIN = [
    ("U1", "I1", 3.0), ("U1", "I2", 4.0), ("U1", "I3", 2.0),
    ("U2", "I1", 3.0), ("U2", "I2", 4.0), ("U2", "I3", 2.0), ("U2", "I4", 1.0),
    ("U3", "I1", 5.0), ("U3", "I2", 1.0), ("U3", "I3", 4.0), ("U3", "I4", 2.0),
]
TEST = [
    ("U1", "I4", 5.0),
]


@pytest.fixture()
def small_model() -> DataModel:
    return DataModel.from_ratings(TRAIN, TEST)
