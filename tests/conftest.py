from __future__ import annotations

import sys
from pathlib import Path

import pytest

# Ensure local "src/" takes precedence over any globally-installed "cidvault" package.
ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"

src_str = str(SRC)
if src_str not in sys.path:
    sys.path.insert(0, src_str)


ADMIN = "admin"
ALICE = "alice"
FEE = 1_000


@pytest.fixture
def payout():
    from cidvault.runtime.payout import RecordingPayoutChannel

    return RecordingPayoutChannel()


@pytest.fixture
def executor(tmp_path: Path, payout):
    """Fresh registry: admin "admin", authorized caller "alice", min fee 1000, estimate 1024."""
    from cidvault.runtime.registry import RegistryExecutor

    return RegistryExecutor(
        db_path=str(tmp_path / "cidvault.db"),
        registry_id="cidvault-test",
        admin=ADMIN,
        params={"min_fee": FEE, "message_size_estimate": 1024, "default_quota": 10 * 1024},
        authorized_callers=[ALICE],
        payout=payout,
    )
