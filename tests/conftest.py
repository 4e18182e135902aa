from typing import Any, Dict, List

import pytest

from fakes import STANDARD_TIERS, FakeLoanRow


@pytest.fixture
def loan_row_factory():
    def _make(loan_id: int = 1, **overrides) -> FakeLoanRow:
        return FakeLoanRow(loan_id=loan_id, **overrides)
    return _make


@pytest.fixture
def standard_tiers() -> List[Dict[str, Any]]:
    return [dict(tier) for tier in STANDARD_TIERS]
