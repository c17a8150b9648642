"""
Tests for IDs and folio formats (milkbank.domain.identifiers).
"""
from datetime import date

import pytest

from milkbank.domain.identifiers import (
    batch_folio,
    donor_folio,
    donor_sequence_key,
    is_valid_folio,
    jar_folio,
    new_id,
    sequence_key,
)
from milkbank.domain.models import DonorType


def test_jar_folio_prefix_by_donor_type():
    """Homologous donors get HO, heterologous donors get HE."""
    day = date(2024, 5, 27)
    assert jar_folio(DonorType.HOMOLOGOUS_INTERNAL, day, 1) == "HO-2024-05-27-001"
    assert jar_folio(DonorType.HOMOLOGOUS_EXTERNAL, day, 12) == "HO-2024-05-27-012"
    assert jar_folio(DonorType.HETEROLOGOUS, day, 3) == "HE-2024-05-27-003"


def test_batch_and_donor_folios():
    assert batch_folio(date(2024, 5, 27), 7) == "LP-2024-05-27-007"
    assert donor_folio(2024, 1) == "001-24"
    assert donor_folio(2025, 1234) == "1234-25"


def test_sequence_keys():
    assert sequence_key("LP", date(2024, 5, 27)) == "LP-2024-05-27"
    assert donor_sequence_key(2024) == "DON-24"


def test_sequence_must_be_positive():
    with pytest.raises(ValueError):
        jar_folio(DonorType.HETEROLOGOUS, date(2024, 5, 27), 0)
    with pytest.raises(ValueError):
        donor_folio(2024, 0)


@pytest.mark.parametrize("folio,expected", [
    ("HO-2024-05-27-001", True),
    ("LP-2024-05-27-1000", True),
    ("001-24", True),
    ("HO-2024-02-30-001", False),
    ("XX-2024-05-27-001", False),
    ("HE-2024-05-27-000", False),
    ("000-24", False),
    ("", False),
])
def test_folio_validation(folio, expected):
    assert is_valid_folio(folio) is expected


def test_ids_are_unique():
    assert len({new_id() for _ in range(1000)}) == 1000
