"""
Tests for user-facing error messages (milkbank.utils.error_formatting).
"""
import sqlite3

import pytest

from milkbank.domain.errors import (
    DonorLimitError,
    InsufficientVolumeError,
    PepsViolation,
    ValidationError,
)
from milkbank.repositories import DuplicateKeyError, StaleVersionError
from milkbank.utils.error_formatting import ErrorSeverity, format_exception


class TestDomainErrors:
    def test_peps_violation(self):
        ctx = format_exception(PepsViolation("HE-2024-05-27-003", "select", 2), "seleccionar frasco")

        assert ctx.error_code == "PEPS_001"
        assert ctx.severity is ErrorSeverity.WARNING
        assert ctx.context["Frasco"] == "HE-2024-05-27-003"
        assert any("2 frasco(s)" in step for step in ctx.recovery_steps)

    def test_insufficient_volume_shows_volumes(self):
        ctx = format_exception(InsufficientVolumeError(80, 75.0), "administrar")
        text = ctx.format_for_display()

        assert ctx.error_code == "DOSE_001"
        assert "Solicitado (mL): 80" in text
        assert "Disponible (mL): 75.0" in text
        assert text.endswith("Código de error: DOSE_001")

    @pytest.mark.parametrize("exc,code", [
        (DonorLimitError(4, 3), "PEPS_003"),
        (ValidationError("El volumen debe ser mayor a 0"), "VAL_001"),
    ])
    def test_codes(self, exc, code):
        assert format_exception(exc, "op").error_code == code


class TestRepositoryAndDatabaseErrors:
    def test_stale_version(self):
        ctx = format_exception(StaleVersionError("Batch", "B1", 3, 4), "administrar")
        assert ctx.error_code == "REPO_005"

    def test_duplicate_key(self):
        assert format_exception(DuplicateKeyError("Jar J1 already exists"), "registrar").error_code == "REPO_001"

    def test_locked_database(self):
        ctx = format_exception(sqlite3.OperationalError("database is locked"), "registrar")
        assert ctx.error_code == "DB_001"

    def test_unexpected_error(self):
        """Unknown exceptions get a generic message; details only in technical output."""
        ctx = format_exception(KeyError("boom"), "reporte")

        assert ctx.error_code == "GEN_999"
        assert "KeyError" not in ctx.format_for_display()
        assert "KeyError" in ctx.format_for_display(include_technical=True)
        assert ctx.format_for_log().startswith("[ERROR]")
