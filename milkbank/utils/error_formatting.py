"""
Error UX & messaging.

Turns domain, repository and database exceptions into ErrorContext objects:
a user-facing message, a severity, recovery steps and an error code. The CLI
prints format_for_display(); logs use format_for_log().
"""

from typing import Dict, Optional, Any
from dataclasses import dataclass, field
from enum import Enum
import sqlite3


# ============================================================
# Error Severity Levels
# ============================================================

class ErrorSeverity(Enum):
    """Error severity classification for presentation."""

    INFO = "info"           # Informational (no action needed)
    WARNING = "warning"     # Caution (optional action)
    ERROR = "error"         # Error (action required)
    CRITICAL = "critical"   # Critical (system-level issue)


# ============================================================
# Error Context
# ============================================================

@dataclass
class ErrorContext:
    """
    Structured error context for user-facing messages.

    Attributes:
        message: User-facing error description
        severity: Error severity level
        technical_details: Technical error info (for logs/debugging)
        context: Additional context (folio, operation, volumes)
        recovery_steps: Actions the operator can take
        error_code: Optional error code for support/documentation
    """
    message: str
    severity: ErrorSeverity
    technical_details: str
    context: Dict[str, Any] = field(default_factory=dict)
    recovery_steps: list = field(default_factory=list)
    error_code: Optional[str] = None

    def format_for_display(self, include_technical: bool = False) -> str:
        """
        Format error for terminal display.

        Args:
            include_technical: Include technical details in message

        Returns:
            Multi-line message
        """
        lines = [self.message]

        if self.context:
            lines.append("")
            lines.append("Detalles:")
            for key, value in self.context.items():
                if value is not None:
                    lines.append(f"  • {key}: {value}")

        if self.recovery_steps:
            lines.append("")
            lines.append("Acciones sugeridas:")
            for i, step in enumerate(self.recovery_steps, 1):
                lines.append(f"  {i}. {step}")

        if include_technical and self.technical_details:
            lines.append("")
            lines.append("Detalles técnicos:")
            lines.append(f"  {self.technical_details}")

        if self.error_code:
            lines.append("")
            lines.append(f"Código de error: {self.error_code}")

        return "\n".join(lines)

    def format_for_log(self) -> str:
        """Format error for structured logging."""
        context_str = ", ".join(f"{k}={v}" for k, v in self.context.items() if v is not None)
        return f"[{self.severity.value.upper()}] {self.message} | Context: {context_str} | Technical: {self.technical_details}"


# ============================================================
# Error Formatters
# ============================================================

class ErrorFormatter:
    """
    Main error formatting utility.
    Transforms exceptions into ErrorContext objects.
    """

    @staticmethod
    def format_domain_error(
        exc: Exception,
        operation: str,
        additional_context: Optional[Dict[str, Any]] = None
    ) -> ErrorContext:
        """
        Format engine errors (milkbank.domain.errors).

        Args:
            exc: The exception raised
            operation: Operation that failed (e.g., "administer", "commit_batch")
            additional_context: Additional context data

        Returns:
            ErrorContext with message and recovery steps
        """
        from ..domain.errors import (
            BatchUnavailableError,
            DonorEligibilityError,
            DonorLimitError,
            InsufficientVolumeError,
            InvalidTransitionError,
            MissingReasonError,
            MixedTypeError,
            PepsViolation,
            ValidationError,
        )

        context: Dict[str, Any] = {"Operación": operation}
        if additional_context:
            context.update(additional_context)
        technical = f"{type(exc).__name__}: {exc}"

        if isinstance(exc, PepsViolation):
            context["Frasco"] = exc.jar_id
            if exc.operation == "select":
                steps = [f"Seleccione primero los {exc.older_unselected} frasco(s) más antiguo(s)"]
            else:
                steps = [f"Retire primero los {exc.newer_selected} frasco(s) más reciente(s)"]
            return ErrorContext(
                message=str(exc),
                severity=ErrorSeverity.WARNING,
                technical_details=technical,
                context=context,
                recovery_steps=steps + ["Respete el orden PEPS (primero en entrar, primero en salir)"],
                error_code="PEPS_001"
            )

        elif isinstance(exc, MixedTypeError):
            return ErrorContext(
                message=str(exc),
                severity=ErrorSeverity.WARNING,
                technical_details=technical,
                context=context,
                recovery_steps=["Forme un lote por cada tipo de leche"],
                error_code="PEPS_002"
            )

        elif isinstance(exc, DonorLimitError):
            return ErrorContext(
                message=str(exc),
                severity=ErrorSeverity.WARNING,
                technical_details=technical,
                context=context,
                recovery_steps=["Retire frascos de donadoras adicionales antes de confirmar el lote"],
                error_code="PEPS_003"
            )

        elif isinstance(exc, InsufficientVolumeError):
            context["Solicitado (mL)"] = exc.requested
            context["Disponible (mL)"] = exc.available
            return ErrorContext(
                message=str(exc),
                severity=ErrorSeverity.WARNING,
                technical_details=technical,
                context=context,
                recovery_steps=[
                    "Reduzca el volumen administrado o desechado",
                    "Complete la toma con otro lote liberado",
                ],
                error_code="DOSE_001"
            )

        elif isinstance(exc, MissingReasonError):
            return ErrorContext(
                message=str(exc) or "Indique el motivo del desecho",
                severity=ErrorSeverity.WARNING,
                technical_details=technical,
                context=context,
                recovery_steps=["Seleccione un motivo de desecho o describa uno en 'Otro'"],
                error_code="DOSE_002"
            )

        elif isinstance(exc, BatchUnavailableError):
            return ErrorContext(
                message=str(exc),
                severity=ErrorSeverity.ERROR,
                technical_details=technical,
                context=context,
                recovery_steps=["Use un lote liberado con volumen disponible"],
                error_code="DOSE_003"
            )

        elif isinstance(exc, InvalidTransitionError):
            return ErrorContext(
                message=str(exc),
                severity=ErrorSeverity.ERROR,
                technical_details=technical,
                context=context,
                recovery_steps=["Verifique el estado actual antes de continuar el proceso"],
                error_code="STATE_001"
            )

        elif isinstance(exc, DonorEligibilityError):
            return ErrorContext(
                message=str(exc),
                severity=ErrorSeverity.WARNING,
                technical_details=technical,
                context=context,
                recovery_steps=list(exc.failures) or ["Revise consentimiento y serologías de la donadora"],
                error_code="DONOR_001"
            )

        elif isinstance(exc, ValidationError):
            return ErrorContext(
                message=str(exc),
                severity=ErrorSeverity.WARNING,
                technical_details=technical,
                context=context,
                recovery_steps=["Corrija los datos capturados y reintente"],
                error_code="VAL_001"
            )

        return ErrorFormatter.format_generic_error(exc, operation, context)

    @staticmethod
    def format_repository_error(
        exc: Exception,
        operation: str,
        additional_context: Optional[Dict[str, Any]] = None
    ) -> ErrorContext:
        """
        Format repository-level errors (from milkbank/repositories.py).

        Args:
            exc: The exception raised
            operation: Operation that failed (e.g., "insert_jar", "update_batch")
            additional_context: Additional context data

        Returns:
            ErrorContext with message and recovery steps
        """
        from ..repositories import (
            BusinessRuleError,
            DuplicateKeyError,
            ForeignKeyError,
            NotFoundError,
            RepositoryError,
            StaleVersionError,
        )

        context: Dict[str, Any] = {"Operación": operation}
        if additional_context:
            context.update(additional_context)

        if isinstance(exc, StaleVersionError):
            return ErrorContext(
                message="El registro fue modificado por otra operación",
                severity=ErrorSeverity.WARNING,
                technical_details=f"StaleVersionError: {exc}",
                context=context,
                recovery_steps=[
                    "Vuelva a cargar los datos",
                    "Repita la operación sobre la versión actual",
                ],
                error_code="REPO_005"
            )

        elif isinstance(exc, DuplicateKeyError):
            return ErrorContext(
                message=f"Elemento ya existente: {exc}",
                severity=ErrorSeverity.ERROR,
                technical_details=f"DuplicateKeyError: {exc}",
                context=context,
                recovery_steps=[
                    "Verifique que el folio, CURP o expediente no esté en uso",
                    "Modifique el registro existente en lugar de crear uno nuevo",
                ],
                error_code="REPO_001"
            )

        elif isinstance(exc, ForeignKeyError):
            return ErrorContext(
                message=f"Referencia no válida: {exc}",
                severity=ErrorSeverity.ERROR,
                technical_details=f"ForeignKeyError: {exc}",
                context=context,
                recovery_steps=["Verifique que el lote o frasco referido exista"],
                error_code="REPO_002"
            )

        elif isinstance(exc, NotFoundError):
            return ErrorContext(
                message=f"Elemento no encontrado: {exc}",
                severity=ErrorSeverity.WARNING,
                technical_details=f"NotFoundError: {exc}",
                context=context,
                recovery_steps=[
                    "Verifique el identificador capturado",
                    "Consulte la lista de registros existentes",
                ],
                error_code="REPO_003"
            )

        elif isinstance(exc, BusinessRuleError):
            return ErrorContext(
                message=f"Regla de negocio violada: {exc}",
                severity=ErrorSeverity.ERROR,
                technical_details=f"BusinessRuleError: {exc}",
                context=context,
                recovery_steps=["Revise volúmenes (> 0) y estados capturados"],
                error_code="REPO_004"
            )

        elif isinstance(exc, RepositoryError):
            return ErrorContext(
                message=f"Error en la operación: {exc}",
                severity=ErrorSeverity.ERROR,
                technical_details=f"RepositoryError: {exc}",
                context=context,
                recovery_steps=["Revise los datos", "Reintente la operación"],
                error_code="REPO_999"
            )

        return ErrorFormatter.format_generic_error(exc, operation, context)

    @staticmethod
    def format_database_error(
        exc: Exception,
        operation: str,
        context: Optional[Dict[str, Any]] = None
    ) -> ErrorContext:
        """
        Format SQLite errors.

        Args:
            exc: Database exception
            operation: Operation that failed
            context: Additional context

        Returns:
            ErrorContext with database guidance
        """
        ctx: Dict[str, Any] = {"Operación": operation}
        if context:
            ctx.update(context)
        exc_str = str(exc).lower()

        if isinstance(exc, sqlite3.OperationalError):
            if "locked" in exc_str or "busy" in exc_str:
                return ErrorContext(
                    message="Base de datos ocupada temporalmente",
                    severity=ErrorSeverity.WARNING,
                    technical_details=str(exc),
                    context=ctx,
                    recovery_steps=["Espere unos segundos y reintente"],
                    error_code="DB_001"
                )
            elif "disk" in exc_str or "full" in exc_str:
                return ErrorContext(
                    message="Espacio en disco insuficiente",
                    severity=ErrorSeverity.CRITICAL,
                    technical_details=str(exc),
                    context=ctx,
                    recovery_steps=["Libere espacio en disco", "Elimine respaldos antiguos"],
                    error_code="DB_002"
                )
            return ErrorContext(
                message="Error de acceso a la base de datos",
                severity=ErrorSeverity.ERROR,
                technical_details=str(exc),
                context=ctx,
                recovery_steps=[
                    "Ejecute 'check' para verificar la integridad",
                    "Restaure el último respaldo si el problema persiste",
                ],
                error_code="DB_003"
            )

        elif isinstance(exc, sqlite3.IntegrityError):
            return ErrorContext(
                message="Violación de integridad de la base de datos",
                severity=ErrorSeverity.ERROR,
                technical_details=str(exc),
                context=ctx,
                recovery_steps=["Revise que los datos respeten las restricciones"],
                error_code="DB_004"
            )

        return ErrorFormatter.format_generic_error(exc, operation, ctx)

    @staticmethod
    def format_generic_error(
        exc: Exception,
        operation: str,
        context: Optional[Dict[str, Any]] = None
    ) -> ErrorContext:
        """Fallback for unexpected exceptions."""
        ctx = dict(context) if context else {"Operación": operation}
        return ErrorContext(
            message=f"Error inesperado durante {operation}",
            severity=ErrorSeverity.ERROR,
            technical_details=f"{type(exc).__name__}: {exc}",
            context=ctx,
            recovery_steps=[
                "Reintente la operación",
                "Si el error persiste, revise el archivo de log",
            ],
            error_code="GEN_999"
        )


def format_exception(
    exc: Exception,
    operation: str,
    context: Optional[Dict[str, Any]] = None
) -> ErrorContext:
    """Dispatch an exception to the matching formatter."""
    from ..domain.errors import MilkBankError
    from ..repositories import RepositoryError

    if isinstance(exc, MilkBankError):
        return ErrorFormatter.format_domain_error(exc, operation, context)
    if isinstance(exc, RepositoryError):
        return ErrorFormatter.format_repository_error(exc, operation, context)
    if isinstance(exc, sqlite3.Error):
        return ErrorFormatter.format_database_error(exc, operation, context)
    return ErrorFormatter.format_generic_error(exc, operation, context)
