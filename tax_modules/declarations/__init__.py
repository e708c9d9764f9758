"""Income tax declaration lifecycle."""

from tax_modules.declarations.models import Declaration, DeclarationStatus
from tax_modules.declarations.repository import (
    DeclarationRepository,
    InMemoryDeclarationRepository,
    SqlDeclarationRepository,
)
from tax_modules.declarations.service import DeclarationService
from tax_modules.declarations.workflows import DECLARATION_WORKFLOW

__all__ = [
    "DECLARATION_WORKFLOW",
    "Declaration",
    "DeclarationRepository",
    "DeclarationService",
    "DeclarationStatus",
    "InMemoryDeclarationRepository",
    "SqlDeclarationRepository",
]
