"""
Registers the ORM models of every tax module with ``Base.metadata``.

``tax_kernel.db.engine.create_tables`` calls ``import_all_orm_models``
lazily, so the kernel never imports a module package at import time.
"""

import importlib

ORM_MODULES: tuple[str, ...] = (
    "tax_modules.contributions.orm",
    "tax_modules.declarations.orm",
    "tax_modules.losses.orm",
    "tax_modules.vat.orm",
)


def import_all_orm_models() -> None:
    for name in ORM_MODULES:
        importlib.import_module(name)
