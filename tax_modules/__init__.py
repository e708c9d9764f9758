"""
Stateful tax modules.

Each sub-package pairs frozen DTO models with an abstract repository (an
in-memory and a SQLAlchemy implementation) and a service that owns the
read-modify-write of ledger state:

    losses          Loss carry-forward ledger (FIFO by loss year)
    vat             VAT transactions, settlement, carry-forward ledger
    declarations    Income tax declaration lifecycle and corrections
    contributions   Monthly ZUS contributions with year-to-date tracking
    period_close    Sequences month (VAT) and year (declaration) close

Calculations are delegated to ``tax_engines``; nothing in this layer
computes tax itself.
"""
