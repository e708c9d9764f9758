"""
Tax kernel -- shared primitives for the Polish tax calculation engine.

Exceptions, structured logging, the Decimal engine, value objects, periods,
the injectable clock, workflow definitions and the SQLAlchemy base live here.
Nothing in this package performs a tax calculation.
"""
