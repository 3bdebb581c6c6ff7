"""
Single-writer guard for the stock tables.

Unit.status, Product.quantity/status and the Movement ledger may only be
written while a stock write scope is open. The allocation coordinator is the
only code that opens one; the guarded managers and models in stock.models
check it before every write.
"""

from contextlib import contextmanager
from contextvars import ContextVar

from django.db import transaction


_write_scope_depth = ContextVar('stock_write_scope_depth', default=0)


class StockWriteViolation(RuntimeError):
    """Raised when a guarded stock field is written outside the coordinator."""


def in_write_scope() -> bool:
    return _write_scope_depth.get() > 0


def require_write_scope(what: str) -> None:
    if not in_write_scope():
        raise StockWriteViolation(
            f'{what} can only be written by the allocation coordinator'
        )


@contextmanager
def stock_write_scope(using=None):
    """
    Open one atomic block and mark it as a stock write scope.

    Nested scopes become savepoints of the outer transaction, so an error
    anywhere inside rolls back every guarded write made in the block.
    """
    token = _write_scope_depth.set(_write_scope_depth.get() + 1)
    try:
        with transaction.atomic(using=using):
            yield
    finally:
        _write_scope_depth.reset(token)
