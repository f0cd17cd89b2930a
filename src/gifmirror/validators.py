"""Validator factories for use with ``Annotated[..., AfterValidator(...)]``.

These check values against the runtime ``config.search`` section so that
DB overrides take effect without restarting the service.
"""

from __future__ import annotations


def _search():
    """Lazy import to avoid circular dependency at module level."""
    from gifmirror.config import config
    return config.search


def int_limit(*, ge: int | None = None, max_attr: str | None = None):
    """For numeric bounds -- ge is a fixed floor, max_attr is runtime-configurable ceiling."""
    def _validate(v: int | None) -> int | None:
        if v is None:
            return v
        lim = _search()
        if ge is not None and v < ge:
            raise ValueError(f"Input should be greater than or equal to {ge}")
        if max_attr and v > getattr(lim, max_attr):
            raise ValueError(f"Input should be less than or equal to {getattr(lim, max_attr)}")
        return v
    return _validate


def list_limit(*, max_attr: str):
    """Returns a callable for AfterValidator that checks list length against search.<attr>."""
    def _validate(v: list | None) -> list | None:
        if v is None:
            return v
        lim = _search()
        if len(v) > getattr(lim, max_attr):
            raise ValueError(f"List should have at most {getattr(lim, max_attr)} item(s)")
        return v
    return _validate
