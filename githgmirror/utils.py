from typing import Any


def strict_not_none[T](not_none: T | None, /) -> T:
    if not_none is None:
        raise TypeError()
    return not_none


def strict_cast[T](type_: type[T], expr: Any, /) -> T:
    if not isinstance(expr, type_):
        raise TypeError()
    return expr
