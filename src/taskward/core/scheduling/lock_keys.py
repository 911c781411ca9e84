"""Deterministic task name → advisory lock id.

Every process must derive the same id for the same task name with no
coordination, so the id is a pure function of the name: the classic
``h = h * 31 + c`` string hash folded into a signed 32-bit integer, then
made non-negative.  Characters are iterated as UTF-16 code units, so a
name outside the BMP contributes two surrogate units.

Collisions between distinct names are possible and accepted.
"""

from __future__ import annotations

_INT32_MASK = 0xFFFFFFFF
_INT32_SIGN = 0x80000000


def _to_int32(value: int) -> int:
    value &= _INT32_MASK
    return value - 0x100000000 if value & _INT32_SIGN else value


def _utf16_code_units(text: str) -> list[int]:
    raw = text.encode("utf-16-le", errors="surrogatepass")
    return [int.from_bytes(raw[i : i + 2], "little") for i in range(0, len(raw), 2)]


def derive_lock_id(task_name: str) -> int:
    """Return the advisory lock id for ``task_name``.

    >>> derive_lock_id("")
    0
    >>> derive_lock_id("a")
    97
    >>> derive_lock_id("ab")
    3105
    """
    h = 0
    for unit in _utf16_code_units(task_name):
        h = _to_int32(h * 31 + unit)
    return abs(h)
