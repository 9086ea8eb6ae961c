"""Baby Jubjub twisted Edwards curve arithmetic.

Curve: a*x^2 + y^2 = 1 + d*x^2*y^2 over F_p, with the circomlib parameters.
All protocol points live in the prime-order subgroup generated by BASE
(circomlib's ``Base8``); ORDER is that subgroup's order.

Points are immutable values. Anything parsed from external input goes through
``point_from_strings`` which rejects off-curve and out-of-subgroup points
before any arithmetic touches them.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterator, List, Sequence, Tuple, Union

from .errors import InvalidScalar, PointNotOnCurve

FIELD_P = 21888242871839275222246405745257275088548364400416034343698204186575808495617
ORDER = 2736030358979909402780800718157159386076813972158567259200215660948447373041
A = 168700
D = 168696

BASE_X = 5299619240641551281634865583518297030282874472190772894086521144482721001553
BASE_Y = 16950150798460657717958625567821834550301663161624707787222815936182638968203

SCALAR_BYTES = 32
_LADDER_BITS = ORDER.bit_length()


def is_on_curve(point: Union["Point", Sequence[int]]) -> bool:
    """Check a*x^2 + y^2 == 1 + d*x^2*y^2 (mod p) for an (x, y) pair"""

    x, y = point
    if not (0 <= x < FIELD_P and 0 <= y < FIELD_P):
        return False
    x2 = x * x % FIELD_P
    y2 = y * y % FIELD_P
    return (A * x2 + y2) % FIELD_P == (1 + D * x2 * y2) % FIELD_P


@dataclass(frozen=True)
class Point:
    """Affine curve point

    Attributes
    - x, y: coordinates in [0, p)

    Construction fails with PointNotOnCurve if (x, y) is not on the curve.
    """

    x: int
    y: int

    def __post_init__(self):
        if not is_on_curve((self.x, self.y)):
            raise PointNotOnCurve("point is not on the Baby Jubjub curve")

    def __iter__(self) -> Iterator[int]:
        yield self.x
        yield self.y

    def __add__(self, other: "Point") -> "Point":
        return add(self, other)

    def __sub__(self, other: "Point") -> "Point":
        return subtract(self, other)

    def __neg__(self) -> "Point":
        return negate(self)

    def __rmul__(self, k: int) -> "Point":
        return scalar_mul(k, self)

    def __str__(self) -> str:
        return f"({self.x}, {self.y})"


_IDENTITY = Point(0, 1)
_BASE = Point(BASE_X, BASE_Y)


def identity() -> Point:
    return _IDENTITY


def base_point() -> Point:
    return _BASE


def negate(p: Point) -> Point:
    return Point((-p.x) % FIELD_P, p.y)


## --- projective internals --------------------------------------------------

_Proj = Tuple[int, int, int]


def _to_proj(p: Point) -> _Proj:
    return (p.x, p.y, 1)


def _to_affine(q: _Proj) -> Point:
    X, Y, Z = q
    z_inv = pow(Z, FIELD_P - 2, FIELD_P)
    return Point(X * z_inv % FIELD_P, Y * z_inv % FIELD_P)


def _proj_add(p: _Proj, q: _Proj) -> _Proj:
    # add-2008-bbjlp; complete because a is a square and d is not
    X1, Y1, Z1 = p
    X2, Y2, Z2 = q
    a = Z1 * Z2 % FIELD_P
    b = a * a % FIELD_P
    c = X1 * X2 % FIELD_P
    d = Y1 * Y2 % FIELD_P
    e = D * c % FIELD_P * d % FIELD_P
    f = (b - e) % FIELD_P
    g = (b + e) % FIELD_P
    X3 = a * f % FIELD_P * (((X1 + Y1) * (X2 + Y2) - c - d) % FIELD_P) % FIELD_P
    Y3 = a * g % FIELD_P * ((d - A * c) % FIELD_P) % FIELD_P
    Z3 = f * g % FIELD_P
    return (X3, Y3, Z3)


def _cswap(bit: int, p: _Proj, q: _Proj) -> Tuple[_Proj, _Proj]:
    mask = -bit
    out_p: List[int] = []
    out_q: List[int] = []
    for u, v in zip(p, q):
        t = mask & (u ^ v)
        out_p.append(u ^ t)
        out_q.append(v ^ t)
    return tuple(out_p), tuple(out_q)


## --- group operations -----------------------------------------------------


def add(p: Point, q: Point) -> Point:
    return _to_affine(_proj_add(_to_proj(p), _to_proj(q)))


def subtract(p: Point, q: Point) -> Point:
    return add(p, negate(q))


def scalar_mul(k: int, p: Point) -> Point:
    """Compute k*P with a fixed-length Montgomery ladder

    The scalar is reduced mod ORDER and every call performs the same
    sequence of additions regardless of its bits, since k is often a
    secret key or blinding value.
    """

    if isinstance(k, bool) or not isinstance(k, int):
        raise InvalidScalar("scalar must be an int")
    k %= ORDER

    r0: _Proj = (0, 1, 1)
    r1: _Proj = _to_proj(p)
    for i in reversed(range(_LADDER_BITS)):
        bit = (k >> i) & 1
        r0, r1 = _cswap(bit, r0, r1)
        r1 = _proj_add(r0, r1)
        r0 = _proj_add(r0, r0)
        r0, r1 = _cswap(bit, r0, r1)
    return _to_affine(r0)


def _mul_vartime(k: int, p: Point) -> Point:
    # Public scalars only (subgroup checks); k is not reduced.
    acc: _Proj = (0, 1, 1)
    addend = _to_proj(p)
    while k > 0:
        if k & 1:
            acc = _proj_add(acc, addend)
        addend = _proj_add(addend, addend)
        k >>= 1
    return _to_affine(acc)


def in_subgroup(p: Point) -> bool:
    """True when ORDER * P is the identity"""

    return _mul_vartime(ORDER, p) == _IDENTITY


## --- encoding -------------------------------------------------------------


def point_from_strings(x: Union[str, int], y: Union[str, int], check_subgroup: bool = True) -> Point:
    """Parse a point from its decimal-string wire encoding

    Rejects (PointNotOnCurve) anything that is not a canonical, on-curve,
    prime-subgroup point.
    """

    try:
        xi = int(x)
        yi = int(y)
    except (TypeError, ValueError):
        raise PointNotOnCurve("point coordinates must be decimal integers") from None
    if not is_on_curve((xi, yi)):
        raise PointNotOnCurve(f"({x}, {y}) is not on the curve")
    point = Point(xi, yi)
    if check_subgroup and not in_subgroup(point):
        raise PointNotOnCurve(f"({x}, {y}) is not in the prime-order subgroup")
    return point


def point_to_strings(p: Point) -> List[str]:
    return [str(p.x), str(p.y)]


def int_to_bytes32(value: int) -> bytes:
    """Big-endian 32-byte encoding for field elements and scalars"""

    return value.to_bytes(SCALAR_BYTES, "big")
