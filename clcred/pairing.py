"""The BN254 pairing group used by the revocation accumulator.

Elements of G1 and G2 are points on the curve and its twist, elements of GT
live in the degree 12 extension field. Arithmetic is delegated to
``py_ecc.optimized_bn128``; this module wraps it in the group / element style
of petlib, so scalars may be given as petlib big numbers.

Example:
    >>> G = BpGroup()
    >>> g1, g2 = G.gen1(), G.gen2()
    >>> gt = G.pair(g1, g2)
    >>> gt6 = G.pair(g1.mul(2), g2.mul(3))
    >>> gt.exp(6) == gt6
    True

"""

from binascii import hexlify

from petlib.bn import Bn
from py_ecc import optimized_bn128 as bn128
from py_ecc.optimized_bn128 import FQ, FQ2, FQ12

from .errors import InvalidStructure

import pytest

# Size in bytes of a field coordinate.
COORD_SIZE = 32

_MODULUS = FQ.field_modulus
_ORDER = bn128.curve_order


def _fq_int(c):
    return (c if isinstance(c, int) else c.n) % _MODULUS


def _scalar(scalar):
    """Reduce a python int or a Bn modulo the group order."""
    return int(scalar) % _ORDER


def _coords_to_bytes(coords):
    return b"".join(c.to_bytes(COORD_SIZE, "big") for c in coords)


def _bytes_to_coords(sbin, num):
    if len(sbin) != num * COORD_SIZE:
        raise InvalidStructure("Expected %s bytes, got %s" % (num * COORD_SIZE, len(sbin)))
    coords = [int.from_bytes(sbin[i:i + COORD_SIZE], "big") for i in range(0, len(sbin), COORD_SIZE)]
    if any(c >= _MODULUS for c in coords):
        raise InvalidStructure("Coordinate exceeds the field modulus")
    return coords


def _decimal_coords(coords, num):
    if not isinstance(coords, list) or len(coords) not in (0, num):
        raise InvalidStructure("Expected a list of %s coordinates" % num)
    ints = [int(c) for c in coords if isinstance(c, str) and c.isdigit()]
    if len(ints) != len(coords) or any(c >= _MODULUS for c in ints):
        raise InvalidStructure("Invalid coordinates")
    return ints


class BpGroup(object):
    """The BN254 pairing group."""

    def order(self):
        """Returns the order of the groups as a Big Number.

        Example:
            >>> G = BpGroup()
            >>> print(G.order())
            21888242871839275222246405745257275088548364400416034343698204186575808495617

        """
        return Bn.from_decimal(str(_ORDER))

    def gen1(self):
        """ Returns the generator for G1. """
        return G1Elem(bn128.G1, self)

    def gen2(self):
        """ Returns the generator for G2. """
        return G2Elem(bn128.G2, self)

    def pair(self, g1, g2):
        """ The pairing operation e(G1, G2) -> GT. """
        return GTElem(bn128.pairing(g2.pt, g1.pt), self)

    def random1(self):
        """ A random element of G1. """
        return self.gen1().mul(self.order().random())

    def random2(self):
        """ A random element of G2. """
        return self.gen2().mul(self.order().random())

    def __eq__(self, other):
        return isinstance(other, BpGroup)

    def __hash__(self):
        return hash(BpGroup)


class _CurveElem(object):
    """Common behaviour of G1 and G2 points. Points are immutable."""

    _zero = None
    _b = None
    _coord_num = None

    def __init__(self, pt, group=None):
        self.pt = pt
        self.group = group if group is not None else BpGroup()

    @classmethod
    def inf(cls, group=None):
        """ Returns the element at infinity. """
        return cls(cls._zero, group)

    def isinf(self):
        return bn128.is_inf(self.pt)

    def add(self, other):
        """ Returns the sum of two points. """
        return type(self)(bn128.add(self.pt, other.pt), self.group)

    def sub(self, other):
        return self.add(other.neg())

    def double(self):
        """ Returns the double of the point. """
        return type(self)(bn128.double(self.pt), self.group)

    def neg(self):
        """ Returns the inverse point.

            Example:
                >>> g1 = BpGroup().gen1()
                >>> g1.add(g1.neg()).isinf()
                True

        """
        return type(self)(bn128.neg(self.pt), self.group)

    inv = neg

    def mul(self, scalar):
        """ Multiplies the point with a scalar, a Bn or an int.

            Example:
                >>> g1 = BpGroup().gen1()
                >>> g1.mul(2) == g1.double()
                True

        """
        return type(self)(bn128.multiply(self.pt, _scalar(scalar)), self.group)

    def eq(self, other):
        return bn128.eq(self.pt, other.pt)

    def __add__(self, other):
        return self.add(other)

    def __sub__(self, other):
        return self.sub(other)

    def __neg__(self):
        return self.neg()

    def __mul__(self, scalar):
        return self.mul(scalar)

    __rmul__ = __mul__

    def __eq__(self, other):
        if not isinstance(other, type(self)):
            return False
        return self.eq(other)

    def __ne__(self, other):
        return not self.__eq__(other)

    def __hash__(self):
        return hash(self.export())

    def __repr__(self):
        return "%s(%s)" % (type(self).__name__, hexlify(self.export()).decode("utf8"))

    def coords(self):
        """ The affine coordinates as python ints, empty at infinity. """
        if self.isinf():
            return []
        x, y = bn128.normalize(self.pt)
        return self._flatten(x) + self._flatten(y)

    def export(self):
        """ Export a point to a fixed size byte representation.

        The point at infinity is exported as all zero bytes.
        """
        coords = self.coords()
        if not coords:
            coords = [0] * self._coord_num
        return _coords_to_bytes(coords)

    @classmethod
    def from_bytes(cls, sbin, group=None):
        """ Import a point from bytes, checking that it lies on the curve.

            Example:
                >>> G = BpGroup()
                >>> g2 = G.gen2()
                >>> G2Elem.from_bytes(g2.export(), G) == g2
                True

        """
        coords = _bytes_to_coords(sbin, cls._coord_num)
        if not any(coords):
            return cls.inf(group)
        return cls.from_coords(coords, group)

    def to_text(self):
        return [str(c) for c in self.coords()]

    @classmethod
    def from_text(cls, coords, group=None):
        ints = _decimal_coords(coords, cls._coord_num)
        if not ints:
            return cls.inf(group)
        return cls.from_coords(ints, group)

    @classmethod
    def from_coords(cls, coords, group=None):
        pt = cls._point(coords)
        if not bn128.is_on_curve(pt, cls._b):
            raise InvalidStructure("Point is not on the curve")
        return cls(pt, group)


class G1Elem(_CurveElem):
    """ A point of G1, the curve over the base field. """

    _zero = bn128.Z1
    _b = bn128.b
    _coord_num = 2

    @staticmethod
    def _flatten(c):
        return [_fq_int(c)]

    @staticmethod
    def _point(coords):
        x, y = coords
        return (FQ(x), FQ(y), FQ.one())


class G2Elem(_CurveElem):
    """ A point of G2, the twisted curve over the quadratic extension. """

    _zero = bn128.Z2
    _b = bn128.b2
    _coord_num = 4

    @staticmethod
    def _flatten(c):
        return [_fq_int(x) for x in c.coeffs]

    @staticmethod
    def _point(coords):
        x0, x1, y0, y1 = coords
        return (FQ2([x0, x1]), FQ2([y0, y1]), FQ2.one())


class GTElem(object):
    """ An element of the target group GT. """

    def __init__(self, elem, group=None):
        self.elem = elem
        self.group = group if group is not None else BpGroup()

    @staticmethod
    def one(group=None):
        """ Returns the unit of GT. """
        return GTElem(FQ12.one(), group)

    def isone(self):
        return self == GTElem.one(self.group)

    def mul(self, other):
        """ Returns the product of two elements.

            Example:
                >>> G = BpGroup()
                >>> gt = G.pair(G.gen1(), G.gen2())
                >>> gt.mul(gt.inv()).isone()
                True
        """
        return GTElem(self.elem * other.elem, self.group)

    def inv(self):
        return GTElem(self.elem.inv(), self.group)

    def div(self, other):
        return self.mul(other.inv())

    def exp(self, scalar):
        """ Raises the element to a scalar, a Bn or an int. """
        return GTElem(self.elem ** _scalar(scalar), self.group)

    def coords(self):
        return [_fq_int(c) for c in self.elem.coeffs]

    def export(self):
        return _coords_to_bytes(self.coords())

    @staticmethod
    def from_bytes(sbin, group=None):
        return GTElem(FQ12(_bytes_to_coords(sbin, 12)), group)

    def to_text(self):
        return [str(c) for c in self.coords()]

    @staticmethod
    def from_text(coords, group=None):
        ints = _decimal_coords(coords, 12)
        if not ints:
            raise InvalidStructure("Expected 12 coordinates")
        return GTElem(FQ12(ints), group)

    def __mul__(self, other):
        return self.mul(other)

    def __truediv__(self, other):
        return self.div(other)

    def __pow__(self, scalar):
        return self.exp(scalar)

    def __eq__(self, other):
        if not isinstance(other, GTElem):
            return False
        return self.coords() == other.coords()

    def __ne__(self, other):
        return not self.__eq__(other)

    def __hash__(self):
        return hash(self.export())

    def __repr__(self):
        return "GTElem(%s...)" % hexlify(self.export()[:16]).decode("utf8")


# ---- TESTS ----

def test_group():
    G = BpGroup()
    assert G.order() == Bn.from_decimal(
        "21888242871839275222246405745257275088548364400416034343698204186575808495617")
    assert G == BpGroup()


def test_g1_arithmetic():
    G = BpGroup()
    g = G.gen1()
    assert g + g == g.double()
    assert g.mul(Bn(3)) == g + g + g
    assert Bn(3) * g == g.mul(3)
    assert (g - g).isinf()
    assert g.mul(G.order()).isinf()
    assert g.mul(-1) == -g
    assert g != G.gen2()


def test_g2_arithmetic():
    G = BpGroup()
    g = G.gen2()
    assert g + g == g.double()
    assert (g + G2Elem.inf(G)) == g
    assert g.mul(G.order() + Bn(1)) == g


def test_export_import():
    G = BpGroup()
    g1 = G.random1()
    g2 = G.random2()

    assert len(g1.export()) == 64
    assert len(g2.export()) == 128
    assert G1Elem.from_bytes(g1.export(), G) == g1
    assert G2Elem.from_bytes(g2.export(), G) == g2

    inf = G2Elem.inf(G)
    assert inf.export() == b"\x00" * 128
    assert G2Elem.from_bytes(inf.export(), G).isinf()


def test_import_rejects_garbage():
    G = BpGroup()
    with pytest.raises(InvalidStructure):
        G1Elem.from_bytes(b"\x01" * 64, G)

    with pytest.raises(InvalidStructure):
        G2Elem.from_bytes(b"\x01" * 12, G)

    with pytest.raises(InvalidStructure):
        G1Elem.from_text(["1", "x"], G)

    with pytest.raises(InvalidStructure):
        G1Elem.from_text(["1", "3"], G)


def test_text():
    G = BpGroup()
    g1 = G.gen1()
    assert g1.to_text() == ["1", "2"]
    assert G1Elem.from_text(["1", "2"], G) == g1
    assert G1Elem.from_text([], G).isinf()
    assert G1Elem.inf(G).to_text() == []


def test_pairing():
    G = BpGroup()
    g1, g2 = G.gen1(), G.gen2()
    gt = G.pair(g1, g2)
    assert G.pair(g1.mul(2), g2.mul(3)) == gt.exp(6)
    assert (gt * gt) / gt == gt
    assert gt ** G.order() == GTElem.one(G)

    assert GTElem.from_bytes(gt.export(), G) == gt
    assert GTElem.from_text(gt.to_text(), G) == gt
