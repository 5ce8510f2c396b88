"""Textual interchange of the credential entities.

Entities declare their fields as ``(name, kind)`` pairs. The kind drives how
the value is written out:

* ``"bn"`` -- a decimal string, possibly negative.
* ``"int"``, ``"bool"``, ``"str"`` -- the JSON value itself.
* ``"g1"``, ``"g2"``, ``"gt"`` -- a list of decimal coordinates, empty for
  the point at infinity.
* ``"bn_map"`` -- an object mapping names to decimal strings.
* ``"int_set"``, ``"str_set"`` -- a sorted list.
* ``"str_list"`` -- a list, order preserved.
* an Entity subclass -- the nested object.
* ``("map", cls)`` -- an object mapping names to nested objects.

A field holding ``None`` is written as ``null``, and read back as ``None``.

Example:
    >>> class Pair(Entity):
    ...     _fields = (("x", "bn"), ("tags", "str_set"))
    ...     def __init__(self, x, tags):
    ...         self.x, self.tags = x, tags
    >>> p = Pair(Bn(7), {"b", "a"})
    >>> p.to_json()
    '{"tags": ["a", "b"], "x": "7"}'
    >>> Pair.from_json(p.to_json()) == p
    True

"""

import json

from petlib.bn import Bn

from .pairing import BpGroup, G1Elem, G2Elem, GTElem
from .errors import InvalidStructure
from .helpers import bn_from_decimal

import pytest


def _check_type(value, types, kind):
    if not isinstance(value, types) or (types is int and isinstance(value, bool)):
        raise InvalidStructure("Expected %s, got %r" % (kind, value))
    return value


def _to_text(kind, value):
    if value is None:
        return None
    if isinstance(kind, tuple):
        return {k: v.to_dict() for k, v in sorted(value.items())}
    if isinstance(kind, type):
        return value.to_dict()
    if kind == "bn":
        return str(value)
    if kind in ("int", "bool", "str"):
        return value
    if kind in ("g1", "g2", "gt"):
        return value.to_text()
    if kind == "bn_map":
        return {k: str(v) for k, v in sorted(value.items())}
    if kind in ("int_set", "str_set"):
        return sorted(value)
    if kind == "str_list":
        return list(value)
    raise ValueError("Unknown field kind: %r" % (kind,))


def _from_text(kind, value, group):
    if value is None:
        return None
    if isinstance(kind, tuple):
        _, cls = kind
        _check_type(value, dict, "object")
        return {_check_type(k, str, "name"): cls.from_dict(v) for k, v in value.items()}
    if isinstance(kind, type):
        return kind.from_dict(value)
    if kind == "bn":
        return bn_from_decimal(value)
    if kind == "int":
        return _check_type(value, int, kind)
    if kind == "bool":
        return _check_type(value, bool, kind)
    if kind == "str":
        return _check_type(value, str, kind)
    if kind == "g1":
        return G1Elem.from_text(value, group)
    if kind == "g2":
        return G2Elem.from_text(value, group)
    if kind == "gt":
        return GTElem.from_text(value, group)
    if kind == "bn_map":
        _check_type(value, dict, "object")
        return {_check_type(k, str, "name"): bn_from_decimal(v) for k, v in value.items()}
    if kind == "int_set":
        return set(_check_type(v, int, "int") for v in _check_type(value, list, "list"))
    if kind == "str_set":
        return set(_check_type(v, str, "str") for v in _check_type(value, list, "list"))
    if kind == "str_list":
        return tuple(_check_type(v, str, "str") for v in _check_type(value, list, "list"))
    raise ValueError("Unknown field kind: %r" % (kind,))


def _field_eq(a, b):
    # Bn cannot be compared against None.
    if a is None or b is None:
        return a is b
    return a == b


class Entity(object):
    """Base class of every value exchanged between issuer and prover."""

    _fields = ()

    def __eq__(self, other):
        if type(other) is not type(self):
            return False
        return all(_field_eq(getattr(self, name), getattr(other, name))
                   for name, _ in self._fields)

    def __ne__(self, other):
        return not self.__eq__(other)

    __hash__ = None

    def __repr__(self):
        return "%s(%s)" % (type(self).__name__, ", ".join(name for name, _ in self._fields))

    def to_dict(self):
        return {name: _to_text(kind, getattr(self, name)) for name, kind in self._fields}

    @classmethod
    def from_dict(cls, data):
        if not isinstance(data, dict):
            raise InvalidStructure("Expected an object for %s" % cls.__name__)
        group = BpGroup()
        obj = cls.__new__(cls)
        for name, kind in cls._fields:
            if name not in data:
                raise InvalidStructure("Missing field %s of %s" % (name, cls.__name__))
            setattr(obj, name, _from_text(kind, data[name], group))
        obj._validate()
        return obj

    def _validate(self):
        """Hook for entities with invariants across fields."""

    def to_json(self):
        return json.dumps(self.to_dict(), sort_keys=True)

    @classmethod
    def from_json(cls, text):
        try:
            data = json.loads(text)
        except ValueError as e:
            raise InvalidStructure("Invalid JSON for %s: %s" % (cls.__name__, e)) from e
        return cls.from_dict(data)


class CryptoEnc(json.JSONEncoder):
    """
    A JSON encoder that knows about entities, Bn and group elements
    """

    def default(self, o): # pylint: disable=method-hidden
        if isinstance(o, Entity):
            return o.to_dict()

        if isinstance(o, Bn):
            return str(o)

        if isinstance(o, (G1Elem, G2Elem, GTElem)):
            return o.to_text()

        if isinstance(o, (set, frozenset)):
            return sorted(o)

        return json.JSONEncoder.default(self, o)


# ---- TESTS ----

class _Inner(Entity):
    _fields = (("v", "bn"),)

    def __init__(self, v):
        self.v = v


class _Outer(Entity):
    _fields = (("n", "bn"), ("k", "int"), ("flag", "bool"), ("name", "str"),
               ("p", "g1"), ("q", "g2"), ("r", "bn_map"), ("idx", "int_set"),
               ("tags", "str_set"), ("order", "str_list"), ("inner", _Inner),
               ("inners", ("map", _Inner)), ("opt", "bn"))

    def __init__(self):
        G = BpGroup()
        self.n = Bn(-12345)
        self.k = 7
        self.flag = True
        self.name = "x"
        self.p = G.gen1()
        self.q = G2Elem.inf(G)
        self.r = {"a": Bn(1), "b": Bn(2)}
        self.idx = {3, 1}
        self.tags = {"t"}
        self.order = ("b", "a")
        self.inner = _Inner(Bn(9))
        self.inners = {"z": _Inner(Bn(10))}
        self.opt = None


def test_round_trip():
    o = _Outer()
    text = o.to_json()
    o2 = _Outer.from_json(text)
    assert o2 == o
    assert o2.order == ("b", "a")
    assert o2.opt is None

    d = json.loads(text)
    assert d["n"] == "-12345"
    assert d["idx"] == [1, 3]
    assert d["q"] == []
    assert d["p"] == ["1", "2"]


def test_inequality():
    o, o2 = _Outer(), _Outer()
    o2.opt = Bn(1)
    assert o != o2
    assert o2 != o
    assert o != _Inner(Bn(1))


def test_malformed():
    d = _Outer().to_dict()

    bad = dict(d)
    del bad["n"]
    with pytest.raises(InvalidStructure) as excinfo:
        _Outer.from_dict(bad)
    assert "Missing field n" in str(excinfo.value)

    bad = dict(d, n="12x")
    with pytest.raises(InvalidStructure):
        _Outer.from_dict(bad)

    bad = dict(d, k="7")
    with pytest.raises(InvalidStructure):
        _Outer.from_dict(bad)

    bad = dict(d, p=["1", "3"])
    with pytest.raises(InvalidStructure):
        _Outer.from_dict(bad)

    with pytest.raises(InvalidStructure):
        _Outer.from_json("{not json")


def test_crypto_enc():
    s = json.dumps({"x": Bn(1), "e": _Inner(Bn(2)), "s": {2, 1}}, cls=CryptoEnc, sort_keys=True)
    assert s == '{"e": {"v": "2"}, "s": [1, 2], "x": "1"}'
