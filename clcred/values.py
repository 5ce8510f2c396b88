"""Attribute values of a credential.

Each attribute is either known to the issuer, hidden from it, or committed to
with a Pedersen commitment (the prover then reveals only the commitment and
keeps the blinding factor). Values are big integers; raw attribute values are
first encoded with :func:`clcred.helpers.encode_value`.

Example:
    >>> builder = CredentialValuesBuilder()
    >>> builder.add_known("name", "Alex")
    >>> builder.add_dec_known("age", "28")
    >>> values = builder.finalize()
    >>> values["age"].value
    28

"""

from petlib.bn import Bn

from .encode import Entity
from .errors import InvalidParam, InvalidState, InvalidStructure
from .helpers import bn_from_decimal, encode_value

import pytest


class CredentialValue(Entity):
    KNOWN = "known"
    HIDDEN = "hidden"
    COMMITMENT = "commitment"

    _fields = (("kind", "str"), ("value", "bn"), ("blinding_factor", "bn"))

    def __init__(self, kind, value, blinding_factor=None):
        self.kind = kind
        self.value = value
        self.blinding_factor = blinding_factor
        self._validate()

    def _validate(self):
        if self.kind not in (self.KNOWN, self.HIDDEN, self.COMMITMENT):
            raise InvalidStructure("Unknown credential value kind: %s" % self.kind)
        if (self.kind == self.COMMITMENT) != (self.blinding_factor is not None):
            raise InvalidStructure("Only committed values carry a blinding factor")

    def is_known(self):
        return self.kind == self.KNOWN

    def is_hidden(self):
        return self.kind == self.HIDDEN

    def is_commitment(self):
        return self.kind == self.COMMITMENT


class CredentialValues(Entity):
    _fields = (("attrs_values", ("map", CredentialValue)),)

    def __init__(self, attrs_values):
        self.attrs_values = dict(attrs_values)

    def __getitem__(self, attr):
        return self.attrs_values[attr]

    def __contains__(self, attr):
        return attr in self.attrs_values

    def __len__(self):
        return len(self.attrs_values)

    def attrs(self):
        return set(self.attrs_values)

    def items(self):
        return sorted(self.attrs_values.items())

    def known(self):
        return {k: v.value for k, v in self.items() if v.is_known()}

    def hidden(self):
        """The values folded into the prover's blinded secret."""
        return {k: v.value for k, v in self.items() if not v.is_known()}

    def committed(self):
        return {k: v for k, v in self.items() if v.is_commitment()}


class CredentialValuesBuilder(object):
    """Collects the values of a credential, one per attribute."""

    def __init__(self):
        self._values = {}
        self._finalized = False

    def _add(self, attr, value):
        if self._finalized:
            raise InvalidState("Credential values builder is already finalized")
        if not isinstance(attr, str) or not attr:
            raise InvalidParam("Attribute name must be a non-empty string", param=2)
        if attr in self._values:
            raise InvalidParam("Attribute %s already has a value" % attr, param=2)
        self._values[attr] = value

    def add_value_known(self, attr, value):
        self._add(attr, CredentialValue(CredentialValue.KNOWN, value))

    def add_value_hidden(self, attr, value):
        self._add(attr, CredentialValue(CredentialValue.HIDDEN, value))

    def add_value_commitment(self, attr, value, blinding_factor):
        self._add(attr, CredentialValue(CredentialValue.COMMITMENT, value, blinding_factor))

    def add_dec_known(self, attr, dec_value):
        self.add_value_known(attr, bn_from_decimal(dec_value, param=3))

    def add_dec_hidden(self, attr, dec_value):
        self.add_value_hidden(attr, bn_from_decimal(dec_value, param=3))

    def add_dec_commitment(self, attr, dec_value, dec_blinding_factor):
        value = bn_from_decimal(dec_value, param=3)
        self.add_value_commitment(attr, value, bn_from_decimal(dec_blinding_factor, param=4))

    def add_known(self, attr, raw):
        """Add a known value given in raw form, encoding it first."""
        self.add_dec_known(attr, encode_value(raw))

    def add_hidden(self, attr, raw):
        self.add_dec_hidden(attr, encode_value(raw))

    def finalize(self):
        if self._finalized:
            raise InvalidState("Credential values builder is already finalized")
        self._finalized = True
        return CredentialValues(self._values)


def encoded_values(raw_values):
    """The ``{"raw", "encoded"}`` pairs under which credential values are
    usually published alongside a credential."""
    return {attr: {"raw": str(raw), "encoded": encode_value(raw)}
            for attr, raw in sorted(raw_values.items())}


# ---- TESTS ----

def test_builder():
    builder = CredentialValuesBuilder()
    builder.add_dec_known("name", "1139481716457488690172217916278103335")
    builder.add_value_known("age", Bn(28))
    builder.add_dec_hidden("master_secret", "21578029250517794450984707538122537192839006240802068037273983354680998203845")
    builder.add_dec_commitment("zip", "87121", "4223")
    values = builder.finalize()

    assert len(values) == 4
    assert values.attrs() == {"name", "age", "master_secret", "zip"}
    assert values["age"].is_known()
    assert values["master_secret"].is_hidden()
    assert values["zip"].is_commitment()
    assert values["zip"].blinding_factor == Bn(4223)
    assert set(values.known()) == {"name", "age"}
    assert set(values.hidden()) == {"master_secret", "zip"}
    assert set(values.committed()) == {"zip"}


def test_raw_values():
    builder = CredentialValuesBuilder()
    builder.add_known("zip", "87121")
    builder.add_known("city", "SLC")
    values = builder.finalize()
    assert values["zip"].value == Bn(87121)
    assert str(values["city"].value) == \
        "101327353979588246869873249766058188995681113722618593621043638294296500696424"


def test_duplicate_and_invalid():
    builder = CredentialValuesBuilder()
    builder.add_dec_known("age", "28")

    with pytest.raises(InvalidParam) as excinfo:
        builder.add_dec_hidden("age", "28")
    assert excinfo.value.param == 2

    with pytest.raises(InvalidParam) as excinfo:
        builder.add_dec_known("height", "175cm")
    assert excinfo.value.param == 3

    with pytest.raises(InvalidParam) as excinfo:
        builder.add_dec_commitment("zip", "87121", "")
    assert excinfo.value.param == 4

    builder.finalize()
    with pytest.raises(InvalidState):
        builder.add_dec_known("name", "1")


def test_json():
    builder = CredentialValuesBuilder()
    builder.add_dec_known("age", "28")
    builder.add_dec_commitment("zip", "87121", "4223")
    values = builder.finalize()

    d = values.to_dict()
    assert d["attrs_values"]["zip"] == {"kind": "commitment", "value": "87121", "blinding_factor": "4223"}
    assert CredentialValues.from_json(values.to_json()) == values

    d["attrs_values"]["age"]["kind"] = "secret"
    with pytest.raises(InvalidStructure):
        CredentialValues.from_dict(d)


def test_encoded_values():
    enc = encoded_values({"zip": "87121", "valid": True})
    assert enc == {"valid": {"raw": "True", "encoded": "1"},
                   "zip": {"raw": "87121", "encoded": "87121"}}
