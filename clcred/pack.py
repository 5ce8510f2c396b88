"""The module provides functions to pack and unpack the credential entities,
petlib Bn and pairing group elements to and from a compact binary format.

Example:
    >>> from .schema import CredentialSchemaBuilder
    >>> builder = CredentialSchemaBuilder()
    >>> builder.add_attr("name")
    >>> schema = builder.finalize()
    >>> decode(encode([schema, Bn(5)])) == [schema, Bn(5)]
    True

"""

import msgpack

from petlib.bn import Bn

from .pairing import G1Elem, G2Elem, GTElem
from .errors import InvalidStructure
from .schema import CredentialSchema, NonCredentialSchema
from .values import CredentialValue, CredentialValues
from .keys import CredentialPrimaryPublicKey, CredentialPrimaryPrivateKey, \
    CredentialRevocationPublicKey, CredentialRevocationPrivateKey, \
    CredentialPublicKey, CredentialPrivateKey, CredentialKeyCorrectnessProof
from .prover import MasterSecret, BlindedCredentialSecrets, \
    CredentialSecretsBlindingFactors, BlindedCredentialSecretsCorrectnessProof
from .issuer import PrimaryCredentialSignature, WitnessSignature, \
    NonRevocationCredentialSignature, CredentialSignature, SignatureCorrectnessProof
from .revocation import RevocationKeyPublic, RevocationKeyPrivate, \
    RevocationRegistry, RevocationRegistryDelta, Witness

import pytest

__all__ = ["encode", "decode", "register_coders"]

_pack_reg = {}
_unpack_reg = {}


def register_coders(cls, num, enc_func, dec_func):
    """ Register a new type for encoding and decoding.
    Take a class type, a number, an encoding and a decoding function."""

    if num in _unpack_reg or cls in _pack_reg:
        raise Exception("Class or number already in use.")

    coders = (cls, num, enc_func, dec_func)
    _pack_reg[cls] = coders
    _unpack_reg[num] = coders


def bn_enc(obj):
    if obj < 0:
        neg = b"-"
        data = (-obj).binary()
    else:
        neg = b"+"
        data = obj.binary()
    return neg + data


def bn_dec(data):
    num = Bn.from_binary(data[1:])
    if data[:1] == b"-":
        return -num
    return num


def _make_elem_coders(cls):
    def enc(obj):
        return obj.export()

    def dec(data):
        return cls.from_bytes(data)

    return enc, dec


def _to_packable(kind, value):
    if value is None:
        return None
    if kind in ("int_set", "str_set"):
        return sorted(value)
    if kind == "str_list":
        return list(value)
    return value


def _from_packed(kind, value):
    if value is None:
        return None
    if kind in ("int_set", "str_set"):
        return set(value)
    if kind == "str_list":
        return tuple(value)
    return value


def _make_entity_coders(cls):
    def enc(obj):
        fields = [_to_packable(kind, getattr(obj, name)) for name, kind in cls._fields]
        return msgpack.packb(fields, default=default, use_bin_type=True)

    def dec(data):
        fields = msgpack.unpackb(data, ext_hook=ext_hook, raw=False)
        if not isinstance(fields, list) or len(fields) != len(cls._fields):
            raise InvalidStructure("Malformed %s" % cls.__name__)
        obj = cls.__new__(cls)
        for (name, kind), value in zip(cls._fields, fields):
            setattr(obj, name, _from_packed(kind, value))
        obj._validate()
        return obj

    return enc, dec


ENTITIES = [
    (CredentialSchema, 10),
    (NonCredentialSchema, 11),
    (CredentialValue, 12),
    (CredentialValues, 13),
    (CredentialPrimaryPublicKey, 20),
    (CredentialPrimaryPrivateKey, 21),
    (CredentialRevocationPublicKey, 22),
    (CredentialRevocationPrivateKey, 23),
    (CredentialPublicKey, 24),
    (CredentialPrivateKey, 25),
    (CredentialKeyCorrectnessProof, 26),
    (MasterSecret, 30),
    (BlindedCredentialSecrets, 31),
    (CredentialSecretsBlindingFactors, 32),
    (BlindedCredentialSecretsCorrectnessProof, 33),
    (PrimaryCredentialSignature, 40),
    (WitnessSignature, 41),
    (NonRevocationCredentialSignature, 42),
    (CredentialSignature, 43),
    (SignatureCorrectnessProof, 44),
    (RevocationKeyPublic, 50),
    (RevocationKeyPrivate, 51),
    (RevocationRegistry, 52),
    (RevocationRegistryDelta, 53),
    (Witness, 54),
]


def _init_coders():
    global _pack_reg, _unpack_reg
    _pack_reg, _unpack_reg = {}, {}
    register_coders(Bn, 0, bn_enc, bn_dec)
    for num, cls in enumerate([G1Elem, G2Elem, GTElem], 1):
        register_coders(cls, num, *_make_elem_coders(cls))
    for cls, num in ENTITIES:
        register_coders(cls, num, *_make_entity_coders(cls))


# Register default coders
_init_coders()


def default(obj):
    # Serialize registered types, entity classes are matched exactly
    coders = _pack_reg.get(type(obj))
    if coders is None:
        raise TypeError("Unknown type: %r" % (type(obj),))
    _, num, enc, _ = coders
    return msgpack.ExtType(num, enc(obj))


def ext_hook(code, data):
    if code in _unpack_reg:
        _, _, _, dec = _unpack_reg[code]
        return dec(data)

    # Other
    return msgpack.ExtType(code, data)


def encode(structure):
    """ Encode a structure containing entities and petlib objects to a binary format. """
    return msgpack.packb(structure, default=default, use_bin_type=True)


def decode(packed_data):
    """ Decode a binary byte sequence into a structure containing entities.

    Malformed input raises InvalidStructure.
    """
    try:
        return msgpack.unpackb(packed_data, ext_hook=ext_hook, raw=False)
    except (ValueError, TypeError, msgpack.UnpackException) as e:
        raise InvalidStructure("Cannot decode packed data: %s" % e) from e

# --- TESTS ---


def test_bn():
    bn1, bn2 = Bn(1), Bn(2)
    test_data = [bn1, bn2, -bn1, -bn2, Bn(0)]
    packed = msgpack.packb(test_data, default=default, use_bin_type=True)
    x = msgpack.unpackb(packed, ext_hook=ext_hook, raw=False)
    assert x == test_data


def test_group_elements():
    from .pairing import BpGroup
    G = BpGroup()
    test_data = [G.gen1(), G.random2(), G1Elem.inf(G), G.pair(G.gen1(), G.gen2())]
    x = decode(encode(test_data))
    assert x == test_data


def test_entities():
    from .schema import NonCredentialSchemaBuilder
    from .values import CredentialValuesBuilder
    builder = NonCredentialSchemaBuilder()
    builder.add_attr("master_secret")
    schema = builder.finalize()

    values = CredentialValuesBuilder()
    values.add_dec_known("age", "28")
    values.add_dec_commitment("zip", "87121", "12345")
    values.add_dec_hidden("master_secret", "-3")
    values = values.finalize()

    test_data = {"schema": schema, "values": values}
    x = decode(encode(test_data))
    assert x == test_data
    assert x["values"]["zip"].blinding_factor == Bn(12345)


def test_registry_sets():
    from .pairing import BpGroup
    reg = RevocationRegistry(G2Elem.inf(BpGroup()), 5, False)
    reg.issued = {1, 4}
    reg.revoked = {4}
    x = decode(encode(reg))
    assert x == reg
    assert x.issued == {1, 4}


def test_unknown_type():
    with pytest.raises(TypeError):
        encode([object()])


def test_malformed():
    with pytest.raises(InvalidStructure):
        decode(msgpack.packb(msgpack.ExtType(10, msgpack.packb([1, 2, 3]))))

    with pytest.raises(InvalidStructure):
        decode(b"\xc1")
