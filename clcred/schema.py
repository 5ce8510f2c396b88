"""Credential schemas: the ordered attribute names a credential definition signs.

The credential schema holds the attributes the issuer knows or the prover
commits to; the non-credential schema holds the attributes that never leave
the prover, such as its master secret.

Example:
    >>> builder = CredentialSchemaBuilder()
    >>> builder.add_attr("name")
    >>> builder.add_attr("age")
    >>> builder.finalize().attrs
    ('name', 'age')

"""

from .encode import Entity
from .errors import InvalidParam, InvalidState, InvalidStructure

import pytest


class CredentialSchema(Entity):
    _fields = (("attrs", "str_list"),)

    def __init__(self, attrs):
        self.attrs = tuple(attrs)

    def __contains__(self, attr):
        return attr in self.attrs

    def __iter__(self):
        return iter(self.attrs)

    def __len__(self):
        return len(self.attrs)

    def _validate(self):
        _check_names(self.attrs)


class NonCredentialSchema(CredentialSchema):
    pass


def _check_names(attrs):
    if len(set(attrs)) != len(attrs) or not all(attrs):
        raise InvalidStructure("Schema attributes must be unique and non-empty")


class CredentialSchemaBuilder(object):
    """Accumulates attribute names, each at most once, then finalizes."""

    _schema_cls = CredentialSchema

    def __init__(self):
        self._attrs = []
        self._finalized = False

    def add_attr(self, attr):
        if self._finalized:
            raise InvalidState("Schema builder is already finalized")
        if not isinstance(attr, str) or not attr:
            raise InvalidParam("Attribute name must be a non-empty string", param=2)
        if attr in self._attrs:
            raise InvalidParam("Attribute %s is already in the schema" % attr, param=2)
        self._attrs.append(attr)

    def finalize(self):
        if self._finalized:
            raise InvalidState("Schema builder is already finalized")
        self._finalized = True
        return self._schema_cls(self._attrs)


class NonCredentialSchemaBuilder(CredentialSchemaBuilder):
    _schema_cls = NonCredentialSchema


# ---- TESTS ----

def test_builder():
    builder = CredentialSchemaBuilder()
    for attr in ["name", "sex", "age", "height"]:
        builder.add_attr(attr)
    schema = builder.finalize()

    assert schema.attrs == ("name", "sex", "age", "height")
    assert "age" in schema
    assert len(schema) == 4
    assert isinstance(schema, CredentialSchema)


def test_non_credential_builder():
    builder = NonCredentialSchemaBuilder()
    builder.add_attr("master_secret")
    schema = builder.finalize()
    assert isinstance(schema, NonCredentialSchema)
    assert list(schema) == ["master_secret"]
    assert schema != CredentialSchema(["master_secret"])


def test_duplicate_attr():
    builder = CredentialSchemaBuilder()
    builder.add_attr("name")
    with pytest.raises(InvalidParam) as excinfo:
        builder.add_attr("name")
    assert "already in the schema" in str(excinfo.value)

    with pytest.raises(InvalidParam):
        builder.add_attr("")


def test_finalized_builder():
    builder = CredentialSchemaBuilder()
    builder.add_attr("name")
    builder.finalize()

    with pytest.raises(InvalidState):
        builder.add_attr("age")

    with pytest.raises(InvalidState):
        builder.finalize()


def test_json():
    builder = CredentialSchemaBuilder()
    builder.add_attr("name")
    builder.add_attr("age")
    schema = builder.finalize()

    assert schema.to_json() == '{"attrs": ["name", "age"]}'
    assert CredentialSchema.from_json(schema.to_json()) == schema

    with pytest.raises(InvalidStructure):
        CredentialSchema.from_json('{"attrs": ["name", "name"]}')
