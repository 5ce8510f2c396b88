"""Credential definition: the issuer's key pair and its correctness proof.

The primary key is a CL public key over an RSA group of two safe primes.
The optional revocation key lives in the BN254 pairing group and is used by
the accumulator based non-revocation signature.

Example:
    >>> builder = CredentialSchemaBuilder()
    >>> builder.add_attr("name")
    >>> non_builder = NonCredentialSchemaBuilder()
    >>> non_builder.add_attr("master_secret")
    >>> pub, priv, proof = new_credential_def(builder.finalize(), non_builder.finalize(),
    ...                                       False, prime_bits=256)
    >>> check_credential_key_correctness_proof(pub, proof)

"""

import logging

from petlib.bn import Bn

from .constants import LARGE_PRIME
from .encode import Entity
from .errors import InvalidParam, InvalidStructure, ProofRejected
from .helpers import generate_safe_prime, random_qr, gen_x, mod_pow
from .pairing import BpGroup
from .proof import to_challenge, check_challenge
from .schema import CredentialSchema, NonCredentialSchema, \
    CredentialSchemaBuilder, NonCredentialSchemaBuilder

import pytest

LOGGER = logging.getLogger(__name__)


class CredentialPrimaryPublicKey(Entity):
    _fields = (("n", "bn"), ("s", "bn"), ("r", "bn_map"), ("rctxt", "bn"), ("z", "bn"))

    def __init__(self, n, s, r, rctxt, z):
        self.n = n
        self.s = s
        self.r = r
        self.rctxt = rctxt
        self.z = z


class CredentialPrimaryPrivateKey(Entity):
    """The Sophie Germain primes p, q of the safe primes 2p+1, 2q+1."""

    _fields = (("p", "bn"), ("q", "bn"))

    def __init__(self, p, q):
        self.p = p
        self.q = q


class CredentialRevocationPublicKey(Entity):
    _fields = (("g", "g1"), ("g_dash", "g2"), ("h", "g1"), ("h0", "g1"), ("h1", "g1"),
               ("h2", "g1"), ("htilde", "g1"), ("h_cap", "g2"), ("u", "g2"),
               ("pk", "g1"), ("y", "g2"))

    def __init__(self, g, g_dash, h, h0, h1, h2, htilde, h_cap, u, pk, y):
        self.g = g
        self.g_dash = g_dash
        self.h = h
        self.h0 = h0
        self.h1 = h1
        self.h2 = h2
        self.htilde = htilde
        self.h_cap = h_cap
        self.u = u
        self.pk = pk
        self.y = y

    def elements(self):
        return [getattr(self, name) for name, _ in self._fields]


class CredentialRevocationPrivateKey(Entity):
    _fields = (("x", "bn"), ("sk", "bn"))

    def __init__(self, x, sk):
        self.x = x
        self.sk = sk


class CredentialPublicKey(Entity):
    _fields = (("p_key", CredentialPrimaryPublicKey), ("r_key", CredentialRevocationPublicKey))

    def __init__(self, p_key, r_key=None):
        self.p_key = p_key
        self.r_key = r_key

    def attrs(self):
        return set(self.p_key.r)


class CredentialPrivateKey(Entity):
    _fields = (("p_key", CredentialPrimaryPrivateKey), ("r_key", CredentialRevocationPrivateKey))

    def __init__(self, p_key, r_key=None):
        self.p_key = p_key
        self.r_key = r_key


class CredentialKeyCorrectnessProof(Entity):
    _fields = (("c", "bn"), ("xz_cap", "bn"), ("xr_cap", "bn_map"), ("xrctxt_cap", "bn"))

    def __init__(self, c, xz_cap, xr_cap, xrctxt_cap):
        self.c = c
        self.xz_cap = xz_cap
        self.xr_cap = xr_cap
        self.xrctxt_cap = xrctxt_cap


def _check_schemas(credential_schema, non_credential_schema):
    if not isinstance(credential_schema, CredentialSchema) or \
            isinstance(credential_schema, NonCredentialSchema) or not len(credential_schema):
        raise InvalidParam("A non-empty credential schema is required", param=1)
    if not isinstance(non_credential_schema, NonCredentialSchema) or not len(non_credential_schema):
        raise InvalidParam("A non-empty non-credential schema is required", param=2)
    common = set(credential_schema.attrs) & set(non_credential_schema.attrs)
    if common:
        raise InvalidParam("Attributes in both schemas: %s" % ", ".join(sorted(common)), param=2)


def _new_primary_keys(attrs, prime_bits):
    p_safe = generate_safe_prime(prime_bits)
    q_safe = generate_safe_prime(prime_bits)
    while p_safe == q_safe:
        q_safe = generate_safe_prime(prime_bits)

    p = (p_safe - 1) // 2
    q = (q_safe - 1) // 2
    n = p_safe * q_safe
    s = random_qr(n)

    xz = gen_x(p, q)
    xr = {attr: gen_x(p, q) for attr in attrs}
    xrctxt = gen_x(p, q)

    r = {attr: pow(s, x, n) for attr, x in xr.items()}
    pub = CredentialPrimaryPublicKey(n, s, r, pow(s, xrctxt, n), pow(s, xz, n))
    return pub, CredentialPrimaryPrivateKey(p, q), (xz, xr, xrctxt)


def _new_revocation_keys():
    G = BpGroup()
    order = G.order()

    h, h0, h1, h2, htilde, g = [G.random1() for _ in range(6)]
    g_dash, h_cap, u = [G.random2() for _ in range(3)]
    x, sk = order.random(), order.random()

    pub = CredentialRevocationPublicKey(g, g_dash, h, h0, h1, h2, htilde, h_cap, u,
                                        g.mul(sk), h_cap.mul(x))
    return pub, CredentialRevocationPrivateKey(x, sk)


def _key_proof_elements(p_pub, r_pub, z_tilde, r_tilde, rctxt_tilde, nonce):
    names = sorted(p_pub.r)
    elements = [p_pub.n, p_pub.s, p_pub.z, p_pub.rctxt]
    for name in names:
        elements += [name, p_pub.r[name]]
    if r_pub is not None:
        elements += r_pub.elements()
    elements += [z_tilde, rctxt_tilde]
    for name in names:
        elements += [name, r_tilde[name]]
    if nonce is not None:
        elements.append(nonce)
    return elements


def _new_key_correctness_proof(p_pub, p_priv, xs, r_pub, nonce):
    xz, xr, xrctxt = xs
    p, q, n, s = p_priv.p, p_priv.q, p_pub.n, p_pub.s

    xz_tilde = gen_x(p, q)
    xr_tilde = {attr: gen_x(p, q) for attr in xr}
    xrctxt_tilde = gen_x(p, q)

    z_tilde = pow(s, xz_tilde, n)
    r_tilde = {attr: pow(s, x, n) for attr, x in xr_tilde.items()}
    rctxt_tilde = pow(s, xrctxt_tilde, n)

    c = to_challenge(_key_proof_elements(p_pub, r_pub, z_tilde, r_tilde, rctxt_tilde, nonce))

    xr_cap = {attr: c * xr[attr] + xr_tilde[attr] for attr in xr}
    return CredentialKeyCorrectnessProof(c, c * xz + xz_tilde, xr_cap, c * xrctxt + xrctxt_tilde)


def new_credential_def(credential_schema, non_credential_schema, support_revocation,
                       prime_bits=LARGE_PRIME, nonce=None):
    """Creates a credential definition for the attributes of both schemas.

    Args:
        credential_schema: the attributes known to or committed to the issuer.
        non_credential_schema: the attributes only the prover knows.
        support_revocation (bool): also create a revocation key.
        prime_bits (int): size of each safe prime of the RSA modulus.
        nonce (Bn): optional nonce the key correctness proof is bound to.

    Returns:
        (CredentialPublicKey, CredentialPrivateKey, CredentialKeyCorrectnessProof)
    """
    _check_schemas(credential_schema, non_credential_schema)
    attrs = list(credential_schema.attrs) + list(non_credential_schema.attrs)
    LOGGER.debug("Generating credential definition: %s attributes, %s bit primes, revocation %s",
                 len(attrs), prime_bits, bool(support_revocation))

    p_pub, p_priv, xs = _new_primary_keys(attrs, prime_bits)

    r_pub, r_priv = None, None
    if support_revocation:
        r_pub, r_priv = _new_revocation_keys()

    proof = _new_key_correctness_proof(p_pub, p_priv, xs, r_pub, nonce)
    return CredentialPublicKey(p_pub, r_pub), CredentialPrivateKey(p_priv, r_priv), proof


def check_credential_key_correctness_proof(pub_key, proof, nonce=None):
    """Checks that the key was honestly generated over a common generator s.

    Raises InvalidStructure if the proof does not cover the key's attributes,
    ProofRejected if the challenge does not verify.
    """
    p_pub = pub_key.p_key
    if set(proof.xr_cap) != set(p_pub.r):
        raise InvalidStructure("Key correctness proof does not cover the key attributes")

    n, s, c = p_pub.n, p_pub.s, proof.c

    def commitment(value, cap):
        return mod_pow(value, -c, n).mod_mul(mod_pow(s, cap, n), n)

    z_cap = commitment(p_pub.z, proof.xz_cap)
    r_cap = {attr: commitment(p_pub.r[attr], proof.xr_cap[attr]) for attr in p_pub.r}
    rctxt_cap = commitment(p_pub.rctxt, proof.xrctxt_cap)

    check_challenge(c, _key_proof_elements(p_pub, pub_key.r_key, z_cap, r_cap, rctxt_cap, nonce),
                    "key correctness proof")


def check_key_pair(pub_key, priv_key, param=1):
    """Raises InvalidParam unless the private key belongs to the public key."""
    p_pub, p_priv = pub_key.p_key, priv_key.p_key
    if p_pub.n != (Bn(2) * p_priv.p + 1) * (Bn(2) * p_priv.q + 1):
        raise InvalidParam("Credential private key does not match the public key", param=param)

    if (pub_key.r_key is None) != (priv_key.r_key is None):
        raise InvalidParam("Only one of the keys supports revocation", param=param)
    if pub_key.r_key is not None:
        r_pub, r_priv = pub_key.r_key, priv_key.r_key
        if r_pub.pk != r_pub.g.mul(r_priv.sk) or r_pub.y != r_pub.h_cap.mul(r_priv.x):
            raise InvalidParam("Revocation private key does not match the public key", param=param)


# ---- TESTS ----

TEST_PRIME_BITS = 256


def make_schemas(attrs=("name", "sex", "age", "height")):
    builder = CredentialSchemaBuilder()
    for attr in attrs:
        builder.add_attr(attr)
    non_builder = NonCredentialSchemaBuilder()
    non_builder.add_attr("master_secret")
    return builder.finalize(), non_builder.finalize()


@pytest.fixture(scope="module")
def cred_def():
    schema, non_schema = make_schemas()
    return new_credential_def(schema, non_schema, True, prime_bits=TEST_PRIME_BITS)


def test_new_credential_def(cred_def):
    pub, priv, _ = cred_def
    assert pub.attrs() == {"name", "sex", "age", "height", "master_secret"}
    p, q = priv.p_key.p, priv.p_key.q
    assert pub.p_key.n == (Bn(2) * p + 1) * (Bn(2) * q + 1)
    assert (Bn(2) * p + 1).is_prime() and (Bn(2) * q + 1).is_prime()
    assert pub.r_key.pk == pub.r_key.g.mul(priv.r_key.sk)
    assert pub.r_key.y == pub.r_key.h_cap.mul(priv.r_key.x)
    check_key_pair(pub, priv)


def test_key_correctness_proof(cred_def):
    pub, _, proof = cred_def
    check_credential_key_correctness_proof(pub, proof)


def test_key_proof_rejects_mutation(cred_def):
    pub, _, proof = cred_def

    bad = CredentialPublicKey.from_json(pub.to_json())
    bad.p_key.z = bad.p_key.z.mod_mul(bad.p_key.s, bad.p_key.n)
    with pytest.raises(ProofRejected):
        check_credential_key_correctness_proof(bad, proof)

    bad = CredentialPublicKey.from_json(pub.to_json())
    bad.p_key.r["age"] = bad.p_key.r["age"].mod_mul(bad.p_key.s, bad.p_key.n)
    with pytest.raises(ProofRejected):
        check_credential_key_correctness_proof(bad, proof)

    bad = CredentialPublicKey.from_json(pub.to_json())
    bad.p_key.rctxt = bad.p_key.rctxt + 1
    with pytest.raises(ProofRejected):
        check_credential_key_correctness_proof(bad, proof)

    bad = CredentialPublicKey.from_json(pub.to_json())
    bad.r_key.h = bad.r_key.h.double()
    with pytest.raises(ProofRejected):
        check_credential_key_correctness_proof(bad, proof)

    bad = CredentialPublicKey.from_json(pub.to_json())
    del bad.p_key.r["age"]
    with pytest.raises(InvalidStructure) as excinfo:
        check_credential_key_correctness_proof(bad, proof)
    assert "attributes" in str(excinfo.value)


def test_key_proof_nonce():
    schema, non_schema = make_schemas(("name",))
    nonce = Bn(123456789)
    pub, _, proof = new_credential_def(schema, non_schema, False,
                                       prime_bits=TEST_PRIME_BITS, nonce=nonce)
    assert pub.r_key is None
    check_credential_key_correctness_proof(pub, proof, nonce)

    with pytest.raises(ProofRejected):
        check_credential_key_correctness_proof(pub, proof)

    with pytest.raises(ProofRejected):
        check_credential_key_correctness_proof(pub, proof, nonce + 1)


def test_invalid_schemas():
    schema, non_schema = make_schemas(("name", "master_secret"))
    with pytest.raises(InvalidParam) as excinfo:
        new_credential_def(schema, non_schema, False, prime_bits=TEST_PRIME_BITS)
    assert "master_secret" in str(excinfo.value)

    with pytest.raises(InvalidParam) as excinfo:
        new_credential_def(CredentialSchema([]), non_schema, False)
    assert excinfo.value.param == 1

    with pytest.raises(InvalidParam) as excinfo:
        new_credential_def(schema, schema, False)
    assert excinfo.value.param == 2


def test_key_pair_mismatch(cred_def):
    pub, priv, _ = cred_def
    bad = CredentialPrivateKey.from_json(priv.to_json())
    bad.r_key.sk = bad.r_key.sk + 1
    with pytest.raises(InvalidParam):
        check_key_pair(pub, bad)

    with pytest.raises(InvalidParam):
        check_key_pair(pub, CredentialPrivateKey(priv.p_key, None))


def test_json(cred_def):
    pub, priv, proof = cred_def
    pub2 = CredentialPublicKey.from_json(pub.to_json())
    proof2 = CredentialKeyCorrectnessProof.from_json(proof.to_json())
    assert pub2 == pub
    assert proof2 == proof
    assert CredentialPrivateKey.from_json(priv.to_json()) == priv
    check_credential_key_correctness_proof(pub2, proof2)
