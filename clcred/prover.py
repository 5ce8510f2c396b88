"""The prover's side of issuance.

The prover blinds the attribute values it keeps from the issuer (its master
secret, committed values) into a single number u, proves that u is well
formed, and finally unblinds and checks the signature the issuer returns.

Example:
    >>> from .keys import new_credential_def, make_schemas
    >>> schema, non_schema = make_schemas(("name",))
    >>> pub, priv, key_proof = new_credential_def(schema, non_schema, False, prime_bits=256)
    >>> values = make_values(new_master_secret(), {"name": "1"})
    >>> nonce = new_nonce()
    >>> blinded, factors, proof = blind_credential_secrets(pub, key_proof, values, nonce)
    >>> check_blinded_credential_secrets_correctness_proof(blinded, proof, nonce, pub)

"""

import logging

from .constants import LARGE_VPRIME, LARGE_VPRIME_TILDE, LARGE_MTILDE
from .encode import Entity
from .errors import InvalidParam, InvalidStructure, ProofRejected
from .helpers import random_bits, mod_pow, mod_inverse, check_e, new_nonce, \
    new_master_secret_value
from .keys import check_credential_key_correctness_proof
from .pairing import BpGroup
from .proof import to_challenge, check_challenge
from .values import CredentialValuesBuilder

import pytest

LOGGER = logging.getLogger(__name__)


class MasterSecret(Entity):
    _fields = (("ms", "bn"),)

    def __init__(self, ms):
        self.ms = ms

    def value(self):
        return self.ms

    def __repr__(self):
        return "MasterSecret(...)"


def new_master_secret():
    return MasterSecret(new_master_secret_value())


class BlindedCredentialSecrets(Entity):
    """What the issuer learns about the prover's hidden values.

    ``hidden_attributes`` names every value folded into ``u``, the committed
    ones included; ``committed_attributes`` holds the Pedersen commitment of
    each committed value.
    """

    _fields = (("u", "bn"), ("ur", "g1"), ("hidden_attributes", "str_set"),
               ("committed_attributes", "bn_map"))

    def __init__(self, u, ur, hidden_attributes, committed_attributes):
        self.u = u
        self.ur = ur
        self.hidden_attributes = set(hidden_attributes)
        self.committed_attributes = dict(committed_attributes)

    def _validate(self):
        if not set(self.committed_attributes) <= self.hidden_attributes:
            raise InvalidStructure("Committed attributes must be hidden attributes")


class CredentialSecretsBlindingFactors(Entity):
    _fields = (("v_prime", "bn"), ("vr_prime", "bn"))

    def __init__(self, v_prime, vr_prime=None):
        self.v_prime = v_prime
        self.vr_prime = vr_prime


class BlindedCredentialSecretsCorrectnessProof(Entity):
    _fields = (("c", "bn"), ("v_dash_cap", "bn"), ("m_caps", "bn_map"), ("r_caps", "bn_map"))

    def __init__(self, c, v_dash_cap, m_caps, r_caps):
        self.c = c
        self.v_dash_cap = v_dash_cap
        self.m_caps = m_caps
        self.r_caps = r_caps


def _blinded_proof_elements(p_pub, blinded, u_tilde, c_tildes, nonce):
    elements = [p_pub.n, p_pub.s, p_pub.z, blinded.u, u_tilde]
    elements += sorted(blinded.hidden_attributes)
    for name in sorted(blinded.committed_attributes):
        elements += [name, blinded.committed_attributes[name], c_tildes[name]]
    elements.append(nonce)
    return elements


def _commit(p_pub, value, blinding_factor):
    n = p_pub.n
    return mod_pow(p_pub.z, value, n).mod_mul(mod_pow(p_pub.s, blinding_factor, n), n)


def _blind_primary(p_pub, hidden, v_prime):
    n = p_pub.n
    u = mod_pow(p_pub.s, v_prime, n)
    for name, m in sorted(hidden.items()):
        u = u.mod_mul(mod_pow(p_pub.r[name], m, n), n)
    return u


def _new_blinded_proof(p_pub, blinded, values, v_prime, nonce):
    hidden = values.hidden()
    committed = values.committed()

    v_tilde = random_bits(LARGE_VPRIME_TILDE)
    m_tildes = {name: random_bits(LARGE_MTILDE) for name in hidden}
    r_tildes = {name: random_bits(LARGE_MTILDE) for name in committed}

    u_tilde = _blind_primary(p_pub, m_tildes, v_tilde)
    c_tildes = {name: _commit(p_pub, m_tildes[name], r_tildes[name]) for name in committed}

    c = to_challenge(_blinded_proof_elements(p_pub, blinded, u_tilde, c_tildes, nonce))

    m_caps = {name: c * m + m_tildes[name] for name, m in hidden.items()}
    r_caps = {name: c * v.blinding_factor + r_tildes[name] for name, v in committed.items()}
    return BlindedCredentialSecretsCorrectnessProof(c, c * v_prime + v_tilde, m_caps, r_caps)


def blind_credential_secrets(credential_pub_key, credential_key_correctness_proof,
                             credential_values, credential_nonce,
                             key_correctness_proof_nonce=None):
    """Blinds the hidden values for the issuer.

    The key correctness proof is checked first, against
    ``key_correctness_proof_nonce`` when the key was created with one. Every
    value must belong to an attribute of the key.

    Returns:
        (BlindedCredentialSecrets, CredentialSecretsBlindingFactors,
         BlindedCredentialSecretsCorrectnessProof)
    """
    check_credential_key_correctness_proof(credential_pub_key, credential_key_correctness_proof,
                                           key_correctness_proof_nonce)

    unknown = credential_values.attrs() - credential_pub_key.attrs()
    if unknown:
        raise InvalidParam("Values for attributes not in the key: %s" % ", ".join(sorted(unknown)),
                           param=3)

    p_pub = credential_pub_key.p_key
    hidden = credential_values.hidden()
    LOGGER.debug("Blinding %s hidden attributes", len(hidden))

    v_prime = random_bits(LARGE_VPRIME)
    u = _blind_primary(p_pub, hidden, v_prime)
    committed = {name: _commit(p_pub, v.value, v.blinding_factor)
                 for name, v in credential_values.committed().items()}

    ur, vr_prime = None, None
    if credential_pub_key.r_key is not None:
        vr_prime = BpGroup().order().random()
        ur = credential_pub_key.r_key.h2.mul(vr_prime)

    blinded = BlindedCredentialSecrets(u, ur, set(hidden), committed)
    factors = CredentialSecretsBlindingFactors(v_prime, vr_prime)
    proof = _new_blinded_proof(p_pub, blinded, credential_values, v_prime, credential_nonce)
    return blinded, factors, proof


def check_blinded_credential_secrets_correctness_proof(blinded_credential_secrets,
                                                       blinded_credential_secrets_correctness_proof,
                                                       nonce, credential_pub_key):
    """The issuer's check that u and the commitments are well formed."""
    blinded, proof = blinded_credential_secrets, blinded_credential_secrets_correctness_proof
    p_pub = credential_pub_key.p_key

    if not blinded.hidden_attributes <= credential_pub_key.attrs():
        raise InvalidStructure("Blinded secrets hide attributes not in the key")
    if set(proof.m_caps) != blinded.hidden_attributes or \
            set(proof.r_caps) != set(blinded.committed_attributes):
        raise InvalidStructure("Blinded secrets proof does not match the blinded attributes")

    n, c = p_pub.n, proof.c
    u_cap = mod_pow(blinded.u, -c, n).mod_mul(_blind_primary(p_pub, proof.m_caps, proof.v_dash_cap), n)
    c_caps = {}
    for name, commitment in blinded.committed_attributes.items():
        c_caps[name] = mod_pow(commitment, -c, n).mod_mul(
            _commit(p_pub, proof.m_caps[name], proof.r_caps[name]), n)

    check_challenge(c, _blinded_proof_elements(p_pub, blinded, u_cap, c_caps, nonce),
                    "blinded secrets correctness proof")


def _check_primary_signature(p_cred, v, credential_values, p_pub, proof, nonce):
    n = p_pub.n
    if not check_e(p_cred.e):
        raise InvalidStructure("Invalid prime e in the credential signature")

    rx = mod_pow(p_pub.s, v, n).mod_mul(mod_pow(p_pub.rctxt, p_cred.m_2, n), n)
    for name, value in credential_values.items():
        rx = rx.mod_mul(mod_pow(p_pub.r[name], value.value, n), n)
    q = p_pub.z.mod_mul(mod_inverse(rx, n), n)

    if pow(p_cred.a, p_cred.e, n) != q:
        LOGGER.info("Rejected primary credential signature")
        raise InvalidStructure("Invalid primary credential signature")

    a_cap = mod_pow(p_cred.a, proof.c + proof.se * p_cred.e, n)
    check_challenge(proof.c, [n, q, p_cred.a, a_cap, nonce], "signature correctness proof")


def _check_non_revocation_signature(r_cred, vr, r_pub, rev_key_pub, rev_reg, witness):
    G = BpGroup()
    sig = r_cred.witness_signature

    if G.pair(r_cred.g_i, rev_reg.accum).div(G.pair(r_pub.g, witness.omega)) != rev_key_pub.z:
        LOGGER.info("Rejected witness for index %s", r_cred.i)
        raise InvalidStructure("Witness does not match the revocation registry")

    if G.pair(r_pub.pk + r_cred.g_i, sig.sigma_i) != G.pair(r_pub.g, r_pub.g_dash):
        LOGGER.info("Rejected witness signature for index %s", r_cred.i)
        raise InvalidStructure("Invalid witness signature")

    left = G.pair(r_cred.sigma, r_pub.y + r_pub.h_cap.mul(r_cred.c))
    right = G.pair(r_pub.h0 + r_pub.h1.mul(r_cred.m2) + r_pub.h2.mul(vr) + r_cred.g_i, r_pub.h_cap)
    if left != right:
        LOGGER.info("Rejected non-revocation signature for index %s", r_cred.i)
        raise InvalidStructure("Invalid non-revocation credential signature")


def process_credential_signature(credential_signature, credential_values,
                                 signature_correctness_proof, credential_secrets_blinding_factors,
                                 credential_pub_key, nonce, rev_key_pub=None, rev_reg=None,
                                 witness=None):
    """Unblinds the issuer's signature and checks it.

    ``credential_values`` must hold every attribute of the key, hidden ones
    included. When the revocation key, registry and witness are all given the
    non-revocation part is checked against the registry's accumulator too.
    The signature is only updated once every check has passed.
    """
    if credential_values.attrs() != credential_pub_key.attrs():
        raise InvalidStructure("Credential values do not match the key attributes")

    factors = credential_secrets_blinding_factors
    p_cred = credential_signature.p_credential
    v = factors.v_prime + p_cred.v
    _check_primary_signature(p_cred, v, credential_values, credential_pub_key.p_key,
                             signature_correctness_proof, nonce)

    r_cred = credential_signature.r_credential
    vr = None
    if r_cred is not None:
        if factors.vr_prime is None or credential_pub_key.r_key is None:
            raise InvalidStructure("Non-revocation signature without revocation key or blinding factor")
        vr = factors.vr_prime.mod_add(r_cred.vr_prime_prime, BpGroup().order())
        if rev_key_pub is not None and rev_reg is not None and witness is not None:
            _check_non_revocation_signature(r_cred, vr, credential_pub_key.r_key,
                                            rev_key_pub, rev_reg, witness)

    p_cred.v = v
    if r_cred is not None:
        r_cred.vr_prime_prime = vr
    LOGGER.debug("Processed credential signature, revocable %s", r_cred is not None)


# ---- TESTS ----

def make_values(master_secret, known, committed=None):
    builder = CredentialValuesBuilder()
    for attr, value in sorted(known.items()):
        builder.add_dec_known(attr, value)
    for attr, (value, blinding_factor) in sorted((committed or {}).items()):
        builder.add_dec_commitment(attr, value, blinding_factor)
    builder.add_value_hidden("master_secret", master_secret.value())
    return builder.finalize()


KNOWN = {"name": "1139481716457488690172217916278103335",
         "sex": "5944657099558967239210949258394887428692050081607692519917050011144233115103",
         "age": "28",
         "height": "175"}


@pytest.fixture(scope="module")
def cred_def():
    from .keys import new_credential_def, make_schemas, TEST_PRIME_BITS
    schema, non_schema = make_schemas()
    return new_credential_def(schema, non_schema, True, prime_bits=TEST_PRIME_BITS)


def test_master_secret():
    ms = new_master_secret()
    assert ms.value().num_bits() <= 256
    assert MasterSecret.from_json(ms.to_json()) == ms
    assert "..." in repr(ms)


def test_blind_credential_secrets(cred_def):
    pub, _, key_proof = cred_def
    values = make_values(new_master_secret(), {"name": KNOWN["name"], "age": "28"},
                         {"height": ("175", "9876543210")})
    nonce = new_nonce()
    blinded, factors, proof = blind_credential_secrets(pub, key_proof, values, nonce)

    assert blinded.hidden_attributes == {"master_secret", "height"}
    assert set(blinded.committed_attributes) == {"height"}
    assert blinded.ur == pub.r_key.h2.mul(factors.vr_prime)
    assert factors.v_prime.num_bits() <= LARGE_VPRIME
    check_blinded_credential_secrets_correctness_proof(blinded, proof, nonce, pub)


def test_blinded_proof_rejects_tampering(cred_def):
    pub, _, key_proof = cred_def
    values = make_values(new_master_secret(), {}, {"height": ("175", "42")})
    nonce = new_nonce()
    blinded, _, proof = blind_credential_secrets(pub, key_proof, values, nonce)

    with pytest.raises(ProofRejected):
        check_blinded_credential_secrets_correctness_proof(blinded, proof, nonce + 1, pub)

    n = pub.p_key.n
    bad = BlindedCredentialSecrets.from_json(blinded.to_json())
    bad.committed_attributes["height"] = bad.committed_attributes["height"].mod_mul(pub.p_key.z, n)
    with pytest.raises(ProofRejected):
        check_blinded_credential_secrets_correctness_proof(bad, proof, nonce, pub)

    bad = BlindedCredentialSecrets.from_json(blinded.to_json())
    bad.u = bad.u.mod_mul(pub.p_key.s, n)
    with pytest.raises(ProofRejected):
        check_blinded_credential_secrets_correctness_proof(bad, proof, nonce, pub)

    bad_proof = BlindedCredentialSecretsCorrectnessProof.from_json(proof.to_json())
    del bad_proof.m_caps["height"]
    with pytest.raises(InvalidStructure):
        check_blinded_credential_secrets_correctness_proof(blinded, bad_proof, nonce, pub)


def test_blind_checks_key_proof(cred_def):
    from .keys import CredentialPublicKey
    pub, _, key_proof = cred_def
    bad = CredentialPublicKey.from_json(pub.to_json())
    bad.p_key.z = bad.p_key.z.mod_mul(bad.p_key.s, bad.p_key.n)

    values = make_values(new_master_secret(), {})
    with pytest.raises(InvalidStructure):
        blind_credential_secrets(bad, key_proof, values, new_nonce())


def test_blind_unknown_attribute(cred_def):
    pub, _, key_proof = cred_def
    values = make_values(new_master_secret(), {"email": "1"})
    with pytest.raises(InvalidParam) as excinfo:
        blind_credential_secrets(pub, key_proof, values, new_nonce())
    assert "email" in str(excinfo.value)


def test_json(cred_def):
    pub, _, key_proof = cred_def
    values = make_values(new_master_secret(), {}, {"age": ("28", "1")})
    nonce = new_nonce()
    blinded, factors, proof = blind_credential_secrets(pub, key_proof, values, nonce)

    blinded2 = BlindedCredentialSecrets.from_json(blinded.to_json())
    proof2 = BlindedCredentialSecretsCorrectnessProof.from_json(proof.to_json())
    assert blinded2 == blinded
    assert CredentialSecretsBlindingFactors.from_json(factors.to_json()) == factors
    check_blinded_credential_secrets_correctness_proof(blinded2, proof2, nonce, pub)


def test_blind_with_key_proof_nonce():
    from .keys import new_credential_def, make_schemas, TEST_PRIME_BITS
    schema, non_schema = make_schemas(("name",))
    key_nonce = new_nonce()
    pub, _, key_proof = new_credential_def(schema, non_schema, False,
                                           prime_bits=TEST_PRIME_BITS, nonce=key_nonce)
    values = make_values(new_master_secret(), {"name": KNOWN["name"]})
    nonce = new_nonce()

    blinded, _, proof = blind_credential_secrets(pub, key_proof, values, nonce,
                                                 key_correctness_proof_nonce=key_nonce)
    check_blinded_credential_secrets_correctness_proof(blinded, proof, nonce, pub)

    with pytest.raises(ProofRejected):
        blind_credential_secrets(pub, key_proof, values, nonce)

    with pytest.raises(ProofRejected):
        blind_credential_secrets(pub, key_proof, values, nonce,
                                 key_correctness_proof_nonce=key_nonce + 1)


def test_pack_and_check(cred_def):
    from .keys import CredentialPublicKey, CredentialKeyCorrectnessProof
    from .pack import encode, decode
    pub, _, key_proof = cred_def
    ms = new_master_secret()
    values = make_values(ms, {"age": "28"}, {"height": ("175", "31337")})
    nonce = new_nonce()
    blinded, factors, proof = blind_credential_secrets(pub, key_proof, values, nonce)

    data = encode([pub, key_proof, ms, blinded, factors, proof, nonce])
    pub2, key_proof2, ms2, blinded2, factors2, proof2, nonce2 = decode(data)
    assert isinstance(pub2, CredentialPublicKey)
    assert isinstance(key_proof2, CredentialKeyCorrectnessProof)
    assert (ms2, blinded2, factors2, proof2) == (ms, blinded, factors, proof)

    check_credential_key_correctness_proof(pub2, key_proof2)
    check_blinded_credential_secrets_correctness_proof(blinded2, proof2, nonce2, pub2)

    # The decoded key and master secret can blind again.
    blind_credential_secrets(pub2, key_proof2, make_values(ms2, {}), new_nonce())
