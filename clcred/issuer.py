"""The issuer's side of issuance: signing blinded credential secrets.

A primary signature is a CL signature ``(A, e, v'')`` over the known values
and the prover's blinded secret u. For revocable credentials it comes with a
non-revocation signature binding the credential to an index of a revocation
registry.

Example:
    >>> from .keys import new_credential_def, make_schemas
    >>> from .prover import make_values, new_master_secret, blind_credential_secrets
    >>> schema, non_schema = make_schemas(("name",))
    >>> pub, priv, key_proof = new_credential_def(schema, non_schema, False, prime_bits=256)
    >>> values = make_values(new_master_secret(), {"name": "1"})
    >>> nonce, issuance_nonce = new_nonce(), new_nonce()
    >>> blinded, factors, blinded_proof = blind_credential_secrets(pub, key_proof, values, nonce)
    >>> signature, proof = sign_credential("prover", blinded, blinded_proof, nonce,
    ...                                    issuance_nonce, values, pub, priv)
    >>> signature.extract_index() is None
    True

"""

import logging

from petlib.bn import Bn

from .encode import Entity
from .errors import InvalidParam, InvalidStructure, InvalidState, ProofRejected, CommonIOError, \
    RevocationAccumulatorIsFull, InvalidRevocationAccumulatorIndex, CredentialRevoked
from .helpers import generate_e, generate_v_prime_prime, gen_credential_context, \
    mod_pow, mod_inverse, new_nonce
from .keys import check_key_pair
from .pairing import BpGroup, G2Elem
from .proof import to_challenge
from .prover import check_blinded_credential_secrets_correctness_proof

import pytest

LOGGER = logging.getLogger(__name__)


class PrimaryCredentialSignature(Entity):
    _fields = (("m_2", "bn"), ("a", "bn"), ("e", "bn"), ("v", "bn"))

    def __init__(self, m_2, a, e, v):
        self.m_2 = m_2
        self.a = a
        self.e = e
        self.v = v


class WitnessSignature(Entity):
    _fields = (("sigma_i", "g2"), ("u_i", "g2"), ("g_i", "g1"))

    def __init__(self, sigma_i, u_i, g_i):
        self.sigma_i = sigma_i
        self.u_i = u_i
        self.g_i = g_i


class NonRevocationCredentialSignature(Entity):
    _fields = (("sigma", "g1"), ("c", "bn"), ("vr_prime_prime", "bn"),
               ("witness_signature", WitnessSignature), ("g_i", "g1"), ("i", "int"), ("m2", "bn"))

    def __init__(self, sigma, c, vr_prime_prime, witness_signature, g_i, i, m2):
        self.sigma = sigma
        self.c = c
        self.vr_prime_prime = vr_prime_prime
        self.witness_signature = witness_signature
        self.g_i = g_i
        self.i = i
        self.m2 = m2


class CredentialSignature(Entity):
    _fields = (("p_credential", PrimaryCredentialSignature),
               ("r_credential", NonRevocationCredentialSignature))

    def __init__(self, p_credential, r_credential=None):
        self.p_credential = p_credential
        self.r_credential = r_credential

    def extract_index(self):
        """The revocation index of the credential, or None if it is not revocable."""
        if self.r_credential is None:
            return None
        return self.r_credential.i


class SignatureCorrectnessProof(Entity):
    _fields = (("se", "bn"), ("c", "bn"))

    def __init__(self, se, c):
        self.se = se
        self.c = c


def _check_signing_inputs(prover_id, blinded_credential_secrets, blinded_credential_secrets_correctness_proof,
                          credential_nonce, credential_issuance_nonce, credential_values,
                          credential_pub_key, credential_priv_key):
    if not isinstance(prover_id, str) or not prover_id:
        raise InvalidParam("Prover id must be a non-empty string", param=1)
    if credential_nonce == credential_issuance_nonce:
        raise InvalidParam("Credential nonce and issuance nonce must differ", param=5)
    check_key_pair(credential_pub_key, credential_priv_key, param=8)

    check_blinded_credential_secrets_correctness_proof(blinded_credential_secrets,
                                                       blinded_credential_secrets_correctness_proof,
                                                       credential_nonce, credential_pub_key)

    known = set(credential_values.known())
    hidden = blinded_credential_secrets.hidden_attributes
    if known & hidden:
        raise InvalidStructure("Attributes both known and hidden: %s" % ", ".join(sorted(known & hidden)))
    if known | hidden != credential_pub_key.attrs():
        raise InvalidStructure("Known and hidden attributes do not match the key attributes")


def _new_primary_signature(p_pub, p_priv, u, m2, credential_values):
    n = p_pub.n
    v_prime_prime = generate_v_prime_prime()
    e = generate_e()

    rx = mod_pow(p_pub.s, v_prime_prime, n).mod_mul(u, n)
    rx = rx.mod_mul(mod_pow(p_pub.rctxt, m2, n), n)
    for name, m in sorted(credential_values.known().items()):
        rx = rx.mod_mul(mod_pow(p_pub.r[name], m, n), n)

    q = p_pub.z.mod_mul(mod_inverse(rx, n), n)
    e_inverse = mod_inverse(e, p_priv.p * p_priv.q)
    a = pow(q, e_inverse, n)
    return PrimaryCredentialSignature(m2, a, e, v_prime_prime), q


def _new_signature_correctness_proof(p_pub, p_priv, p_cred, q, nonce):
    n = p_pub.n
    pq = p_priv.p * p_priv.q

    r = pq.random()
    a_cap = pow(q, r, n)
    c = to_challenge([n, q, p_cred.a, a_cap, nonce])
    se = (r - c * mod_inverse(p_cred.e, pq)) % pq
    return SignatureCorrectnessProof(se, c)


def _new_non_revocation_signature(r_pub, r_priv, rev_key_priv, ur, rev_idx, m2):
    G = BpGroup()
    order = G.order()

    vr_prime_prime = order.random()
    c = order.random()
    m2 = m2 % order
    gamma_i = pow(rev_key_priv.gamma, Bn(rev_idx), order)

    g_i = r_pub.g.mul(gamma_i)
    sigma = (r_pub.h0 + r_pub.h1.mul(m2) + ur + g_i + r_pub.h2.mul(vr_prime_prime)) \
        .mul(mod_inverse(r_priv.x.mod_add(c, order), order))
    sigma_i = r_pub.g_dash.mul(mod_inverse(r_priv.sk.mod_add(gamma_i, order), order))
    u_i = r_pub.u.mul(gamma_i)

    witness_signature = WitnessSignature(sigma_i, u_i, g_i)
    return NonRevocationCredentialSignature(sigma, c, vr_prime_prime, witness_signature,
                                            g_i, rev_idx, m2)


def sign_credential(prover_id, blinded_credential_secrets, blinded_credential_secrets_correctness_proof,
                    credential_nonce, credential_issuance_nonce, credential_values,
                    credential_pub_key, credential_priv_key):
    """Signs the known values and the prover's blinded secrets.

    The blinded secrets proof is checked against ``credential_nonce``, the
    returned correctness proof is bound to ``credential_issuance_nonce``.

    Returns:
        (CredentialSignature, SignatureCorrectnessProof)
    """
    _check_signing_inputs(prover_id, blinded_credential_secrets,
                          blinded_credential_secrets_correctness_proof, credential_nonce,
                          credential_issuance_nonce, credential_values, credential_pub_key,
                          credential_priv_key)

    p_pub, p_priv = credential_pub_key.p_key, credential_priv_key.p_key
    m2 = gen_credential_context(prover_id)
    p_cred, q = _new_primary_signature(p_pub, p_priv, blinded_credential_secrets.u, m2,
                                       credential_values)
    proof = _new_signature_correctness_proof(p_pub, p_priv, p_cred, q, credential_issuance_nonce)
    LOGGER.debug("Signed credential with %s known attributes", len(credential_values.known()))
    return CredentialSignature(p_cred), proof


def sign_credential_with_revoc(prover_id, blinded_credential_secrets,
                               blinded_credential_secrets_correctness_proof, credential_nonce,
                               credential_issuance_nonce, credential_values, credential_pub_key,
                               credential_priv_key, rev_idx, max_cred_num, issuance_by_default,
                               rev_reg, rev_key_priv, tails):
    """Signs a revocable credential and assigns it index rev_idx of the registry.

    The registry is locked for the whole call and is only changed once the
    signature is complete.

    Returns:
        (CredentialSignature, SignatureCorrectnessProof, RevocationRegistryDelta or None)
    """
    r_pub, r_priv = credential_pub_key.r_key, credential_priv_key.r_key
    if r_pub is None or r_priv is None:
        raise InvalidParam("Credential definition does not support revocation", param=7)
    if blinded_credential_secrets.ur is None:
        raise InvalidStructure("Blinded secrets lack the revocation blinding")

    _check_signing_inputs(prover_id, blinded_credential_secrets,
                          blinded_credential_secrets_correctness_proof, credential_nonce,
                          credential_issuance_nonce, credential_values, credential_pub_key,
                          credential_priv_key)

    if max_cred_num != rev_reg.max_cred_num:
        raise InvalidParam("Registry capacity is %s" % rev_reg.max_cred_num, param=10)
    if bool(issuance_by_default) != rev_reg.issuance_by_default:
        raise InvalidParam("Registry issuance type does not match", param=11)

    with rev_reg.lock:
        rev_reg.check_can_issue(rev_idx)

        p_pub, p_priv = credential_pub_key.p_key, credential_priv_key.p_key
        m2 = gen_credential_context(prover_id, rev_idx)
        p_cred, q = _new_primary_signature(p_pub, p_priv, blinded_credential_secrets.u, m2,
                                           credential_values)
        proof = _new_signature_correctness_proof(p_pub, p_priv, p_cred, q, credential_issuance_nonce)
        r_cred = _new_non_revocation_signature(r_pub, r_priv, rev_key_priv,
                                               blinded_credential_secrets.ur, rev_idx, m2)

        delta = rev_reg.issue(rev_idx, tails)

    LOGGER.debug("Signed revocable credential with index %s", rev_idx)
    return CredentialSignature(p_cred, r_cred), proof, delta


def _check_registry_capacity(rev_reg, max_cred_num):
    if max_cred_num != rev_reg.max_cred_num:
        raise InvalidParam("Registry capacity is %s" % rev_reg.max_cred_num, param=2)


def revoke_credential(rev_reg, max_cred_num, rev_idx, tails):
    """Removes the credential at rev_idx from the accumulator and returns the delta."""
    _check_registry_capacity(rev_reg, max_cred_num)
    return rev_reg.revoke(rev_idx, tails)


def recovery_credential(rev_reg, max_cred_num, rev_idx, tails):
    """Puts a revoked credential back into the accumulator and returns the delta."""
    _check_registry_capacity(rev_reg, max_cred_num)
    return rev_reg.recover(rev_idx, tails)


# ---- TESTS ----


@pytest.fixture(scope="module")
def cred_def():
    from .keys import new_credential_def, make_schemas, TEST_PRIME_BITS
    schema, non_schema = make_schemas(("name", "age"))
    return new_credential_def(schema, non_schema, True, prime_bits=TEST_PRIME_BITS)


@pytest.fixture(scope="module")
def primary_def():
    from .keys import new_credential_def, make_schemas, TEST_PRIME_BITS
    schema, non_schema = make_schemas(("name", "age"))
    return new_credential_def(schema, non_schema, False, prime_bits=TEST_PRIME_BITS)


KNOWN = {"name": "1139481716457488690172217916278103335", "age": "28"}


def blind(pub, key_proof, committed=None):
    from .prover import make_values, new_master_secret, blind_credential_secrets
    known = dict(KNOWN)
    for name in committed or {}:
        del known[name]
    values = make_values(new_master_secret(), known, committed)
    nonce = new_nonce()
    blinded, factors, proof = blind_credential_secrets(pub, key_proof, values, nonce)
    return values, blinded, factors, proof, nonce


def new_registry(pub, max_cred_num, issuance_by_default=False):
    from .revocation import new_revocation_registry_def
    from .tails import InMemoryTailsStore
    rev_key_pub, rev_key_priv, rev_reg, generator = \
        new_revocation_registry_def(pub, max_cred_num, issuance_by_default)
    return rev_key_pub, rev_key_priv, rev_reg, InMemoryTailsStore(generator)


def sign_revocable(cred_def, rev_reg, rev_key_priv, tails, rev_idx, issuance_by_default=False):
    pub, priv, key_proof = cred_def
    values, blinded, factors, blinded_proof, nonce = blind(pub, key_proof)
    issuance_nonce = new_nonce()
    signature, proof, delta = sign_credential_with_revoc(
        "CnEDk9HrMnmiHXEV1WFgbVCRteYnPqsJwrTdcZaNhFVW", blinded, blinded_proof, nonce,
        issuance_nonce, values, pub, priv, rev_idx, rev_reg.max_cred_num, issuance_by_default,
        rev_reg, rev_key_priv, tails)
    return values, factors, signature, proof, issuance_nonce, delta


def test_sign_and_process(primary_def):
    from .prover import process_credential_signature
    pub, priv, key_proof = primary_def
    values, blinded, factors, blinded_proof, nonce = blind(pub, key_proof)
    issuance_nonce = new_nonce()

    signature, proof = sign_credential("CnEDk9HrMnmiHXEV1WFgbVCRteYnPqsJwrTdcZaNhFVW", blinded,
                                       blinded_proof, nonce, issuance_nonce, values, pub, priv)
    assert signature.r_credential is None
    assert signature.p_credential.m_2 == gen_credential_context(
        "CnEDk9HrMnmiHXEV1WFgbVCRteYnPqsJwrTdcZaNhFVW")

    v_prime_prime = signature.p_credential.v
    process_credential_signature(signature, values, proof, factors, pub, issuance_nonce)
    assert signature.p_credential.v == v_prime_prime + factors.v_prime


def test_process_rejects_wrong_nonce(primary_def):
    from .prover import process_credential_signature
    pub, priv, key_proof = primary_def
    values, blinded, factors, blinded_proof, nonce = blind(pub, key_proof)
    issuance_nonce = new_nonce()
    signature, proof = sign_credential("prover", blinded, blinded_proof, nonce,
                                       issuance_nonce, values, pub, priv)
    before = CredentialSignature.from_json(signature.to_json())

    with pytest.raises(ProofRejected):
        process_credential_signature(signature, values, proof, factors, pub, issuance_nonce + 1)
    assert signature == before

    bad = SignatureCorrectnessProof(proof.se + 1, proof.c)
    with pytest.raises(ProofRejected):
        process_credential_signature(signature, values, bad, factors, pub, issuance_nonce)


def test_process_rejects_wrong_values(primary_def):
    from .prover import process_credential_signature, make_values, new_master_secret
    pub, priv, key_proof = primary_def
    values, blinded, factors, blinded_proof, nonce = blind(pub, key_proof)
    issuance_nonce = new_nonce()
    signature, proof = sign_credential("prover", blinded, blinded_proof, nonce,
                                       issuance_nonce, values, pub, priv)

    other = make_values(new_master_secret(), KNOWN)
    with pytest.raises(InvalidStructure):
        process_credential_signature(signature, other, proof, factors, pub, issuance_nonce)

    partial = make_values(new_master_secret(), {"name": KNOWN["name"]})
    with pytest.raises(InvalidStructure):
        process_credential_signature(signature, partial, proof, factors, pub, issuance_nonce)


def test_committed_values(primary_def):
    from .prover import process_credential_signature
    pub, priv, key_proof = primary_def
    values, blinded, factors, blinded_proof, nonce = blind(pub, key_proof, {"age": ("28", "777")})
    assert blinded.hidden_attributes == {"age", "master_secret"}
    issuance_nonce = new_nonce()

    signature, proof = sign_credential("prover", blinded, blinded_proof, nonce,
                                       issuance_nonce, values, pub, priv)
    process_credential_signature(signature, values, proof, factors, pub, issuance_nonce)

    bad = blinded.from_json(blinded.to_json())
    bad.committed_attributes["age"] = bad.committed_attributes["age"].mod_mul(pub.p_key.s, pub.p_key.n)
    with pytest.raises(ProofRejected):
        sign_credential("prover", bad, blinded_proof, nonce, issuance_nonce, values, pub, priv)


def test_sign_checks_inputs(primary_def, cred_def):
    pub, priv, key_proof = primary_def
    values, blinded, _, blinded_proof, nonce = blind(pub, key_proof)

    with pytest.raises(InvalidParam) as excinfo:
        sign_credential("prover", blinded, blinded_proof, nonce, nonce, values, pub, priv)
    assert excinfo.value.param == 5

    with pytest.raises(InvalidParam) as excinfo:
        sign_credential("", blinded, blinded_proof, nonce, new_nonce(), values, pub, priv)
    assert excinfo.value.param == 1

    with pytest.raises(InvalidParam) as excinfo:
        sign_credential("prover", blinded, blinded_proof, nonce, new_nonce(), values, pub, cred_def[1])
    assert excinfo.value.param == 8

    with pytest.raises(ProofRejected):
        sign_credential("prover", blinded, blinded_proof, nonce + 1, new_nonce(), values, pub, priv)

    from .prover import make_values, new_master_secret
    partial = make_values(new_master_secret(), {"name": KNOWN["name"]})
    with pytest.raises(InvalidStructure):
        sign_credential("prover", blinded, blinded_proof, nonce, new_nonce(), partial, pub, priv)


def test_revocable_issuance(cred_def):
    from .prover import process_credential_signature
    from .revocation import RevocationRegistryDelta, Witness
    pub, _, _ = cred_def
    rev_key_pub, rev_key_priv, rev_reg, tails = new_registry(pub, 10)

    values, factors, signature, proof, issuance_nonce, delta = \
        sign_revocable(cred_def, rev_reg, rev_key_priv, tails, 3)
    assert delta.issued == {3} and delta.revoked == set()
    assert delta.accumulator_before.isinf()
    assert delta.accumulator_after == rev_reg.accum
    assert signature.extract_index() == 3
    assert tails.outstanding == 0

    witness = Witness.new(3, 10, RevocationRegistryDelta.from_registry(rev_reg), tails)
    process_credential_signature(signature, values, proof, factors, pub, issuance_nonce,
                                 rev_key_pub, rev_reg, witness)

    # A second credential changes the accumulator, the witness follows.
    _, _, _, _, _, delta2 = sign_revocable(cred_def, rev_reg, rev_key_priv, tails, 7)
    witness.update(3, 10, delta2, tails)
    assert witness == Witness.new(3, 10, RevocationRegistryDelta.from_registry(rev_reg), tails)


def test_process_rejects_stale_witness(cred_def):
    from .prover import process_credential_signature
    from .revocation import Witness
    pub, _, _ = cred_def
    rev_key_pub, rev_key_priv, rev_reg, tails = new_registry(pub, 5)

    values, factors, signature, proof, issuance_nonce, _ = \
        sign_revocable(cred_def, rev_reg, rev_key_priv, tails, 1)
    sign_revocable(cred_def, rev_reg, rev_key_priv, tails, 2)

    stale = Witness(G2Elem.inf(rev_reg.accum.group))
    with pytest.raises(InvalidStructure):
        process_credential_signature(signature, values, proof, factors, pub, issuance_nonce,
                                     rev_key_pub, rev_reg, stale)


def test_issuance_by_default(cred_def):
    from .prover import process_credential_signature
    from .revocation import RevocationRegistryDelta, Witness
    pub, _, _ = cred_def
    rev_key_pub, rev_key_priv, rev_reg, tails = new_registry(pub, 4, True)
    accum = rev_reg.accum

    values, factors, signature, proof, issuance_nonce, delta = \
        sign_revocable(cred_def, rev_reg, rev_key_priv, tails, 2, True)
    assert delta is None
    assert rev_reg.accum == accum
    assert rev_reg.issued == {2}

    witness = Witness.new(2, 4, RevocationRegistryDelta.from_registry(rev_reg), tails)
    process_credential_signature(signature, values, proof, factors, pub, issuance_nonce,
                                 rev_key_pub, rev_reg, witness)

    delta = revoke_credential(rev_reg, 4, 2, tails)
    assert delta.revoked == {2}
    with pytest.raises(CredentialRevoked):
        witness.update(2, 4, delta, tails)


def test_index_bounds(cred_def):
    pub, _, _ = cred_def
    _, rev_key_priv, rev_reg, tails = new_registry(pub, 3)

    for idx in (0, 4):
        with pytest.raises(InvalidRevocationAccumulatorIndex) as excinfo:
            sign_revocable(cred_def, rev_reg, rev_key_priv, tails, idx)
        assert excinfo.value.index == idx
    assert rev_reg.issued == set()

    sign_revocable(cred_def, rev_reg, rev_key_priv, tails, 1)
    sign_revocable(cred_def, rev_reg, rev_key_priv, tails, 3)
    with pytest.raises(InvalidState):
        sign_revocable(cred_def, rev_reg, rev_key_priv, tails, 1)

    sign_revocable(cred_def, rev_reg, rev_key_priv, tails, 2)
    with pytest.raises(RevocationAccumulatorIsFull):
        sign_revocable(cred_def, rev_reg, rev_key_priv, tails, 4)


def test_registry_mismatch(cred_def, primary_def):
    pub, _, _ = cred_def
    _, rev_key_priv, rev_reg, tails = new_registry(pub, 3)

    with pytest.raises(InvalidParam) as excinfo:
        sign_revocable(cred_def, rev_reg, rev_key_priv, tails, 1, True)
    assert excinfo.value.param == 11

    with pytest.raises(InvalidParam) as excinfo:
        sign_revocable(primary_def, rev_reg, rev_key_priv, tails, 1)
    assert excinfo.value.param == 7

    with pytest.raises(InvalidParam) as excinfo:
        revoke_credential(rev_reg, 4, 1, tails)
    assert excinfo.value.param == 2


def test_registry_unchanged_on_tail_failure(cred_def):
    from .revocation import RevocationRegistry
    from .tails import InMemoryTailsStore
    pub, _, _ = cred_def
    _, rev_key_priv, rev_reg, tails = new_registry(pub, 3)

    class FailingStore(InMemoryTailsStore):
        def take(self, index):
            raise OSError("tails unavailable")

    before = RevocationRegistry.from_json(rev_reg.to_json())
    with pytest.raises(CommonIOError):
        sign_revocable(cred_def, rev_reg, rev_key_priv, FailingStore(tails.tails), 1)
    assert rev_reg == before

    sign_revocable(cred_def, rev_reg, rev_key_priv, tails, 1)
    assert rev_reg.issued == {1}


def test_revoke_and_recover(cred_def):
    from .revocation import Witness, RevocationRegistryDelta
    pub, _, _ = cred_def
    _, rev_key_priv, rev_reg, tails = new_registry(pub, 3)
    sign_revocable(cred_def, rev_reg, rev_key_priv, tails, 1)
    sign_revocable(cred_def, rev_reg, rev_key_priv, tails, 2)

    accum = rev_reg.accum
    witness = Witness.new(2, 3, RevocationRegistryDelta.from_registry(rev_reg), tails)

    revoked = revoke_credential(rev_reg, 3, 1, tails)
    assert revoked.revoked == {1}
    assert rev_reg.members() == {2}
    with pytest.raises(CredentialRevoked):
        revoke_credential(rev_reg, 3, 1, tails)

    recovered = recovery_credential(rev_reg, 3, 1, tails)
    assert recovered.issued == {1}
    assert rev_reg.accum == accum

    with pytest.raises(InvalidState):
        recovery_credential(rev_reg, 3, 2, tails)

    merged = revoked.merge(recovered)
    assert merged.issued == set() and merged.revoked == set()
    witness.update(2, 3, merged, tails)
    assert witness == Witness.new(2, 3, RevocationRegistryDelta.from_registry(rev_reg), tails)
    assert tails.outstanding == 0


def test_serialization(cred_def):
    from .pack import encode, decode
    pub, _, _ = cred_def
    _, rev_key_priv, rev_reg, tails = new_registry(pub, 3)
    _, _, signature, proof, _, delta = sign_revocable(cred_def, rev_reg, rev_key_priv, tails, 1)

    assert CredentialSignature.from_json(signature.to_json()) == signature
    assert SignatureCorrectnessProof.from_json(proof.to_json()) == proof
    assert decode(encode([signature, proof, delta, rev_reg])) == [signature, proof, delta, rev_reg]


def test_process_decoded(cred_def):
    from .pack import encode, decode
    from .prover import process_credential_signature
    from .revocation import RevocationRegistryDelta, Witness
    pub, _, _ = cred_def
    rev_key_pub, rev_key_priv, rev_reg, tails = new_registry(pub, 4)
    values, factors, signature, proof, issuance_nonce, _ = \
        sign_revocable(cred_def, rev_reg, rev_key_priv, tails, 2)
    witness = Witness.new(2, 4, RevocationRegistryDelta.from_registry(rev_reg), tails)

    data = encode([signature, proof, values, factors, pub, rev_key_pub, rev_reg, witness,
                   issuance_nonce])
    decoded = decode(data)
    assert decoded == [signature, proof, values, factors, pub, rev_key_pub, rev_reg, witness,
                       issuance_nonce]

    signature2, proof2, values2, factors2, pub2, rev_key_pub2, rev_reg2, witness2, nonce2 = decoded
    process_credential_signature(signature2, values2, proof2, factors2, pub2, nonce2,
                                 rev_key_pub2, rev_reg2, witness2)

    # The same through the text form.
    signature3 = CredentialSignature.from_json(signature.to_json())
    proof3 = SignatureCorrectnessProof.from_json(proof.to_json())
    process_credential_signature(signature3, values, proof3, factors, pub, issuance_nonce,
                                 rev_key_pub, rev_reg, witness)
    assert signature3 == signature2


def test_concurrent_signing(cred_def):
    import threading
    pub, _, key_proof = cred_def
    rev_key_pub, rev_key_priv, rev_reg, tails = new_registry(pub, 6)
    requests = [blind(pub, key_proof) for _ in range(6)]
    deltas, errors = [], []

    def sign(rev_idx):
        values, blinded, _, blinded_proof, nonce = requests[rev_idx - 1]
        try:
            _, _, delta = sign_credential_with_revoc(
                "prover", blinded, blinded_proof, nonce, new_nonce(), values, pub, cred_def[1],
                rev_idx, 6, False, rev_reg, rev_key_priv, tails)
            deltas.append(delta)
        except Exception as e:
            errors.append(e)

    threads = [threading.Thread(target=sign, args=(i,)) for i in range(1, 7)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert errors == []
    assert len(deltas) == 6
    assert rev_reg.members() == set(range(1, 7))
    assert tails.outstanding == 0
    with pytest.raises(InvalidState):
        rev_reg.check_can_issue(1)
