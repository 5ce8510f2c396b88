## A walk through the issuance of a revocable credential: the issuer creates
## a credential definition and a revocation registry, the prover blinds its
## master secret, the issuer signs at an index of the registry, and the prover
## checks the signature against a witness of its index. The issuer finally
## revokes the credential and the prover's witness no longer updates.

import logging

from clcred.schema import CredentialSchemaBuilder, NonCredentialSchemaBuilder
from clcred.values import CredentialValuesBuilder
from clcred.keys import new_credential_def, check_credential_key_correctness_proof
from clcred.prover import new_master_secret, blind_credential_secrets, \
    process_credential_signature
from clcred.issuer import sign_credential_with_revoc, revoke_credential
from clcred.revocation import new_revocation_registry_def, RevocationRegistryDelta, Witness
from clcred.tails import InMemoryTailsStore
from clcred.helpers import new_nonce
from clcred.errors import CredentialRevoked

import pytest

LOGGER = logging.getLogger(__name__)

PROVER_ID = "CnEDk9HrMnmiHXEV1WFgbVCRteYnPqsJwrTdcZaNhFVW"


def issuer_setup(max_cred_num, prime_bits=256):
    """ The issuer's credential definition and revocation registry for {name, age}. """
    schema = CredentialSchemaBuilder()
    schema.add_attr("name")
    schema.add_attr("age")
    non_schema = NonCredentialSchemaBuilder()
    non_schema.add_attr("master_secret")

    pub, priv, key_proof = new_credential_def(schema.finalize(), non_schema.finalize(), True,
                                              prime_bits=prime_bits)
    rev_key_pub, rev_key_priv, rev_reg, tails_gen = \
        new_revocation_registry_def(pub, max_cred_num, False)
    return (pub, priv, key_proof), (rev_key_pub, rev_key_priv, rev_reg), InMemoryTailsStore(tails_gen)


def prover_values(master_secret, name, age):
    values = CredentialValuesBuilder()
    values.add_known("name", name)
    values.add_known("age", age)
    values.add_value_hidden("master_secret", master_secret.value())
    return values.finalize()


def issue(cred_def, registry, tails, rev_idx, name, age):
    """ Runs the whole protocol for one credential, returning what the prover keeps. """
    pub, priv, key_proof = cred_def
    rev_key_pub, rev_key_priv, rev_reg = registry

    # Prover: check the issuer's key and blind the master secret
    check_credential_key_correctness_proof(pub, key_proof)
    values = prover_values(new_master_secret(), name, age)
    credential_nonce = new_nonce()
    blinded, factors, blinded_proof = blind_credential_secrets(pub, key_proof, values,
                                                               credential_nonce)

    # Issuer: sign at index rev_idx
    issuance_nonce = new_nonce()
    signature, proof, delta = sign_credential_with_revoc(
        PROVER_ID, blinded, blinded_proof, credential_nonce, issuance_nonce, values,
        pub, priv, rev_idx, rev_reg.max_cred_num, rev_reg.issuance_by_default,
        rev_reg, rev_key_priv, tails)
    LOGGER.info("Issued credential %s, delta %s", rev_idx, delta)

    # Prover: build a witness and complete the signature
    witness = Witness.new(rev_idx, rev_reg.max_cred_num,
                          RevocationRegistryDelta.from_registry(rev_reg), tails)
    process_credential_signature(signature, values, proof, factors, pub, issuance_nonce,
                                 rev_key_pub, rev_reg, witness)
    return signature, witness, delta


def test_issuance():
    cred_def, registry, tails = issuer_setup(10)
    rev_reg = registry[2]

    signature, witness, delta = issue(cred_def, registry, tails, 3, "Alex", 28)
    assert delta.issued == {3}
    assert signature.extract_index() == 3

    _, _, delta2 = issue(cred_def, registry, tails, 5, "Sam", 41)
    witness.update(3, 10, delta2, tails)

    revoked = revoke_credential(rev_reg, 10, 3, tails)
    assert rev_reg.members() == {5}
    with pytest.raises(CredentialRevoked):
        witness.update(3, 10, revoked, tails)
    assert tails.outstanding == 0


if __name__ == "__main__":
    logging.basicConfig(level=logging.DEBUG)
    cred_def, registry, tails = issuer_setup(10)
    signature, _, _ = issue(cred_def, registry, tails, 1, "Alex", 28)
    print(signature.to_json())
