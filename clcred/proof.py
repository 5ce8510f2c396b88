"""Fiat-Shamir challenges for the correctness proofs.

Every proof of the library is a sigma protocol made non-interactive by
hashing the public values and the prover's commitments into a challenge.
The verifier recomputes the commitments from the responses and checks that
the challenge comes out the same.
"""

import logging
from binascii import hexlify
from hashlib import sha256

from petlib.bn import Bn

from .pairing import G1Elem, G2Elem, GTElem
from .errors import ProofRejected

import pytest

LOGGER = logging.getLogger(__name__)


def _elem_str(x):
    if isinstance(x, (G1Elem, G2Elem, GTElem)):
        return hexlify(x.export()).decode("utf8")
    return str(x)


def to_challenge(elements):
    """Packages a challenge in a bijective way and hashes it into a Bn."""
    elem = [len(elements)] + list(elements)
    elem_str = map(_elem_str, elem)
    elem_len = map(lambda x: "%s||%s" % (len(x), x), elem_str)
    state = "|".join(elem_len)
    H = sha256()
    H.update(state.encode("utf8"))
    return Bn.from_binary(H.digest())


def check_challenge(c, elements, what):
    """Raises ProofRejected unless the challenge recomputed over elements is c."""
    if to_challenge(elements) != c:
        LOGGER.info("Rejected %s", what)
        raise ProofRejected("Invalid %s" % what)


# ---- TESTS ----

def test_challenge_deterministic():
    elements = [Bn(1), "name", Bn(2)]
    assert to_challenge(elements) == to_challenge(list(elements))
    assert to_challenge(elements).num_bits() <= 256


def test_challenge_bijective():
    assert to_challenge(["ab", "c"]) != to_challenge(["a", "bc"])
    assert to_challenge([Bn(12), Bn(3)]) != to_challenge([Bn(1), Bn(23)])
    assert to_challenge(["a"]) != to_challenge(["a", ""])


def test_challenge_group_elements():
    from .pairing import BpGroup
    G = BpGroup()
    g = G.gen1()
    assert to_challenge([g]) == to_challenge([G.gen1()])
    assert to_challenge([g]) != to_challenge([g.double()])


def test_check_challenge():
    elements = [Bn(5), "x"]
    c = to_challenge(elements)
    check_challenge(c, elements, "test proof")

    with pytest.raises(ProofRejected) as excinfo:
        check_challenge(c, [Bn(6), "x"], "test proof")
    assert "Invalid test proof" in str(excinfo.value)
