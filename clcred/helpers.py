"""Number theoretic helpers shared by the issuer and the prover.

All arithmetic is done with petlib big numbers. Python integers are only
accepted at the edges and converted with :func:`to_bn`.

Example:
    >>> n = Bn(23)
    >>> mod_pow(Bn(5), Bn(-1), n) == Bn(5).mod_inverse(n)
    True

"""

import logging
import re
from hashlib import sha256

from petlib.bn import Bn

from .constants import LARGE_E_START, LARGE_E_END_RANGE, LARGE_VPRIME_PRIME, \
    LARGE_NONCE, LARGE_MASTER_SECRET, I32_BOUND
from .errors import InvalidParam, InvalidStructure, CommonIOError

import pytest

LOGGER = logging.getLogger(__name__)

_DECIMAL = re.compile(r"^-?[0-9]+$")

# Give up searching for a prime in a range after so many candidates.
PRIME_SEARCH_ITERATIONS = 100000


def to_bn(num):
    """Convert a python integer or a Bn into a Bn, whatever its size."""
    if isinstance(num, Bn):
        return num
    if isinstance(num, bool) or not isinstance(num, int):
        raise TypeError("Cannot coerce %r into a Bn." % (num,))
    if -Bn._upper_bound <= num <= Bn._upper_bound:
        return Bn(num)
    return Bn.from_decimal(str(num))


def bn_from_decimal(sdec, param=None):
    """Parse a decimal string, possibly negative, into a Bn.

    A malformed string raises InvalidParam when ``param`` names the position of
    the caller's argument, and InvalidStructure otherwise (decoding).
    """
    if not isinstance(sdec, str) or not _DECIMAL.match(sdec):
        msg = "Invalid decimal number: %r" % (sdec,)
        if param is not None:
            raise InvalidParam(msg, param=param)
        raise InvalidStructure(msg)
    return Bn.from_decimal(sdec)


def two_to(bits):
    return Bn(2) ** bits


def mod_pow(base, exp, n):
    """Modular exponentiation that also accepts negative exponents."""
    if exp < 0:
        return pow(mod_inverse(base, n), -exp, n)
    return pow(base, exp, n)


def mod_inverse(x, n):
    try:
        return x.mod_inverse(n)
    except Exception as e:
        raise InvalidStructure("Value is not invertible") from e


def random_bits(bits):
    """A uniformly random number of at most ``bits`` bits."""
    return two_to(bits).random()


def random_in_range(start, end):
    """A uniformly random number in [start, end)."""
    return start + (end - start).random()


def random_qr(n):
    """A random quadratic residue modulo n."""
    return pow(n.random(), Bn(2), n)


def gen_x(p, q):
    """A random exponent in [2, pq)."""
    return random_in_range(Bn(2), p * q)


def generate_safe_prime(bits):
    LOGGER.debug("Generating a %s bit safe prime", bits)
    try:
        return Bn.get_prime(bits, safe=1)
    except Exception as e:
        raise CommonIOError("Safe prime generation failed: %s" % e) from e


def generate_prime_in_range(start, end):
    """A random prime in [start, end]."""
    width = end - start + Bn(1)
    for _ in range(PRIME_SEARCH_ITERATIONS):
        candidate = start + width.random()
        if candidate.is_odd() and candidate.is_prime():
            return candidate
    raise CommonIOError("No prime found in range after %s candidates" % PRIME_SEARCH_ITERATIONS)


def generate_e():
    """The prime exponent of a primary signature."""
    start = two_to(LARGE_E_START)
    return generate_prime_in_range(start, start + two_to(LARGE_E_END_RANGE))


def check_e(e):
    start = two_to(LARGE_E_START)
    return start <= e <= start + two_to(LARGE_E_END_RANGE) and e.is_prime()


def generate_v_prime_prime():
    """Random issuer exponent v'' with its top bit set."""
    return random_bits(LARGE_VPRIME_PRIME - 1) + two_to(LARGE_VPRIME_PRIME - 1)


def new_nonce():
    return random_bits(LARGE_NONCE)


def new_master_secret_value():
    return random_bits(LARGE_MASTER_SECRET)


def hash_to_bn(data):
    if isinstance(data, str):
        data = data.encode("utf8")
    return Bn.from_binary(sha256(data).digest())


def encode_value(raw):
    """Encode a raw attribute value as the decimal string that gets signed.

    Integers, and strings holding integers, within the signed 32 bit range
    encode as their decimal form, so "007" gives "7" (booleans count as 1
    and 0). Everything else is replaced by the SHA-256 digest of its string
    form, read as a big-endian integer.

    Example:
        >>> encode_value("87121")
        '87121'
        >>> encode_value(True)
        '1'

    """
    if isinstance(raw, int) and -I32_BOUND <= raw < I32_BOUND:
        return str(int(raw))

    if isinstance(raw, str):
        try:
            i32 = int(raw)
            if -I32_BOUND <= i32 < I32_BOUND:
                return str(i32)
        except ValueError:
            pass

    return str(hash_to_bn(str(raw)))


def gen_credential_context(prover_id, rev_idx=None):
    """The m2 attribute binding a credential to its holder and index."""
    idx = -1 if rev_idx is None else rev_idx
    data = hash_to_bn(prover_id).binary() + hash_to_bn(str(idx)).binary()
    return hash_to_bn(data)


# ---- TESTS ----

def test_to_bn():
    assert to_bn(5) == Bn(5)
    big = 2 ** 300 + 7
    assert str(to_bn(big)) == str(big)
    assert str(to_bn(-big)) == str(-big)
    with pytest.raises(TypeError):
        to_bn("5")


def test_bn_from_decimal():
    assert bn_from_decimal("123") == Bn(123)
    assert bn_from_decimal("-42") == Bn(-42)

    with pytest.raises(InvalidParam) as excinfo:
        bn_from_decimal("12a", param=3)
    assert excinfo.value.param == 3

    with pytest.raises(InvalidStructure):
        bn_from_decimal("")

    with pytest.raises(InvalidStructure):
        bn_from_decimal(12)


def test_mod_pow():
    n = Bn(1000003)
    b = Bn(12345)
    assert mod_pow(b, Bn(-3), n) == pow(b, Bn(3), n).mod_inverse(n)
    assert mod_pow(b, Bn(0), n) == Bn(1)
    assert mod_pow(b, Bn(2), n) == b.mod_mul(b, n)

    with pytest.raises(InvalidStructure):
        mod_pow(Bn(7), Bn(-1), Bn(49))


def test_randomness():
    for _ in range(20):
        assert random_bits(16) < Bn(2 ** 16)
        x = random_in_range(Bn(10), Bn(20))
        assert Bn(10) <= x < Bn(20)

    p, q = Bn(11), Bn(23)
    x = gen_x(p, q)
    assert Bn(2) <= x < p * q


def test_random_qr():
    n = Bn(7 * 11)
    r = random_qr(n)
    assert any(pow(Bn(y), Bn(2), n) == r for y in range(77))


def test_prime_in_range():
    start = Bn(1000)
    p = generate_prime_in_range(start, Bn(1100))
    assert start <= p <= Bn(1100)
    assert p.is_prime()

    with pytest.raises(CommonIOError):
        generate_prime_in_range(Bn(24), Bn(28))


def test_generate_e():
    e = generate_e()
    assert e.num_bits() == LARGE_E_START + 1
    assert check_e(e)
    assert not check_e(e + Bn(1))


def test_v_prime_prime():
    assert generate_v_prime_prime().num_bits() == LARGE_VPRIME_PRIME


def test_nonce():
    assert new_nonce().num_bits() <= LARGE_NONCE
    assert new_nonce() != new_nonce()


def test_encode_value():
    assert encode_value("101 Wilson Lane") == \
        "68086943237164982734333428280784300550565381723532936263016368251445461241953"
    assert encode_value("87121") == "87121"
    assert encode_value("007") == "7"
    assert encode_value("+5") == "5"
    assert encode_value("-0") == "0"
    assert encode_value("SLC") == \
        "101327353979588246869873249766058188995681113722618593621043638294296500696424"
    assert encode_value("") == \
        "102987336249554097029535212322581322789799900648198034993379397001115665086549"
    assert encode_value(None) == \
        "99769404535520360775991420569103450442789945655240760487761322098828903685777"
    assert encode_value(True) == "1"
    assert encode_value(False) == "0"
    assert encode_value("True") == \
        "27471875274925838976481193902417661171675582237244292940724984695988062543640"
    assert encode_value("False") == \
        "43710460381310391454089928988014746602980337898724813422905404670995938820350"
    assert encode_value(2147483647) == "2147483647"
    assert encode_value(2147483648) == \
        "26221484005389514539852548961319751347124425277437769688639924217837557266135"
    assert encode_value(-2147483648) == "-2147483648"
    assert encode_value(-2147483649) == \
        "68956915425095939579909400566452872085353864667122112803508671228696852865689"
    assert encode_value(0.0) == encode_value("0.0") == \
        "62838607218564353630028473473939957328943626306458686867332534889076311281879"


def test_credential_context():
    m2 = gen_credential_context("CnEDk9HrMnmiHXEV1WFgbVCRteYnPqsJwrTdcZaNhFVW", 3)
    assert m2 == gen_credential_context("CnEDk9HrMnmiHXEV1WFgbVCRteYnPqsJwrTdcZaNhFVW", 3)
    assert m2 != gen_credential_context("CnEDk9HrMnmiHXEV1WFgbVCRteYnPqsJwrTdcZaNhFVW", 4)
    assert gen_credential_context("a") == gen_credential_context("a", None)
    assert m2.num_bits() <= 256
