"""Bit lengths of the quantities used by the CL issuance protocol.

Callers may lower ``prime_bits`` when generating throw-away keys (tests do),
every other length is fixed by the protocol.
"""

# Master secret of the prover.
LARGE_MASTER_SECRET = 256

# Size of each safe prime of the RSA modulus.
LARGE_PRIME = 1024

# Prover blinding factor v' and issuer randomness v''.
LARGE_VPRIME = 2128
LARGE_VPRIME_PRIME = 2724

# The signature exponent e is a prime in [2^LARGE_E_START, 2^LARGE_E_START + 2^LARGE_E_END_RANGE].
LARGE_E_START = 596
LARGE_E_END_RANGE = 119

# Randomness for the blinded secrets correctness proof.
LARGE_MTILDE = 593
LARGE_VPRIME_TILDE = 2464

# Nonces exchanged between issuer and prover.
LARGE_NONCE = 80

# Attribute values within the signed 32 bit range are signed as themselves.
I32_BOUND = 2 ** 31

# Version tag written at the start of a tails file.
TAILS_FILE_VERSION = 2
