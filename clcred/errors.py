"""Errors raised by the credential issuance library.

Every error carries an ``error_code`` from the closed :class:`ErrorCode`
enumeration and a human readable message. Errors that concern a revocation
index also carry that index.

Example:
    >>> try:
    ...     raise InvalidRevocationAccumulatorIndex(11)
    ... except AnoncredsError as e:
    ...     print(e.error_code == ErrorCode.AnoncredsInvalidRevocationAccumulatorIndex, e.index)
    True 11

"""

from enum import IntEnum

import pytest


class ErrorCode(IntEnum):
    Success = 0

    CommonInvalidParam1 = 100
    CommonInvalidParam2 = 101
    CommonInvalidParam3 = 102
    CommonInvalidParam4 = 103
    CommonInvalidParam5 = 104
    CommonInvalidParam6 = 105
    CommonInvalidParam7 = 106
    CommonInvalidParam8 = 107
    CommonInvalidParam9 = 108
    CommonInvalidParam10 = 109
    CommonInvalidParam11 = 110
    CommonInvalidParam12 = 111
    CommonInvalidState = 112
    CommonInvalidStructure = 113
    CommonIOError = 114

    AnoncredsRevocationAccumulatorIsFull = 115
    AnoncredsInvalidRevocationAccumulatorIndex = 116
    AnoncredsCredentialRevoked = 117
    AnoncredsProofRejected = 118


class AnoncredsError(Exception):
    """Base class for all errors of the library."""

    error_code = None

    def __init__(self, *args, error_code=None):
        super().__init__(*args)
        if error_code is not None:
            self.error_code = error_code

    @property
    def message(self):
        return str(self.args[0]).strip() if self.args else ""

    def __str__(self):
        if self.error_code is None:
            return self.message
        return "%s: %s" % (self.error_code.name, self.message)


class InvalidParam(AnoncredsError):
    """A caller supplied argument is missing, malformed or out of domain.

    ``param`` is the 1-based position of the offending argument.
    """

    def __init__(self, message, param=1):
        if not 1 <= param <= 12:
            raise ValueError("Parameter position out of range: %s" % param)
        code = ErrorCode(ErrorCode.CommonInvalidParam1 + param - 1)
        super().__init__(message, error_code=code)
        self.param = param


class InvalidState(AnoncredsError):
    error_code = ErrorCode.CommonInvalidState


class InvalidStructure(AnoncredsError):
    error_code = ErrorCode.CommonInvalidStructure


class ProofRejected(InvalidStructure):
    """A recomputed Fiat-Shamir challenge did not match the proof."""
    error_code = ErrorCode.AnoncredsProofRejected


class CommonIOError(AnoncredsError):
    error_code = ErrorCode.CommonIOError


class RevocationAccumulatorIsFull(AnoncredsError):
    error_code = ErrorCode.AnoncredsRevocationAccumulatorIsFull

    def __init__(self, max_cred_num):
        super().__init__("Revocation accumulator is full: %s credentials issued" % max_cred_num)
        self.max_cred_num = max_cred_num


class InvalidRevocationAccumulatorIndex(AnoncredsError):
    error_code = ErrorCode.AnoncredsInvalidRevocationAccumulatorIndex

    def __init__(self, index):
        super().__init__("Invalid revocation accumulator index: %s" % index)
        self.index = index


class CredentialRevoked(AnoncredsError):
    error_code = ErrorCode.AnoncredsCredentialRevoked

    def __init__(self, index):
        super().__init__("Credential with index %s is revoked" % index)
        self.index = index


# ---- TESTS ----

def test_codes():
    assert InvalidState("x").error_code == 112
    assert InvalidStructure("x").error_code == ErrorCode.CommonInvalidStructure
    assert ProofRejected("x").error_code == 118
    assert CommonIOError("x").error_code == 114
    assert RevocationAccumulatorIsFull(5).error_code == 115
    assert CredentialRevoked(2).error_code == 117


def test_invalid_param_position():
    assert InvalidParam("bad").error_code == ErrorCode.CommonInvalidParam1
    e = InvalidParam("bad", param=4)
    assert e.error_code == ErrorCode.CommonInvalidParam4
    assert e.param == 4

    with pytest.raises(ValueError):
        InvalidParam("bad", param=13)


def test_hierarchy():
    with pytest.raises(InvalidStructure) as excinfo:
        raise ProofRejected("Invalid key correctness proof")
    assert excinfo.value.message == "Invalid key correctness proof"
    assert "AnoncredsProofRejected" in str(excinfo.value)


def test_index_context():
    e = InvalidRevocationAccumulatorIndex(0)
    assert e.index == 0
    assert "index: 0" in e.message

    assert RevocationAccumulatorIsFull(3).max_cred_num == 3
