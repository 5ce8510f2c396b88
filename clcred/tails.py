"""Tails of a revocation registry.

For a registry of capacity L with secret gamma the tails are the points
``g_dash * gamma^k`` for k in [0, 2L]. Tail L+1 is never needed, and is
replaced by the point at infinity so that it is never published.

Tails are large, so they are kept outside the library behind the
:class:`TailsStore` interface. Every access goes through :func:`access_tail`,
which returns each tail it takes.

Example:
    >>> G = BpGroup()
    >>> tails = InMemoryTailsStore(RevocationTailsGenerator(2, Bn(3), G.gen2()))
    >>> with access_tail(tails, 1) as tail:
    ...     tail == G.gen2().mul(3)
    True
    >>> tails.outstanding
    0

"""

import logging
import os
import tempfile
from abc import ABC, abstractmethod
from contextlib import contextmanager

from petlib.bn import Bn

from .constants import TAILS_FILE_VERSION
from .errors import AnoncredsError, CommonIOError, InvalidStructure
from .pairing import BpGroup, G2Elem

import pytest

LOGGER = logging.getLogger(__name__)

# Size of the version header of a tails file.
HEADER_SIZE = 2
TAIL_SIZE = 128


def tail_index(max_cred_num, rev_idx):
    """The index of the tail that stands for credential rev_idx in the accumulator."""
    return max_cred_num + 1 - rev_idx


class RevocationTailsGenerator(object):
    """Yields the 2L+1 tails of a registry, in order."""

    def __init__(self, max_cred_num, gamma, g_dash):
        self.max_cred_num = max_cred_num
        self.size = 2 * max_cred_num + 1
        self.current_index = 0
        self.gamma = gamma
        self.g_dash = g_dash
        self._order = g_dash.group.order()
        self._gamma_pow = Bn(1)

    def count(self):
        return self.size - self.current_index

    def try_next(self):
        if self.current_index >= self.size:
            return None

        if self.current_index == self.max_cred_num + 1:
            tail = G2Elem.inf(self.g_dash.group)
        else:
            tail = self.g_dash.mul(self._gamma_pow)

        self._gamma_pow = self._gamma_pow.mod_mul(self.gamma, self._order)
        self.current_index += 1
        return tail

    def __iter__(self):
        return self

    def __next__(self):
        tail = self.try_next()
        if tail is None:
            raise StopIteration
        return tail


class TailsStore(ABC):
    """Where the tails of a registry are kept.

    Every tail obtained through ``take`` is handed back with ``put`` once the
    caller is done with it.
    """

    @abstractmethod
    def take(self, index):
        """Return the tail at index as a G2Elem."""

    @abstractmethod
    def put(self, tail):
        """Hand back a tail obtained from take."""


class InMemoryTailsStore(TailsStore):
    """Keeps every tail in memory, and counts the tails currently taken."""

    def __init__(self, tails):
        self.tails = list(tails)
        self.outstanding = 0

    def take(self, index):
        if not 0 <= index < len(self.tails):
            raise IndexError("No tail at index %s" % index)
        self.outstanding += 1
        return self.tails[index]

    def put(self, tail):
        self.outstanding -= 1


def write_tails_file(generator, path):
    """Write the tails of a generator to a file readable by TailsFileStore."""
    count = 0
    with open(path, "wb") as f:
        f.write(TAILS_FILE_VERSION.to_bytes(HEADER_SIZE, "big"))
        for tail in generator:
            f.write(tail.export())
            count += 1
    LOGGER.debug("Wrote %s tails to %s", count, path)
    return count


class TailsFileStore(TailsStore):
    """Reads tails on demand from a file of fixed size records."""

    def __init__(self, path):
        self.path = path
        self.outstanding = 0
        with open(path, "rb") as f:
            version = int.from_bytes(f.read(HEADER_SIZE), "big")
        if version != TAILS_FILE_VERSION:
            raise InvalidStructure("Unsupported tails file version %s" % version)

    def take(self, index):
        with open(self.path, "rb") as f:
            f.seek(HEADER_SIZE + index * TAIL_SIZE)
            data = f.read(TAIL_SIZE)
        if index < 0 or len(data) != TAIL_SIZE:
            raise CommonIOError("No tail at index %s in %s" % (index, self.path))
        self.outstanding += 1
        return G2Elem.from_bytes(data)

    def put(self, tail):
        self.outstanding -= 1


def _wrap_store_error(what, index, e):
    if isinstance(e, AnoncredsError):
        return e
    return CommonIOError("Cannot %s tail %s: %s" % (what, index, e))


@contextmanager
def access_tail(store, index):
    """Takes the tail at index from the store for the duration of the block.

    The tail is put back however the block exits. Failures of the store that
    are not library errors are raised as CommonIOError.
    """
    try:
        tail = store.take(index)
    except Exception as e:
        raise _wrap_store_error("take", index, e) from e

    try:
        yield tail
    finally:
        try:
            store.put(tail)
        except Exception as e:
            raise _wrap_store_error("put", index, e) from e


# ---- TESTS ----

def test_generator():
    G = BpGroup()
    gamma = G.order().random()
    g_dash = G.gen2()
    gen = RevocationTailsGenerator(3, gamma, g_dash)
    assert gen.count() == 7

    tails = list(gen)
    assert len(tails) == 7
    assert gen.count() == 0
    assert gen.try_next() is None

    assert tails[0] == g_dash
    assert tails[1] == g_dash.mul(gamma)
    assert tails[2] == g_dash.mul(gamma.mod_mul(gamma, G.order()))
    assert tails[4].isinf()
    assert tails[6] == g_dash.mul(pow(gamma, Bn(6), G.order()))


def test_tail_index():
    assert tail_index(10, 1) == 10
    assert tail_index(10, 10) == 1


def test_in_memory_store():
    G = BpGroup()
    tails = InMemoryTailsStore(RevocationTailsGenerator(2, Bn(5), G.gen2()))
    with access_tail(tails, 2) as tail:
        assert tails.outstanding == 1
        assert tail == G.gen2().mul(25)
    assert tails.outstanding == 0

    with pytest.raises(CommonIOError) as excinfo:
        with access_tail(tails, 5):
            pass
    assert "No tail at index 5" in str(excinfo.value)
    assert tails.outstanding == 0


def test_put_on_error():
    G = BpGroup()
    tails = InMemoryTailsStore([G.gen2()])
    with pytest.raises(ValueError):
        with access_tail(tails, 0):
            raise ValueError("boom")
    assert tails.outstanding == 0


def test_failing_put():
    class BrokenStore(InMemoryTailsStore):
        def put(self, tail):
            raise OSError("disk gone")

    tails = BrokenStore([BpGroup().gen2()])
    with pytest.raises(CommonIOError) as excinfo:
        with access_tail(tails, 0):
            pass
    assert "Cannot put tail 0" in str(excinfo.value)


def test_tails_file():
    G = BpGroup()
    gamma = G.order().random()
    with tempfile.TemporaryDirectory() as tmp:
        path = os.path.join(tmp, "tails")
        assert write_tails_file(RevocationTailsGenerator(2, gamma, G.gen2()), path) == 5
        assert os.path.getsize(path) == HEADER_SIZE + 5 * TAIL_SIZE

        store = TailsFileStore(path)
        expected = list(RevocationTailsGenerator(2, gamma, G.gen2()))
        for i in range(5):
            with access_tail(store, i) as tail:
                assert tail == expected[i]
        assert store.outstanding == 0

        with pytest.raises(CommonIOError):
            with access_tail(store, 5):
                pass


def test_tails_file_version():
    with tempfile.TemporaryDirectory() as tmp:
        path = os.path.join(tmp, "tails")
        with open(path, "wb") as f:
            f.write(b"\x00\x01")
        with pytest.raises(InvalidStructure):
            TailsFileStore(path)
