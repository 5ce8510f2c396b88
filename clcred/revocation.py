"""The revocation accumulator, its registry and deltas, and prover witnesses.

The accumulator of a registry of capacity L is the sum of the tails
``tail[L+1-i]`` of every index i it contains. Issuing adds a tail, revoking
subtracts it. Since the group is abelian, changes made against the same
snapshot of a registry can be merged in any order.

Example:
    >>> G = BpGroup()
    >>> tails = list(RevocationTailsGenerator(3, Bn(7), G.gen2()))
    >>> store = InMemoryTailsStore(tails)
    >>> reg = RevocationRegistry(G2Elem.inf(G), 3, False)
    >>> d1 = reg.issue(1, store)
    >>> d2 = reg.issue(2, store)
    >>> sorted(d1.merge(d2).issued)
    [1, 2]

"""

import logging
import threading

from petlib.bn import Bn

from .encode import Entity
from .errors import InvalidParam, InvalidState, InvalidStructure, CredentialRevoked, CommonIOError, \
    RevocationAccumulatorIsFull, InvalidRevocationAccumulatorIndex
from .pairing import BpGroup, G2Elem
from .tails import RevocationTailsGenerator, InMemoryTailsStore, access_tail, tail_index

import pytest

LOGGER = logging.getLogger(__name__)


class RevocationKeyPublic(Entity):
    _fields = (("z", "gt"),)

    def __init__(self, z):
        self.z = z


class RevocationKeyPrivate(Entity):
    _fields = (("gamma", "bn"),)

    def __init__(self, gamma):
        self.gamma = gamma


def check_index(rev_idx, max_cred_num):
    if isinstance(rev_idx, bool) or not isinstance(rev_idx, int) or not 1 <= rev_idx <= max_cred_num:
        LOGGER.info("Rejected revocation index %s outside [1, %s]", rev_idx, max_cred_num)
        raise InvalidRevocationAccumulatorIndex(rev_idx)


class RevocationRegistryDelta(Entity):
    """The change between two states of a registry's accumulator.

    ``issued`` and ``revoked`` hold the net change of each index between
    ``accumulator_before`` and ``accumulator_after``.
    """

    _fields = (("accumulator_before", "g2"), ("accumulator_after", "g2"),
               ("issued", "int_set"), ("revoked", "int_set"))

    def __init__(self, accumulator_before, accumulator_after, issued=(), revoked=()):
        self.accumulator_before = accumulator_before
        self.accumulator_after = accumulator_after
        self.issued = set(issued)
        self.revoked = set(revoked)
        self._validate()

    def _validate(self):
        if self.issued & self.revoked:
            raise InvalidStructure("Indices both issued and revoked: %s" % sorted(self.issued & self.revoked))

    @classmethod
    def from_parts(cls, rev_reg_from, rev_reg_to, issued, revoked):
        """The delta from one registry state to another.

        A missing ``rev_reg_from`` stands for the empty accumulator of a newly
        created registry.
        """
        if rev_reg_from is None:
            before = G2Elem.inf(rev_reg_to.accum.group)
        else:
            before = rev_reg_from.accum
        return cls(before, rev_reg_to.accum, issued, revoked)

    @classmethod
    def from_registry(cls, rev_reg):
        """The delta from an empty accumulator to the registry, listing its members."""
        return cls.from_parts(None, rev_reg, rev_reg.members(), ())

    def merge(self, other):
        """Combine two deltas into one, leaving both unchanged.

        The deltas must share their starting accumulator, or one must start
        where the other ends.
        """
        net = {}
        for delta in (self, other):
            if delta.issued & delta.revoked:
                LOGGER.info("Rejected merge of a delta that both issues and revokes an index")
                raise InvalidState("Delta both issues and revokes %s" % sorted(delta.issued & delta.revoked))
            for i in delta.issued:
                net[i] = net.get(i, 0) + 1
            for i in delta.revoked:
                net[i] = net.get(i, 0) - 1

        twice = sorted(i for i, count in net.items() if abs(count) > 1)
        if twice:
            LOGGER.info("Rejected merge, indices issued or revoked twice: %s", twice)
            raise InvalidState("Indices issued or revoked twice: %s" % twice)

        forward = self.accumulator_after == other.accumulator_before
        backward = other.accumulator_after == self.accumulator_before

        if self.accumulator_before == other.accumulator_before:
            before = self.accumulator_before
            after = self.accumulator_after + other.accumulator_after - before
        elif forward or backward:
            if forward and backward:
                # Each delta undoes the other, start from the state with the smaller encoding.
                first = min((self, other), key=lambda d: d.accumulator_before.export())
            else:
                first = self if forward else other
            second = other if first is self else self
            before, after = first.accumulator_before, second.accumulator_after
        else:
            LOGGER.info("Rejected merge of unrelated deltas")
            raise InvalidStructure("Deltas can not be merged")

        issued = set(i for i, count in net.items() if count == 1)
        revoked = set(i for i, count in net.items() if count == -1)
        return RevocationRegistryDelta(before, after, issued, revoked)


def merge_revocation_registry_deltas(delta, other):
    return delta.merge(other)


class RevocationRegistry(Entity):
    """The public accumulator of a registry, with the bookkeeping of its indices.

    ``issued`` holds every index ever assigned to a credential, ``revoked``
    the indices currently removed from the accumulator. Changes go through
    issue, revoke and recover, which hold the registry's lock and only
    commit once every step has succeeded.
    """

    _fields = (("accum", "g2"), ("max_cred_num", "int"), ("issuance_by_default", "bool"),
               ("issued", "int_set"), ("revoked", "int_set"))

    def __init__(self, accum, max_cred_num, issuance_by_default, issued=(), revoked=()):
        self.accum = accum
        self.max_cred_num = max_cred_num
        self.issuance_by_default = issuance_by_default
        self.issued = set(issued)
        self.revoked = set(revoked)
        self._validate()

    def _validate(self):
        if self.max_cred_num < 1:
            raise InvalidStructure("Registry capacity must be positive")
        if not self.revoked <= self.issued:
            raise InvalidStructure("Revoked indices must have been issued")
        if any(not 1 <= i <= self.max_cred_num for i in self.issued):
            raise InvalidStructure("Issued index out of range")

    @property
    def lock(self):
        return self.__dict__.setdefault("_lock", threading.RLock())

    def members(self):
        """The indices currently in the accumulator."""
        if self.issuance_by_default:
            return set(range(1, self.max_cred_num + 1)) - self.revoked
        return self.issued - self.revoked

    def check_can_issue(self, rev_idx):
        """Raises unless a new credential can be issued at rev_idx.

        A full registry is reported as full for any fresh index, before the
        range of the index is checked.
        """
        if len(self.issued) >= self.max_cred_num and rev_idx not in self.issued:
            LOGGER.info("Rejected issuance at index %s, the registry is full", rev_idx)
            raise RevocationAccumulatorIsFull(self.max_cred_num)
        check_index(rev_idx, self.max_cred_num)
        if rev_idx in self.issued:
            LOGGER.info("Rejected issuance at index %s, it is already issued", rev_idx)
            raise InvalidState("Index %s is already issued" % rev_idx)

    def issue(self, rev_idx, tails):
        """Assigns rev_idx to a new credential.

        Returns the delta of the accumulator, or None for registries that
        issue by default, whose accumulator already holds every index.
        """
        with self.lock:
            self.check_can_issue(rev_idx)

            if self.issuance_by_default:
                self.issued = self.issued | {rev_idx}
                LOGGER.debug("Assigned index %s, accumulator unchanged", rev_idx)
                return None

            with access_tail(tails, tail_index(self.max_cred_num, rev_idx)) as tail:
                accum = self.accum + tail

            delta = RevocationRegistryDelta(self.accum, accum, {rev_idx}, ())
            self.accum = accum
            self.issued = self.issued | {rev_idx}
            LOGGER.debug("Issued index %s", rev_idx)
            return delta

    def revoke(self, rev_idx, tails):
        with self.lock:
            check_index(rev_idx, self.max_cred_num)
            if rev_idx in self.revoked:
                LOGGER.info("Rejected revocation of index %s, it is already revoked", rev_idx)
                raise CredentialRevoked(rev_idx)
            if rev_idx not in self.issued:
                LOGGER.info("Rejected revocation of index %s, it was never issued", rev_idx)
                raise InvalidState("Index %s was never issued" % rev_idx)

            with access_tail(tails, tail_index(self.max_cred_num, rev_idx)) as tail:
                accum = self.accum - tail

            delta = RevocationRegistryDelta(self.accum, accum, (), {rev_idx})
            self.accum = accum
            self.revoked = self.revoked | {rev_idx}
            LOGGER.debug("Revoked index %s", rev_idx)
            return delta

    def recover(self, rev_idx, tails):
        with self.lock:
            check_index(rev_idx, self.max_cred_num)
            if rev_idx not in self.revoked:
                LOGGER.info("Rejected recovery of index %s, it is not revoked", rev_idx)
                raise InvalidState("Index %s is not revoked" % rev_idx)

            with access_tail(tails, tail_index(self.max_cred_num, rev_idx)) as tail:
                accum = self.accum + tail

            delta = RevocationRegistryDelta(self.accum, accum, {rev_idx}, ())
            self.accum = accum
            self.revoked = self.revoked - {rev_idx}
            LOGGER.debug("Recovered index %s", rev_idx)
            return delta


def new_revocation_registry_def(credential_pub_key, max_cred_num, issuance_by_default):
    """Creates a revocation registry for credentials of a revocable definition.

    Returns:
        (RevocationKeyPublic, RevocationKeyPrivate, RevocationRegistry,
         RevocationTailsGenerator)
    """
    r_pub = credential_pub_key.r_key
    if r_pub is None:
        raise InvalidParam("Credential definition does not support revocation", param=1)
    if isinstance(max_cred_num, bool) or not isinstance(max_cred_num, int) or max_cred_num < 1:
        raise InvalidParam("Registry capacity must be a positive integer", param=2)

    G = BpGroup()
    order = G.order()
    gamma = order.random()
    L = max_cred_num

    z = G.pair(r_pub.g.mul(pow(gamma, Bn(L + 1), order)), r_pub.g_dash)

    accum = G2Elem.inf(G)
    if issuance_by_default:
        # The sum of the tails gamma^1 .. gamma^L.
        exponent, gamma_pow = Bn(0), Bn(1)
        for _ in range(L):
            gamma_pow = gamma_pow.mod_mul(gamma, order)
            exponent = exponent.mod_add(gamma_pow, order)
        accum = r_pub.g_dash.mul(exponent)

    LOGGER.debug("Created revocation registry for %s credentials, issuance by default %s",
                 L, bool(issuance_by_default))
    return RevocationKeyPublic(z), RevocationKeyPrivate(gamma), \
        RevocationRegistry(accum, L, bool(issuance_by_default)), \
        RevocationTailsGenerator(L, gamma, r_pub.g_dash)


class Witness(Entity):
    """The prover's proof that its index is in the accumulator.

    For index i, omega is the sum of ``tail[L+1-j+i]`` over the other
    members j of the accumulator.
    """

    _fields = (("omega", "g2"),)

    def __init__(self, omega):
        self.omega = omega

    @classmethod
    def new(cls, rev_idx, max_cred_num, rev_reg_delta, tails):
        """A witness from the delta covering the registry since its creation."""
        check_index(rev_idx, max_cred_num)
        if rev_idx not in rev_reg_delta.issued:
            raise CredentialRevoked(rev_idx)

        omega = G2Elem.inf(rev_reg_delta.accumulator_after.group)
        for j in sorted(rev_reg_delta.issued - {rev_idx}):
            with access_tail(tails, max_cred_num + 1 - j + rev_idx) as tail:
                omega = omega + tail
        return cls(omega)

    def update(self, rev_idx, max_cred_num, rev_reg_delta, tails):
        """Brings the witness up to date with a delta of the registry."""
        check_index(rev_idx, max_cred_num)
        if rev_idx in rev_reg_delta.revoked:
            raise CredentialRevoked(rev_idx)

        omega = self.omega
        for j in sorted(rev_reg_delta.issued - {rev_idx}):
            with access_tail(tails, max_cred_num + 1 - j + rev_idx) as tail:
                omega = omega + tail
        for j in sorted(rev_reg_delta.revoked):
            with access_tail(tails, max_cred_num + 1 - j + rev_idx) as tail:
                omega = omega - tail
        self.omega = omega


# ---- TESTS ----

L = 5


@pytest.fixture(scope="module")
def setup():
    G = BpGroup()
    gamma = G.order().random()
    g_dash = G.random2()
    tails = list(RevocationTailsGenerator(L, gamma, g_dash))
    return G, tails


def copy_registry(reg):
    return RevocationRegistry.from_json(reg.to_json())


def test_issue_and_revoke(setup):
    G, tails = setup
    store = InMemoryTailsStore(tails)
    reg = RevocationRegistry(G2Elem.inf(G), L, False)

    delta = reg.issue(2, store)
    assert delta.issued == {2} and delta.revoked == set()
    assert delta.accumulator_before.isinf()
    assert reg.accum == tails[L - 1]
    assert reg.members() == {2}

    delta = reg.revoke(2, store)
    assert delta.revoked == {2}
    assert reg.accum.isinf()
    assert reg.members() == set()
    assert store.outstanding == 0

    with pytest.raises(CredentialRevoked) as excinfo:
        reg.revoke(2, store)
    assert excinfo.value.index == 2

    with pytest.raises(InvalidState):
        reg.revoke(3, store)

    with pytest.raises(InvalidRevocationAccumulatorIndex):
        reg.revoke(L + 1, store)

    delta = reg.recover(2, store)
    assert delta.issued == {2}
    assert reg.accum == tails[L - 1]

    with pytest.raises(InvalidState):
        reg.recover(2, store)


def test_capacity_and_bounds(setup):
    G, tails = setup
    store = InMemoryTailsStore(tails)
    reg = RevocationRegistry(G2Elem.inf(G), L, False)

    for idx in (0, L + 1, -1, True):
        with pytest.raises(InvalidRevocationAccumulatorIndex) as excinfo:
            reg.issue(idx, store)
        assert excinfo.value.index is idx

    reg.issue(1, store)
    reg.issue(L, store)
    with pytest.raises(InvalidState):
        reg.issue(1, store)

    for idx in range(2, L):
        reg.issue(idx, store)

    with pytest.raises(RevocationAccumulatorIsFull):
        reg.issue(L + 1, store)
    with pytest.raises(InvalidState):
        reg.issue(3, store)

    # Revoked indices still count toward the capacity.
    reg.revoke(3, store)
    with pytest.raises(RevocationAccumulatorIsFull):
        reg.issue(L + 1, store)


def test_issuance_by_default(setup):
    G, tails = setup
    store = InMemoryTailsStore(tails)
    full = G2Elem.inf(G)
    for i in range(1, L + 1):
        full = full + tails[tail_index(L, i)]
    reg = RevocationRegistry(full, L, True)
    assert reg.members() == set(range(1, L + 1))

    assert reg.issue(3, store) is None
    assert reg.accum == full
    assert reg.issued == {3}

    delta = reg.revoke(3, store)
    assert delta.revoked == {3}
    assert reg.members() == {1, 2, 4, 5}


def test_atomic_on_tail_failure(setup):
    G, tails = setup

    class FailingStore(InMemoryTailsStore):
        def take(self, index):
            raise OSError("tails unavailable")

    reg = RevocationRegistry(G2Elem.inf(G), L, False)
    before = copy_registry(reg)

    with pytest.raises(CommonIOError):
        reg.issue(1, FailingStore(tails))
    assert reg == before


def test_merge_chain(setup):
    G, tails = setup
    store = InMemoryTailsStore(tails)
    start = RevocationRegistry(G2Elem.inf(G), L, False)
    reg = copy_registry(start)

    d1 = reg.issue(1, store)
    d2 = reg.issue(2, store)
    d3 = reg.revoke(1, store)

    merged = d1.merge(d2).merge(d3)
    assert merged.issued == {2} and merged.revoked == set()
    assert merged == RevocationRegistryDelta.from_parts(start, reg, {2}, ())
    assert d2.merge(d1) == d1.merge(d2)
    assert merge_revocation_registry_deltas(d1, d2) == d1.merge(d2)

    # The inputs are left unchanged.
    assert d1.issued == {1}


def test_merge_siblings(setup):
    G, tails = setup
    store = InMemoryTailsStore(tails)
    start = RevocationRegistry(G2Elem.inf(G), L, False)

    deltas = []
    for idx in (1, 2, 3):
        reg = copy_registry(start)
        deltas.append(reg.issue(idx, store))
    a, b, c = deltas

    assert a.merge(b) == b.merge(a)
    assert a.merge(b).merge(c) == a.merge(b.merge(c))

    reg = copy_registry(start)
    for idx in (1, 2, 3):
        reg.issue(idx, store)
    merged = a.merge(b).merge(c)
    assert merged.accumulator_after == reg.accum
    assert merged.issued == {1, 2, 3}


def test_merge_cancel(setup):
    G, tails = setup
    store = InMemoryTailsStore(tails)
    reg = RevocationRegistry(G2Elem.inf(G), L, False)
    reg.issue(4, store)
    snapshot = copy_registry(reg)

    d1 = reg.revoke(4, store)
    d2 = reg.recover(4, store)
    merged = d1.merge(d2)
    assert merged.issued == set() and merged.revoked == set()
    assert merged.accumulator_before == merged.accumulator_after
    assert merged.accumulator_before in (snapshot.accum, d1.accumulator_after)

    # Deltas that undo each other merge the same way in either order.
    assert d2.merge(d1) == merged
    assert merge_revocation_registry_deltas(d2, d1) == merged

    d3 = reg.issue(2, store)
    d4 = reg.revoke(2, store)
    assert d3.merge(d4) == d4.merge(d3)
    assert d3.merge(d4).issued == set() and d3.merge(d4).revoked == set()


def test_merge_rejects(setup):
    G, tails = setup
    store = InMemoryTailsStore(tails)
    start = RevocationRegistry(G2Elem.inf(G), L, False)

    a = copy_registry(start).issue(4, store)
    b = copy_registry(start).issue(4, store)
    with pytest.raises(InvalidState):
        a.merge(b)

    reg = copy_registry(start)
    reg.issue(1, store)
    c = reg.issue(2, store)
    with pytest.raises(InvalidStructure) as excinfo:
        a.merge(c)
    assert "can not be merged" in str(excinfo.value)

    bad = RevocationRegistryDelta(a.accumulator_before, a.accumulator_after, {4}, ())
    bad.revoked = {4}
    with pytest.raises(InvalidState):
        bad.merge(c)

    with pytest.raises(InvalidStructure):
        RevocationRegistryDelta(a.accumulator_before, a.accumulator_after, {4}, {4})


def test_witness(setup):
    G, tails = setup
    store = InMemoryTailsStore(tails)
    reg = RevocationRegistry(G2Elem.inf(G), L, False)
    for idx in (1, 2, 3):
        reg.issue(idx, store)

    witness = Witness.new(2, L, RevocationRegistryDelta.from_registry(reg), store)
    assert witness.omega == tails[L + 1 - 1 + 2] + tails[L + 1 - 3 + 2]

    snapshot = copy_registry(reg)
    d1 = reg.issue(5, store)
    d2 = reg.revoke(3, store)
    witness.update(2, L, d1.merge(d2), store)
    assert witness == Witness.new(2, L, RevocationRegistryDelta.from_registry(reg), store)
    assert snapshot != reg

    with pytest.raises(CredentialRevoked):
        Witness.new(3, L, RevocationRegistryDelta.from_registry(reg), store)
    assert store.outstanding == 0


def test_json(setup):
    G, tails = setup
    store = InMemoryTailsStore(tails)
    reg = RevocationRegistry(G2Elem.inf(G), L, False)
    delta = reg.issue(1, store)
    reg.revoke(1, store)

    reg2 = RevocationRegistry.from_json(reg.to_json())
    assert reg2 == reg
    assert reg2.revoked == {1}
    assert RevocationRegistryDelta.from_json(delta.to_json()) == delta

    d = reg.to_dict()
    d["revoked"] = [2]
    with pytest.raises(InvalidStructure):
        RevocationRegistry.from_dict(d)


def test_registry_validation(setup):
    G, _ = setup
    with pytest.raises(InvalidStructure):
        RevocationRegistry(G2Elem.inf(G), 0, False)
    with pytest.raises(InvalidStructure):
        RevocationRegistry(G2Elem.inf(G), 3, False, issued={1}, revoked={2})
    with pytest.raises(InvalidStructure):
        RevocationRegistry(G2Elem.inf(G), 3, False, issued={4})


def test_keys_and_witness_round_trip():
    from .keys import new_credential_def, make_schemas, TEST_PRIME_BITS
    from .pack import encode, decode
    schema, non_schema = make_schemas(("name",))
    pub, _, _ = new_credential_def(schema, non_schema, True, prime_bits=TEST_PRIME_BITS)
    rev_key_pub, rev_key_priv, reg, generator = new_revocation_registry_def(pub, L, False)

    store = InMemoryTailsStore(generator)
    reg.issue(1, store)
    reg.issue(3, store)
    witness = Witness.new(1, L, RevocationRegistryDelta.from_registry(reg), store)
    assert not witness.omega.isinf()

    assert RevocationKeyPublic.from_json(rev_key_pub.to_json()) == rev_key_pub
    assert RevocationKeyPrivate.from_json(rev_key_priv.to_json()) == rev_key_priv
    assert Witness.from_json(witness.to_json()) == witness
    assert decode(encode([rev_key_pub, rev_key_priv, witness])) == \
        [rev_key_pub, rev_key_priv, witness]


def test_concurrent_issue(setup):
    G, tails = setup
    store = InMemoryTailsStore(tails)
    reg = RevocationRegistry(G2Elem.inf(G), L, False)
    barrier = threading.Barrier(2 * L)
    results, errors = [], []

    def worker(idx):
        barrier.wait()
        try:
            results.append(reg.issue(idx, store))
        except InvalidState as e:
            errors.append(e)

    # Every index is requested by two threads, only one of them may win.
    threads = [threading.Thread(target=worker, args=(idx,))
               for idx in range(1, L + 1) for _ in range(2)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(results) == L and len(errors) == L
    assert reg.issued == set(range(1, L + 1))

    expected = G2Elem.inf(G)
    for idx in range(1, L + 1):
        expected = expected + tails[tail_index(L, idx)]
    assert reg.accum == expected

    # Threads may report out of order, walk the deltas from the empty accumulator.
    by_start = dict((d.accumulator_before.export(), d) for d in results)
    merged = by_start[G2Elem.inf(G).export()]
    for _ in range(L - 1):
        merged = merged.merge(by_start[merged.accumulator_after.export()])
    assert merged.issued == reg.issued
    assert merged.accumulator_after == reg.accum
    assert store.outstanding == 0


def test_rejections_logged(setup, caplog):
    G, tails = setup
    store = InMemoryTailsStore(tails)
    reg = RevocationRegistry(G2Elem.inf(G), L, False)
    caplog.set_level(logging.INFO, logger=__name__)

    with pytest.raises(InvalidRevocationAccumulatorIndex):
        reg.issue(L + 1, store)
    with pytest.raises(InvalidState):
        reg.revoke(1, store)
    reg.issue(1, store)
    with pytest.raises(InvalidState):
        reg.issue(1, store)

    rejections = [r for r in caplog.records
                  if r.name == __name__ and r.levelno == logging.INFO]
    assert len(rejections) == 3
    assert all(r.getMessage().startswith("Rejected") for r in rejections)
