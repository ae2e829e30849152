import threading

import pytest

from accounts.models import Credential
from accounts.registry import CredentialRegistry, DuplicateCredential, UsernameTaken, UserNotFound


def _credential(cid=b"cred-1", count=0):
    return Credential(credential_id=cid, public_key=b"\xa0", sign_count=count)


@pytest.fixture
def registry():
    return CredentialRegistry()


def test_reserve_and_fetch(registry):
    record = registry.reserve_username("alice", "Alice")
    assert registry.fetch("alice") is record
    assert record.display_name == "Alice"
    assert not record.is_finalized
    assert "alice" in registry and len(registry) == 1


def test_second_reservation_fails(registry):
    registry.reserve_username("alice", "Alice")
    with pytest.raises(UsernameTaken):
        registry.reserve_username("alice", "Someone else")
    assert registry.fetch("alice").display_name == "Alice"


def test_concurrent_reservations_have_one_winner(registry):
    workers = 16
    barrier = threading.Barrier(workers)
    winners, losers = [], []

    def attempt(n):
        barrier.wait()
        try:
            registry.reserve_username("alice", f"Alice {n}")
            winners.append(n)
        except UsernameTaken:
            losers.append(n)

    threads = [threading.Thread(target=attempt, args=(n,)) for n in range(workers)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(winners) == 1
    assert len(losers) == workers - 1
    assert registry.fetch("alice").display_name == f"Alice {winners[0]}"


def test_stale_reservation_can_be_reclaimed(registry):
    old = registry.reserve_username("alice", "Alice")
    with pytest.raises(UsernameTaken):
        registry.reserve_username("alice", "Alice", stale_after=300)
    old.reserved_at -= 301
    new = registry.reserve_username("alice", "Alice again", stale_after=300)
    assert new is not old
    assert registry.fetch("alice") is new


def test_finalized_user_is_never_stale(registry):
    record = registry.reserve_username("alice", "Alice")
    registry.add_credential("alice", _credential())
    record.reserved_at -= 10_000
    with pytest.raises(UsernameTaken):
        registry.reserve_username("alice", "Alice", stale_after=300)


def test_fetch_unknown(registry):
    with pytest.raises(UserNotFound):
        registry.fetch("nobody")


def test_add_credential_appends_and_binds_handle(registry):
    registry.reserve_username("alice", "Alice")
    registry.add_credential("alice", _credential(b"one"), user_handle=b"handle")
    record = registry.add_credential("alice", _credential(b"two"))
    assert [c.credential_id for c in record.credentials] == [b"one", b"two"]
    assert record.user_handle == b"handle"
    assert record.is_finalized


def test_credential_ids_are_globally_unique(registry):
    registry.reserve_username("alice", "Alice")
    registry.reserve_username("bob", "Bob")
    registry.add_credential("alice", _credential(b"shared"))
    with pytest.raises(DuplicateCredential):
        registry.add_credential("bob", _credential(b"shared"))
    with pytest.raises(DuplicateCredential):
        registry.add_credential("alice", _credential(b"shared"))
    assert registry.fetch("bob").credentials == []


def test_add_credential_to_unknown_user(registry):
    with pytest.raises(UserNotFound):
        registry.add_credential("nobody", _credential())


def test_find_credentials(registry):
    registry.reserve_username("alice", "Alice")
    registry.reserve_username("bob", "Bob")
    alice_cred = _credential(b"a-1")
    bob_cred = _credential(b"b-1")
    registry.add_credential("alice", alice_cred)
    registry.add_credential("bob", bob_cred)

    assert registry.find_credential_by_user("alice", b"a-1") is alice_cred
    assert registry.find_credential_by_user("alice", b"b-1") is None

    owner, cred = registry.find_credential_global(b"b-1")
    assert owner.user_name == "bob" and cred is bob_cred
    assert registry.find_credential_global(b"missing") is None


def test_update_counter(registry):
    record = registry.reserve_username("alice", "Alice")
    cred = _credential(count=3)
    registry.add_credential("alice", cred)
    registry.update_counter(record, cred, 7)
    assert cred.sign_count == 7
    with pytest.raises(UserNotFound):
        registry.update_counter(record, _credential(b"detached"), 9)


def test_release_only_unfinished_reservations(registry):
    registry.reserve_username("alice", "Alice")
    registry.reserve_username("bob", "Bob")
    registry.add_credential("bob", _credential())

    assert registry.release_reservation("alice")
    assert "alice" not in registry
    assert not registry.release_reservation("bob")
    assert "bob" in registry
    assert not registry.release_reservation("nobody")


def test_release_ignores_a_newer_reservation(registry):
    old = registry.reserve_username("alice", "Alice")
    old.reserved_at -= 1000
    registry.reserve_username("alice", "Alice", stale_after=300)
    assert not registry.release_reservation("alice", old)
    assert "alice" in registry


def test_delete(registry):
    registry.reserve_username("alice", "Alice")
    registry.add_credential("alice", _credential())
    assert registry.delete("alice")
    assert not registry.delete("alice")
    assert registry.find_credential_global(b"cred-1") is None
    # Name is free again
    registry.reserve_username("alice", "Alice")


def test_add_credential_refuses_a_replaced_record(registry):
    old = registry.reserve_username("alice", "Alice", user_handle=b"old")
    registry.delete("alice")
    new = registry.reserve_username("alice", "Mallory", user_handle=b"new")

    with pytest.raises(UserNotFound):
        registry.add_credential("alice", _credential(), user_handle=b"old", record=old)

    assert new.credentials == [] and new.user_handle == b"new"
    assert registry.add_credential("alice", _credential(), record=new) is new


def test_update_counter_refuses_a_purged_record(registry):
    record = registry.reserve_username("alice", "Alice")
    cred = _credential(count=1)
    registry.add_credential("alice", cred)
    registry.delete("alice")

    with pytest.raises(UserNotFound):
        registry.update_counter(record, cred, 2)
    assert cred.sign_count == 1


def test_update_counter_runs_check_before_writing(registry):
    record = registry.reserve_username("alice", "Alice")
    cred = _credential(count=5)
    registry.add_credential("alice", cred)
    seen = []

    def reject(stored, asserted):
        seen.append((stored, asserted))
        raise ValueError("regression")

    with pytest.raises(ValueError):
        registry.update_counter(record, cred, 3, check=reject)
    assert seen == [(5, 3)]
    assert cred.sign_count == 5


def test_is_reservable(registry):
    assert registry.is_reservable("alice")
    record = registry.reserve_username("alice", "Alice")
    assert not registry.is_reservable("alice", stale_after=300)
    record.reserved_at -= 301
    assert registry.is_reservable("alice", stale_after=300)
    assert not registry.is_reservable("alice")
