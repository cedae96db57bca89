from __future__ import annotations

import threading

from passkey_server.challenges import ChallengeStore


def test_store_and_get(challenge_store, clock):
    challenge_store.store("session-1", "chal-1", pending_user_id="user-1")

    found = challenge_store.get("session-1")

    assert found is not None
    assert found.challenge == "chal-1"
    assert found.pending_user_id == "user-1"
    assert found.expires_at == found.created_at + 300


def test_store_is_an_upsert(challenge_store):
    challenge_store.store("session-1", "first")
    challenge_store.store("session-1", "second")
    assert challenge_store.get("session-1").challenge == "second"


def test_challenge_expires_after_five_minutes(challenge_store, clock):
    clock.now = 0
    challenge_store.store("session-1", "chal")

    clock.now = 300
    assert challenge_store.get("session-1") is not None

    clock.now = 301
    assert challenge_store.get("session-1") is None

    # The expired row was removed on read.
    clock.now = 0
    assert challenge_store.get("session-1") is None


def test_delete_is_idempotent(challenge_store):
    challenge_store.store("session-1", "chal")
    challenge_store.delete("session-1")
    challenge_store.delete("session-1")
    challenge_store.delete("never-stored")
    assert challenge_store.get("session-1") is None


def test_consume_is_single_use(challenge_store):
    challenge_store.store("session-1", "chal", pending_user_id="user-1")

    first = challenge_store.consume("session-1")
    second = challenge_store.consume("session-1")

    assert first is not None and first.challenge == "chal"
    assert second is None
    assert challenge_store.get("session-1") is None


def test_consume_expired_challenge_reports_absent(challenge_store, clock):
    challenge_store.store("session-1", "chal")
    clock.advance(301)
    assert challenge_store.consume("session-1") is None
    clock.advance(-301)
    assert challenge_store.get("session-1") is None


def test_concurrent_consume_has_one_winner(db, clock):
    store = ChallengeStore(db, clock=clock)
    store.store("session-1", "chal")
    barrier = threading.Barrier(2)
    results = []
    lock = threading.Lock()

    def worker():
        barrier.wait()
        found = store.consume("session-1")
        with lock:
            results.append(found)

    threads = [threading.Thread(target=worker) for _ in range(2)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    winners = [r for r in results if r is not None]
    assert len(results) == 2
    assert len(winners) == 1
    assert winners[0].challenge == "chal"


def test_purge_expired(challenge_store, clock):
    challenge_store.store("old", "a")
    clock.advance(200)
    challenge_store.store("new", "b")
    clock.advance(150)

    assert challenge_store.purge_expired() == 1
    assert challenge_store.get("new") is not None
