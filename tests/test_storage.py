"""Tests for the storage facade: users, sessions, reviewers, quiz data, statistics.

Every test runs against both backends; they must behave the same.
"""

import asyncio
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

import pytest

from scibrain.services.auth_service import AuthService, format_timestamp
from scibrain.storage import DuplicateEmailError, MemoryBackend, RedisBackend, Storage, count_words
from scibrain.storage.facade import SESSION_TTL_SECONDS


class FakeRedisClient:
    """Just enough of redis.asyncio.Redis (decode_responses=True) for the backend."""

    def __init__(self):
        self.values = {}
        self.lists = {}
        self.expiry = {}
        self.calls = []
        self.closed = False

    async def get(self, key):
        self.calls.append(("get", key))
        return self.values.get(key)

    async def set(self, key, value, ex=None, nx=False):
        self.calls.append(("set", key))
        if nx and key in self.values:
            return None
        self.values[key] = value
        if ex is not None:
            self.expiry[key] = ex
        return True

    async def delete(self, *keys):
        n = 0
        for key in keys:
            n += int(self.values.pop(key, None) is not None)
            n += int(self.lists.pop(key, None) is not None)
        return n

    async def incr(self, key):
        self.values[key] = str(int(self.values.get(key, "0")) + 1)
        return int(self.values[key])

    async def lpush(self, key, value):
        self.lists.setdefault(key, []).insert(0, value)
        return len(self.lists[key])

    async def lrem(self, key, count, value):
        items = self.lists.get(key, [])
        kept = [v for v in items if v != value]
        self.lists[key] = kept
        return len(items) - len(kept)

    async def lrange(self, key, start, stop):
        items = self.lists.get(key, [])
        if start < 0:
            start = max(len(items) + start, 0)
        if stop < 0:
            stop = len(items) + stop
        if stop < start:
            return []
        return items[start:stop + 1]

    async def llen(self, key):
        return len(self.lists.get(key, []))

    async def aclose(self):
        self.closed = True


class Clock:
    def __init__(self):
        self.current = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.current

    def advance(self, **kwargs):
        self.current += timedelta(**kwargs)


def _memory():
    return MemoryBackend()


def _redis():
    return RedisBackend(FakeRedisClient())


BACKENDS = pytest.mark.parametrize("make_backend", [_memory, _redis], ids=["memory", "redis"])


def _storage(make_backend, clock=None):
    return Storage(make_backend(), auth=AuthService(), now=clock or Clock())


async def _user(storage, email="ada@example.com", name="Ada Lovelace"):
    user_id = await storage.create_user(name, email, storage.auth.hash_password("pw-123456"))
    return user_id, await storage.get_user_by_id(user_id)


def _reviewer_data(title="Cells", word_count=3):
    return {
        "title": title,
        "sections": [{"heading": "Intro", "points": ["a"]}],
        "concepts": [{"term": "cell", "definition": "unit of life"}],
        "metadata": {"wordCount": word_count},
        "originalText": "cells are small",
    }


# ---- Ids ----

@BACKENDS
def test_ids_increase_per_category(make_backend):
    storage = _storage(make_backend)

    async def run():
        a = await storage.ids.next("documents")
        b = await storage.ids.next("documents")
        c = await storage.ids.next("reviewers")
        return a, b, c

    assert asyncio.run(run()) == (1, 2, 1)


@BACKENDS
def test_deleted_ids_are_not_reused(make_backend):
    storage = _storage(make_backend)

    async def run():
        uid, _ = await _user(storage)
        first = await storage.save_reviewer(uid, 1, _reviewer_data())
        await storage.delete_reviewer(first, uid)
        return first, await storage.save_reviewer(uid, 1, _reviewer_data())

    first, second = asyncio.run(run())
    assert second == first + 1


# ---- Users ----

@BACKENDS
def test_create_user_normalizes_email_and_hashes_password(make_backend):
    storage = _storage(make_backend)

    async def run():
        uid = await storage.create_user("Ada", "  Ada@Example.COM ", storage.auth.hash_password("s3cret-pass"))
        return uid, await storage.get_user_by_email("ada@example.com"), await storage.get_user_by_id(uid)

    uid, by_email, by_id = asyncio.run(run())
    assert uid == 1
    assert by_email == by_id
    assert by_email["email"] == "ada@example.com"
    assert by_email["last_login"] is None
    assert by_email["password_hash"] != "s3cret-pass"
    assert "s3cret-pass" not in str(by_email)
    assert storage.auth.verify_password("s3cret-pass", by_email["password_hash"])
    assert not storage.auth.verify_password("wrong", by_email["password_hash"])


@BACKENDS
def test_duplicate_email_rejected(make_backend):
    storage = _storage(make_backend)

    async def run():
        await storage.create_user("A", "dup@x.com", "h1")
        await storage.create_user("B", "DUP@x.com", "h2")

    with pytest.raises(DuplicateEmailError):
        asyncio.run(run())


@BACKENDS
def test_missing_user_is_none(make_backend):
    storage = _storage(make_backend)

    async def run():
        return await storage.get_user_by_email("nobody@x.com"), await storage.get_user_by_id(99)

    assert asyncio.run(run()) == (None, None)


@BACKENDS
def test_update_last_login_rewrites_both_copies(make_backend):
    clock = Clock()
    storage = _storage(make_backend, clock)

    async def run():
        uid, _ = await _user(storage)
        clock.advance(hours=1)
        await storage.update_last_login(uid)
        await storage.update_last_login(404)  # unknown id is a no-op
        return await storage.get_user_by_id(uid), await storage.get_user_by_email("ada@example.com")

    by_id, by_email = asyncio.run(run())
    assert by_id["last_login"] == format_timestamp(clock.current)
    assert by_email == by_id


# ---- Sessions ----

@BACKENDS
def test_session_valid_before_expiry(make_backend):
    clock = Clock()
    storage = _storage(make_backend, clock)

    async def run():
        uid, user = await _user(storage)
        expires = format_timestamp(clock.current + timedelta(hours=1))
        await storage.create_session(uid, "tok", expires, user)
        clock.advance(minutes=59)
        return uid, await storage.get_session_by_token("tok")

    uid, session = asyncio.run(run())
    assert session["user_id"] == uid
    assert session["email"] == "ada@example.com"
    assert session["full_name"] == "Ada Lovelace"


@BACKENDS
def test_session_expired_at_boundary_is_evicted(make_backend):
    clock = Clock()
    backend = make_backend()
    storage = Storage(backend, now=clock)

    async def run():
        uid, user = await _user(storage)
        expires = format_timestamp(clock.current + timedelta(hours=1))
        await storage.create_session(uid, "tok", expires, user)
        clock.advance(hours=1)
        first = await storage.get_session_by_token("tok")
        raw = await backend.get("session:tok")
        second = await storage.get_session_by_token("tok")
        return first, raw, second

    first, raw, second = asyncio.run(run())
    assert first is None
    assert raw is None
    assert second is None


@BACKENDS
def test_session_snapshot_not_refreshed(make_backend):
    storage = _storage(make_backend)

    async def run():
        uid, user = await _user(storage)
        await storage.create_session(uid, "tok", storage.auth.generate_session_expiry(storage.now()), user)
        await storage.update_last_login(uid)
        return await storage.get_session_by_token("tok")

    session = asyncio.run(run())
    assert set(session) == {"id", "user_id", "session_token", "expires_at", "email", "full_name"}


@BACKENDS
def test_delete_session(make_backend):
    storage = _storage(make_backend)

    async def run():
        uid, user = await _user(storage)
        await storage.create_session(uid, "tok", storage.auth.generate_session_expiry(storage.now()), user)
        await storage.delete_session("tok")
        await storage.delete_session("never-existed")
        return await storage.get_session_by_token("tok")

    assert asyncio.run(run()) is None


def test_redis_session_carries_ttl_hint():
    client = FakeRedisClient()
    storage = Storage(RedisBackend(client), now=Clock())

    async def run():
        uid, user = await _user(storage)
        await storage.create_session(uid, "tok", storage.auth.generate_session_expiry(storage.now()), user)

    asyncio.run(run())
    assert client.expiry["session:tok"] == SESSION_TTL_SECONDS == 86400


def test_redis_session_ttl_follows_configured_lifetime():
    client = FakeRedisClient()
    clock = Clock()
    storage = Storage(RedisBackend(client), auth=AuthService(session_ttl_hours=72), now=clock)

    async def run():
        uid, user = await _user(storage)
        await storage.create_session(uid, "tok", storage.auth.generate_session_expiry(storage.now()), user)
        clock.advance(hours=48)
        return await storage.get_session_by_token("tok")

    session = asyncio.run(run())
    assert client.expiry["session:tok"] >= 72 * 3600
    assert session is not None


@BACKENDS
def test_authorization_header_resolution(make_backend):
    storage = _storage(make_backend)

    async def run():
        uid, user = await _user(storage)
        await storage.create_session(uid, "tok", storage.auth.generate_session_expiry(storage.now()), user)
        return (
            uid,
            await storage.get_user_id_from_authorization("Bearer tok"),
            await storage.get_user_id_from_authorization("Bearer other"),
            await storage.get_user_id_from_authorization("bearer tok"),
            await storage.get_user_id_from_authorization("tok"),
            await storage.get_user_id_from_authorization(None),
        )

    uid, good, unknown, lower, bare, missing = asyncio.run(run())
    assert good == uid
    assert unknown is None
    assert lower is None
    assert bare is None
    assert missing is None


def test_malformed_header_makes_no_backend_call():
    client = FakeRedisClient()
    storage = Storage(RedisBackend(client))

    async def run():
        return await storage.get_user_id_from_authorization("Token abc"), await storage.get_user_id_from_authorization("")

    assert asyncio.run(run()) == (None, None)
    assert client.calls == []


# ---- Documents ----

def test_word_count_edge_cases():
    assert count_words("one two three") == 3
    assert count_words("") == 1
    assert count_words("one\n\ttwo   three") == 3
    assert count_words(" padded ") == 3


@BACKENDS
def test_save_and_get_document(make_backend):
    storage = _storage(make_backend)

    async def run():
        uid, _ = await _user(storage)
        doc_id = await storage.save_document(uid, "Notes", "one two three")
        empty_id = await storage.save_document(uid, "Empty", "")
        return uid, await storage.get_document(doc_id, uid), await storage.get_document(empty_id, uid)

    uid, doc, empty = asyncio.run(run())
    assert doc["word_count"] == 3
    assert doc["file_type"] == "text"
    assert doc["user_id"] == uid
    assert empty["word_count"] == 1


@BACKENDS
def test_documents_listing_and_delete_are_owner_scoped(make_backend):
    storage = _storage(make_backend)

    async def run():
        alice, _ = await _user(storage, "alice@x.com")
        bob, _ = await _user(storage, "bob@x.com")
        d1 = await storage.save_document(alice, "First", "a b")
        d2 = await storage.save_document(alice, "Second", "c")
        stolen = await storage.delete_document(d1, bob)
        bob_view = await storage.get_document(d1, bob)
        listed = await storage.list_documents(alice)
        deleted = await storage.delete_document(d1, alice)
        after = await storage.list_documents(alice)
        return d1, d2, stolen, bob_view, listed, deleted, after, await storage.list_documents(bob)

    d1, d2, stolen, bob_view, listed, deleted, after, bobs = asyncio.run(run())
    assert stolen is False
    assert bob_view is None
    assert [d["id"] for d in listed] == [d2, d1]
    assert "original_text" not in listed[0]
    assert deleted is True
    assert [d["id"] for d in after] == [d2]
    assert bobs == []


# ---- Reviewers ----

@BACKENDS
def test_saved_reviewer_heads_owner_listing_only(make_backend):
    storage = _storage(make_backend)

    async def run():
        alice, _ = await _user(storage, "alice@x.com")
        bob, _ = await _user(storage, "bob@x.com")
        older = await storage.save_reviewer(alice, 1, _reviewer_data("Old"))
        newer = await storage.save_reviewer(alice, 2, _reviewer_data("New", word_count=42))
        return older, newer, await storage.get_all_reviewers(alice), await storage.get_all_reviewers(bob)

    older, newer, alices, bobs = asyncio.run(run())
    assert [r["id"] for r in alices] == [newer, older]
    assert alices[0] == {
        "id": newer,
        "title": "New",
        "generated_at": alices[0]["generated_at"],
        "word_count": 42,
    }
    assert bobs == []


@BACKENDS
def test_listing_limit_and_missing_word_count(make_backend):
    storage = _storage(make_backend)

    async def run():
        uid, _ = await _user(storage)
        for i in range(5):
            data = _reviewer_data(f"R{i}")
            data["metadata"] = {}
            await storage.save_reviewer(uid, i, data)
        return await storage.get_all_reviewers(uid, limit=3)

    listed = asyncio.run(run())
    assert [r["title"] for r in listed] == ["R4", "R3", "R2"]
    assert all(r["word_count"] == 0 for r in listed)


@BACKENDS
def test_listing_coerces_generator_word_count(make_backend):
    storage = _storage(make_backend)

    async def run():
        uid, _ = await _user(storage)
        for value in ("12", 3.7, "lots", None, [5]):
            await storage.save_reviewer(uid, 1, _reviewer_data(word_count=value))
        return await storage.get_all_reviewers(uid)

    counts = [r["word_count"] for r in asyncio.run(run())]
    assert counts == [0, 0, 0, 3, 12]
    assert all(type(c) is int for c in counts)


@BACKENDS
def test_listing_skips_ids_without_record(make_backend):
    backend = make_backend()
    storage = Storage(backend, now=Clock())

    async def run():
        uid, _ = await _user(storage)
        keep = await storage.save_reviewer(uid, 1, _reviewer_data())
        gone = await storage.save_reviewer(uid, 1, _reviewer_data())
        await backend.delete(f"reviewer:{gone}")
        return keep, await storage.get_all_reviewers(uid)

    keep, listed = asyncio.run(run())
    assert [r["id"] for r in listed] == [keep]


@BACKENDS
def test_get_reviewer_full_record(make_backend):
    storage = _storage(make_backend)

    async def run():
        uid, _ = await _user(storage)
        doc_id = await storage.save_document(uid, "Cells", "cells are small")
        rid = await storage.save_reviewer(uid, doc_id, _reviewer_data())
        return uid, doc_id, rid, await storage.get_reviewer(rid, uid)

    uid, doc_id, rid, reviewer = asyncio.run(run())
    assert reviewer["id"] == rid
    assert reviewer["user_id"] == uid
    assert reviewer["document_id"] == doc_id
    assert reviewer["original_text"] == "cells are small"
    assert reviewer["concepts"][0]["term"] == "cell"


@BACKENDS
def test_delete_reviewer_cascades_but_keeps_document(make_backend):
    storage = _storage(make_backend)

    async def run():
        uid, _ = await _user(storage)
        doc_id = await storage.save_document(uid, "Cells", "cells are small")
        rid = await storage.save_reviewer(uid, doc_id, _reviewer_data())
        await storage.save_quiz_questions(rid, {"trueFalse": []})
        deleted = await storage.delete_reviewer(rid, uid)
        return (
            deleted,
            await storage.get_reviewer(rid, uid),
            await storage.get_all_reviewers(uid),
            await storage.get_quiz_questions(rid),
            await storage.get_document(doc_id, uid),
            await storage.delete_reviewer(rid, uid),
        )

    deleted, reviewer, listed, quiz, document, again = asyncio.run(run())
    assert deleted is True
    assert reviewer is None
    assert listed == []
    assert quiz is None
    assert document is not None
    assert again is False


@BACKENDS
def test_foreign_reviewer_looks_like_missing(make_backend):
    storage = _storage(make_backend)

    async def run():
        alice, _ = await _user(storage, "alice@x.com")
        bob, _ = await _user(storage, "bob@x.com")
        rid = await storage.save_reviewer(alice, 1, _reviewer_data())
        return (
            await storage.get_reviewer(rid, bob),
            await storage.get_reviewer(999, bob),
            await storage.delete_reviewer(rid, bob),
            await storage.delete_reviewer(999, bob),
            await storage.get_reviewer(rid, alice),
        )

    foreign_get, missing_get, foreign_del, missing_del, still_there = asyncio.run(run())
    assert foreign_get is None and missing_get is None
    assert foreign_del is False and missing_del is False
    assert still_there is not None


# ---- Quiz ----

@BACKENDS
def test_quiz_questions_overwrite(make_backend):
    storage = _storage(make_backend)

    async def run():
        await storage.save_quiz_questions(7, {"version": 1})
        await storage.save_quiz_questions(7, {"version": 2})
        return await storage.get_quiz_questions(7), await storage.get_quiz_questions(8)

    assert asyncio.run(run()) == ({"version": 2}, None)


@BACKENDS
def test_attempts_newest_first(make_backend):
    storage = _storage(make_backend)

    async def run():
        uid, _ = await _user(storage)
        a1 = await storage.save_quiz_attempt(uid, 3, {"quizType": "mixed", "difficulty": "easy", "percentage": 50,
                                                      "totalQuestions": 4, "correctAnswers": 2, "wrongAnswers": 2,
                                                      "timeTaken": 30})
        a2 = await storage.save_quiz_attempt(uid, 3, {"percentage": 100})
        return a1, a2, await storage.list_quiz_attempts(uid), await storage.list_quiz_attempts(uid, limit=1)

    a1, a2, attempts, latest = asyncio.run(run())
    assert [a["id"] for a in attempts] == [a2, a1]
    assert attempts[1]["quiz_type"] == "mixed"
    assert attempts[1]["correct_answers"] == 2
    assert attempts[1]["reviewer_id"] == 3
    assert [a["id"] for a in latest] == [a2]


# ---- Statistics ----

@BACKENDS
def test_statistics_without_attempts(make_backend):
    storage = _storage(make_backend)

    async def run():
        uid, _ = await _user(storage)
        return await storage.get_statistics(uid)

    assert asyncio.run(run()) == {
        "documents": 0,
        "reviewers": 0,
        "quizAttempts": 0,
        "annotations": 0,
        "avgQuizScore": 0,
    }


@BACKENDS
def test_statistics_average_and_counts(make_backend):
    storage = _storage(make_backend)

    async def run():
        uid, _ = await _user(storage)
        doc_id = await storage.save_document(uid, "Cells", "cells")
        await storage.save_reviewer(uid, doc_id, _reviewer_data())
        rid = await storage.save_reviewer(uid, doc_id, _reviewer_data())
        await storage.delete_reviewer(rid, uid)
        for pct in (80, 100, 60):
            await storage.save_quiz_attempt(uid, 1, {"percentage": pct})
        return await storage.get_statistics(uid)

    stats = asyncio.run(run())
    assert stats["avgQuizScore"] == 80
    assert stats["quizAttempts"] == 3
    assert stats["reviewers"] == 1
    assert stats["documents"] == 1


@BACKENDS
def test_concurrent_saves_keep_every_index_entry(make_backend):
    storage = _storage(make_backend)

    async def run():
        uid, _ = await _user(storage)
        reviewer_ids, attempt_ids = await asyncio.gather(
            asyncio.gather(*(storage.save_reviewer(uid, 1, _reviewer_data(f"R{i}")) for i in range(20))),
            asyncio.gather(*(storage.save_quiz_attempt(uid, None, {"percentage": 50}) for _ in range(20))),
        )
        listed = await storage.get_all_reviewers(uid, limit=100)
        attempts = await storage.list_quiz_attempts(uid)
        return reviewer_ids, attempt_ids, listed, attempts, await storage.get_statistics(uid)

    reviewer_ids, attempt_ids, listed, attempts, stats = asyncio.run(run())
    assert len(set(reviewer_ids)) == 20
    assert {r["id"] for r in listed} == set(reviewer_ids)
    assert {a["id"] for a in attempts} == set(attempt_ids)
    assert stats["reviewers"] == 20
    assert stats["quizAttempts"] == 20
    assert stats["avgQuizScore"] == 50


# ---- Backend lists ----

@BACKENDS
def test_lrange_out_of_range_indexes(make_backend):
    backend = make_backend()

    async def run():
        await backend.lpush("l", "a")
        await backend.lpush("l", "b")
        return (
            await backend.lrange("l", 0, -10),
            await backend.lrange("l", -10, -1),
            await backend.lrange("l", 0, 10),
            await backend.lrange("l", 5, 10),
            await backend.lrange("l", -1, -1),
        )

    assert asyncio.run(run()) == ([], ["b", "a"], ["b", "a"], [], ["a"])


# ---- Isolation ----

@BACKENDS
def test_returned_records_are_copies(make_backend):
    storage = _storage(make_backend)

    async def run():
        uid, user = await _user(storage)
        user["full_name"] = "Mallory"
        return await storage.get_user_by_id(uid)

    assert asyncio.run(run())["full_name"] == "Ada Lovelace"


def test_memory_backends_do_not_share_state():
    async def run():
        a = Storage(MemoryBackend())
        b = Storage(MemoryBackend())
        await a.create_user("A", "a@x.com", "h")
        return await b.get_user_by_email("a@x.com"), await b.ids.next("users")

    assert asyncio.run(run()) == (None, 1)


def test_redis_errors_propagate():
    from redis.exceptions import ConnectionError as RedisConnectionError

    class DownClient(FakeRedisClient):
        async def incr(self, key):
            raise RedisConnectionError("connection refused")

    storage = Storage(RedisBackend(DownClient()))
    with pytest.raises(RedisConnectionError):
        asyncio.run(storage.save_document(1, "t", "x"))
