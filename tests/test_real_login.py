from __future__ import annotations

import time

import pytest

from dynamo_backend import database as db
from dynamo_backend import real
from dynamo_backend.effects import Batch, FetchProfile, Loopback, NoEffect, Send
from dynamo_backend.engine import recover, update
from dynamo_backend.errors import DynamoBackendError, ErrorKind
from dynamo_backend.properties import Properties
from dynamo_backend.runtime import Runtime
from dynamo_backend.session import SessionModel


def _start_login(real_db, model, monkeypatch, nonce=4242):
    monkeypatch.setattr(real, "_random_nonce", lambda: nonce)
    model, effect = db.login(real_db, model)
    assert isinstance(effect, Loopback)
    assert effect.properties.pairs() == [("operation", "login-with-state"), ("random", str(nonce))]
    return update(effect.properties, real_db, model)


def _access_token(state, token="Atza|tok"):
    return Properties(
        [
            ("operation", "access-token"),
            ("state", state),
            ("access_token", token),
            ("token_type", "bearer"),
            ("expires_in", "3600"),
            ("scope", "profile"),
        ]
    )


def test_login_with_state_stores_nonce_and_asks_bridge(real_db, model, monkeypatch):
    model, effect = _start_login(real_db, model, monkeypatch)
    assert model.properties.get("expectedState") == "4242"
    assert isinstance(effect, Send)
    assert effect.properties.pairs() == [("operation", "login"), ("state", "4242")]


def test_access_token_merges_caches_and_fetches_profile(real_db, model, monkeypatch):
    model, _ = _start_login(real_db, model, monkeypatch)
    model, effect = update(_access_token("4242"), real_db, model)

    assert model.properties.get("access_token") == "Atza|tok"
    assert model.properties.get("expectedState") == "4242"
    assert isinstance(effect, Batch)
    cache, fetch = effect.effects
    assert isinstance(cache, Send)
    assert cache.properties.get("operation") == "localPut"
    assert cache.properties.get("key") == real.LOCAL_CACHE_KEY
    cached = Properties.from_json(cache.properties.get("value"))
    assert cached.get("access_token") == "Atza|tok"
    assert int(cached.get("expires_at")) > int(time.time())
    assert fetch == FetchProfile("Atza|tok")


def test_forged_state_is_rejected_without_profile_fetch(real_db, model):
    model = real_db.set_properties(Properties.of(expectedState="S1"), model)
    with pytest.raises(DynamoBackendError) as ei:
        update(_access_token("S2"), real_db, model)
    assert ei.value.kind is ErrorKind.ACCESS_TOKEN_ERROR
    assert "Forgery" in ei.value.message


def test_missing_state_is_rejected(real_db, model):
    model = real_db.set_properties(Properties.of(expectedState="S1"), model)
    bag = _access_token("S1").remove("state")
    with pytest.raises(DynamoBackendError) as ei:
        update(bag, real_db, model)
    assert ei.value.message == "No state returned from login."


def test_profile_completes_login_and_clears_expected_state(real_db, model, monkeypatch):
    model, _ = _start_login(real_db, model, monkeypatch)
    model, _ = update(_access_token("4242"), real_db, model)
    login_bag = Properties(
        [("operation", "login"), ("email", "a@example.com"), ("name", "A"), ("user_id", "amzn1.account.A")]
    )
    model, _ = update(login_bag, real_db, model)
    assert model.profile.user_id == "amzn1.account.A"
    assert model.properties.get("expectedState") is None
    assert model.properties.get("access_token") == "Atza|tok"


def test_profile_fetch_failure_reported_when_login_expected(real_db, model, monkeypatch):
    model, _ = _start_login(real_db, model, monkeypatch)
    bag = Properties([("operation", "login"), ("error", "Timeout"), ("type", "FetchProfileError")])
    with pytest.raises(DynamoBackendError) as ei:
        update(bag, real_db, model)
    assert ei.value.kind is ErrorKind.FETCH_PROFILE_ERROR


def test_unsolicited_profile_fetch_failure_is_ignored(real_db, model):
    bag = Properties([("operation", "login"), ("error", "Timeout"), ("type", "FetchProfileError")])
    out, effect = update(bag, real_db, model)
    assert out == model
    assert isinstance(effect, NoEffect)


def test_second_login_supersedes_first_nonce(real_db, model, monkeypatch):
    model, _ = _start_login(real_db, model, monkeypatch, nonce=1)
    model, _ = _start_login(real_db, model, monkeypatch, nonce=2)
    # The provider's answer to the first request arrives late.
    with pytest.raises(DynamoBackendError) as ei:
        update(_access_token("1"), real_db, model)
    assert ei.value.kind is ErrorKind.ACCESS_TOKEN_ERROR
    out, _ = update(_access_token("2"), real_db, model)
    assert out.properties.get("access_token") == "Atza|tok"


def test_install_loads_script_and_reads_cache(real_db, model):
    _, effect = db.install(real_db, model)
    assert isinstance(effect, Batch)
    ops = [e.properties.get("operation") for e in effect.effects]
    assert ops == ["installLoginScript", "localGet"]


def test_cached_token_restores_session_silently(real_db, model):
    cached = Properties([("access_token", "Atza|old"), ("expires_at", str(int(time.time()) + 600))])
    bag = Properties([("operation", "localGet"), ("key", real.LOCAL_CACHE_KEY), ("value", cached.to_json())])
    model, effect = update(bag, real_db, model)
    assert effect == FetchProfile("Atza|old")
    assert model.properties.get("access_token") == "Atza|old"
    assert model.properties.get("expectedState") is None


def test_expired_cached_token_is_cleared(real_db, model):
    cached = Properties([("access_token", "Atza|old"), ("expires_at", str(int(time.time()) - 1))])
    bag = Properties([("operation", "localGet"), ("key", real.LOCAL_CACHE_KEY), ("value", cached.to_json())])
    out, effect = update(bag, real_db, model)
    assert out.properties.get("access_token") is None
    assert isinstance(effect, Send)
    assert effect.properties.pairs() == [("operation", "localPut"), ("key", real.LOCAL_CACHE_KEY)]


@pytest.mark.parametrize("value", [None, "not json", "[]"])
def test_empty_or_bad_cache_is_ignored(real_db, model, value):
    bag = Properties([("operation", "localGet"), ("key", real.LOCAL_CACHE_KEY)])
    if value is not None:
        bag = bag.append("value", value)
    out, effect = update(bag, real_db, model)
    assert out == model
    assert isinstance(effect, NoEffect)


def test_data_operations_name_the_user(real_db, model):
    _, effect = db.put(real_db, model, "k", "v", user="amzn1.account.A", tag=3)
    assert effect.properties.pairs() == [
        ("operation", "put"),
        ("user", "amzn1.account.A"),
        ("key", "k"),
        ("value", "v"),
        ("tag", "3"),
    ]
    _, effect = db.scan(real_db, model, True, user="amzn1.account.A")
    assert effect.properties.get("fetchValues") == "true"
    _, effect = db.remove(real_db, model, "k", user="amzn1.account.A")
    assert effect.properties.pairs() == [("operation", "remove"), ("user", "amzn1.account.A"), ("key", "k")]


def test_data_operation_without_user_fails(real_db, model):
    with pytest.raises(DynamoBackendError) as ei:
        db.get(real_db, model, "k")
    assert ei.value.kind is ErrorKind.INTERNAL_ERROR


def test_logout_sends_and_loops_back(real_db, model):
    model = real_db.set_properties(Properties.of(access_token="t"), model)
    model, effect = db.logout(real_db, model)
    assert isinstance(effect, Batch)
    send, loop = effect.effects
    assert isinstance(send, Send) and isinstance(loop, Loopback)
    model, _ = update(loop.properties, real_db, model)
    assert len(model.properties) == 0


def test_failed_profile_fetch_spends_the_nonce(real_db, model, monkeypatch):
    model, _ = _start_login(real_db, model, monkeypatch)
    model, _ = update(_access_token("4242"), real_db, model)
    bag = Properties([("operation", "login"), ("error", "Timeout"), ("type", "FetchProfileError")])
    with pytest.raises(DynamoBackendError) as ei:
        update(bag, real_db, model)
    model = recover(ei.value, real_db, model)
    assert model.properties.get("expectedState") is None

    # The same identity response replayed later no longer passes.
    with pytest.raises(DynamoBackendError) as ei:
        update(_access_token("4242"), real_db, model)
    assert ei.value.kind is ErrorKind.ACCESS_TOKEN_ERROR

    # Nobody is waiting on a login any more.
    _, effect = update(bag, real_db, model)
    assert isinstance(effect, NoEffect)


def test_rejected_access_token_spends_the_nonce(real_db, model, monkeypatch):
    model, _ = _start_login(real_db, model, monkeypatch)
    provider_error = Properties(
        [("operation", "access-token"), ("error", "access_denied"), ("type", "AccessTokenError")]
    )
    with pytest.raises(DynamoBackendError) as ei:
        update(provider_error, real_db, model)
    model = recover(ei.value, real_db, model)
    with pytest.raises(DynamoBackendError):
        update(_access_token("4242"), real_db, model)


def test_recover_leaves_other_failures_alone(real_db, model):
    model = real_db.set_properties(Properties.of(expectedState="S1"), model)
    err = DynamoBackendError(kind=ErrorKind.AWS_ERROR, message="boom", operation="get")
    assert recover(err, real_db, model) is model


def test_runtime_drops_nonce_after_failed_login(real_db, monkeypatch):
    monkeypatch.setattr(real, "_random_nonce", lambda: 7)
    errors = []

    def on_error(err, database, m):
        errors.append(err.kind)
        return m, NoEffect()

    rt = Runtime(database=real_db, model=SessionModel(), on_error=on_error)
    rt.perform(db.login)
    assert rt.model.properties.get("expectedState") == "7"
    rt.deliver(Properties([("operation", "login"), ("error", "Timeout"), ("type", "FetchProfileError")]))
    assert errors == [ErrorKind.FETCH_PROFILE_ERROR]
    assert rt.model.properties.get("expectedState") is None


@pytest.mark.parametrize("expires_in, lifetime", [("3600.0", 3600), ("never", 0)])
def test_cached_token_always_carries_expiry(real_db, model, monkeypatch, expires_in, lifetime):
    monkeypatch.setattr(real.time, "time", lambda: 1000.0)
    model, _ = _start_login(real_db, model, monkeypatch)
    bag = _access_token("4242").remove("expires_in").append("expires_in", expires_in)
    _, effect = update(bag, real_db, model)
    cached = Properties.from_json(effect.effects[0].properties.get("value"))
    assert cached.get("expires_at") == str(1000 + lifetime)
