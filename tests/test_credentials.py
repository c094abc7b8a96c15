import inspect
import secrets

import pytest

from warden.credentials import (
    CredentialProvisioner,
    build_registry,
    env_key_for,
    generate_token,
    parse_token_map,
    stringify_token_map,
)


def test_env_key_is_derived_from_service_name():
    assert env_key_for("noona-sage") == "NOONA_SAGE_VAULT_TOKEN"


def test_generate_token_prefix_and_entropy():
    token = generate_token("noona-raven!!", random_bytes=lambda n: b"\xab" * n)
    assert token == "noonaraven-" + "ab" * 18


def test_generate_token_defaults_to_secrets():
    assert inspect.signature(generate_token).parameters["random_bytes"].default is secrets.token_bytes
    token = generate_token("noona-vault")
    assert len(token.split("-")[1]) == 2 * 18
    assert token != generate_token("noona-vault")


def test_generate_token_caps_prefix_and_falls_back():
    long_name = "x" * 40
    assert generate_token(long_name).split("-")[0] == "x" * 24
    assert generate_token("---").startswith("noona-")
    assert generate_token(None).startswith("noona-")


def test_env_override_wins_and_is_cached():
    cache = {"noona-moon": "cached-token"}
    tokens = build_registry(
        ["noona-moon"],
        env={"NOONA_MOON_VAULT_TOKEN": "  from-env  "},
        cache=cache,
        generator=lambda name: pytest.fail("generator must not run"),
    )
    assert tokens == {"noona-moon": "from-env"}
    assert cache["noona-moon"] == "from-env"


def test_cache_used_before_generator():
    cache = {"noona-sage": "cached-1"}
    tokens = build_registry(["noona-sage"], env={}, cache=cache, generator=lambda name: "fresh")
    assert tokens == {"noona-sage": "cached-1"}


def test_blank_and_non_string_names_are_skipped():
    tokens = build_registry(["", "  ", None, 42, " noona-vault "], env={}, cache={}, generator=lambda n: f"{n}-tok")
    assert tokens == {"noona-vault": "noona-vault-tok"}


def test_unresolvable_token_gives_no_entry():
    tokens = build_registry(["noona-portal"], env={}, cache={}, generator=lambda name: "   ")
    assert tokens == {}


def test_build_twice_in_one_run_is_stable():
    provisioner = CredentialProvisioner(env={})
    first = provisioner.build_all(["noona-sage", "noona-moon"])
    second = provisioner.build_all(["noona-sage", "noona-moon"])
    assert first == second
    assert first["noona-sage"] != first["noona-moon"]


def test_fresh_provisioners_do_not_share_cache():
    a = CredentialProvisioner(env={}).build_all(["noona-sage"])
    b = CredentialProvisioner(env={}).build_all(["noona-sage"])
    assert a["noona-sage"] != b["noona-sage"]


def test_stringify_is_sorted_and_skips_empty_tokens():
    raw = stringify_token_map({"noona-vault": "v-1", "noona-moon": "m-1", "noona-raven": "", "": "x"})
    assert raw == "noona-moon:m-1,noona-vault:v-1"


def test_stringify_then_parse_round_trips():
    provisioner = CredentialProvisioner(env={})
    tokens = provisioner.build_all(["noona-sage", "noona-moon", "noona-raven", "noona-vault"])
    tokens["custom"] = "ABC-123-def"
    assert parse_token_map(stringify_token_map(tokens)) == tokens


def test_parse_ignores_malformed_pairs():
    assert parse_token_map(" a:1 ,, b: , :c, d:2 ") == {"a": "1", "d": "2"}
    assert parse_token_map("") == {}
