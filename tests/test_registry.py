import pytest
from pydantic import ValidationError

from warden.credentials import parse_token_map
from warden.errors import DuplicateServiceError, UnknownServiceError
from warden.models import BootMode, ServiceDescriptor, merge_env
from warden.registry import ServiceRegistry, build_default_descriptors
from warden.settings import Settings


@pytest.fixture
def settings():
    return Settings.from_env({"HOST_SERVICE_URL": "http://host.example", "DEBUG": "false"})


@pytest.fixture
def registry(settings):
    return ServiceRegistry(build_default_descriptors(settings), settings.host_service_url)


def test_minimal_mode_is_cache_gateway_frontend(registry):
    assert [d.name for d in registry.for_mode(BootMode.MINIMAL)] == ["noona-redis", "noona-sage", "noona-moon"]


def test_full_mode_starts_with_minimal_subset_and_covers_everything(registry):
    names = [d.name for d in registry.for_mode("full")]
    assert names[:3] == ["noona-redis", "noona-sage", "noona-moon"]
    assert sorted(names) == sorted(registry.names())
    assert names.index("noona-mongo") < names.index("noona-vault")


def test_unknown_group_is_empty_not_error(registry):
    assert registry.for_group("nope") == []
    assert len(registry.for_group("all")) == len(registry)


def test_duplicate_names_rejected(descriptor):
    with pytest.raises(DuplicateServiceError):
        ServiceRegistry([descriptor("svc-a"), descriptor("svc-a")])


def test_get_unknown_raises(registry):
    with pytest.raises(UnknownServiceError):
        registry.get("noona-nothing")


def test_host_service_url(registry):
    assert registry.host_service_url(registry.get("noona-moon")) == "http://host.example:3000"
    assert registry.host_service_url(registry.get("noona-mongo")) == "mongodb://localhost:27017"


def test_redis_publishes_both_ports_and_mutes_logs(registry):
    redis = registry.get("noona-redis")
    assert redis.published_ports() == {"8001/tcp": 8001, "6379/tcp": 6379}
    assert redis.stream_logs is False


def test_credentials_merged_without_duplicate_keys(settings):
    tokens = {"noona-sage": "sage-1", "noona-vault": "vault-1", "noona-moon": "moon-1"}
    registry = ServiceRegistry(build_default_descriptors(settings, tokens=tokens))

    sage = registry.get("noona-sage")
    assert "VAULT_API_TOKEN=sage-1" in sage.env
    assert len(sage.env_keys()) == len(set(sage.env_keys()))

    vault = registry.get("noona-vault")
    raw = next(e.split("=", 1)[1] for e in vault.env if e.startswith("VAULT_TOKEN_MAP="))
    assert parse_token_map(raw) == tokens

    assert not any(e.startswith("VAULT_API_TOKEN=") for e in registry.get("noona-oracle").env)


def test_kavita_mount_goes_to_raven_only(settings):
    registry = ServiceRegistry(build_default_descriptors(settings, kavita_mount="/srv/kavita"))
    raven = registry.get("noona-raven")
    assert "/srv/kavita:/kavita-data" in raven.volumes
    assert "KAVITA_DATA_MOUNT=/kavita-data" in raven.env
    assert "APPDATA=/kavita-data" in raven.env
    assert registry.get("noona-portal").volumes == []


def test_catalog_sorted_by_name(registry):
    names = [row["name"] for row in registry.catalog()]
    assert names == sorted(names)
    mongo = next(row for row in registry.catalog() if row["name"] == "noona-mongo")
    assert mongo["envConfig"][0]["key"] == "MONGO_INITDB_ROOT_USERNAME"


def test_descriptor_validation():
    with pytest.raises(ValidationError):
        ServiceDescriptor(name="Bad_Name", image="x:1")
    with pytest.raises(ValidationError):
        ServiceDescriptor(name="ok", image="x:1", env=["A=1", "A=2"])


def test_merge_env_replaces_in_place_and_appends():
    assert merge_env(["A=1", "B=2"], {"B": "3", "C": None}) == ["A=1", "B=3", "C="]
    assert merge_env(["A=x=y"], None) == ["A=x=y"]


def test_boot_mode_from_settings():
    assert Settings.from_env({}).resolved_boot_mode == "minimal"
    assert Settings.from_env({"DEBUG": "super"}).resolved_boot_mode == "full"
    assert Settings.from_env({"DEBUG": "super", "WARDEN_BOOT_MODE": "minimal"}).resolved_boot_mode == "minimal"
