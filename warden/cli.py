from __future__ import annotations

import argparse
import json
import os

from docker.errors import DockerException

from .credentials import CredentialProvisioner
from .discovery import detect_docker_sockets
from .errors import WardenError
from .events import configure_logging, log_event
from .models import BootMode
from .registry import ServiceRegistry, build_default_descriptors
from .settings import Settings


def _print(obj) -> None:
    print(json.dumps(obj, indent=2, ensure_ascii=False))


def main(argv: list[str] | None = None) -> int:
    p = argparse.ArgumentParser(prog="warden", description="Noona stack supervisor")
    sub = p.add_subparsers(dest="cmd")

    s_boot = sub.add_parser("boot", help="Boot the stack and supervise it until signalled (default)")
    s_boot.add_argument("--mode", choices=[m.value for m in BootMode], help="Override WARDEN_BOOT_MODE / DEBUG")

    sub.add_parser("list", help="Show the service catalogue")
    sub.add_parser("tokens", help="Print the serialized vault token map")
    sub.add_parser("sockets", help="Show detected docker sockets")

    args = p.parse_args(argv)
    cmd = args.cmd or "boot"

    env = dict(os.environ)
    if getattr(args, "mode", None):
        env["WARDEN_BOOT_MODE"] = args.mode
    settings = Settings.from_env(env)
    configure_logging(settings)

    if cmd == "list":
        registry = ServiceRegistry(build_default_descriptors(settings), settings.host_service_url)
        _print(registry.catalog())
        return 0

    if cmd == "tokens":
        registry = ServiceRegistry(build_default_descriptors(settings), settings.host_service_url)
        provisioner = CredentialProvisioner(env=env)
        provisioner.build_all(registry.names())
        print(provisioner.serialize())
        return 0

    if cmd == "sockets":
        _print(detect_docker_sockets(env))
        return 0

    # Imported here so the offline subcommands never touch the docker daemon.
    from .orchestrator import Warden

    try:
        warden = Warden(settings, env=env)
    except WardenError as e:
        log_event("ERROR", f"Warden configuration error: {e}")
        return 1
    except DockerException as e:
        log_event("ERROR", f"Docker is not available: {e}")
        return 1

    warden.shutdown.install_signal_handlers()
    try:
        warden.init()
    except (WardenError, DockerException) as e:
        log_event("ERROR", f"Warden boot failure: {e}")
        warden.shutdown.stop_all()
        return 1

    warden.run_forever()
    return 0
