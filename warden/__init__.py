"""Warden.

Single-host control plane that boots the Noona container stack:
 - shared docker network setup
 - image pulls and container lifecycle
 - per-service vault credentials
 - dependency ordered boot with HTTP health gating
 - graceful teardown of everything this run started

Only process memory is used for state; a restarted warden detects existing
containers by name and leaves them alone.
"""
