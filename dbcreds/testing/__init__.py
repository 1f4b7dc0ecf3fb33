"""Helpers for running plugin conformance tests against live services."""

from dbcreds.testing.assertions import (
    assert_close,
    assert_delete_user,
    assert_initialize,
    assert_new_user,
    assert_update_user,
    make_config,
)
from dbcreds.testing.docker import (
    Probe,
    RunOptions,
    Service,
    ServiceConfig,
    ServiceRunner,
    ServiceURL,
    resolve_external_address,
)

__all__ = [
    "Probe",
    "RunOptions",
    "Service",
    "ServiceConfig",
    "ServiceRunner",
    "ServiceURL",
    "assert_close",
    "assert_delete_user",
    "assert_initialize",
    "assert_new_user",
    "assert_update_user",
    "make_config",
    "resolve_external_address",
]
