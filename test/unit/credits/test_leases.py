"""Unit tests for in-process grant leases."""

from __future__ import annotations

import pytest

from credits.errors import GrantBusyError
from credits.leases import GrantLeaseRegistry


def test_lease_is_exclusive_per_grant() -> None:
    """A held lease blocks the same grant but not others."""
    leases = GrantLeaseRegistry()

    with leases.lease(1):
        assert leases.is_held(1)
        assert leases.try_acquire(2) is True
        with pytest.raises(GrantBusyError) as excinfo:
            with leases.lease(1):
                pass

    assert excinfo.value.code == "grant_busy"
    assert leases.is_held(1) is False
    assert leases.is_held(2) is True


def test_lease_released_after_error() -> None:
    """Leases are released when the guarded block raises."""
    leases = GrantLeaseRegistry()

    with pytest.raises(RuntimeError):
        with leases.lease(5):
            raise RuntimeError("boom")

    assert leases.try_acquire(5) is True
