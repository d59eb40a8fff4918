# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/kairos_capi/errors.py


class KairosCapiError(RuntimeError):
    """Base class for all kairos-capi failures."""


# ---------------------------------------------------------------------
# Spec problems: fatal to the attempt, written to sticky failure status
# ---------------------------------------------------------------------
class ValidationError(KairosCapiError):
    """A required field is missing or invalid."""

    reason = "InvalidConfiguration"


class MissingToken(ValidationError):
    reason = "MissingToken"


class MissingServerAddress(ValidationError):
    reason = "MissingServerAddress"


class UnsupportedCapability(KairosCapiError):
    """Unknown distribution or infrastructure provider."""

    reason = "UnsupportedCapability"


class UnsupportedDistribution(UnsupportedCapability):
    reason = "UnsupportedDistribution"


class UnsupportedProvider(UnsupportedCapability):
    reason = "UnsupportedProvider"


# ---------------------------------------------------------------------
# Retryable
# ---------------------------------------------------------------------
class DependencyNotReady(KairosCapiError):
    """A referenced secret, template or owner does not exist yet."""

    reason = "DependencyNotReady"


class ReconcileCancelled(KairosCapiError):
    """The caller's cancel signal was set between two store calls."""


# ---------------------------------------------------------------------
# Store outcomes
# ---------------------------------------------------------------------
class StoreError(KairosCapiError):
    """Base class for store failures."""


class NotFoundError(StoreError):
    pass


class AlreadyExistsError(StoreError):
    pass


class ConflictError(StoreError):
    pass


class TransientStoreError(StoreError):
    """I/O or server failure; the scheduler retries."""


def is_terminal(exc: BaseException) -> bool:
    """True when retrying against the same spec cannot succeed."""
    return isinstance(exc, (ValidationError, UnsupportedCapability))
