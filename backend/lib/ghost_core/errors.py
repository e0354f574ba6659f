# backend/lib/ghost_core/errors.py
"""
Rejection taxonomy for the reading relay.

Every rejection carries the HTTP status it maps to and a machine-readable
reason string that ends up in the JSON error body.
"""


class RelayError(Exception):
    status_code = 500
    reason = "internal_error"

    def __init__(self, message: str = None):
        super().__init__(message or self.reason)
        self.message = message or self.reason

    def to_dict(self) -> dict:
        return {"error": self.message, "reason": self.reason}


class MalformedRequest(RelayError):
    status_code = 400
    reason = "malformed_request"


class InvalidSignature(RelayError):
    status_code = 400
    reason = "invalid_signature"


class UnregisteredDevice(RelayError):
    status_code = 404
    reason = "no_ghost"


class OracleUnavailable(RelayError):
    status_code = 500
    reason = "oracle_unavailable"


class BackendCommitFailed(RelayError):
    status_code = 500
    reason = "backend_commit_failed"


class LedgerUnavailable(RelayError):
    status_code = 500
    reason = "ledger_unavailable"


# Raised by collaborators (ledger / oracle adapters), translated by the pipeline.

class LedgerError(Exception):
    pass


class OracleError(Exception):
    pass
