"""
Exceptions raised inside the screening pipeline.

None of these abort an assessment run: each one marks a signal or a
candidate as unavailable and the run carries on without it.
"""


class CopyGuardError(Exception):
    """Base class for all CopyGuard errors."""
    pass


class DecodeError(CopyGuardError):
    """Image bytes could not be rasterized, so no fingerprint is available."""
    pass


class LengthMismatch(CopyGuardError):
    """Two fingerprints of different lengths were compared."""
    pass


class FetchError(CopyGuardError):
    """Stored bytes for a collection image are unavailable."""
    pass


class OracleError(CopyGuardError):
    """An external embedding, verification or remediation call failed."""
    pass


class AssessmentInProgressError(CopyGuardError):
    """An assessment was started while the current run is still working."""
    pass


class NoTargetError(CopyGuardError):
    """An assessment was started before any target image was submitted."""
    pass
