from __future__ import annotations


class ValidationError(ValueError):
    """An incoming record could not be parsed into something resolvable."""

    def __init__(self, field: str, message: str) -> None:
        super().__init__(f"{field}: {message}")
        self.field = field
        self.message = message


class CandidateLookupError(LookupError):
    """The contact store could not be read while gathering match candidates."""


class MergeNotPermittedError(ValueError):
    """Merge was requested for a confidence tier that does not allow it."""


class MergeConflictWarning(UserWarning):
    """Existing and incoming values disagree on an identity field.

    Never raised by the merge engine. Instances are logged and returned on the
    merge outcome so callers can surface them for review.
    """

    def __init__(self, field: str, existing: str, incoming: str, contact_id: str) -> None:
        super().__init__(f"{field} conflict on contact {contact_id}: kept {existing!r}, ignored {incoming!r}")
        self.field = field
        self.existing = existing
        self.incoming = incoming
        self.contact_id = contact_id

    def as_dict(self) -> dict[str, str]:
        return {
            "field": self.field,
            "existing": self.existing,
            "incoming": self.incoming,
            "contact_id": self.contact_id,
        }
