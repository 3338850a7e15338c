# =============================================================================
# exceptions.py — Error taxonomy for the CRM service
#
# Scoring and statistics never raise. Everything here belongs to the write
# path (form validation, lookups by id) and is translated to a JSON response
# by the handlers registered in main.py.
# =============================================================================

from typing import Dict


class CrmError(Exception):
    """Base exception for the CRM service."""


class FormValidationError(CrmError):
    """
    A form submission was rejected.

    Carries the complete field -> message map so the caller can flag every
    broken field in one round trip.
    """

    def __init__(self, errors: Dict[str, str]):
        self.errors = dict(errors)
        fields = ", ".join(sorted(self.errors))
        super().__init__(f"Invalid fields: {fields}")


class NotFoundError(CrmError):
    """Raised when a record id does not exist in its collection."""

    def __init__(self, collection: str, record_id: str):
        self.collection = collection
        self.record_id = record_id
        super().__init__(f"No {collection} record with id '{record_id}'")
