"""
Service Layer Exceptions

Expected business-rule failures raised by the discharge services and step
handlers. Step handlers report these as failed steps instead of letting them
reach the orchestrator.
"""


class DischargeError(Exception):
    """Base class for every expected discharge workflow failure."""
    pass


class CaseNotFoundError(DischargeError):
    """Raised when a case id does not resolve to a stored case."""

    def __init__(self, case_id: str):
        super().__init__("Case not found")
        self.case_id = case_id


class MissingCaseIdError(DischargeError):
    """Raised when a step needs a case but neither ingest nor the request supplied one."""

    def __init__(self, purpose: str):
        super().__init__(f"Case ID required for {purpose}")


class RawDataRequiredError(DischargeError):
    """Raised when ingestion runs without raw clinical data."""
    pass


class EntityExtractionError(DischargeError):
    """Raised when no usable entities can be produced from the input."""
    pass


class EuthanasiaCaseError(DischargeError):
    """Raised when a case is a euthanasia; no discharge follow-up is sent for these."""

    def __init__(self):
        super().__init__(
            "Euthanasia case detected. Discharge workflow is not applicable for euthanasia cases."
        )


class SummaryNotFoundError(DischargeError):
    """Raised when neither the run nor the database holds a discharge summary."""

    def __init__(self):
        super().__init__("Discharge summary not found")


class EmailContentMissingError(DischargeError):
    def __init__(self):
        super().__init__("Email content required for scheduling")


class RecipientRequiredError(DischargeError):
    def __init__(self):
        super().__init__("Recipient email is required")


class PhoneNumberRequiredError(DischargeError):
    def __init__(self):
        super().__init__("Patient phone number is required to schedule call")


class ScheduleInPastError(DischargeError):
    """Raised when a caller asks for a delivery time that is not in the future."""

    def __init__(self, requested, server_now):
        super().__init__(
            f"Scheduled time must be in the future. Provided: {requested.isoformat()}, "
            f"Server now: {server_now.isoformat()}"
        )


class DispatchError(DischargeError):
    """Raised when the delayed-job dispatcher rejects or cannot accept a job."""
    pass
