class OrchestratorError(Exception):
    """Base error carrying the HTTP status it is reported with."""

    status_code = 500

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class ValidationError(OrchestratorError):
    status_code = 400


class NotFoundError(OrchestratorError):
    status_code = 404


class ConflictError(OrchestratorError):
    status_code = 409


class ExternalServiceError(OrchestratorError):
    status_code = 502
