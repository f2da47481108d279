"""
Error taxonomy shared by the store, the extraction pipeline and the routes
"""


class ClauseSyncError(Exception):
    """Base class; routes map subclasses to HTTP status codes"""
    status_code = 500

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message


class Unauthenticated(ClauseSyncError):
    status_code = 401

    def __init__(self, message: str = "User not authenticated"):
        super().__init__(message)


class PermissionDenied(ClauseSyncError):
    status_code = 403


class NotFound(ClauseSyncError):
    status_code = 404


class ValidationError(ClauseSyncError):
    status_code = 400


class ExtractionFailure(ClauseSyncError):
    status_code = 502


class StoreFailure(ClauseSyncError):
    status_code = 500


class ContractAlreadyExists(StoreFailure):
    status_code = 409

    def __init__(self, contract_id: str):
        super().__init__(f"Contract {contract_id} already exists")
        self.contract_id = contract_id
