class JobServiceError(Exception):
    """Base class for predictable job/account service failures."""


class JobNotFound(JobServiceError):
    pass


class AccountNotFound(JobServiceError):
    def __init__(self, missing_ids):
        self.missing_ids = sorted(missing_ids)
        super().__init__(f"Accounts not found: {self.missing_ids}")


class JobConflict(JobServiceError):
    """The job is in a state that does not allow the requested operation."""


class InvalidAccountState(JobServiceError):
    def __init__(self, message: str, account_ids=None):
        self.account_ids = sorted(account_ids or [])
        super().__init__(message)


class CollaboratorError(Exception):
    """A research/categorization collaborator failed or returned unusable output."""


class DuplicateAccounts(InvalidAccountState):
    """Every row of a batch collided with an existing account domain."""


class UnknownSection(JobServiceError):
    """A research section key that the perspective does not define."""
