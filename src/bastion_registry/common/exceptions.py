"""Bastion registry exception hierarchy."""


class BastionError(Exception):
    """Base exception for all registry errors."""

    def __init__(self, message: str = "", code: str = "BASTION_ERROR"):
        self.message = message
        self.code = code
        super().__init__(message)


class ValidationError(BastionError):
    """Raised when a name, owner, local user or public key is malformed."""

    def __init__(self, message: str = "Invalid input"):
        super().__init__(message, code="INVALID")


class NameConflictError(BastionError):
    """Raised when a machine name is already registered."""

    def __init__(self, message: str = "Machine already registered"):
        super().__init__(message, code="CONFLICT")


class MachineNotFoundError(BastionError):
    """Raised when an operation references an unknown machine name."""

    def __init__(self, message: str = "Machine not found"):
        super().__init__(message, code="NOT_FOUND")


class PoolExhaustedError(BastionError):
    """Raised when every port in the pool is taken."""

    def __init__(self, message: str = "No available ports"):
        super().__init__(message, code="POOL_EXHAUSTED")


class StorageError(BastionError):
    """Raised when the underlying database fails."""

    def __init__(self, message: str = "Storage failure"):
        super().__init__(message, code="STORAGE_ERROR")
