from typing import Optional, Dict, Any

class SnapLedgerException(Exception):
    """Base exception for all snapledger errors."""
    def __init__(
        self,
        message: str,
        code: str = "internal_error",
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details or {}

class ConfigurationError(SnapLedgerException):
    """Raised when application configuration is invalid or missing."""
    def __init__(self, message: str, code: str = "config_error", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code=code, details=details)

class SnapshotContractError(SnapLedgerException):
    """Raised when a snapshot or resource contract breaks the engine's input rules."""
    def __init__(self, message: str, code: str = "snapshot_contract_violation", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code=code, details=details)

class SnapshotConversionError(SnapLedgerException):
    """Raised when a converter cannot map a raw item into a canonical snapshot."""
    def __init__(self, message: str, code: str = "conversion_error", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code=code, details=details)

class ConsistencyViolationError(SnapLedgerException):
    """
    Raised when stored current/history rows are already inconsistent.

    Always fatal to the enclosing unit of work.
    """
    def __init__(self, message: str, code: str = "consistency_violation", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code=code, details=details)
