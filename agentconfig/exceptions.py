import json
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Union


class ErrorClassification(Enum):
    """Classification of configuration errors for caller remediation"""

    NOT_FOUND = "not_found"  # Backing file missing or unreadable
    PERMISSION = "permission"  # Backing file cannot be created or written
    FORMAT = "format"  # Content is not a well-formed configuration document
    VALIDATION = "validation"  # Well-formed content violating a domain rule
    ARGUMENT = "argument"  # Missing input to an operation


class AgentConfigError(Exception):
    """Base exception for all configuration manager errors"""

    def __init__(
        self,
        message: str,
        classification: ErrorClassification = ErrorClassification.FORMAT,
        path: Optional[Union[str, Path]] = None,
        cause: Optional[Exception] = None,
    ):
        super().__init__(message)
        self.message = message
        self.classification = classification
        self.path = str(path) if path is not None else None
        self.cause = cause
        self.timestamp = datetime.now(timezone.utc)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for serialization"""
        return {
            "type": self.__class__.__name__,
            "message": self.message,
            "classification": self.classification.value,
            "path": self.path,
            "timestamp": self.timestamp.isoformat(),
            "cause": str(self.cause) if self.cause else None,
        }

    def to_json(self) -> str:
        """Convert exception to JSON string for logging"""
        return json.dumps(self.to_dict(), default=str, indent=2)


class ConfigNotFoundError(AgentConfigError, FileNotFoundError):
    """Raised when the backing file does not exist or cannot be read"""

    def __init__(self, message: str, **kwargs):
        super().__init__(
            message, classification=ErrorClassification.NOT_FOUND, **kwargs
        )


class ConfigNotWritableError(AgentConfigError, PermissionError):
    """Raised when the backing file cannot be created or is not writable"""

    def __init__(self, message: str, **kwargs):
        super().__init__(
            message, classification=ErrorClassification.PERMISSION, **kwargs
        )


class ConfigFormatError(AgentConfigError):
    """Raised when content cannot be deserialized into a configuration tree"""

    def __init__(self, message: str, location: Optional[str] = None, **kwargs):
        super().__init__(message, classification=ErrorClassification.FORMAT, **kwargs)
        self.location = location

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["location"] = self.location
        return data


class ConfigValidationError(AgentConfigError):
    """Raised when a configuration tree violates one or more domain rules"""

    def __init__(self, message: str, issues: Optional[List[Any]] = None, **kwargs):
        super().__init__(
            message, classification=ErrorClassification.VALIDATION, **kwargs
        )
        self.issues = list(issues or [])

    @property
    def locations(self) -> List[str]:
        return [issue.location for issue in self.issues]

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["issues"] = [
            {
                "location": issue.location,
                "element": getattr(issue, "element", None),
                "message": issue.message,
            }
            for issue in self.issues
        ]
        return data


class InvalidArgumentError(AgentConfigError, ValueError):
    """Raised when an operation receives a missing argument"""

    def __init__(self, message: str, argument: Optional[str] = None, **kwargs):
        super().__init__(
            message, classification=ErrorClassification.ARGUMENT, **kwargs
        )
        self.argument = argument
