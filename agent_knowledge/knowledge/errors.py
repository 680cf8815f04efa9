"""
Shared errors for the knowledge engine.
"""

from typing import Optional


class KnowledgeBaseError(Exception):
    """Exception raised when knowledge base operations fail."""

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        knowledge_id: Optional[str] = None,
    ):
        self.operation = operation
        self.knowledge_id = knowledge_id
        super().__init__(message)


class KnowledgeConfigError(KnowledgeBaseError):
    """Exception raised when the engine is configured with unusable values."""

    pass


class UnsupportedFileTypeError(KnowledgeBaseError):
    """Exception raised for files outside the supported extensions."""

    pass


class KnowledgeStoreError(Exception):
    """Exception raised when store operations fail."""

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
    ):
        self.operation = operation
        super().__init__(message)


class DuplicateKnowledgeError(KnowledgeStoreError):
    """Exception raised when a private record id is inserted twice."""

    def __init__(self, message: str, knowledge_id: str):
        self.knowledge_id = knowledge_id
        super().__init__(message, operation="create")
