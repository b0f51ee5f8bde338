# core/exceptions.py

class QuickQuoteError(Exception):
    """Base class for all custom exceptions in this application."""
    pass

class ConfigurationError(QuickQuoteError):
    """Exception raised for errors in configuration loading or validation."""
    pass

class UnsupportedModelError(QuickQuoteError):
    """Raised when uploaded model bytes cannot be parsed as a supported mesh format."""

    def __init__(self, file_name: str, reason: str):
        self.file_name = file_name
        self.reason = reason
        super().__init__(f"Unsupported model '{file_name}': {reason}")

class NoItemsError(QuickQuoteError):
    """Raised when a pricing request contains no items."""

    def __init__(self, message: str = "At least one item is required to price a quick order."):
        super().__init__(message)

class SlicerError(QuickQuoteError):
    """Exception raised for errors related to external slicer execution or parsing.

    Never escapes `slicer.estimate`; it is turned into a fallback estimate there.
    """
    pass
