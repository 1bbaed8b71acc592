class ValidationError(ValueError):
    """
    Input that makes a computation meaningless.

    Raised before any computation proceeds; callers must not swallow it.
    """

    def __init__(self, message: str, field: str | None = None):
        super().__init__(message)
        self.message = message
        self.field = field

    def __str__(self):
        if self.field:
            return f"{self.field}: {self.message}"
        return self.message
