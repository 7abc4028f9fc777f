class EntityStoreError(RuntimeError):
    """Raised when an entity persistence collaborator fails (I/O errors, corrupt data, upstream outage)."""
    pass


class ExportError(RuntimeError):
    """Raised when the metrics export collaborator fails (timeouts, network errors, bad status)."""
    pass


class UnsupportedActionError(RuntimeError):
    """Raised when a handler verb is invoked that the handler does not declare."""
    pass
