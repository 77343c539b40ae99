class AquadashError(Exception):
    """Base class for recoverable dashboard pipeline errors."""


class ParseFailure(AquadashError):
    """A timestamp or numeric field could not be interpreted."""


class EmptyBatch(AquadashError):
    """The data source returned no usable readings; prior state is kept."""


class TransportFailure(AquadashError):
    """The reading endpoint could not be reached or returned garbage."""


class ResourceNotReady(AquadashError):
    """The canvas slot for a chart is not attached yet."""


class ResourceReleased(AquadashError):
    """A chart handle was used after it had been destroyed."""
