"""Exceptions raised by the pivot engine and its exporters."""


class PivotError(Exception):
    """Base class for every error raised by sales_pivot"""


class InvalidInputError(PivotError, ValueError):
    """Records, group keys or aggregation specs are malformed"""


class UnsupportedAggregationError(PivotError, ValueError):
    """An aggregation spec names a function the engine does not know"""

    def __init__(self, fn):
        self.fn = fn
        super().__init__(f"Unsupported aggregation function: {fn!r}")


class ExportError(PivotError):
    """An export artifact could not be produced"""


class EmptyExportError(ExportError):
    """No detail rows were left to export"""

    def __init__(self, message='No data to export'):
        super().__init__(message)


class UnsupportedExportFormatError(ExportError, ValueError):
    def __init__(self, fmt):
        self.fmt = fmt
        super().__init__(f"Unsupported export format: {fmt}")
