from .engine import (
    AGGREGATION_FUNCTIONS,
    BLANK_CELL,
    EMPTY_GROUP_LABEL,
    AggregationSpec,
    FlatPivotRow,
    PivotNode,
    aggregate,
    build_pivot,
    build_pivot_tree,
    flatten_for_export,
    flatten_pivot,
    format_group_value,
    get_all_node_ids,
    toggle_expanded,
)
from .errors import (
    EmptyExportError,
    ExportError,
    InvalidInputError,
    PivotError,
    UnsupportedAggregationError,
    UnsupportedExportFormatError,
)
from .schema import SALES_ORDER_SCHEMA, PivotField, RecordSchema, derive_order_fields

__version__ = '0.1.0'
