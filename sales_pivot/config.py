"""Default settings for the pivot web app.

Every key can be overridden with a ``PIVOT_``-prefixed environment variable,
e.g. ``PIVOT_DATA_FILE=orders.xlsx`` or ``PIVOT_PDF_SCALE=3``.
"""


class Config:
    # Excel workbook with one row per sales order; sample data is generated when unset
    DATA_FILE = None
    DATA_SHEET = 'orders'

    EXPORT_STEM = 'sales-orders-pivot'
    PDF_SCALE = 2

    # avg/min/max result for groups that have no numeric values
    EMPTY_AGGREGATE = 0

    # above this many records the response is flagged for server-side aggregation
    LARGE_DATASET_THRESHOLD = 5000

    DEFAULT_GROUP_KEYS = ['status']
    DEFAULT_AGG_FIELDS = [
        {'key': 'totalAmount', 'fn': 'sum'},
        {'key': 'subTotal', 'fn': 'sum'},
        {'key': 'taxAmount', 'fn': 'sum'},
        {'key': 'totalAmount', 'fn': 'count', 'label': 'orderCount'},
    ]
    # leaf columns shown next to the group and aggregation columns in the PDF table
    DETAIL_COLUMNS = ['orderNumber', 'orderDate', 'customerName']

    LOG_LEVEL = 'INFO'
