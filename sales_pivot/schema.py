"""
Field declarations for pivot records.

A RecordSchema lists the fields a caller may group or aggregate by. The
Grouper checks group keys and aggregation specs against it before doing any
work, so a typo in a field name fails loudly instead of producing a tree full
of "(Empty)" groups.
"""

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional

import pandas as pd

from .errors import InvalidInputError

FIELD_TYPES = ('string', 'number', 'date')


@dataclass(frozen=True)
class PivotField:
    key: str
    label: str
    type: str = 'string'

    def __post_init__(self):
        if self.type not in FIELD_TYPES:
            raise InvalidInputError(f"Unknown field type {self.type!r} for {self.key}")


@dataclass
class RecordSchema:
    """Declared group and aggregation fields for one kind of record"""

    group_fields: List[PivotField] = field(default_factory=list)
    value_fields: List[PivotField] = field(default_factory=list)

    def __post_init__(self):
        self._group_index = {f.key: f for f in self.group_fields}
        self._value_index = {f.key: f for f in self.value_fields}

    @property
    def group_keys(self) -> List[str]:
        return list(self._group_index)

    @property
    def value_keys(self) -> List[str]:
        return list(self._value_index)

    def get(self, key: str) -> Optional[PivotField]:
        return self._group_index.get(key) or self._value_index.get(key)

    def validate(self, group_keys: Iterable[str], agg_keys: Iterable[str]):
        """Reject any group or aggregation field the schema does not declare"""
        unknown_groups = [k for k in group_keys if k not in self._group_index]
        if unknown_groups:
            raise InvalidInputError(
                f"Group fields not declared in schema: {unknown_groups}. "
                f"Available group fields: {self.group_keys}"
            )

        # count ignores its field, but the name still has to be a real column
        unknown_values = [k for k in agg_keys if k not in self._value_index]
        if unknown_values:
            raise InvalidInputError(
                f"Aggregation fields not declared in schema: {unknown_values}. "
                f"Available value fields: {self.value_keys}"
            )

    def describe(self) -> Dict[str, Any]:
        return {
            'group_fields': [asdict(f) for f in self.group_fields],
            'value_fields': [asdict(f) for f in self.value_fields],
        }


SALES_ORDER_SCHEMA = RecordSchema(
    group_fields=[
        PivotField('orderDate', 'Order Date', 'date'),
        PivotField('orderMonth', 'Order Month', 'date'),
        PivotField('orderYear', 'Order Year', 'date'),
        PivotField('customerName', 'Customer'),
        PivotField('status', 'Status'),
        PivotField('paymentMethod', 'Payment Method'),
        PivotField('customerSource', 'Customer Source'),
        PivotField('orderType', 'Order Type'),
        PivotField('storeName', 'Store'),
    ],
    value_fields=[
        PivotField('totalAmount', 'Total Amount', 'number'),
        PivotField('subTotal', 'Subtotal', 'number'),
        PivotField('taxAmount', 'Tax Amount', 'number'),
        PivotField('discountAmount', 'Discount Amount', 'number'),
        PivotField('itemCount', 'Total Items', 'number'),
        PivotField('quantity', 'Total Quantity', 'number'),
    ],
)


def derive_order_fields(order: Mapping[str, Any]) -> Dict[str, Any]:
    """Return a copy of a sales order with the computed pivot fields added.

    orderMonth and orderYear come from orderDate; itemCount and quantity are
    rolled up from the order lines. Values already present on the order win.
    """
    record = dict(order)
    lines = record.get('lines')
    if not isinstance(lines, (list, tuple)):
        lines = []

    order_date = record.get('orderDate')
    timestamp = pd.to_datetime(order_date, errors='coerce') if order_date is not None else pd.NaT
    if not pd.isna(timestamp):
        record.setdefault('orderMonth', timestamp.strftime('%Y-%m'))
        record.setdefault('orderYear', str(timestamp.year))

    record.setdefault('itemCount', len(lines))
    record.setdefault('quantity', sum(line.get('quantity') or 0 for line in lines))
    return record
