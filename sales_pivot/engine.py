"""
Pivot engine for the sales-order analytics view.

Records are grouped into a tree by an ordered list of group keys, every group
node carries its leaf count and aggregation totals, and the tree is flattened
into table rows either according to the caller's expansion state (interactive
table) or fully expanded (exports).
"""

import logging
import math
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Sequence, Set
from urllib.parse import quote

import numpy as np
import pandas as pd

from .errors import InvalidInputError, UnsupportedAggregationError

logger = logging.getLogger(__name__)

AGGREGATION_FUNCTIONS = ('sum', 'count', 'avg', 'min', 'max')
EMPTY_GROUP_LABEL = '(Empty)'
BLANK_CELL = '—'


@dataclass(frozen=True)
class AggregationSpec:
    key: str
    fn: str = 'sum'
    label: Optional[str] = None

    @property
    def column(self) -> str:
        """Name of the output column this spec produces"""
        return self.label or self.key

    @classmethod
    def parse(cls, value):
        """Build a spec from a dict ({'key', 'fn', 'label'}), a tuple, or a spec"""
        if isinstance(value, cls):
            spec = value
        elif isinstance(value, Mapping):
            if 'key' not in value:
                raise InvalidInputError(f"Aggregation spec is missing 'key': {dict(value)}")
            spec = cls(value['key'], value.get('fn', 'sum'), value.get('label'))
        elif isinstance(value, (tuple, list)) and 1 <= len(value) <= 3:
            spec = cls(*value)
        else:
            raise InvalidInputError(f"Invalid aggregation spec: {value!r}")

        if not isinstance(spec.key, str) or not spec.key:
            raise InvalidInputError(f"Aggregation key must be a non-empty string, got {spec.key!r}")
        if spec.label is not None and not isinstance(spec.label, str):
            raise InvalidInputError(f"Aggregation label must be a string, got {spec.label!r}")
        return spec


@dataclass
class PivotNode:
    id: str
    level: int
    group_key: str
    group_value: str
    path: tuple
    count: int = 0
    aggregations: Dict[str, Any] = field(default_factory=dict)
    children: List['PivotNode'] = field(default_factory=list)
    leaves: List[Mapping[str, Any]] = field(default_factory=list)

    @property
    def can_expand(self) -> bool:
        return bool(self.children or self.leaves)

    def iter_leaves(self) -> Iterator[Mapping[str, Any]]:
        """Every leaf record under this node, in tree order"""
        if self.children:
            for child in self.children:
                yield from child.iter_leaves()
        else:
            yield from self.leaves


@dataclass
class FlatPivotRow:
    node_id: str
    node: PivotNode
    level: int
    is_leaf: bool
    is_parent: bool
    is_group_row: bool
    can_expand: bool
    values: Dict[str, Any]
    group_key: Optional[str] = None

    def cell(self, column: str, group_keys: Sequence[str] = ()):
        """Value to render in a column.

        Group rows only show the discriminant of their own level, every other
        group column is rendered as a dash.
        """
        if self.is_group_row and column in group_keys and column != self.group_key:
            return BLANK_CELL
        return self.values.get(column, '')

    def to_dict(self) -> Dict[str, Any]:
        # NaN and NaT are not valid JSON
        row = {key: None if _is_missing(value) else value for key, value in self.values.items()}
        row.update({
            '_nodeId': self.node_id,
            '_level': self.level,
            '_isLeaf': self.is_leaf,
            '_isParent': self.is_parent,
            '_isGroupRow': self.is_group_row,
            '_canExpand': self.can_expand,
            '_groupKey': self.group_key,
            '_count': self.node.count if self.is_group_row else None,
        })
        return row


# ---------------------------------------------------------------------------
# input checks
# ---------------------------------------------------------------------------

def _coerce_records(records) -> List[Mapping[str, Any]]:
    if isinstance(records, pd.DataFrame):
        return records.to_dict('records')
    if not isinstance(records, (list, tuple)):
        raise InvalidInputError(f"Records must be a list of mappings, got {type(records).__name__}")
    for index, record in enumerate(records):
        if not isinstance(record, Mapping):
            raise InvalidInputError(
                f"Record {index} is a {type(record).__name__}, expected a mapping"
            )
    return list(records)


def _coerce_group_keys(group_keys) -> List[str]:
    if group_keys is None:
        return []
    if isinstance(group_keys, str) or not isinstance(group_keys, (list, tuple)):
        raise InvalidInputError(f"Group keys must be a list of field names, got {group_keys!r}")
    seen = set()
    for key in group_keys:
        if not isinstance(key, str) or not key:
            raise InvalidInputError(f"Invalid group key: {key!r}")
        if key in seen:
            raise InvalidInputError(f"Group key {key!r} is repeated")
        seen.add(key)
    return list(group_keys)


def normalize_agg_specs(agg_fields, group_keys=()) -> List[AggregationSpec]:
    """Parse aggregation specs and check function names and output columns.

    An output column may not reuse a group key name, since group rows carry
    both in the same mapping.
    """
    if agg_fields is None:
        return []
    if isinstance(agg_fields, (str, Mapping)) or not isinstance(agg_fields, (list, tuple)):
        raise InvalidInputError(f"Aggregation fields must be a list, got {agg_fields!r}")

    specs = [AggregationSpec.parse(value) for value in agg_fields]
    columns = set()
    for spec in specs:
        if spec.fn not in AGGREGATION_FUNCTIONS:
            raise UnsupportedAggregationError(spec.fn)
        if spec.column in columns:
            raise InvalidInputError(
                f"Aggregation column {spec.column!r} is produced twice, give one of them a label"
            )
        if spec.column in group_keys:
            raise InvalidInputError(
                f"Aggregation column {spec.column!r} clashes with a group key, give it a label"
            )
        columns.add(spec.column)
    return specs


# ---------------------------------------------------------------------------
# Aggregator
# ---------------------------------------------------------------------------

def _numeric_value(value):
    """Return value as a Python number, or None when it does not count as one"""
    if isinstance(value, (bool, np.bool_)):
        return None
    if isinstance(value, Decimal):
        value = float(value)
    elif isinstance(value, np.generic):
        value = value.item()
    if not isinstance(value, (int, float)) or isinstance(value, bool):
        return None
    if isinstance(value, float) and not math.isfinite(value):
        return None
    return value


def _aggregate(records, specs, empty_value=0) -> Dict[str, Any]:
    result = {}
    for spec in specs:
        if spec.fn == 'count':
            result[spec.column] = len(records)
            continue

        values = [_numeric_value(record.get(spec.key)) for record in records]
        values = [v for v in values if v is not None]

        if spec.fn == 'sum':
            result[spec.column] = sum(values)
        elif not values:
            result[spec.column] = empty_value
        elif spec.fn == 'avg':
            result[spec.column] = sum(values) / len(values)
        elif spec.fn == 'min':
            result[spec.column] = min(values)
        else:
            result[spec.column] = max(values)
    return result


def aggregate(records, specs, empty_value=0) -> Dict[str, Any]:
    """Compute every aggregation spec over a set of records.

    Missing and non-numeric values are skipped rather than treated as errors.
    ``count`` is always the number of records, whatever field it names.
    ``avg``, ``min`` and ``max`` over a set without any numeric value return
    ``empty_value``.
    """
    return _aggregate(_coerce_records(records), normalize_agg_specs(specs), empty_value)


# ---------------------------------------------------------------------------
# Grouper
# ---------------------------------------------------------------------------

def _is_missing(value) -> bool:
    if value is None:
        return True
    return pd.api.types.is_scalar(value) and bool(pd.isna(value))


def _as_text(value) -> str:
    if isinstance(value, np.generic):
        value = value.item()
    return str(value)


def _to_timestamp(value):
    try:
        timestamp = pd.to_datetime(value, errors='coerce')
    except (TypeError, ValueError):
        return None
    if not isinstance(timestamp, pd.Timestamp) or pd.isna(timestamp):
        return None
    return timestamp


def _format_date(value) -> str:
    timestamp = _to_timestamp(value)
    if timestamp is None:
        return _as_text(value)
    # en-US short date, e.g. 3/5/2024
    return f"{timestamp.month}/{timestamp.day}/{timestamp.year}"


def _format_month(value) -> str:
    timestamp = _to_timestamp(value)
    if timestamp is None:
        return _as_text(value)
    return f"{timestamp.strftime('%B')} {timestamp.year}"


def _format_year(value) -> str:
    number = _numeric_value(value)
    if number is not None and float(number).is_integer():
        return str(int(number))
    if isinstance(value, str):
        return value
    timestamp = _to_timestamp(value)
    return str(timestamp.year) if timestamp is not None else _as_text(value)


def format_group_value(value, key: str) -> str:
    """Discriminant label used to bucket and display a group"""
    if _is_missing(value):
        return EMPTY_GROUP_LABEL

    name = key.lower()
    if name.endswith('date'):
        return _format_date(value)
    if name.endswith('month'):
        return _format_month(value)
    if name.endswith('year'):
        return _format_year(value)
    if name.endswith('status'):
        text = _as_text(value)
        return text[:1].upper() + text[1:]
    return _as_text(value)


def node_id_for_path(path: Sequence[str]) -> str:
    return '/'.join(quote(value, safe='') for value in path)


def _build_level(records, group_keys, level, parent_path, specs, empty_value) -> List[PivotNode]:
    key = group_keys[level]

    # dicts keep insertion order, so groups come out in first-seen order
    partitions: Dict[str, List[Mapping[str, Any]]] = {}
    for record in records:
        partitions.setdefault(format_group_value(record.get(key), key), []).append(record)

    is_last_level = level == len(group_keys) - 1
    nodes = []
    for group_value, members in partitions.items():
        path = parent_path + (group_value,)
        node = PivotNode(
            id=node_id_for_path(path),
            level=level,
            group_key=key,
            group_value=group_value,
            path=path,
            count=len(members),
            aggregations=_aggregate(members, specs, empty_value),
        )
        if is_last_level:
            node.leaves = list(members)
        else:
            node.children = _build_level(members, group_keys, level + 1, path, specs, empty_value)
        nodes.append(node)
    return nodes


def build_pivot_tree(records, group_keys, agg_fields, schema=None, empty_value=0) -> List[PivotNode]:
    """Group records into a pivot tree.

    Args:
        records: list of mappings (or a DataFrame) to group.
        group_keys: field names, outermost level first.
        agg_fields: AggregationSpec objects, dicts or tuples.
        schema: optional RecordSchema every field must be declared in.
        empty_value: result of avg/min/max for groups without numeric values.

    Returns an empty list when no group keys are given.
    """
    records = _coerce_records(records)
    group_keys = _coerce_group_keys(group_keys)
    specs = normalize_agg_specs(agg_fields, group_keys)

    if schema is not None:
        schema.validate(group_keys, [spec.key for spec in specs])

    if not group_keys:
        return []

    tree = _build_level(records, group_keys, 0, (), specs, empty_value)
    logger.debug(f"Built pivot tree over {len(records)} records: "
                 f"{len(tree)} top-level groups by {group_keys}")
    return tree


# ---------------------------------------------------------------------------
# Flattener
# ---------------------------------------------------------------------------

def _group_row(node: PivotNode) -> FlatPivotRow:
    values = {node.group_key: node.group_value}
    values.update(node.aggregations)
    return FlatPivotRow(
        node_id=node.id,
        node=node,
        level=node.level,
        is_leaf=False,
        is_parent=node.can_expand,
        is_group_row=True,
        can_expand=node.can_expand,
        values=values,
        group_key=node.group_key,
    )


def _leaf_row(parent: PivotNode, index: int, record) -> FlatPivotRow:
    return FlatPivotRow(
        node_id=f"{parent.id}#{index}",
        node=parent,
        level=parent.level + 1,
        is_leaf=True,
        is_parent=False,
        is_group_row=False,
        can_expand=False,
        values=dict(record),
    )


def flatten_pivot(tree: Sequence[PivotNode], expanded_ids: Optional[Iterable[str]] = None) -> List[FlatPivotRow]:
    """Pre-order rows for the table, descending only into expanded nodes"""
    expanded = set(expanded_ids or ())
    rows: List[FlatPivotRow] = []

    def walk(nodes):
        for node in nodes:
            rows.append(_group_row(node))
            if node.id not in expanded:
                continue
            if node.children:
                walk(node.children)
            else:
                rows.extend(_leaf_row(node, index, leaf) for index, leaf in enumerate(node.leaves))

    walk(tree)
    return rows


def get_all_node_ids(tree: Sequence[PivotNode]) -> List[str]:
    ids = []

    def walk(nodes):
        for node in nodes:
            ids.append(node.id)
            walk(node.children)

    walk(tree)
    return ids


def flatten_for_export(tree: Sequence[PivotNode]) -> List[FlatPivotRow]:
    """Fully expanded rows; exporters must only ever be given these"""
    return flatten_pivot(tree, get_all_node_ids(tree))


def toggle_expanded(expanded_ids: Iterable[str], node_id: str) -> Set[str]:
    expanded = set(expanded_ids)
    if node_id in expanded:
        expanded.discard(node_id)
    else:
        expanded.add(node_id)
    return expanded


def build_pivot(records, group_keys, agg_fields, schema=None) -> List[FlatPivotRow]:
    """Build the tree and return it fully flattened"""
    return flatten_for_export(build_pivot_tree(records, group_keys, agg_fields, schema=schema))
