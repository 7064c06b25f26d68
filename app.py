import logging
from io import BytesIO
from pathlib import Path

from flask import Flask, jsonify, request, send_file
import numpy as np
import pandas as pd

from sales_pivot import (
    AGGREGATION_FUNCTIONS,
    SALES_ORDER_SCHEMA,
    InvalidInputError,
    PivotError,
    build_pivot_tree,
    derive_order_fields,
    flatten_for_export,
    flatten_pivot,
    get_all_node_ids,
)
from sales_pivot.config import Config
from sales_pivot.engine import normalize_agg_specs
from sales_pivot.exporters import dated_stem, render_export
from sales_pivot.surface import TableSurface

app = Flask(__name__)
app.config.from_object(Config)
app.config.from_prefixed_env('PIVOT')

logging.basicConfig(level=app.config['LOG_LEVEL'])
logger = logging.getLogger(__name__)


class SalesPivotSystem:
    def __init__(self, data_file=None, sheet_name='orders', schema=SALES_ORDER_SCHEMA, empty_value=0,
                 large_dataset_threshold=5000):
        self.schema = schema
        self.empty_value = empty_value
        self.large_dataset_threshold = large_dataset_threshold

        if data_file and Path(data_file).exists():
            orders_df = pd.read_excel(data_file, sheet_name=sheet_name)
            logger.info(f"Loaded {len(orders_df)} orders from {data_file}")
            # blank cells come back as NaN/NaT
            orders_df = orders_df.astype(object).where(orders_df.notna(), None)
            self.load_records(orders_df.to_dict('records'))
        else:
            self.load_records(self.create_sample_data())

    def load_records(self, orders):
        """Replace the record set; derived pivot fields are added to each order"""
        self.records = [derive_order_fields(order) for order in orders]
        if len(self.records) > self.large_dataset_threshold:
            logger.warning(f"{len(self.records)} records loaded, consider server-side aggregation")

    def create_sample_data(self):
        """Create seeded sample sales orders"""
        np.random.seed(42)

        customers = ['Acme Retail', 'Blue Harbor', 'Cedar Goods', 'Delta Supply', 'Evergreen Co']
        statuses = ['draft', 'pending', 'confirmed', 'shipped', 'completed', 'cancelled']
        payment_methods = ['cash', 'card', 'bank_transfer', None]
        sources = ['walk-in', 'referral', 'online']
        stores = ['Downtown', 'Airport', 'Mall']
        products = {'Laptop': 1200.0, 'Mobile': 650.0, 'Tablet': 420.0, 'Charger': 35.0, 'Case': 25.0}

        def pick(options):
            return options[np.random.randint(len(options))]

        orders = []
        order_dates = pd.date_range('2024-01-01', '2024-06-30', freq='D')
        for number in range(1, 241):
            lines = []
            for _ in range(np.random.randint(1, 4)):
                product = pick(list(products))
                quantity = int(np.random.randint(1, 5))
                lines.append({'product': product, 'quantity': quantity, 'unitPrice': products[product]})

            sub_total = round(sum(line['quantity'] * line['unitPrice'] for line in lines), 2)
            discount = round(sub_total * 0.05, 2) if np.random.random() > 0.7 else 0.0
            tax = round((sub_total - discount) * 0.08, 2)

            orders.append({
                'orderNumber': f"SO-{number:05d}",
                'orderDate': pick(order_dates).strftime('%Y-%m-%d'),
                'orderType': 'wholesale' if np.random.random() > 0.8 else 'retail',
                'customerName': pick(customers),
                'status': pick(statuses),
                'paymentMethod': pick(payment_methods),
                'customerSource': pick(sources),
                'storeName': pick(stores),
                'subTotal': sub_total,
                'discountAmount': discount,
                'taxAmount': tax,
                'totalAmount': round(sub_total - discount + tax, 2),
                'lines': lines,
            })
        return orders

    def get_pivot_fields(self):
        fields = self.schema.describe()
        fields['aggregation_functions'] = list(AGGREGATION_FUNCTIONS)
        return fields

    def build_tree(self, group_keys, agg_fields):
        return build_pivot_tree(self.records, group_keys, agg_fields,
                                schema=self.schema, empty_value=self.empty_value)

    def build_table(self, group_keys, agg_fields, expanded_ids):
        """Rows for the interactive table, plus every node id for 'expand all'"""
        tree = self.build_tree(group_keys, agg_fields)
        rows = flatten_pivot(tree, expanded_ids)
        return {
            'rows': [row.to_dict() for row in rows],
            'all_node_ids': get_all_node_ids(tree),
            'group_keys': list(group_keys),
            'record_count': len(self.records),
            'large_dataset': len(self.records) > self.large_dataset_threshold,
        }

    def export(self, fmt, group_keys, agg_fields, stem, detail_columns=(), scale=2):
        """Build an export artifact, returns (payload, filename, mimetype)"""
        tree = self.build_tree(group_keys, agg_fields)
        rows = flatten_for_export(tree)

        surface = None
        if fmt == 'pdf':
            value_columns = [spec.column for spec in normalize_agg_specs(agg_fields)]
            columns = list(group_keys) + value_columns
            columns += [column for column in detail_columns if column not in columns]
            labels = {f.key: f.label for f in self.schema.group_fields + self.schema.value_fields}
            surface = TableSurface(rows, columns, group_keys=group_keys, labels=labels, scale=scale)

        payload, extension, mimetype = render_export(rows, fmt, surface=surface)
        return payload, f"{dated_stem(stem)}.{extension}", mimetype


def _pivot_request():
    data = request.get_json(silent=True) or {}
    group_keys = data.get('group_keys', app.config['DEFAULT_GROUP_KEYS'])
    agg_fields = data.get('agg_fields', app.config['DEFAULT_AGG_FIELDS'])
    expanded_ids = data.get('expanded_ids', [])
    if not isinstance(expanded_ids, list) or not all(isinstance(node_id, str) for node_id in expanded_ids):
        raise InvalidInputError(f"expanded_ids must be a list of node ids, got {expanded_ids!r}")
    return data, group_keys, agg_fields, expanded_ids


pivot_system = SalesPivotSystem(
    data_file=app.config['DATA_FILE'],
    sheet_name=app.config['DATA_SHEET'],
    empty_value=app.config['EMPTY_AGGREGATE'],
    large_dataset_threshold=app.config['LARGE_DATASET_THRESHOLD'],
)


@app.route('/api/pivot-fields')
def get_pivot_fields():
    """Group and aggregation fields the pivot can be configured with"""
    try:
        return jsonify(pivot_system.get_pivot_fields())
    except Exception as e:
        logger.exception('Failed to list pivot fields')
        return jsonify({'error': str(e)}), 500


@app.route('/api/pivot', methods=['POST'])
def get_pivot():
    """Flattened pivot rows for the current expansion state"""
    try:
        _, group_keys, agg_fields, expanded_ids = _pivot_request()
        logger.info(f"Pivot request - groups: {group_keys}, aggregations: {agg_fields}, "
                    f"expanded: {len(expanded_ids)} nodes")

        result = pivot_system.build_table(group_keys, agg_fields, expanded_ids)
        logger.info(f"Pivot returned {len(result['rows'])} rows over {result['record_count']} records")
        return jsonify(result)

    except PivotError as e:
        logger.warning(f"Pivot request rejected: {e}")
        return jsonify({'error': str(e)}), 400
    except Exception as e:
        logger.exception('Server error in pivot generation')
        return jsonify({'error': f'Server error in pivot generation: {str(e)}'}), 500


@app.route('/api/pivot/export/<fmt>', methods=['POST'])
def export_pivot(fmt):
    """Download the fully expanded pivot as csv, excel or pdf"""
    try:
        data, group_keys, agg_fields, _ = _pivot_request()
        stem = data.get('filename') or app.config['EXPORT_STEM']

        payload, filename, mimetype = pivot_system.export(
            fmt, group_keys, agg_fields, stem,
            detail_columns=app.config['DETAIL_COLUMNS'],
            scale=app.config['PDF_SCALE'],
        )
        logger.info(f"Exported {filename} ({len(payload)} bytes)")
        return send_file(BytesIO(payload), as_attachment=True, download_name=filename, mimetype=mimetype)

    except PivotError as e:
        logger.warning(f"Export of {fmt} rejected: {e}")
        return jsonify({'error': str(e)}), 400
    except Exception as e:
        logger.exception(f'Server error exporting {fmt}')
        return jsonify({'error': f'Failed to export {fmt}: {str(e)}'}), 500


if __name__ == '__main__':
    logger.info(f"Sales order pivot started with {len(pivot_system.records)} records")
    app.run(debug=True)
