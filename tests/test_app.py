# tests/test_app.py
import csv
import io
import json

import pandas as pd
import pytest
from openpyxl import load_workbook

from app import SalesPivotSystem, app, pivot_system
from sales_pivot import derive_order_fields


@pytest.fixture()
def client():
    app.config['TESTING'] = True
    with app.test_client() as client:
        yield client


@pytest.fixture()
def small_dataset(monkeypatch, status_orders):
    monkeypatch.setattr(pivot_system, 'records', [derive_order_fields(order) for order in status_orders])
    return status_orders


def test_sample_data_is_seeded():
    first = SalesPivotSystem().records
    second = SalesPivotSystem().records
    assert len(first) == 240
    assert [order['orderNumber'] for order in first] == [order['orderNumber'] for order in second]
    assert [order['status'] for order in first] == [order['status'] for order in second]
    assert all('orderMonth' in order and 'quantity' in order for order in first)


def test_pivot_fields(client):
    response = client.get('/api/pivot-fields')
    assert response.status_code == 200
    data = response.get_json()
    assert 'status' in [field['key'] for field in data['group_fields']]
    assert 'totalAmount' in [field['key'] for field in data['value_fields']]
    assert data['aggregation_functions'] == ['sum', 'count', 'avg', 'min', 'max']


def test_pivot_collapsed(client):
    response = client.post('/api/pivot', json={
        'group_keys': ['status'],
        'agg_fields': [{'key': 'totalAmount', 'fn': 'count', 'label': 'orders'}],
    })
    assert response.status_code == 200
    data = response.get_json()

    assert all(row['_isGroupRow'] and row['_level'] == 0 for row in data['rows'])
    assert sum(row['orders'] for row in data['rows']) == data['record_count'] == 240
    assert len(data['all_node_ids']) == len(data['rows'])
    assert data['large_dataset'] is False


def test_pivot_expanded(client, small_dataset):
    response = client.post('/api/pivot', json={
        'group_keys': ['status'],
        'agg_fields': [{'key': 'totalAmount', 'fn': 'sum'}],
        'expanded_ids': ['Completed'],
    })
    rows = response.get_json()['rows']

    assert [(row['_nodeId'], row['_isLeaf']) for row in rows] == [
        ('Completed', False),
        ('Completed#0', True),
        ('Completed#1', True),
        ('Pending', False),
    ]
    assert rows[0]['totalAmount'] == 150
    assert rows[0]['_count'] == 2


def test_pivot_defaults(client, small_dataset):
    response = client.post('/api/pivot', json={})
    rows = response.get_json()['rows']
    assert [row['status'] for row in rows] == ['Completed', 'Pending']
    assert rows[0]['orderCount'] == 2


@pytest.mark.parametrize('body', [
    {'group_keys': ['notAField']},
    {'group_keys': ['status', 'status']},
    {'group_keys': ['status'], 'agg_fields': [{'key': 'totalAmount', 'fn': 'median'}]},
    {'group_keys': ['status'], 'agg_fields': [{'key': ['totalAmount'], 'fn': 'sum'}]},
    {'group_keys': ['status'], 'agg_fields': [{'key': 'totalAmount', 'fn': 'sum', 'label': 7}]},
    {'group_keys': ['status'], 'expanded_ids': 'Completed'},
    {'group_keys': ['status'], 'expanded_ids': 5},
    {'group_keys': ['status'], 'expanded_ids': [['Completed']]},
])
def test_pivot_bad_request(client, body):
    response = client.post('/api/pivot', json=body)
    assert response.status_code == 400
    assert 'error' in response.get_json()


def test_workbook_blank_cells_load_as_none(tmp_path):
    path = tmp_path / 'orders.xlsx'
    pd.DataFrame({
        'orderNumber': ['SO-1', 'SO-2'],
        'orderDate': [pd.Timestamp('2024-03-05'), pd.NaT],
        'status': ['completed', None],
        'totalAmount': [10.0, None],
    }).to_excel(path, sheet_name='orders', index=False, engine='openpyxl')

    records = SalesPivotSystem(data_file=path).records

    assert [record['orderNumber'] for record in records] == ['SO-1', 'SO-2']
    assert records[1]['orderDate'] is None
    assert records[1]['status'] is None
    assert records[1]['totalAmount'] is None
    assert records[0]['orderMonth'] == '2024-03'


def test_pivot_with_blank_workbook_cells_is_valid_json(client, monkeypatch, tmp_path):
    path = tmp_path / 'orders.xlsx'
    pd.DataFrame({
        'orderNumber': ['SO-1', 'SO-2'],
        'orderDate': [pd.Timestamp('2024-03-05'), pd.NaT],
        'status': ['completed', 'completed'],
        'totalAmount': [10.0, None],
    }).to_excel(path, sheet_name='orders', index=False, engine='openpyxl')
    monkeypatch.setattr(pivot_system, 'records', SalesPivotSystem(data_file=path).records)

    response = client.post('/api/pivot', json={
        'group_keys': ['status'],
        'agg_fields': [{'key': 'totalAmount', 'fn': 'sum'}],
        'expanded_ids': ['Completed'],
    })

    assert response.status_code == 200
    # strict parsing, bare NaN tokens are not JSON
    rows = json.loads(response.get_data(as_text=True), parse_constant=pytest.fail)['rows']
    assert rows[0]['totalAmount'] == 10.0
    assert rows[2]['orderDate'] is None
    assert rows[2]['totalAmount'] is None


def test_export_csv(client, small_dataset):
    response = client.post('/api/pivot/export/csv', json={'group_keys': ['status'], 'filename': 'orders'})
    assert response.status_code == 200
    assert response.mimetype == 'text/csv'
    assert 'filename=orders_' in response.headers['Content-Disposition']

    rows = list(csv.reader(io.StringIO(response.get_data(as_text=True))))
    assert len(rows) == 1 + len(small_dataset)
    assert rows[0][0] == 'orderNumber'


def test_export_excel(client):
    response = client.post('/api/pivot/export/excel', json={'group_keys': ['storeName', 'status']})
    assert response.status_code == 200

    sheet = load_workbook(io.BytesIO(response.data))['Pivot Data']
    assert sheet.max_row == 1 + 240


def test_export_pdf(client, small_dataset):
    response = client.post('/api/pivot/export/pdf', json={'group_keys': ['status', 'customerName']})
    assert response.status_code == 200
    assert response.mimetype == 'application/pdf'
    assert response.data.startswith(b'%PDF')


def test_export_unknown_format(client):
    response = client.post('/api/pivot/export/docx', json={'group_keys': ['status']})
    assert response.status_code == 400
    assert 'docx' in response.get_json()['error']


def test_export_without_group_keys_is_empty(client):
    response = client.post('/api/pivot/export/csv', json={'group_keys': []})
    assert response.status_code == 400
    assert response.get_json()['error'] == 'No data to export'
