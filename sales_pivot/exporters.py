"""
CSV, spreadsheet and PDF exports of a pivot.

Row based exports take the fully expanded rows from
``engine.flatten_for_export`` and write only the detail (leaf) rows. The PDF
export rasterizes a table surface instead and slices the captured image into
landscape pages.

Every artifact is built in memory first and only then written to disk, so a
failed export never leaves a partial file behind.
"""

import csv
import json
import logging
import os
import tempfile
from datetime import date
from io import BytesIO
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

import pandas as pd
from openpyxl.utils import get_column_letter
from PIL import Image
from reportlab.lib.pagesizes import A4, landscape
from reportlab.lib.utils import ImageReader
from reportlab.pdfgen import canvas

from .engine import FlatPivotRow
from .errors import EmptyExportError, ExportError, InvalidInputError, UnsupportedExportFormatError

logger = logging.getLogger(__name__)

PAGE_SIZE = landscape(A4)

XLSX_MIMETYPE = 'application/vnd.openxmlformats-officedocument.spreadsheetml.sheet'

# format name -> (file extension, mimetype)
EXPORT_FORMATS = {
    'csv': ('csv', 'text/csv'),
    'excel': ('xlsx', XLSX_MIMETYPE),
    'pdf': ('pdf', 'application/pdf'),
}


def _export_value(value):
    if isinstance(value, (list, dict)):
        return json.dumps(value, default=str)
    return value


def _cell_text(value) -> str:
    if value is None:
        return ''
    try:
        if pd.isna(value):
            return ''
    except (TypeError, ValueError):
        pass
    return str(value)


def _detail_records(rows: Sequence[FlatPivotRow]) -> List[Dict[str, Any]]:
    """Leaf rows only, group header rows are dropped"""
    records = [
        {key: _export_value(value) for key, value in row.values.items()}
        for row in rows
        if row.is_leaf
    ]
    if not records:
        raise EmptyExportError()
    return records


def _columns(records: Sequence[Dict[str, Any]]) -> List[str]:
    columns = {}
    for record in records:
        for key in record:
            columns.setdefault(key, None)
    return list(columns)


def _autosize_columns(worksheet, columns, records):
    for index, column in enumerate(columns, start=1):
        width = max([len(str(column))] + [len(_cell_text(record.get(column))) for record in records])
        worksheet.column_dimensions[get_column_letter(index)].width = width


def build_csv(rows: Sequence[FlatPivotRow]) -> bytes:
    records = _detail_records(rows)
    frame = pd.DataFrame(records, columns=_columns(records), dtype=object)
    payload = frame.to_csv(index=False, quoting=csv.QUOTE_ALL)
    return payload.encode('utf-8')


def build_spreadsheet(rows: Sequence[FlatPivotRow], sheet_name: str = 'Pivot Data') -> bytes:
    records = _detail_records(rows)
    columns = _columns(records)
    frame = pd.DataFrame(records, columns=columns, dtype=object)

    buffer = BytesIO()
    with pd.ExcelWriter(buffer, engine='openpyxl') as writer:
        frame.to_excel(writer, index=False, sheet_name=sheet_name)
        _autosize_columns(writer.sheets[sheet_name], columns, records)
    return buffer.getvalue()


def build_grouped_spreadsheet(rows: Sequence[FlatPivotRow], sheet_name: str = 'Pivot Analysis') -> bytes:
    """Spreadsheet that keeps the group header rows, tagged with their level"""
    if not rows:
        raise EmptyExportError()

    records = []
    for row in rows:
        record = {key: _export_value(value) for key, value in row.values.items()}
        if row.is_group_row:
            record['_groupLevel'] = row.level
            record['_isGroup'] = True
        records.append(record)

    columns = _columns(records)
    frame = pd.DataFrame(records, columns=columns, dtype=object)
    buffer = BytesIO()
    with pd.ExcelWriter(buffer, engine='openpyxl') as writer:
        frame.to_excel(writer, index=False, sheet_name=sheet_name)
        _autosize_columns(writer.sheets[sheet_name], columns, records)
    return buffer.getvalue()


def paginate_image(image: Image.Image, page_size: Tuple[float, float] = PAGE_SIZE) -> List[Image.Image]:
    """Cut an image scaled to the page width into page-high vertical slices"""
    page_width, page_height = page_size
    slice_height = max(1, int(page_height * image.width / page_width))
    if image.height <= slice_height:
        return [image]
    return [
        image.crop((0, top, image.width, min(top + slice_height, image.height)))
        for top in range(0, image.height, slice_height)
    ]


def build_pdf(surface, page_size: Tuple[float, float] = PAGE_SIZE) -> bytes:
    """Capture a renderable surface once and lay it out over landscape pages"""
    try:
        image = surface.capture()
    except Exception as e:
        logger.error(f"Table capture failed: {e}")
        raise ExportError('Failed to generate PDF') from e

    try:
        page_width, page_height = page_size
        ratio = page_width / image.width
        pages = paginate_image(image, page_size)

        buffer = BytesIO()
        pdf = canvas.Canvas(buffer, pagesize=page_size)
        for page in pages:
            height = page.height * ratio
            pdf.drawImage(ImageReader(page), 0, page_height - height, width=page_width, height=height)
            pdf.showPage()
        pdf.save()
    except Exception as e:
        logger.error(f"PDF generation failed: {e}")
        raise ExportError('Failed to generate PDF') from e

    logger.info(f"Rendered {image.width}x{image.height} table image onto {len(pages)} PDF page(s)")
    return buffer.getvalue()


def render_export(rows: Sequence[FlatPivotRow], fmt: str, surface=None) -> Tuple[bytes, str, str]:
    """Build an artifact in memory, returns (payload, extension, mimetype)"""
    if fmt not in EXPORT_FORMATS:
        raise UnsupportedExportFormatError(fmt)
    extension, mimetype = EXPORT_FORMATS[fmt]

    if fmt == 'csv':
        payload = build_csv(rows)
    elif fmt == 'excel':
        payload = build_spreadsheet(rows)
    else:
        if surface is None:
            raise InvalidInputError('A table surface is required for PDF export')
        payload = build_pdf(surface)
    return payload, extension, mimetype


def _file_mode() -> int:
    """Mode a plain open(..., "wb") would create, given the process umask"""
    umask = os.umask(0)
    os.umask(umask)
    return 0o666 & ~umask


def _write_atomic(directory, filename: str, payload: bytes) -> Path:
    directory = Path(directory)
    directory.mkdir(parents=True, exist_ok=True)
    target = directory / filename

    fd, tmp_name = tempfile.mkstemp(dir=directory, prefix=f".{filename}.", suffix='.part')
    try:
        with os.fdopen(fd, 'wb') as handle:
            handle.write(payload)
        # mkstemp creates the file owner-only
        os.chmod(tmp_name, _file_mode())
        os.replace(tmp_name, target)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise

    logger.info(f"Wrote {len(payload)} bytes to {target}")
    return target


def export_csv(rows: Sequence[FlatPivotRow], stem: str, directory='.') -> Path:
    return _write_atomic(directory, f"{stem}.csv", build_csv(rows))


def export_spreadsheet(rows: Sequence[FlatPivotRow], stem: str, directory='.') -> Path:
    return _write_atomic(directory, f"{stem}.xlsx", build_spreadsheet(rows))


def export_pdf(surface, stem: str, directory='.') -> Path:
    return _write_atomic(directory, f"{stem}.pdf", build_pdf(surface))


def dated_stem(stem: str, today: Optional[date] = None) -> str:
    return f"{stem}_{(today or date.today()).isoformat()}"


def export_data(rows: Sequence[FlatPivotRow], fmt: str, stem: str, directory='.',
                surface=None, today: Optional[date] = None) -> Path:
    """Export in the named format to ``<stem>_<YYYY-MM-DD>.<ext>``"""
    payload, extension, _ = render_export(rows, fmt, surface=surface)
    return _write_atomic(directory, f"{dated_stem(stem, today)}.{extension}", payload)
