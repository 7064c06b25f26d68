"""
Renderable table surfaces for the PDF exporter.

The PDF exporter only needs something it can capture into a single image.
TableSurface draws flat pivot rows the way the analytics table shows them:
one indented line per row, ancestor group columns shown as a dash.
"""

import logging
from typing import Iterable, List, Optional, Sequence

from PIL import Image, ImageDraw, ImageFont

from .engine import FlatPivotRow

logger = logging.getLogger(__name__)

HEADER_FILL = (229, 231, 235)
GROUP_FILL = (243, 244, 246)
GRID_COLOR = (209, 213, 219)
TEXT_COLOR = (17, 24, 39)


def _format_cell(value) -> str:
    if value is None:
        return ''
    if isinstance(value, float):
        return f"{value:,.2f}"
    return str(value)


class TableSurface:
    """Draws pivot rows into a PIL image when captured.

    Args:
        rows: flat pivot rows, as currently shown (any expansion state).
        columns: column keys, in display order.
        group_keys: the grouping columns, used to blank ancestor levels.
        labels: optional header text per column key.
        scale: pixel multiplier, 2 gives print-quality output.
    """

    def __init__(self, rows: Sequence[FlatPivotRow], columns: Sequence[str],
                 group_keys: Sequence[str] = (), labels: Optional[dict] = None,
                 scale: int = 2, font=None):
        self.rows = list(rows)
        self.columns = list(columns)
        self.group_keys = list(group_keys)
        self.labels = labels or {}
        self.scale = max(1, int(scale))
        self.font = font or ImageFont.load_default(size=11 * self.scale)

        self.padding = 6 * self.scale
        self.indent = 12 * self.scale
        self.row_height = 18 * self.scale

    def _text_width(self, text: str) -> int:
        left, _, right, _ = self.font.getbbox(text)
        return right - left

    def _table_lines(self) -> List[List[str]]:
        lines = []
        for row in self.rows:
            lines.append([_format_cell(row.cell(column, self.group_keys)) for column in self.columns])
        return lines

    def _column_widths(self, header: List[str], body: Iterable[List[str]]) -> List[int]:
        widths = [self._text_width(text) for text in header]
        for line in body:
            for index, text in enumerate(line):
                widths[index] = max(widths[index], self._text_width(text))
        # first column carries the indentation of the deepest row
        deepest = max((row.level for row in self.rows), default=0)
        if widths:
            widths[0] += deepest * self.indent
        return [width + 2 * self.padding for width in widths]

    def capture(self) -> Image.Image:
        header = [self.labels.get(column, column) for column in self.columns]
        body = self._table_lines()
        widths = self._column_widths(header, body)

        width = max(sum(widths), 1)
        height = self.row_height * (len(body) + 1)
        image = Image.new('RGB', (width, height), 'white')
        draw = ImageDraw.Draw(image)

        def draw_line(y, texts, fill=None, indent=0):
            if fill is not None:
                draw.rectangle([0, y, width - 1, y + self.row_height - 1], fill=fill)
            x = 0
            for index, (text, col_width) in enumerate(zip(texts, widths)):
                offset = indent if index == 0 else 0
                draw.text((x + self.padding + offset, y + self.padding // 2), text,
                          fill=TEXT_COLOR, font=self.font)
                x += col_width
            draw.line([0, y + self.row_height - 1, width, y + self.row_height - 1], fill=GRID_COLOR)

        draw_line(0, header, fill=HEADER_FILL)
        for position, (row, texts) in enumerate(zip(self.rows, body), start=1):
            fill = GROUP_FILL if row.is_group_row else None
            draw_line(position * self.row_height, texts, fill=fill, indent=row.level * self.indent)

        logger.debug(f"Captured table surface {width}x{height} for {len(self.rows)} rows")
        return image
