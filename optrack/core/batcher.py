import math
from typing import Any, Dict, List, Mapping, Sequence

from optrack.core.logger import logger
from optrack.core.models import CellValue, SpreadsheetUpdate

def to_cell(value: CellValue) -> Dict[str, Any]:
    """Typed CellData for one value. Empty dict clears the cell."""
    if value is None:
        return {}
    # bool before int: bool is an int subclass
    if isinstance(value, bool):
        return {"userEnteredValue": {"boolValue": value}}
    if isinstance(value, (int, float)):
        if not math.isfinite(value):
            return {}
        return {"userEnteredValue": {"numberValue": value}}
    return {"userEnteredValue": {"stringValue": str(value)}}

def to_row_data(row: Sequence[CellValue]) -> Dict[str, Any]:
    return {"values": [to_cell(v) for v in row]}

def build_update_cells_request(update: SpreadsheetUpdate, sheet_id: int) -> Dict[str, Any]:
    return {
        "updateCells": {
            "start": {
                "sheetId": sheet_id,
                "rowIndex": update.row_index,
                "columnIndex": update.column_index,
            },
            "rows": [to_row_data(row) for row in update.values],
            "fields": "userEnteredValue",
        }
    }

class UpdateBatcher:
    """Folds every SpreadsheetUpdate of one tick into a single batchUpdate body."""

    def build(self, updates: Sequence[SpreadsheetUpdate], sheet_ids: Mapping[str, int]) -> Dict[str, Any]:
        requests: List[Dict[str, Any]] = [
            build_update_cells_request(update, sheet_ids[update.sheet_name])
            for update in updates
        ]
        cells = sum(len(u.values) * u.width for u in updates)
        logger.debug(f"Batched {len(requests)} block(s), {cells} cell(s)")
        return {"requests": requests}
