import csv
import io
from collections.abc import Iterable
from typing import Any

from fastapi.responses import Response
from openpyxl import Workbook

THREAT_EXPORT_HEADER = ["axis", "identifier", "failed_count"]

XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


def threat_export_rows(report: dict) -> list[list[Any]]:
    """Flatten a security report's top-threat lists into one table."""
    threats = report.get("top_threats", {})
    rows: list[list[Any]] = [
        ["origin", item["origin"], item["failed_count"]] for item in threats.get("failed_origins", [])
    ]
    rows.extend(
        ["account", item["account_identifier"], item["attempt_count"]]
        for item in threats.get("targeted_accounts", [])
    )
    return rows


def _attachment(content: bytes | str, media_type: str, filename: str) -> Response:
    return Response(
        content=content,
        media_type=media_type,
        headers={"Content-Disposition": f"attachment; filename={filename}"},
    )


def csv_attachment_response(*, filename: str, header: list[str], rows: Iterable[Iterable[Any]]) -> Response:
    out = io.StringIO()
    writer = csv.writer(out)
    writer.writerow(header)
    writer.writerows(list(row) for row in rows)
    return _attachment(out.getvalue(), "text/csv; charset=utf-8", filename)


def xlsx_attachment_response(
    *,
    filename: str,
    sheet_name: str,
    header: list[str],
    rows: Iterable[Iterable[Any]],
) -> Response:
    wb = Workbook()
    ws = wb.active
    ws.title = sheet_name
    ws.append(header)
    ws.freeze_panes = "A2"
    for row in rows:
        ws.append(list(row))

    out = io.BytesIO()
    wb.save(out)
    return _attachment(out.getvalue(), XLSX_MEDIA_TYPE, filename)
