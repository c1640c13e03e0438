"""Routes for browsing the records held by the in-memory store."""
from __future__ import annotations

import html
import json
from typing import Any, Dict, Iterable, List, Mapping

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import HTMLResponse

from shopqueue.clients.store import eq
from shopqueue.dependencies.services import get_engine
from shopqueue.schemas.events import ChangeEvent
from shopqueue.services import BookingEngine
from shopqueue.services.mock_store import InMemoryRecordStore

router = APIRouter()


def _stringify(value: Any) -> str:
    """Return a JSON-friendly string representation for table cells."""
    if value is None:
        return ""
    if isinstance(value, (str, int, float, bool)):
        return str(value)
    return json.dumps(value, default=str)


def _build_table(title: str, rows: Iterable[Mapping[str, Any]]) -> str:
    row_list: List[Dict[str, Any]] = [dict(row) for row in rows]
    section_parts = [f"<section><h2>{html.escape(title)}</h2>"]
    if not row_list:
        section_parts.append("<p>No records found.</p></section>")
        return "".join(section_parts)

    columns: List[str] = []
    for row in row_list:
        for key in row.keys():
            if key not in columns:
                columns.append(key)

    header = "".join(f"<th>{html.escape(column)}</th>" for column in columns)
    body_rows: List[str] = []
    for row in row_list:
        cells = [
            f"<td>{html.escape(_stringify(row.get(column)))}</td>" for column in columns
        ]
        body_rows.append("<tr>" + "".join(cells) + "</tr>")
    section_parts.append(
        "<table><thead><tr>"
        + header
        + "</tr></thead><tbody>"
        + "".join(body_rows)
        + "</tbody></table>"
    )
    section_parts.append("</section>")
    return "".join(section_parts)


def _memory_store(engine: BookingEngine) -> InMemoryRecordStore:
    if not isinstance(engine.store, InMemoryRecordStore):
        raise HTTPException(status_code=404, detail="Mock data is disabled")
    return engine.store


@router.get("/mock-data", response_class=HTMLResponse)
async def view_mock_data(engine: BookingEngine = Depends(get_engine)) -> HTMLResponse:
    """Render every table of the in-memory store plus the recent audit trail."""
    store = _memory_store(engine)
    tables = engine.tables

    appointments = sorted(
        store.rows(tables.appointments),
        key=lambda row: (str(row.get("date")), str(row.get("time_slot"))),
    )
    sections = [
        _build_table("Providers", store.rows(tables.providers)),
        _build_table("Services", store.rows(tables.services)),
        _build_table("Appointments", appointments),
        _build_table(
            "Audit Log", (entry.model_dump() for entry in engine.audit.recent(50))
        ),
    ]

    sections_html = "".join(sections)
    html_content = f"""
    <html>
        <head>
            <title>Mock Data Overview</title>
            <style>
                body {{ font-family: Arial, sans-serif; margin: 2rem; }}
                h1 {{ text-align: center; }}
                section {{ margin-bottom: 2rem; }}
                table {{ border-collapse: collapse; width: 100%; }}
                th, td {{ border: 1px solid #ccc; padding: 0.5rem; text-align: left; }}
                th {{ background-color: #f0f0f0; }}
                tbody tr:nth-child(even) {{ background-color: #fafafa; }}
            </style>
        </head>
        <body>
            <h1>Mock Data Overview</h1>
            {sections_html}
        </body>
    </html>
    """

    return HTMLResponse(content=html_content)


@router.delete("/mock-data/{collection}/{record_id}")
async def delete_mock_record(
    collection: str,
    record_id: str,
    engine: BookingEngine = Depends(get_engine),
) -> Dict[str, str]:
    """Remove a record from one of the in-memory tables."""

    store = _memory_store(engine)
    tables = engine.tables
    collection_map = {
        "appointment": tables.appointments,
        "appointments": tables.appointments,
        "provider": tables.providers,
        "providers": tables.providers,
        "service": tables.services,
        "services": tables.services,
    }

    table = collection_map.get(collection.strip().lower())
    if not table:
        raise HTTPException(status_code=404, detail="Unsupported mock data collection")

    deleted = await store.delete(table, [eq("id", record_id)])
    if not deleted:
        raise HTTPException(status_code=404, detail="Record not found")
    if table == tables.appointments:
        engine.notifier.publish(ChangeEvent(kind="resync"))

    return {"status": "deleted", "collection": table, "record_id": record_id}
