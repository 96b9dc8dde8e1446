"""
OmniFlow CRM - Leads / Contacts

Company-scoped CRUD, status changes (with timeline entry),
search/filter/pagination helpers and CSV import/export.
"""

import csv
import io
import logging
import math
import uuid
from typing import Optional, List, Dict, Any

from config import db, now_iso
from models.lead import LEAD_STATUSES, is_valid_email_format, normalize_lead_status
from services.activity_logger import log_status_change

logger = logging.getLogger("leads")

# CSV header (lowercased) -> lead field
CSV_COLUMN_MAP = {
    "name": "name",
    "email": "email",
    "phone": "phone",
    "status": "status",
    "how they found us": "source",
    "source": "source",
    "owner": "assigned_to",
    "assigned to": "assigned_to",
    "company name": "company_name",
    "role": "role",
    "notes": "notes",
}

CSV_EXPORT_HEADERS = [
    ("Name", "name"),
    ("Email", "email"),
    ("Phone", "phone"),
    ("Status", "status"),
    ("Source", "source"),
    ("Assigned To", "assigned_to"),
    ("Company Name", "company_name"),
    ("Role", "role"),
    ("Created At", "created_at"),
    ("Last Contacted", "last_contacted"),
]


# ════════════════════════════════════════════════════════════════════════
# CRUD
# ════════════════════════════════════════════════════════════════════════

def build_lead_doc(company_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
    now = now_iso()
    return {
        "id": str(uuid.uuid4()),
        "company_id": company_id,
        "name": (data.get("name") or "").strip(),
        "email": (data.get("email") or "").strip().lower(),
        "phone": (data.get("phone") or "").strip(),
        "status": data.get("status") or "New",
        "source": data.get("source") or "",
        "source_metadata": data.get("source_metadata") or {},
        "assigned_to": data.get("assigned_to") or "",
        "company_name": data.get("company_name") or "",
        "role": data.get("role") or "",
        "notes": data.get("notes") or "",
        "created_at": now,
        "updated_at": now,
        "last_contacted": now,
    }


async def create_lead(company_id: str, data: Dict[str, Any]) -> Dict:
    doc = build_lead_doc(company_id, data)
    await db.leads.insert_one(doc)
    doc.pop("_id", None)
    return doc


async def get_lead(company_id: str, lead_id: str) -> Optional[Dict]:
    return await db.leads.find_one({"id": lead_id, "company_id": company_id}, {"_id": 0})


async def find_lead_by_email(company_id: str, email: str) -> Optional[Dict]:
    if not email:
        return None
    return await db.leads.find_one(
        {"company_id": company_id, "email": email.strip().lower()},
        {"_id": 0}
    )


async def list_leads(company_id: str, limit: int = 5000) -> List[Dict]:
    return await db.leads.find({"company_id": company_id}, {"_id": 0}) \
        .sort("created_at", -1) \
        .to_list(limit)


async def update_lead(company_id: str, lead_id: str, data: Dict[str, Any]) -> Optional[Dict]:
    update = {k: v for k, v in data.items() if v is not None and k != "status"}
    if update:
        update["updated_at"] = now_iso()
        await db.leads.update_one({"id": lead_id, "company_id": company_id}, {"$set": update})
    return await get_lead(company_id, lead_id)


async def update_lead_status(company_id: str, lead_id: str, new_status: str, user: str = "system") -> Dict:
    """
    Set a lead's status. A status_change activity is written only when
    the status actually changes.
    """
    if new_status not in LEAD_STATUSES:
        return {"success": False, "error": f"Invalid status: {new_status}"}

    lead = await get_lead(company_id, lead_id)
    if not lead:
        return {"success": False, "error": "Lead not found"}

    old_status = lead.get("status", "New")
    if old_status == new_status:
        return {"success": True, "changed": False, "status": new_status}

    await db.leads.update_one(
        {"id": lead_id, "company_id": company_id},
        {"$set": {"status": new_status, "updated_at": now_iso()}}
    )
    await log_status_change(company_id, lead_id, old_status, new_status, created_by=user)
    return {"success": True, "changed": True, "old_status": old_status, "status": new_status}


async def delete_lead(company_id: str, lead_id: str) -> bool:
    result = await db.leads.delete_one({"id": lead_id, "company_id": company_id})
    return result.deleted_count > 0


# ════════════════════════════════════════════════════════════════════════
# FILTER / PAGINATION (pure)
# ════════════════════════════════════════════════════════════════════════

def filter_leads(
    leads: List[Dict],
    search: Optional[str] = None,
    status: Optional[str] = None,
    source: Optional[str] = None,
    assigned_to: Optional[str] = None,
) -> List[Dict]:
    """
    search: case-insensitive substring over name / email / phone / company_name
    status="all" or None: no status filter
    """
    result = leads

    if status and status.lower() != "all":
        result = [l for l in result if l.get("status") == status]

    if source:
        result = [l for l in result if (l.get("source") or "").lower() == source.lower()]

    if assigned_to:
        result = [l for l in result if l.get("assigned_to") == assigned_to]

    if search and search.strip():
        term = search.strip().lower()
        result = [
            l for l in result
            if any(term in (l.get(f) or "").lower() for f in ("name", "email", "phone", "company_name"))
        ]

    return result


def paginate_leads(items: List[Any], page: int = 1, page_size: int = 25) -> Dict[str, Any]:
    page_size = max(1, page_size)
    page = max(1, page)
    total = len(items)
    total_pages = math.ceil(total / page_size) if total else 0
    start = (page - 1) * page_size

    return {
        "items": items[start:start + page_size],
        "total": total,
        "page": page,
        "page_size": page_size,
        "total_pages": total_pages,
        "has_next": page < total_pages,
        "has_previous": page > 1,
    }


# ════════════════════════════════════════════════════════════════════════
# CSV IMPORT / EXPORT
# ════════════════════════════════════════════════════════════════════════

def parse_leads_csv(content: str) -> Dict[str, Any]:
    """
    Map CSV rows onto lead fields.
    Rows without a valid email are skipped, unknown status -> New.
    A blank Status cell leaves `status` out of the row.
    Returns {rows: [...], skipped: int, errors: [...]}
    """
    reader = csv.DictReader(io.StringIO(content.lstrip("\ufeff")))
    rows, errors = [], []
    skipped = 0

    for line_no, raw in enumerate(reader, start=2):
        row = {}
        for header, value in raw.items():
            if header is None:
                continue
            field = CSV_COLUMN_MAP.get(header.strip().lower())
            value = (value or "").strip() if isinstance(value, str) else ""
            # First non-empty column wins (Source vs How They Found Us, ...)
            if field and value and not row.get(field):
                row[field] = value

        email = (row.get("email") or "").lower()
        if not email:
            skipped += 1
            continue
        if not is_valid_email_format(email):
            skipped += 1
            errors.append(f"Line {line_no}: invalid email {email}")
            continue

        row["email"] = email
        if row.get("status"):
            row["status"] = normalize_lead_status(row["status"])
        if not row.get("name"):
            row["name"] = email.split("@")[0]
        rows.append(row)

    return {"rows": rows, "skipped": skipped, "errors": errors}


async def import_leads_csv(company_id: str, content: str, user: str = "system") -> Dict[str, Any]:
    """
    Existing emails in the company are updated instead of duplicated.
    A status change on an existing lead goes through update_lead_status
    so the timeline records it.
    """
    parsed = parse_leads_csv(content)
    imported = updated = 0

    for row in parsed["rows"]:
        existing = await find_lead_by_email(company_id, row["email"])
        if existing:
            fields = {k: v for k, v in row.items() if v and k not in ("email", "status")}
            fields["updated_at"] = now_iso()
            await db.leads.update_one({"id": existing["id"]}, {"$set": fields})
            if row.get("status"):
                await update_lead_status(company_id, existing["id"], row["status"], user=user)
            updated += 1
        else:
            if not row.get("source"):
                row["source"] = "CSV Import"
            await db.leads.insert_one(build_lead_doc(company_id, row))
            imported += 1

    logger.info(f"[LEADS] CSV import company={company_id} imported={imported} updated={updated} skipped={parsed['skipped']}")
    return {
        "success": True,
        "imported": imported,
        "updated": updated,
        "skipped": parsed["skipped"],
        "errors": parsed["errors"][:50],
    }


def export_leads_csv(leads: List[Dict]) -> str:
    output = io.StringIO()
    writer = csv.writer(output)
    writer.writerow([h for h, _ in CSV_EXPORT_HEADERS])
    for lead in leads:
        writer.writerow([lead.get(field, "") or "" for _, field in CSV_EXPORT_HEADERS])
    return output.getvalue()
