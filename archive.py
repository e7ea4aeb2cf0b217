# archive.py
"""
JSON archive files for shipments removed from the live table.

Every file holds {archivedAt, totalShipments, archiveType, archiveReason,
data}, where data is the list of shipment records as the API returned them.
"""
import os
import json
import logging
from datetime import datetime, timedelta
from werkzeug.utils import secure_filename

from config import Config
from exceptions import NotFoundException, ValidationException
from utils import sanitize_filename, parse_date

log = logging.getLogger(__name__)

AUTO_ARCHIVE_STATUSES = ["arrived_pta", "arrived_klm"]


def archive_dir():
    path = Config.ARCHIVE_DIR
    os.makedirs(path, exist_ok=True)
    return path

def _stamp(when):
    # 2024-05-01T10-22-33-123Z, safe on every filesystem
    return when.strftime("%Y-%m-%dT%H-%M-%S-") + f"{when.microsecond // 1000:03d}Z"

def _path(file_name):
    if not file_name or secure_filename(file_name) != file_name or not file_name.endswith(".json"):
        raise NotFoundException("Archive", file_name)
    return os.path.join(archive_dir(), file_name)

def write_archive(shipments, prefix, archive_type=None, reason=None, **extra):
    now = datetime.utcnow()
    file_name = f"{prefix}_{_stamp(now)}.json"
    payload = {
        "archivedAt": now.isoformat() + "Z",
        "totalShipments": len(shipments),
    }
    if archive_type:
        payload["archiveType"] = archive_type
    if reason:
        payload["archiveReason"] = reason
    payload.update(extra)
    payload["data"] = shipments

    with open(os.path.join(archive_dir(), file_name), "w", encoding="utf-8") as fh:
        json.dump(payload, fh, indent=2, default=str)
    log.info("Archived %s shipments to %s", len(shipments), file_name)
    return file_name

def list_archives():
    out = []
    for name in sorted(os.listdir(archive_dir()), reverse=True):
        if not name.endswith(".json"):
            continue
        try:
            with open(os.path.join(archive_dir(), name), encoding="utf-8") as fh:
                meta = json.load(fh)
        except (OSError, ValueError):
            log.exception("Unreadable archive %s", name)
            continue
        out.append({
            "fileName":       name,
            "archivedAt":     meta.get("archivedAt"),
            "totalShipments": meta.get("totalShipments", len(meta.get("data") or [])),
            "archiveType":    meta.get("archiveType"),
            "customName":     meta.get("customName"),
        })
    return out

def read_archive(file_name):
    path = _path(file_name)
    if not os.path.exists(path):
        raise NotFoundException("Archive", file_name)
    with open(path, encoding="utf-8") as fh:
        return json.load(fh)

def delete_archive(file_name):
    path = _path(file_name)
    if os.path.exists(path):
        os.remove(path)
        log.info("Archive removed: %s", file_name)

def rename_archive(file_name, new_name):
    if not (new_name or "").strip():
        raise ValidationException("New name is required", {"newName": "required"})

    data = read_archive(file_name)
    archived_at = parse_date(data.get("archivedAt")) or datetime.utcnow()
    new_file = f"custom_archive_{sanitize_filename(new_name.strip())}_{_stamp(archived_at)}.json"

    data["customName"] = new_name.strip()
    data["originalFileName"] = file_name
    with open(os.path.join(archive_dir(), new_file), "w", encoding="utf-8") as fh:
        json.dump(data, fh, indent=2, default=str)
    if new_file != file_name:
        os.remove(_path(file_name))

    log.info("Archive renamed: %s -> %s", file_name, new_file)
    return {"oldFileName": file_name, "newFileName": new_file, "customName": new_name.strip()}

def find_old_arrived(shipments, days_old=30, now=None):
    cutoff = (now or datetime.utcnow()) - timedelta(days=days_old)
    old = []
    for s in shipments:
        if s.get("latestStatus") not in AUTO_ARCHIVE_STATUSES:
            continue
        stamp = parse_date(s.get("updatedAt") or s.get("createdAt"))
        if stamp and stamp < cutoff:
            old.append(s)
    return old

def auto_archive_stats(shipments, days_old=30, now=None):
    now = now or datetime.utcnow()
    eligible = find_old_arrived(shipments, days_old, now)
    return {
        "eligibleForArchive": len(eligible),
        "totalArrived": sum(1 for s in shipments if s.get("latestStatus") in AUTO_ARCHIVE_STATUSES),
        "eligibleShipments": [{
            "id":          s["id"],
            "supplier":    s.get("supplier"),
            "orderRef":    s.get("orderRef"),
            "arrivedDate": s.get("updatedAt") or s.get("createdAt"),
            "daysOld":     (now - parse_date(s.get("updatedAt") or s.get("createdAt"))).days,
        } for s in eligible],
    }

def manual_archive_prefix(shipments):
    refs = "_".join(sanitize_filename(s.get("orderRef") or s["id"]) for s in shipments)
    # keep file names within filesystem limits
    return f"manual_archive_{refs[:120].rstrip('_')}"
