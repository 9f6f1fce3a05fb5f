from sqlmodel import Session, select
from ..models.Audit import AuditLog, GENESIS_HASH
from datetime import datetime, timezone
from typing import Optional
import threading

# Routes run in the threadpool; reading the chain tip and appending must not interleave
_append_lock = threading.Lock()

def log_event(db: Session, actor: Optional[str], action: str, details: Optional[str] = None) -> AuditLog:
    """
    Appends an event to the AuditLog chain. Never pass secrets or tokens here.
    """
    with _append_lock:
        last_entry = db.exec(select(AuditLog).order_by(AuditLog.id.desc())).first()
        previous_hash = last_entry.current_hash if last_entry else GENESIS_HASH

        new_log = AuditLog(
            actor=actor or "-",
            action=action,
            details=details or "",
            previous_hash=previous_hash,
            current_hash="", # Placeholder, will be calculated
            timestamp=datetime.now(timezone.utc).replace(microsecond=0)
        )
        new_log.current_hash = new_log.calculate_hash()

        db.add(new_log)
        db.commit()
        db.refresh(new_log)

    return new_log

def verify_chain(db: Session) -> Optional[int]:
    """
    Recomputes the chain. Returns the id of the first broken entry, or None if intact.
    """
    previous_hash = GENESIS_HASH
    for entry in db.exec(select(AuditLog).order_by(AuditLog.id.asc())):
        if entry.previous_hash != previous_hash or entry.calculate_hash() != entry.current_hash:
            return entry.id
        previous_hash = entry.current_hash
    return None
