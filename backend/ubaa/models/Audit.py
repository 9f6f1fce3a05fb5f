from datetime import datetime, timezone
from typing import Optional
from sqlmodel import Field, SQLModel
import hashlib

# previous_hash of the first entry in the chain
GENESIS_HASH = "0" * 32

class AuditLog(SQLModel, table=True):
    __tablename__ = "audit_logs"

    id: Optional[int] = Field(default=None, primary_key=True)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc).replace(microsecond=0))
    actor: str = Field(index=True) # SSO identity, "-" when the token named nobody
    action: str # e.g. "POST /login 200 OK"
    details: str = ""
    previous_hash: str
    current_hash: str

    def calculate_hash(self) -> str:
        """
        SHA-256 hexdigest of previous_hash, timestamp, actor, action and details, in that order.
        """
        # SQLite hands the timestamp back without tzinfo, so always hash the naive form
        fields = [
            self.previous_hash,
            self.timestamp.replace(tzinfo=None).isoformat(),
            self.actor,
            self.action,
            self.details,
        ]
        return hashlib.sha256("".join(fields).encode("utf-8")).hexdigest()
