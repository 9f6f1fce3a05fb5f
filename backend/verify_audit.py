import sys

from sqlmodel import Session, SQLModel, select

from ubaa.core.database import engine
from ubaa.models.Audit import AuditLog
from ubaa.audit.service import verify_chain

def check_audit_chain() -> int:
    print("Initializing DB...")
    SQLModel.metadata.create_all(engine)

    with Session(engine) as db:
        count = len(db.exec(select(AuditLog.id)).all())
        print(f"Checking {count} audit entries...")

        broken_id = verify_chain(db)
        if broken_id is None:
            print("Chain is VALID")
            return 0

        print(f"Chain is INVALID at entry {broken_id}")
        return 1

if __name__ == "__main__":
    sys.exit(check_audit_chain())
