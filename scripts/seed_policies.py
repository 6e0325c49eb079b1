from leave_engine.database import init_db, session_scope
from leave_engine.core.init_system import seed_default_policies
from leave_engine.models.leave_policy import LeavePolicy


def seed():
    init_db()
    with session_scope() as db:
        created = seed_default_policies(db)
        total = db.query(LeavePolicy).count()
    if created:
        print(f"Created {created} default leave policies ({total} in total)")
    else:
        print(f"All default policies already exist ({total} in total)")


if __name__ == "__main__":
    seed()
