from datetime import timedelta

from phoneauth.core.config import settings
from phoneauth.core.security import now_utc
from phoneauth.db.session import SessionLocal
from phoneauth.services.verification import expire_stale_verifications


def main():
    db = SessionLocal()
    try:
        cutoff = now_utc() - timedelta(minutes=settings.VERIFICATION_PENDING_TTL_MINUTES)
        expired = expire_stale_verifications(db, older_than=cutoff)
        db.commit()
        print(f"ok: verificaciones expiradas={expired}")
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


if __name__ == "__main__":
    main()
