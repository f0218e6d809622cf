from app.core.logging import configure_logging
from app.db.session import SessionLocal
from app.services.billing import expire_stale_checkout_sessions
from app.services.notifier import run_expiration_sweep


def main():
    configure_logging()
    db = SessionLocal()
    try:
        result = run_expiration_sweep(db)
        expired_sessions = expire_stale_checkout_sessions(db)
        db.commit()
        summary = result.as_dict()
        print(
            "ok: rental notifications sweep done "
            f"(sent={summary['sent']}, failed={summary['failed']}, skipped={summary['skipped']}, "
            f"expired_checkout_sessions={expired_sessions})"
        )
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


if __name__ == "__main__":
    main()
