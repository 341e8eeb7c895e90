"""
Planificateur APScheduler : récapitulatif périodique des rejets de synchronisation.

Le job compte les lignes sync_errors créées depuis le dernier passage, par code
d'erreur, et les écrit dans les logs pour le triage opérateur. Lecture seule.
"""

import logging

from apscheduler.schedulers.background import BackgroundScheduler

from app.config import settings
from app.database import SessionLocal

logger = logging.getLogger(__name__)

scheduler = BackgroundScheduler()


def _log_sync_error_digest() -> None:
    """
    Tâche planifiée : une ligne de log par code d'erreur rencontré sur la fenêtre.
    Import local pour éviter les imports circulaires.
    """
    from app.services.sync_service import count_recent_errors

    minutes = settings.SYNC_ERROR_DIGEST_MINUTES
    db = SessionLocal()
    try:
        counts = count_recent_errors(db, minutes)
        if not counts:
            logger.debug("Aucun rejet de synchronisation sur les %d dernières minutes.", minutes)
        for code, count in counts:
            logger.info(
                "Rejets de synchronisation (%d dernières minutes) — %s : %d",
                minutes, code or "inconnu", count,
            )
    except Exception as exc:
        logger.error("Erreur lors du récapitulatif des rejets de synchronisation : %s", exc)
    finally:
        db.close()


def start_scheduler() -> None:
    """Démarre le planificateur en arrière-plan (appelé au démarrage de l'API)."""
    scheduler.add_job(
        _log_sync_error_digest,
        trigger="interval",
        minutes=settings.SYNC_ERROR_DIGEST_MINUTES,
        id="sync_error_digest",
        replace_existing=True,
    )
    scheduler.start()
    logger.info(
        "Scheduler démarré — récapitulatif des rejets toutes les %d minutes.",
        settings.SYNC_ERROR_DIGEST_MINUTES,
    )


def stop_scheduler() -> None:
    """Arrête le planificateur proprement (appelé à l'arrêt de l'API)."""
    if scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("Scheduler arrêté.")
