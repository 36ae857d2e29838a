from django.apps import AppConfig


class ClassifierConfig(AppConfig):
    name = 'classifier'

    def ready(self):
        """Optionally warm the feature extractor so the first request is fast."""
        from django.conf import settings

        if getattr(settings, 'TEACHABLE_PRELOAD_EXTRACTOR', False):
            import threading
            threading.Thread(
                target=_preload_extractor, name='extractor-preload', daemon=True,
            ).start()


def _preload_extractor():
    """Load the shared session's extractor; failures are logged, not raised."""
    import logging
    logger = logging.getLogger(__name__)

    try:
        from classifier.session_store import get_loaded_session
        session = get_loaded_session()
        logger.info("Feature extractor preloaded (backend %s)", session.extractor.backend)
    except Exception:
        logger.exception("Feature extractor preload failed")
