import logging

from django.conf import settings
from django.db import DatabaseError, connection
from django.http import JsonResponse

from apps.orders.http_adapters import breaker_states
from apps.orders.providers import get_dispatcher

logger = logging.getLogger(__name__)


def health_view(_request):
    db_ok = False
    try:
        with connection.cursor() as cur:
            cur.execute("SELECT 1;")
        db_ok = True
    except DatabaseError:
        logger.warning("health: database check failed", exc_info=True)

    circuits = breaker_states()
    catalog_ok = not settings.USE_HTTP_ADAPTERS or circuits["catalog"] != "OPEN"

    ok = db_ok and catalog_ok
    code = 200 if ok else 503
    return JsonResponse(
        {
            "ok": ok,
            "components": {
                "db": {"ok": db_ok},
                "catalog": {"ok": catalog_ok, "mode": "http" if settings.USE_HTTP_ADAPTERS else "orm",
                            "circuit": circuits["catalog"]},
                "notifications": {"circuit": circuits["notifications"],
                                  "pending": get_dispatcher().pending},
            },
        },
        status=code,
    )


def live_view(_request):
    """Liveness only: the process answers, dependencies are not checked."""
    return JsonResponse({"ok": True})
