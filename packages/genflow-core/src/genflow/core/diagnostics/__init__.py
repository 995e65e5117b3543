from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from genflow.core.connectors.manager import Backends
from genflow.core.exception import ConnectorError, StoreError
from genflow.core.runtime.settings import Settings, load_settings

log = logging.getLogger("genflow.core.diagnostics")

HEALTH_FAILED_MESSAGE = "Database connection failed"


def check_store_health(settings: Optional[Settings] = None, backends: Optional[Backends] = None) -> Dict[str, Any]:
    """Ping the configured store connector.

    Returns {"status": "ok", "driver", "storeTime"} or
    {"status": "error", "driver", "message", "error"}; never raises for
    connectivity problems.
    """
    settings = settings or (backends.settings if backends is not None else load_settings())
    owned = backends is None
    backends = backends or Backends(settings)
    driver = settings.store_driver
    try:
        store_time = backends.store().ping()
    except (StoreError, ConnectorError) as e:
        log.error("store health check failed driver=%s: %s", driver, e)
        return {"status": "error", "driver": driver, "message": HEALTH_FAILED_MESSAGE, "error": str(e)}
    finally:
        if owned:
            backends.close_all()
    return {"status": "ok", "driver": driver, "storeTime": store_time}
