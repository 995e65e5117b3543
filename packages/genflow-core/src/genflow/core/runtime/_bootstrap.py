from __future__ import annotations

# Importing these modules registers the built-in connectors and flows.
from genflow.core.builtins import models as _models  # noqa: F401
from genflow.core.builtins import stores as _stores  # noqa: F401
from genflow.core.builtins import flows as _flows  # noqa: F401
