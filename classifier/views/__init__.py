"""
View package for the teachable classifier app.

Modules
-------
helpers.py        – Shared constants, upload validation, error mapping.
classes_api.py    – Class list and sample APIs (add, rename, delete, upload).
training_api.py   – Training run lifecycle APIs (start, status, cancel).
classification.py – Image upload and ranked inference endpoint.
model_api.py      – Head export / import and session stats.
"""

# Re-export all views so urls.py can do: from .views import classify, …
from .classification import classify                                  # noqa: F401
from .classes_api import (                                            # noqa: F401
    api_classes,
    api_rename_class,
    api_delete_class,
    api_add_sample,
    api_delete_sample,
)
from .training_api import (                                           # noqa: F401
    api_training_start,
    api_training_status,
    api_training_cancel,
)
from .model_api import api_model_export, api_model_import, api_stats   # noqa: F401
