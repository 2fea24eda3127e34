import os
import tempfile

# database.py builds its engine at import time; keep it away from ./data.
os.environ.setdefault(
    "PANIC_POCKET_DATA_DIR", tempfile.mkdtemp(prefix="panic-pocket-")
)
os.environ.setdefault("PANIC_POCKET_SCHEDULER_ENABLED", "false")
os.environ.setdefault("PANIC_POCKET_HORIZON_MONTHS", "12")
