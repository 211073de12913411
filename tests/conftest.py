import os
import tempfile

# Settings are read once at import time of the app modules.
os.environ.setdefault("FINANCE_DATA_DIR", tempfile.mkdtemp(prefix="finance-tests-"))
os.environ.setdefault("FINANCE_AUTH_SECRET", "test-secret")
