import os
import sys
import tempfile

sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))

# Must be set before sitter_availability.config is first imported.
os.environ.setdefault(
    "AVAILABILITY_DB_PATH",
    os.path.join(tempfile.mkdtemp(prefix="availability-tests-"), "availability.sqlite3"),
)
