import os
import tempfile

# Keep the log table of the test run out of the working directory
os.environ.setdefault("DB_PATH", os.path.join(tempfile.mkdtemp(prefix="signalbot-tests-"), "signalbot.db"))
