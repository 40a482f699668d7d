"""Shared test configuration - puts the project root on sys.path and keeps
test runs away from the user's data directory and API keys."""
import os
import sys
import tempfile

_root = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if _root not in sys.path:
    sys.path.insert(0, _root)

# Must happen before understanding.config is imported
os.environ["UNDERSTANDING_DATA_DIR"] = tempfile.mkdtemp(prefix="understanding-tests-")
os.environ["ANTHROPIC_API_KEY"] = ""
os.environ["OPENAI_API_KEY"] = ""
