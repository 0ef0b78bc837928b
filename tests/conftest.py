import os
import sys

# Ensure src/ (for car_rental.*) and tests/ (for fakes) are importable.
HERE = os.path.abspath(os.path.dirname(__file__))
ROOT = os.path.abspath(os.path.join(HERE, "..", "src"))
for path in (ROOT, HERE):
    if path not in sys.path:
        sys.path.insert(0, path)

os.environ.setdefault("MOCK_STRIPE", "true")
os.environ.setdefault("JWT_SECRET", "test-secret")
