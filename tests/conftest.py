"""Root test conftest — shared fixtures for all test suites.

Unit test fixtures live in tests/unit/conftest.py and integration fixtures in
tests/integration/conftest.py; both put ``src/`` on ``sys.path``.
"""

import sys
from pathlib import Path

_SRC = Path(__file__).parent.parent / "src"
if str(_SRC) not in sys.path:
    sys.path.insert(0, str(_SRC))
