"""Pytest configuration shared by every certbatch test module.

Puts the repo root first on ``sys.path`` and drops any ``certbatch`` modules
imported before collection, once, so every test module sees the same class
objects (error types in particular) from the working tree.
"""

from __future__ import annotations

import sys
from pathlib import Path


REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))
for _k in list(sys.modules.keys()):
    if _k == "certbatch" or _k.startswith("certbatch."):
        del sys.modules[_k]
