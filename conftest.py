"""
Root conftest: puts server/ (app, config, database, utils) and the repo root
(firmware) on sys.path so tests run from a plain checkout.
"""
import sys
from pathlib import Path

_root = Path(__file__).resolve().parent
for _path in (_root / "server", _root):
    if str(_path) not in sys.path:
        sys.path.insert(0, str(_path))
