"""Root conftest: loads .env.test before any module imports."""
from __future__ import annotations

import os
from pathlib import Path

_env_test = Path(__file__).resolve().parent / ".env.test"
if _env_test.exists():
    for line in _env_test.read_text().splitlines():
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        key, _, value = line.partition("=")
        os.environ.setdefault(key.strip(), value.strip())

# Never let a developer's token or server leak into the test run
os.environ["CHAT_TOKEN"] = ""
os.environ.setdefault("CHAT_WS_URL", "ws://chat.test")
os.environ.setdefault("CHAT_API_URL", "http://chat.test/api")
