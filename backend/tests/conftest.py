from __future__ import annotations

import os

# api.py builds its store and sender at import time; keep tests off /data and the network.
os.environ["REMINDER_STORE_BACKEND"] = "inmemory"
os.environ["PUSH_SENDER_TYPE"] = "stub"
os.environ["SCHEDULER_ENABLED"] = "false"
os.environ["RUNTIME_CONFIG_GUARD_MODE"] = "off"
