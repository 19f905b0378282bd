"""Operator settings read from the environment."""

import os

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

IMAGE_REPOSITORY = os.getenv("IMAGE_REPOSITORY", "homeassistant/home-assistant")
# Image tag used when an instance does not declare a version
DEFAULT_VERSION = os.getenv("DEFAULT_VERSION", "stable")
MANAGED_BY = os.getenv("MANAGED_BY", "home-assistant-operator")

RECONCILE_INTERVAL = float(os.getenv("RECONCILE_INTERVAL", "30"))
RETRY_DELAY = float(os.getenv("RETRY_DELAY", "30"))

WORKER_LIMIT = int(os.getenv("WORKER_LIMIT", "5"))
POSTING_ENABLED = os.getenv("POSTING_ENABLED", "false").lower() == "true"
