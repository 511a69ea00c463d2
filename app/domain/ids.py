from __future__ import annotations

import importlib

ulid_module = importlib.import_module("ulid")


def new_key_id() -> str:
    return f"key_{ulid_module.new().str}"


def new_claim_id() -> str:
    return f"clm_{ulid_module.new().str}"


def new_token_value() -> str:
    return ulid_module.new().str.lower()
