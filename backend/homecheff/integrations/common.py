from __future__ import annotations


class IntegrationDisabledError(RuntimeError):
    pass


class IntegrationMisconfiguredError(RuntimeError):
    pass


class IntegrationCallError(RuntimeError):
    """Provider reachable but the call failed (non-2xx, provider error body, timeout)."""

    def __init__(self, message: str, *, provider: str = "", code: str = ""):
        super().__init__(message)
        self.provider = provider
        self.code = code


def config_value(config, key: str, default=None):
    try:
        value = config.get(key, default)
    except AttributeError:
        value = getattr(config, key, default)
    return default if value is None else value


def config_bool(config, key: str, default: bool = False) -> bool:
    value = config_value(config, key, default)
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("1", "true", "yes", "on")
