import os


def get_env_str(key: str, default: str) -> str:
    raw = os.getenv(key)
    if raw is None:
        return default
    text = raw.strip()
    return text if text else default


def get_env_int(key: str, default: int, min_value: int, max_value: int) -> int:
    raw = os.getenv(key)
    if raw is None:
        return default
    try:
        value = int(raw)
    except ValueError:
        return default
    if value < min_value:
        return min_value
    if value > max_value:
        return max_value
    return value


def get_env_float(key: str, default: float, min_value: float, max_value: float) -> float:
    raw = os.getenv(key)
    if raw is None:
        return default
    try:
        value = float(raw)
    except ValueError:
        return default
    if value != value:
        return default
    if value < min_value:
        return min_value
    if value > max_value:
        return max_value
    return value
