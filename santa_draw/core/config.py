import os
from dataclasses import dataclass
from dotenv import load_dotenv

load_dotenv()

_TRUTHY = {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class Settings:
    log_level: str
    log_path: str
    draw_max_retries: int
    draw_step_budget: int
    draw_total_step_budget: int
    draw_parallel: bool


def _read_non_negative_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got {raw!r}.") from exc
    if value < 0:
        raise ValueError(f"{name} must not be negative, got {value}.")
    return value


def load_settings() -> Settings:
    log_level = os.getenv("LOG_LEVEL", "INFO")
    log_path = os.getenv("LOG_PATH", "logs/santa_draw.log")
    draw_max_retries = _read_non_negative_int("DRAW_MAX_RETRIES", 5)
    draw_step_budget = _read_non_negative_int("DRAW_STEP_BUDGET", 50_000)
    draw_total_step_budget = _read_non_negative_int("DRAW_TOTAL_STEP_BUDGET", 200_000)
    draw_parallel = os.getenv("DRAW_PARALLEL", "false").strip().lower() in _TRUTHY

    if draw_step_budget == 0:
        raise ValueError("DRAW_STEP_BUDGET must be at least 1.")
    if draw_total_step_budget == 0:
        raise ValueError("DRAW_TOTAL_STEP_BUDGET must be at least 1.")

    return Settings(
        log_level=log_level,
        log_path=log_path,
        draw_max_retries=draw_max_retries,
        draw_step_budget=draw_step_budget,
        draw_total_step_budget=draw_total_step_budget,
        draw_parallel=draw_parallel,
    )
