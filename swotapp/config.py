import logging
import os
from copy import deepcopy
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml


logger = logging.getLogger(__name__)


_BASE_DIR = Path(__file__).resolve().parent.parent
_DEFAULT_CONFIG_DIR = _BASE_DIR / "config"
_DEFAULT_GAME_CONSTANTS_PATH = _DEFAULT_CONFIG_DIR / "game_constants.yaml"

_DEFAULT_GAME_CONSTANTS_DATA: Dict[str, Any] = {
    "game": {
        "total_rounds": 10,
        "total_chips": 30,
        "cards": [0, 1, 2, 3, 4, 5, 6, 7, 8, 9],
        "min_round_chips": 1,
        "max_ai_helps": 3,
    },
    "engine": {
        "max_version_retries": 5,
        "retry_backoff_seconds": 0.05,
        "ready_evaluation_delay_seconds": 0.0,
        "auto_evaluate_ready": True,
    },
    "redis": {
        "rooms_key": "swot:rooms",
        "room_key_prefix": "swot:room:",
        "version_key_prefix": "swot:room_version:",
        "updates_channel": "swot:rooms:updates",
    },
    "advisor": {
        "timeout_seconds": 60.0,
    },
}


def _resolve_config_path(candidate: Optional[str], default: Path) -> Path:
    if not candidate:
        return default
    path = Path(candidate)
    if not path.is_absolute():
        path = _BASE_DIR / path
    return path


def _deep_merge(base: Dict[str, Any], overrides: Dict[str, Any]) -> Dict[str, Any]:
    for key, value in overrides.items():
        if (
            isinstance(value, dict)
            and isinstance(base.get(key), dict)
        ):
            base[key] = _deep_merge(dict(base[key]), value)
        else:
            base[key] = value
    return base


class GameConstants:
    def __init__(
        self,
        path: Optional[str] = None,
        *,
        defaults: Optional[Dict[str, Any]] = None,
    ) -> None:
        resolved_path = _resolve_config_path(
            path or os.getenv("SWOTBOT_GAME_CONSTANTS_FILE"),
            _DEFAULT_GAME_CONSTANTS_PATH,
        )
        self._path: Path = resolved_path
        self._defaults: Dict[str, Any] = deepcopy(defaults or _DEFAULT_GAME_CONSTANTS_DATA)
        self._data: Dict[str, Any] = {}
        self.reload()

    @property
    def path(self) -> Path:
        return self._path

    def reload(self) -> None:
        raw_data: Dict[str, Any] = {}
        try:
            with self._path.open("r", encoding="utf-8") as handle:
                loaded = yaml.safe_load(handle) or {}
                if not isinstance(loaded, dict):
                    logger.warning(
                        "Game constants file did not contain a mapping; using defaults.",
                        extra={
                            "component": "config",
                            "config_path": str(self._path),
                            "stage": "game_constants_load",
                            "error_type": "InvalidMapping",
                        },
                    )
                else:
                    raw_data = loaded
        except FileNotFoundError:
            logger.warning(
                "Game constants file not found; using default values.",
                extra={
                    "component": "config",
                    "config_path": str(self._path),
                    "stage": "game_constants_load",
                    "error_type": "FileNotFoundError",
                },
            )
        except yaml.YAMLError as exc:
            logger.warning(
                "Failed to parse game constants file; using defaults.",
                extra={
                    "component": "config",
                    "config_path": str(self._path),
                    "stage": "game_constants_load",
                    "error_type": type(exc).__name__,
                },
                exc_info=True,
            )

        merged = deepcopy(self._defaults)
        if raw_data:
            merged = _deep_merge(merged, raw_data)
        self._data = merged

    def get(self, key: str, default: Any = None) -> Any:
        value = self._data.get(key, default)
        return deepcopy(value)

    def section(self, key: str) -> Dict[str, Any]:
        section = self._data.get(key, {})
        if isinstance(section, dict):
            return deepcopy(section)
        return {}

    @property
    def game(self) -> Dict[str, Any]:
        return self.section("game")

    @property
    def engine(self) -> Dict[str, Any]:
        return self.section("engine")

    @property
    def redis(self) -> Dict[str, Any]:
        return self.section("redis")

    @property
    def advisor(self) -> Dict[str, Any]:
        return self.section("advisor")


GAME_CONSTANTS = GameConstants()


def get_game_constants() -> GameConstants:
    return GAME_CONSTANTS


class Config:
    def __init__(self, constants: Optional[GameConstants] = None):
        self.constants: GameConstants = constants or GAME_CONSTANTS
        self.REDIS_HOST: str = os.getenv(
            "SWOTBOT_REDIS_HOST",
            default="localhost",
        )
        self.REDIS_PORT: int = self._parse_int_env(
            os.getenv("SWOTBOT_REDIS_PORT"),
            default=6379,
            env_var="SWOTBOT_REDIS_PORT",
        )
        self.REDIS_PASS: str = os.getenv(
            "SWOTBOT_REDIS_PASS",
            default="",
        )
        self.REDIS_DB: int = self._parse_int_env(
            os.getenv("SWOTBOT_REDIS_DB"),
            default=0,
            env_var="SWOTBOT_REDIS_DB",
        )
        self.DEBUG: bool = bool(
            os.getenv("SWOTBOT_DEBUG", default="0") == "1"
        )

        engine_constants = self.constants.engine
        self.MAX_VERSION_RETRIES: int = max(
            int(engine_constants.get("max_version_retries", 5)), 1
        )
        self.RETRY_BACKOFF_SECONDS: float = max(
            float(engine_constants.get("retry_backoff_seconds", 0.05)), 0.0
        )
        self.READY_EVALUATION_DELAY: float = max(
            float(engine_constants.get("ready_evaluation_delay_seconds", 0.0)), 0.0
        )
        self.AUTO_EVALUATE_READY: bool = bool(
            engine_constants.get("auto_evaluate_ready", True)
        )

        self.ADVISOR_URL: str = os.getenv("SWOTBOT_ADVISOR_URL", "").strip()
        self.ADVISOR_API_KEY: str = os.getenv("SWOTBOT_ADVISOR_API_KEY", "")
        parsed_timeout = self._parse_positive_float(
            os.getenv("SWOTBOT_ADVISOR_TIMEOUT"),
            env_var="SWOTBOT_ADVISOR_TIMEOUT",
        )
        self.ADVISOR_TIMEOUT: float = (
            parsed_timeout
            if parsed_timeout is not None
            else float(self.constants.advisor.get("timeout_seconds", 60.0))
        )

    @property
    def cards(self) -> List[int]:
        return [int(card) for card in self.constants.game.get("cards", [])]

    @staticmethod
    def _parse_int_env(
        raw_value: Optional[str], *, default: int, env_var: str
    ) -> int:
        if raw_value is None:
            return default
        raw_value = raw_value.strip()
        if not raw_value:
            return default
        try:
            return int(raw_value)
        except ValueError:
            logger.warning(
                "Invalid integer value '%s' for %s; falling back to default %s.",
                raw_value,
                env_var,
                default,
            )
            return default

    @staticmethod
    def _parse_positive_float(
        raw_value: Optional[str], *, env_var: Optional[str]
    ) -> Optional[float]:
        if not raw_value:
            return None
        try:
            value = float(raw_value)
        except ValueError:
            logger.warning(
                "Invalid float value '%s' for %s; ignoring it.",
                raw_value,
                env_var,
            )
            return None
        if value <= 0:
            logger.warning(
                "%s must be greater than zero; ignoring %s.",
                env_var,
                raw_value,
            )
            return None
        return value
