"""
Configuration Management Module
Loads and validates configuration from config.yaml
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Any, Optional

import yaml

logger = logging.getLogger(__name__)


@dataclass
class MatchingConfig:
    """Candidate-matching parameters"""
    # Composite score weights; must sum to 1.0
    weights: Dict[str, float] = field(default_factory=lambda: {
        'name': 0.60,
        'age': 0.25,
        'gender': 0.15
    })
    # Name similarity (0-1) below which a non-NIC candidate is ignored
    name_similarity_floor: float = 0.70
    # Minimum composite score (0-100) for a candidate to be returned
    min_relevance_score: float = 60.0
    # Age differences up to this many years get full credit
    age_tolerance_years: int = 2
    # Credit decays linearly to zero over this many further years
    age_decay_years: int = 8
    max_candidates: int = 10


@dataclass
class SearchConfig:
    """Unified search parameters"""
    name_result_limit: int = 20
    nic_result_limit: int = 10
    # Rows fetched per dataset before merging
    candidate_fetch_limit: int = 50
    min_query_length: int = 2


@dataclass
class InputValidationConfig:
    """Input validation configuration for user-provided data"""
    name_min_length: int = 2
    name_max_length: int = 100
    blocked_characters: str = "<>{}[]|\\;`$"


@dataclass
class LoggingConfig:
    """Logging configuration"""
    level: str = "INFO"
    file: Optional[str] = None
    console: bool = True
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


@dataclass
class MonitoringConfig:
    """Datastore timing thresholds"""
    slow_query_threshold_ms: float = 1000.0
    warning_threshold_ms: float = 500.0


class ConfigurationError(Exception):
    """Raised when configuration is invalid"""
    pass


class ConfigManager:
    """Manages system configuration"""

    def __init__(self, config_path: Optional[str] = None):
        """Initialize configuration manager

        Args:
            config_path: Path to config.yaml file
        """
        self.config_path = Path(config_path) if config_path else self._find_config()
        self._raw_config: Dict[str, Any] = {}
        self.matching: MatchingConfig = MatchingConfig()
        self.search: SearchConfig = SearchConfig()
        self.input_validation: InputValidationConfig = InputValidationConfig()
        self.logging: LoggingConfig = LoggingConfig()
        self.monitoring: MonitoringConfig = MonitoringConfig()

        if self.config_path and self.config_path.exists():
            self.load()
        else:
            logger.warning(f"Config file not found at {self.config_path}, using defaults")

    def _find_config(self) -> Path:
        """Find config.yaml in common locations"""
        search_paths = [
            Path(__file__).parent / "config.yaml",
            Path.cwd() / "config.yaml",
            Path.cwd() / "python" / "config.yaml",
        ]

        for path in search_paths:
            if path.exists():
                return path

        return search_paths[0]

    def load(self) -> None:
        """Load configuration from YAML file"""
        try:
            with open(self.config_path, 'r', encoding='utf-8') as f:
                self._raw_config = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in config file: {e}")
        except FileNotFoundError:
            raise ConfigurationError(f"Config file not found: {self.config_path}")

        if not isinstance(self._raw_config, dict):
            raise ConfigurationError("Config file must contain a mapping at the top level")

        self._parse_matching()
        self._parse_search()
        self._parse_input_validation()
        self._parse_logging()
        self._parse_monitoring()
        self._validate()

    def _parse_matching(self) -> None:
        """Parse matching configuration"""
        cfg = self._raw_config.get('matching', {})
        defaults = MatchingConfig()
        self.matching = MatchingConfig(
            weights=cfg.get('weights', defaults.weights),
            name_similarity_floor=cfg.get('name_similarity_floor', defaults.name_similarity_floor),
            min_relevance_score=cfg.get('min_relevance_score', defaults.min_relevance_score),
            age_tolerance_years=cfg.get('age_tolerance_years', defaults.age_tolerance_years),
            age_decay_years=cfg.get('age_decay_years', defaults.age_decay_years),
            max_candidates=cfg.get('max_candidates', defaults.max_candidates)
        )

    def _parse_search(self) -> None:
        """Parse search configuration"""
        cfg = self._raw_config.get('search', {})
        self.search = SearchConfig(
            name_result_limit=cfg.get('name_result_limit', 20),
            nic_result_limit=cfg.get('nic_result_limit', 10),
            candidate_fetch_limit=cfg.get('candidate_fetch_limit', 50),
            min_query_length=cfg.get('min_query_length', 2)
        )

    def _parse_input_validation(self) -> None:
        """Parse input validation configuration"""
        cfg = self._raw_config.get('input_validation', {})
        self.input_validation = InputValidationConfig(
            name_min_length=cfg.get('name_min_length', 2),
            name_max_length=cfg.get('name_max_length', 100),
            blocked_characters=cfg.get('blocked_characters', "<>{}[]|\\;`$")
        )

    def _parse_logging(self) -> None:
        """Parse logging configuration"""
        cfg = self._raw_config.get('logging', {})
        self.logging = LoggingConfig(
            level=cfg.get('level', 'INFO'),
            file=cfg.get('file'),
            console=cfg.get('console', True),
            format=cfg.get('format', self.logging.format)
        )

    def _parse_monitoring(self) -> None:
        """Parse monitoring configuration"""
        cfg = self._raw_config.get('monitoring', {})
        self.monitoring = MonitoringConfig(
            slow_query_threshold_ms=cfg.get('slow_query_threshold_ms', 1000.0),
            warning_threshold_ms=cfg.get('warning_threshold_ms', 500.0)
        )

    def to_dict(self) -> Dict[str, Any]:
        """Export configuration as dictionary"""
        return {
            'matching': {
                'weights': self.matching.weights,
                'name_similarity_floor': self.matching.name_similarity_floor,
                'min_relevance_score': self.matching.min_relevance_score,
                'age_tolerance_years': self.matching.age_tolerance_years,
                'age_decay_years': self.matching.age_decay_years,
                'max_candidates': self.matching.max_candidates
            },
            'search': {
                'name_result_limit': self.search.name_result_limit,
                'nic_result_limit': self.search.nic_result_limit,
                'candidate_fetch_limit': self.search.candidate_fetch_limit,
                'min_query_length': self.search.min_query_length
            },
            'input_validation': {
                'name_min_length': self.input_validation.name_min_length,
                'name_max_length': self.input_validation.name_max_length
            },
            'logging': {
                'level': self.logging.level,
                'file': self.logging.file,
                'console': self.logging.console
            }
        }

    def _validate(self) -> None:
        """Validate configuration values"""
        weights = self.matching.weights
        missing = {'name', 'age', 'gender'} - set(weights)
        if missing:
            raise ConfigurationError(f"Matching weights missing keys: {sorted(missing)}")
        if any(w < 0 for w in weights.values()):
            raise ConfigurationError("Matching weights must be non-negative")
        if abs(sum(weights.values()) - 1.0) > 0.01:
            raise ConfigurationError(
                f"Matching weights must sum to 1.0 (got {sum(weights.values()):.2f})"
            )

        if not 0.0 <= self.matching.name_similarity_floor <= 1.0:
            raise ConfigurationError("name_similarity_floor must be between 0 and 1")
        if not 0.0 <= self.matching.min_relevance_score <= 100.0:
            raise ConfigurationError("min_relevance_score must be between 0 and 100")
        if self.matching.age_tolerance_years < 0 or self.matching.age_decay_years <= 0:
            raise ConfigurationError("age_tolerance_years must be >= 0 and age_decay_years > 0")

        for name in ('name_result_limit', 'nic_result_limit', 'candidate_fetch_limit'):
            if getattr(self.search, name) <= 0:
                raise ConfigurationError(f"search.{name} must be positive")
        if self.search.min_query_length < 1:
            raise ConfigurationError("search.min_query_length must be at least 1")
        if self.matching.max_candidates <= 0:
            raise ConfigurationError("matching.max_candidates must be positive")

        if not isinstance(logging.getLevelName(self.logging.level.upper()), int):
            raise ConfigurationError(f"Unknown logging level: {self.logging.level}")


def get_config(config_path: Optional[str] = None) -> ConfigManager:
    """Convenience function to load a configuration instance"""
    return ConfigManager(config_path)


def setup_logging(config: LoggingConfig) -> None:
    """Configure root logging from a LoggingConfig."""
    handlers = []
    if config.console:
        handlers.append(logging.StreamHandler())
    if config.file:
        log_path = Path(config.file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_path, encoding='utf-8'))

    logging.basicConfig(
        level=config.level.upper(),
        format=config.format,
        handlers=handlers or None,
        force=True
    )
