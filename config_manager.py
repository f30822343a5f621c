"""
Configuration Management Module
Loads and validates configuration from config.yaml
"""

import yaml
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Any, Optional, List

logger = logging.getLogger(__name__)

LIST_TYPES = ('sanctions', 'pep', 'adverse_media')


@dataclass
class MatchingConfig:
    """Matching configuration parameters"""
    default_threshold: float = 0.7
    name_floor: float = 0.3
    weights: Dict[str, float] = field(default_factory=lambda: {
        'dob': 0.15,
        'country': 0.10
    })
    dob_boosts: Dict[str, float] = field(default_factory=lambda: {
        'exact': 1.0,
        'partial': 0.5,
        'year_only': 0.2,
        'none': 0.0
    })
    similarity_weights: Dict[str, float] = field(default_factory=lambda: {
        'levenshtein': 0.25,
        'jaro_winkler': 0.35,
        'token': 0.40
    })
    token_match_threshold: float = 0.85
    phonetic_bonus: float = 0.05

    @property
    def max_boost_multiplier(self) -> float:
        """Largest factor DOB and country evidence can apply to a name score"""
        return 1 + self.weights['dob'] * self.dob_boosts['exact'] + self.weights['country']


@dataclass
class RetrievalConfig:
    """Candidate retrieval (blocking) configuration"""
    blocking_enabled: bool = True
    exhaustive_limit: int = 500


@dataclass
class ListInfo:
    """A watchlist known to the catalogue"""
    code: str
    name: str
    list_type: str


def _default_catalogue() -> Dict[str, ListInfo]:
    return {
        'ofac': ListInfo('ofac', 'OFAC SDN', 'sanctions'),
        'eu': ListInfo('eu', 'EU Sanctions', 'sanctions'),
        'uk': ListInfo('uk', 'UK HMT Sanctions', 'sanctions'),
        'un': ListInfo('un', 'UN Sanctions', 'sanctions'),
        'pep': ListInfo('pep', 'PEP List', 'pep'),
        'adverse_media': ListInfo('adverse_media', 'Adverse Media', 'adverse_media'),
    }


@dataclass
class ListsConfig:
    """Watchlist catalogue and default selection"""
    catalogue: Dict[str, ListInfo] = field(default_factory=_default_catalogue)
    default_lists: List[str] = field(default_factory=lambda: ['ofac', 'eu', 'uk', 'un'])


@dataclass
class DataConfig:
    """Watchlist data source configuration"""
    data_directory: str = "watchlist_data"
    malformed_entity_threshold: float = 1.0


@dataclass
class ValidationConfig:
    """Validation configuration"""
    log_validation_errors: bool = True
    abort_on_high_malformation: bool = True


@dataclass
class InputValidationConfig:
    """Input validation configuration for user-provided data"""
    name_min_length: int = 1
    name_max_length: int = 200
    allow_unicode_names: bool = True
    blocked_characters: str = "<>{}[]|\\;`$"
    max_batch_size: int = 10000


@dataclass
class LoggingConfig:
    """Logging configuration"""
    level: str = "INFO"
    file: str = "logs/screening.log"
    console: bool = True
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


@dataclass
class PerformanceConfig:
    """Performance configuration"""
    concurrent_searches: bool = True
    max_threads: int = 4


@dataclass
class AlgorithmConfig:
    """Algorithm version information"""
    version: str = "1.0.0"
    name: str = "Composite Name Matcher"
    last_updated: str = "2026-10-01"


@dataclass
class DatabaseConfig:
    """Database configuration"""
    host: str = "localhost"
    port: int = 5432
    user: str = "watchlist_user"
    password: str = "watchlist_password"
    name: str = "watchlist_screening"


class ConfigurationError(Exception):
    """Raised when configuration is invalid"""
    pass


class ConfigManager:
    """Manages system configuration"""

    _instance: Optional['ConfigManager'] = None

    def __init__(self, config_path: Optional[str] = None):
        """Initialize configuration manager

        Args:
            config_path: Path to config.yaml file
        """
        self.config_path = Path(config_path) if config_path else self._find_config()
        self._raw_config: Dict[str, Any] = {}
        self.matching: MatchingConfig = MatchingConfig()
        self.retrieval: RetrievalConfig = RetrievalConfig()
        self.lists: ListsConfig = ListsConfig()
        self.data: DataConfig = DataConfig()
        self.validation: ValidationConfig = ValidationConfig()
        self.input_validation: InputValidationConfig = InputValidationConfig()
        self.logging: LoggingConfig = LoggingConfig()
        self.performance: PerformanceConfig = PerformanceConfig()
        self.algorithm: AlgorithmConfig = AlgorithmConfig()
        self.database: DatabaseConfig = DatabaseConfig()

        if self.config_path and self.config_path.exists():
            self.load()
        else:
            logger.warning(f"Config file not found at {self.config_path}, using defaults")

    def _find_config(self) -> Path:
        """Find config.yaml in common locations"""
        search_paths = [
            Path(__file__).parent / "config.yaml",
            Path.cwd() / "config.yaml",
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
        self._parse_retrieval()
        self._parse_lists()
        self._parse_data()
        self._parse_validation()
        self._parse_input_validation()
        self._parse_logging()
        self._parse_performance()
        self._parse_algorithm()
        self._parse_database()
        self._validate()

    def _parse_matching(self) -> None:
        """Parse matching configuration"""
        cfg = self._raw_config.get('matching', {})
        defaults = MatchingConfig()

        # Partial dicts in YAML override individual keys only
        weights = dict(defaults.weights, **cfg.get('weights', {}))
        dob_boosts = dict(defaults.dob_boosts, **cfg.get('dob_boosts', {}))
        similarity_weights = dict(defaults.similarity_weights, **cfg.get('similarity_weights', {}))

        self.matching = MatchingConfig(
            default_threshold=cfg.get('default_threshold', defaults.default_threshold),
            name_floor=cfg.get('name_floor', defaults.name_floor),
            weights=weights,
            dob_boosts=dob_boosts,
            similarity_weights=similarity_weights,
            token_match_threshold=cfg.get('token_match_threshold', defaults.token_match_threshold),
            phonetic_bonus=cfg.get('phonetic_bonus', defaults.phonetic_bonus)
        )

    def _parse_retrieval(self) -> None:
        """Parse candidate retrieval configuration"""
        cfg = self._raw_config.get('retrieval', {})
        self.retrieval = RetrievalConfig(
            blocking_enabled=cfg.get('blocking_enabled', True),
            exhaustive_limit=cfg.get('exhaustive_limit', 500)
        )

    def _parse_lists(self) -> None:
        """Parse the watchlist catalogue"""
        cfg = self._raw_config.get('lists', {})
        catalogue = _default_catalogue()

        for code, info in (cfg.get('catalogue') or {}).items():
            code = str(code).lower()
            info = info or {}
            existing = catalogue.get(code)
            catalogue[code] = ListInfo(
                code=code,
                name=info.get('name', existing.name if existing else code.upper()),
                list_type=info.get('list_type', existing.list_type if existing else 'sanctions')
            )

        self.lists = ListsConfig(
            catalogue=catalogue,
            default_lists=[str(c).lower() for c in cfg.get('default_lists', self.lists.default_lists)]
        )

    def _parse_data(self) -> None:
        """Parse data configuration"""
        cfg = self._raw_config.get('data', {})
        self.data = DataConfig(
            data_directory=cfg.get('data_directory', 'watchlist_data'),
            malformed_entity_threshold=cfg.get('malformed_entity_threshold', 1.0)
        )

    def _parse_validation(self) -> None:
        """Parse validation configuration"""
        cfg = self._raw_config.get('validation', {})
        self.validation = ValidationConfig(
            log_validation_errors=cfg.get('log_validation_errors', True),
            abort_on_high_malformation=cfg.get('abort_on_high_malformation', True)
        )

    def _parse_input_validation(self) -> None:
        """Parse input validation configuration"""
        cfg = self._raw_config.get('input_validation', {})
        self.input_validation = InputValidationConfig(
            name_min_length=cfg.get('name_min_length', 1),
            name_max_length=cfg.get('name_max_length', 200),
            allow_unicode_names=cfg.get('allow_unicode_names', True),
            blocked_characters=cfg.get('blocked_characters', "<>{}[]|\\;`$"),
            max_batch_size=cfg.get('max_batch_size', 10000)
        )

    def _parse_logging(self) -> None:
        """Parse logging configuration"""
        cfg = self._raw_config.get('logging', {})
        self.logging = LoggingConfig(
            level=cfg.get('level', 'INFO'),
            file=cfg.get('file', 'logs/screening.log'),
            console=cfg.get('console', True),
            format=cfg.get('format', self.logging.format)
        )

    def _parse_performance(self) -> None:
        """Parse performance configuration"""
        cfg = self._raw_config.get('performance', {})
        self.performance = PerformanceConfig(
            concurrent_searches=cfg.get('concurrent_searches', True),
            max_threads=cfg.get('max_threads', 4)
        )

    def _parse_algorithm(self) -> None:
        """Parse algorithm configuration"""
        cfg = self._raw_config.get('algorithm', {})
        self.algorithm = AlgorithmConfig(
            version=cfg.get('version', self.algorithm.version),
            name=cfg.get('name', self.algorithm.name),
            last_updated=cfg.get('last_updated', self.algorithm.last_updated)
        )

    def _parse_database(self) -> None:
        """Parse database configuration"""
        cfg = self._raw_config.get('database', {})
        self.database = DatabaseConfig(
            host=cfg.get('host', self.database.host),
            port=cfg.get('port', self.database.port),
            user=cfg.get('user', self.database.user),
            password=cfg.get('password', self.database.password),
            name=cfg.get('name', self.database.name)
        )

    @classmethod
    def get_instance(cls, config_path: Optional[str] = None) -> 'ConfigManager':
        """Get singleton instance of ConfigManager"""
        if cls._instance is None:
            cls._instance = ConfigManager(config_path)
        return cls._instance

    @classmethod
    def reset_instance(cls) -> None:
        """Reset singleton instance (useful for testing)"""
        cls._instance = None

    def to_dict(self) -> Dict[str, Any]:
        """Export configuration as dictionary"""
        return {
            'matching': {
                'default_threshold': self.matching.default_threshold,
                'name_floor': self.matching.name_floor,
                'weights': self.matching.weights,
                'dob_boosts': self.matching.dob_boosts,
                'similarity_weights': self.matching.similarity_weights,
                'token_match_threshold': self.matching.token_match_threshold,
                'phonetic_bonus': self.matching.phonetic_bonus
            },
            'retrieval': {
                'blocking_enabled': self.retrieval.blocking_enabled,
                'exhaustive_limit': self.retrieval.exhaustive_limit
            },
            'lists': {
                'catalogue': {
                    code: {'name': info.name, 'list_type': info.list_type}
                    for code, info in self.lists.catalogue.items()
                },
                'default_lists': list(self.lists.default_lists)
            },
            'data': {
                'data_directory': self.data.data_directory,
                'malformed_entity_threshold': self.data.malformed_entity_threshold
            },
            'algorithm': {
                'version': self.algorithm.version,
                'name': self.algorithm.name,
                'last_updated': self.algorithm.last_updated
            }
        }

    def _validate(self) -> None:
        """Validate configuration values

        Raises:
            ConfigurationError: On the first invalid value found
        """
        m = self.matching

        for key in ('default_threshold', 'name_floor', 'token_match_threshold', 'phonetic_bonus'):
            value = getattr(m, key)
            if not isinstance(value, (int, float)) or not 0.0 <= value <= 1.0:
                raise ConfigurationError(f"matching.{key} must be between 0 and 1, got {value!r}")

        for section, values in (('weights', m.weights), ('dob_boosts', m.dob_boosts),
                                ('similarity_weights', m.similarity_weights)):
            for key, value in values.items():
                if not isinstance(value, (int, float)) or not 0.0 <= value <= 1.0:
                    raise ConfigurationError(f"matching.{section}.{key} must be between 0 and 1, got {value!r}")

        total = sum(m.similarity_weights.values())
        if abs(total - 1.0) > 0.01:
            raise ConfigurationError(f"matching.similarity_weights must sum to 1.0, got {total:.2f}")

        boosts = m.dob_boosts
        if not boosts['exact'] >= boosts['partial'] >= boosts['year_only'] >= boosts['none'] >= 0:
            raise ConfigurationError(
                "matching.dob_boosts must satisfy exact >= partial >= year_only >= none >= 0"
            )

        for code, info in self.lists.catalogue.items():
            if info.list_type not in LIST_TYPES:
                raise ConfigurationError(f"List '{code}' has unknown list_type '{info.list_type}'")

        if not self.lists.default_lists:
            raise ConfigurationError("lists.default_lists must not be empty")
        unknown = [c for c in self.lists.default_lists if c not in self.lists.catalogue]
        if unknown:
            raise ConfigurationError(f"lists.default_lists references unknown lists: {unknown}")

        if self.performance.max_threads < 1:
            raise ConfigurationError("performance.max_threads must be at least 1")
        if self.retrieval.exhaustive_limit < 0:
            raise ConfigurationError("retrieval.exhaustive_limit must not be negative")
        if self.input_validation.max_batch_size < 1:
            raise ConfigurationError("input_validation.max_batch_size must be at least 1")
        if self.input_validation.name_max_length < self.input_validation.name_min_length:
            raise ConfigurationError("input_validation.name_max_length is below name_min_length")


def get_config(config_path: Optional[str] = None) -> ConfigManager:
    """Convenience function to get configuration instance"""
    return ConfigManager.get_instance(config_path)
