"""Module de configuration du moteur de classification et d'extraction."""

import logging
import os
from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, Field, field_validator

from .models import DocumentType

logger = logging.getLogger(__name__)


class VLMConfig(BaseModel):
    """Configuration du modèle vision-langage (classification)."""

    project_id: str = Field(default="")
    location: str = Field(default="europe-west1")
    model_name: str = Field(default="gemini-1.5-flash")
    credentials_path: Optional[str] = None
    use_mock: bool = Field(default=True)
    concurrent_inference: bool = Field(default=False)


class TextLLMConfig(BaseModel):
    """Configuration du modèle texte (extraction)."""

    project_id: str = Field(default="")
    location: str = Field(default="europe-west1")
    model_name: str = Field(default="gemini-1.5-flash")
    credentials_path: Optional[str] = None
    use_mock: bool = Field(default=True)
    max_tokens: int = Field(default=256, gt=0)
    temperature: float = Field(default=0.1, ge=0.0, le=2.0)
    concurrent_inference: bool = Field(default=False)
    date_fallback: bool = Field(default=False)


class OrchestrationConfig(BaseModel):
    """Politique de timeout et de retry de l'orchestrateur."""

    timeout_seconds: float = Field(default=30.0, gt=0)
    max_retries: int = Field(default=2, ge=0)
    retry_delay_seconds: float = Field(default=0.0, ge=0)
    document_types: list[DocumentType] = Field(
        default_factory=lambda: list(DocumentType), min_length=1
    )
    max_concurrent_documents: int = Field(default=1, ge=1)

    @field_validator("document_types")
    @classmethod
    def validate_document_types(cls, v: list[DocumentType]) -> list[DocumentType]:
        if len(set(v)) != len(v):
            raise ValueError("document_types must not contain duplicates")
        return v


class LoggingConfig(BaseModel):
    """Configuration logging."""

    level: str = Field(default="INFO")
    format: str = Field(default="%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    file: Optional[str] = Field(default=None)


class Config(BaseModel):
    """Configuration principale."""

    vlm: VLMConfig = Field(default_factory=VLMConfig)
    text_llm: TextLLMConfig = Field(default_factory=TextLLMConfig)
    orchestration: OrchestrationConfig = Field(default_factory=OrchestrationConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


def find_config_file() -> Optional[Path]:
    """Recherche le fichier de configuration dans les emplacements standards."""
    search_paths = [
        Path.cwd() / "config.yaml",
        Path.cwd() / "config.yml",
        Path.home() / ".config" / "docscan" / "config.yaml",
    ]

    for path in search_paths:
        if path.exists():
            return path

    return None


def load_config(config_path: Optional[str | Path] = None) -> Config:
    """
    Charge la configuration depuis un fichier YAML.

    Args:
        config_path: Chemin vers le fichier de configuration.
                    Si None, recherche automatiquement.

    Returns:
        Config: Instance de configuration.

    Raises:
        FileNotFoundError: Si le fichier explicitement demandé n'existe pas.
        pydantic.ValidationError: Si une valeur est hors des bornes admises.
    """
    if config_path is None:
        config_path = find_config_file()

    if config_path is None:
        logger.warning("Aucun fichier de configuration trouvé, utilisation des valeurs par défaut")
        return Config()

    config_path = Path(config_path)

    if not config_path.exists():
        raise FileNotFoundError(f"Fichier de configuration non trouvé: {config_path}")

    logger.info(f"Chargement de la configuration depuis {config_path}")

    with open(config_path, "r", encoding="utf-8") as f:
        config_data = yaml.safe_load(f)

    if config_data is None:
        config_data = {}

    config_data = _substitute_env_vars(config_data)

    return Config(**config_data)


def _substitute_env_vars(config: dict) -> dict:
    """
    Substitue les variables d'environnement dans la configuration.

    Supporte la syntaxe ${VAR_NAME} ou ${VAR_NAME:default_value}
    """
    result = {}
    for key, value in config.items():
        if isinstance(value, dict):
            result[key] = _substitute_env_vars(value)
        elif isinstance(value, str) and value.startswith("${") and value.endswith("}"):
            var_expr = value[2:-1]
            if ":" in var_expr:
                var_name, default = var_expr.split(":", 1)
            else:
                var_name, default = var_expr, None
            result[key] = os.environ.get(var_name, default)
        elif isinstance(value, list):
            result[key] = [
                _substitute_env_vars(item) if isinstance(item, dict) else item
                for item in value
            ]
        else:
            result[key] = value
    return result


def setup_logging(config: Config) -> None:
    """Configure le logging selon la configuration."""
    log_config = config.logging

    if log_config.file:
        Path(log_config.file).parent.mkdir(parents=True, exist_ok=True)

    handlers: list[logging.Handler] = [logging.StreamHandler()]

    if log_config.file:
        handlers.append(logging.FileHandler(log_config.file, encoding="utf-8"))

    logging.basicConfig(
        level=getattr(logging, log_config.level.upper()),
        format=log_config.format,
        handlers=handlers,
        force=True,
    )

    logger.info("Logging configuré")


# Instance de configuration du processus (lazy loading)
_config: Optional[Config] = None


def get_config() -> Config:
    """Retourne la configuration du processus, chargée au premier appel."""
    global _config
    if _config is None:
        _config = load_config()
        setup_logging(_config)
    return _config


def reset_config() -> None:
    """Réinitialise la configuration du processus (utile pour les tests)."""
    global _config
    _config = None
