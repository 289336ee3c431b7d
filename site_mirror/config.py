"""
Модуль для загрузки и валидации конфигурации зеркалирования SiteMirror.
Используется Pydantic для описания схемы и проверки данных.
"""
from __future__ import annotations

import errno
import json
import os
from pathlib import Path
from typing import Any, Literal, Optional, Union
from urllib.parse import urlsplit

import yaml
from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    HttpUrl,
    ValidationError,
    field_validator,
)


class MirrorConfig(BaseModel):
    """Конфигурация для одного запуска зеркалирования."""
    model_config = ConfigDict(extra="forbid", frozen=True)

    base_url: HttpUrl = Field(..., description="Стартовый URL (seed).")
    max_depth: Optional[int] = Field(None, ge=0, description="Максимальная глубина обхода (None = без ограничения).")
    concurrency: int = Field(8, ge=1, le=25, description="Число одновременных загрузок.")
    output_dir: Path = Field(Path("."), description="Папка, в которой создаётся каталог сайта.")
    dwell_time: float = Field(3.0, ge=0, description="Ожидание динамических запросов после загрузки страницы (секунд).")
    recursive: bool = Field(False, description="Обходить найденные HTML-страницы.")
    use_index: bool = Field(False, description="Путь без расширения -> <path>/index.html вместо <path>.html.")
    sitemap: bool = Field(False, description="Создать sitemap.json.")
    log: bool = Field(False, description="Создать log.json с ошибками.")
    clean: bool = Field(False, description="Удалить папку сайта перед запуском.")
    timeout: float = Field(30.0, gt=0, description="Таймаут на один HTTP-запрос (секунд).")
    navigation_timeout: float = Field(30.0, gt=0, description="Таймаут загрузки страницы в браузере (секунд).")
    user_agent: str = Field("SiteMirror/0.1", min_length=1, description="Заголовок User-Agent.")
    renderer: Literal["browser", "static"] = Field("browser", description="Движок рендеринга страниц.")

    @field_validator("base_url", mode="before")
    def _require_http_scheme(cls, v: Any) -> Any:
        if isinstance(v, str) and not v.lower().startswith(("http://", "https://")):
            raise ValueError("URL должен начинаться с http:// или https://")
        return v

    @field_validator("output_dir", mode="before")
    def _expand_output_dir(cls, v: Any) -> Any:
        if isinstance(v, (str, Path)):
            return Path(v).expanduser()
        return v

    @property
    def seed_url(self) -> str:
        return str(self.base_url)

    @property
    def output_root(self) -> Path:
        """Каталог сайта: <output_dir>/<hostname>."""
        return self.output_dir / (urlsplit(self.seed_url).hostname or "site")


_DEFAULT_CFG = Path("configs/default.yaml")


def _read_yaml(path: Path) -> dict[str, Any]:
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:
        raise ValueError(f"Неправильный YAML в {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise TypeError(f"Верхний уровень YAML должен быть mapping, получено {type(data).__name__}")
    return data


def _read_json(path: Path) -> dict[str, Any]:
    try:
        data = json.loads(path.read_text(encoding="utf-8")) or {}
    except json.JSONDecodeError as exc:
        raise ValueError(f"Неправильный JSON в {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise TypeError(f"Верхний уровень JSON должен быть mapping, получено {type(data).__name__}")
    return data


def read_config_file(path: Union[str, Path, None]) -> dict[str, Any]:
    """
    Читает YAML или JSON и возвращает сырой словарь настроек без валидации.
    Нужен CLI, чтобы наложить параметры командной строки поверх файла.
    """
    if path is None:
        if not _DEFAULT_CFG.exists():
            raise FileNotFoundError(errno.ENOENT, os.strerror(errno.ENOENT), str(_DEFAULT_CFG))
        path_obj = _DEFAULT_CFG
    else:
        path_obj = Path(path).expanduser().resolve()
        if not path_obj.is_file():
            raise FileNotFoundError(errno.ENOENT, os.strerror(errno.ENOENT), str(path_obj))

    suffix = path_obj.suffix.lower()
    if suffix in (".yaml", ".yml"):
        return _read_yaml(path_obj)
    if suffix == ".json":
        return _read_json(path_obj)
    raise ValueError(f"Неподдерживаемый формат конфига: {suffix}")


def load_config(path: Union[str, Path, None], **overrides: Any) -> MirrorConfig:
    """
    Читает YAML или JSON и возвращает проверенный объект MirrorConfig.
    Значения из ``overrides`` (кроме None) имеют приоритет над файлом.
    При отсутствии файла конфига бросает FileNotFoundError.
    """
    data = read_config_file(path)
    data.update({k: v for k, v in overrides.items() if v is not None})
    try:
        return MirrorConfig(**data)
    except ValidationError:
        raise


__all__ = ["MirrorConfig", "load_config", "read_config_file"]
