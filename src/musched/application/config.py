from datetime import timedelta
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    TomlConfigSettingsSource,
)

from musched.domain import constants as c
from musched.domain.models import Grade

from .utils.text import parse_duration


def user_config_files() -> list[Path]:
    return [
        Path.home() / ".config/musched/config.toml",
        Path.home() / ".musched.toml",
    ]


GRADE_NAMES = ["fail", "hard", "okay", "good", "easy"]


class GradeTable(BaseModel):
    """One number per grade, e.g. the ease delta applied by each grade."""

    fail: float
    hard: float
    okay: float
    good: float
    easy: float

    @model_validator(mode="before")
    @classmethod
    def from_list(cls, v: Any) -> Any:
        # `score_modifiers = [1, 0.7, 1, 1.2, 1.4]`, ordered fail..easy
        if isinstance(v, (list, tuple)):
            if len(v) != len(GRADE_NAMES):
                raise ValueError(f"expected {len(GRADE_NAMES)} values (fail..easy), got {len(v)}")
            return dict(zip(GRADE_NAMES, v))
        return v

    def __getitem__(self, grade: Grade) -> float:
        return getattr(self, grade.name.lower())


def _grade_table(values: tuple[float, ...]) -> GradeTable:
    return GradeTable(**dict(zip(GRADE_NAMES, values)))


class SchedulingParams(BaseModel):
    """
    Tunable constants of the interval model and tag registry.

    Durations may be given as timedeltas or as `<int><unit>` strings
    (m, h, d, w, M, y), e.g. `learning_steps = ["10m", "1d", "3d"]`.
    """

    starting_ease: float = c.DEFAULT_EASE
    min_ease: float = Field(default=c.MIN_EASE, gt=0)
    max_ease: float | None = None
    ease_deltas: GradeTable = Field(default_factory=lambda: _grade_table(c.DEFAULT_EASE_DELTAS))
    score_modifiers: GradeTable = Field(
        default_factory=lambda: _grade_table(c.DEFAULT_SCORE_MODIFIERS)
    )
    # Indexed by priority - 1
    priority_modifiers: list[float] = Field(
        default_factory=lambda: list(c.DEFAULT_PRIORITY_MODIFIERS),
        min_length=c.MAX_PRIORITY,
        max_length=c.MAX_PRIORITY,
    )

    learning_steps: list[timedelta] = Field(
        default_factory=lambda: [timedelta(minutes=m) for m in c.DEFAULT_LEARNING_STEPS_MINUTES]
    )
    min_interval: timedelta = timedelta(minutes=c.MIN_INTERVAL_MINUTES)
    min_interval_increase: timedelta = timedelta(minutes=c.MIN_INTERVAL_INCREASE_MINUTES)
    max_interval: timedelta = timedelta(days=c.MAX_INTERVAL_DAYS)

    familiarity_rate: float = Field(default=c.FAMILIARITY_LEARNING_RATE, gt=0, le=1)
    familiarity_target_scale: float = Field(default=c.FAMILIARITY_TARGET_SCALE, ge=0)
    familiarity_multiplier_min: float = Field(default=c.FAMILIARITY_MULTIPLIER_MIN, gt=0)
    familiarity_multiplier_max: float = Field(default=c.FAMILIARITY_MULTIPLIER_MAX, gt=0)

    desired_retention_rate: float = Field(default=c.DESIRED_RETENTION_RATE, ge=0, le=1)
    retention_score_weight: float = Field(default=c.RETENTION_SCORE_WEIGHT, gt=0, le=1)

    new_cards_per_session: int | None = Field(default=None, ge=0)
    postpone_interval: timedelta = timedelta(minutes=c.POSTPONE_MINUTES)

    @field_validator(
        "min_interval", "min_interval_increase", "max_interval", "postpone_interval", mode="before"
    )
    @classmethod
    def parse_duration_string(cls, v: Any) -> Any:
        if isinstance(v, str):
            return parse_duration(v)
        return v

    @field_validator("priority_modifiers", mode="before")
    @classmethod
    def parse_modifier_string(cls, v: Any) -> Any:
        if isinstance(v, str):
            return [float(part) for part in v.split(",") if part.strip()]
        return v

    @field_validator("learning_steps", mode="before")
    @classmethod
    def parse_step_strings(cls, v: Any) -> Any:
        if isinstance(v, str):
            v = [part for part in v.split(",") if part.strip()]
        if isinstance(v, list):
            return [parse_duration(s) if isinstance(s, str) else s for s in v]
        return v

    @model_validator(mode="after")
    def check_consistency(self) -> "SchedulingParams":
        steps = self.learning_steps
        if len(steps) < 2:
            raise ValueError("learning_steps needs at least two steps")
        if any(s <= timedelta(0) for s in steps):
            raise ValueError("learning_steps must be positive")
        if any(b <= a for a, b in zip(steps, steps[1:])):
            raise ValueError("learning_steps must be strictly increasing")
        if self.max_ease is not None and self.max_ease < self.min_ease:
            raise ValueError("max_ease must not be below min_ease")
        if not self.min_ease <= self.starting_ease:
            raise ValueError("starting_ease must not be below min_ease")
        if self.familiarity_multiplier_min > self.familiarity_multiplier_max:
            raise ValueError("familiarity multiplier bounds are out of order")
        if any(m <= 0 for m in [*self.score_modifiers.model_dump().values(), *self.priority_modifiers]):
            raise ValueError("score and priority modifiers must be positive")
        if self.max_interval <= timedelta(0) or self.min_interval_increase < timedelta(0):
            raise ValueError("max_interval must be positive and min_interval_increase not negative")
        return self

    @property
    def interval_floor(self) -> timedelta:
        """No graded card is ever scheduled sooner than this."""
        return max(self.min_interval, self.learning_steps[0])

    @property
    def graduation_repetitions(self) -> int:
        """Consecutive non-fail grades that move a card off the learning ladder."""
        return len(self.learning_steps) - 1

    def priority_modifier(self, priority: int) -> float:
        return self.priority_modifiers[priority - c.MIN_PRIORITY]

    def clamp_ease(self, ease: float) -> float:
        ease = max(self.min_ease, ease)
        if self.max_ease is not None:
            ease = min(self.max_ease, ease)
        return ease


class AppConfig(BaseSettings):
    """
    Configuration model for musched.
    Supports loading from:
    1. Environment variables (MUSCHED_*, nested with __, e.g. MUSCHED_SCHEDULING__MIN_EASE)
    2. Deck config file (<deck>/.mu/config.toml)
    3. User config file (~/.config/musched/config.toml)
    4. Manual overrides (CLI)
    """

    model_config = SettingsConfigDict(
        env_prefix="MUSCHED_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    # Paths
    deck_root: Path | None = None
    state_dir_name: str = c.STATE_DIR_NAME
    card_suffixes: list[str] = Field(default_factory=lambda: list(c.DEFAULT_CARD_SUFFIXES))

    # Presentation
    viewer: str | None = None

    # Output
    verbose: int = 1

    scheduling: SchedulingParams = Field(default_factory=SchedulingParams)
    # Per-tag overrides of `scheduling`, e.g. [tag_settings.Theorem] with `inherit = "Definition"`
    tag_settings: dict[str, dict[str, Any]] = Field(default_factory=dict)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        # Find the first existing user config file
        toml_file = next((f for f in user_config_files() if f.exists()), None)

        if toml_file:
            return (
                init_settings,
                env_settings,
                TomlConfigSettingsSource(settings_cls, toml_file=toml_file),
            )
        return (
            init_settings,
            env_settings,
        )

    @field_validator("deck_root", mode="before")
    @classmethod
    def resolve_deck_root(cls, v: Any) -> Path | None:
        if v is None:
            return None
        return Path(v).expanduser().resolve()

    @field_validator("card_suffixes", mode="before")
    @classmethod
    def normalize_suffixes(cls, v: Any) -> Any:
        if isinstance(v, str):
            v = v.split(",")
        if isinstance(v, list):
            return [s if s.startswith(".") else f".{s}" for s in (x.strip() for x in v) if s]
        return v

    @model_validator(mode="after")
    def check_tag_settings(self) -> "AppConfig":
        self.tag_params()
        return self

    def tag_params(self) -> dict[str, SchedulingParams]:
        return resolve_tag_settings(self.scheduling, self.tag_settings)

    @property
    def state_dir(self) -> Path:
        if self.deck_root is None:
            raise ValueError("deck_root is not set; use resolve_config()")
        return self.deck_root / self.state_dir_name


def _merge(base: dict[str, Any], overrides: dict[str, Any]) -> dict[str, Any]:
    merged = dict(base)
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def resolve_tag_settings(
    base: SchedulingParams, sections: dict[str, dict[str, Any]]
) -> dict[str, SchedulingParams]:
    """
    Build the scheduling parameters of every tag settings section.

    A section starts from `base` (the deck-wide `scheduling` table), or from
    the section named by its `inherit` key, and overrides the keys it sets.

    Raises:
        ValueError: unknown key, unknown or cyclic `inherit`, or invalid values.
    """
    resolved: dict[str, SchedulingParams] = {}

    def resolve(tag: str, chain: list[str]) -> SchedulingParams:
        if tag in resolved:
            return resolved[tag]
        if tag in chain:
            raise ValueError(f"tag settings inherit in a cycle: {' -> '.join([*chain, tag])}")
        if tag not in sections:
            raise ValueError(f"tag settings '{chain[-1]}' inherit unknown section '{tag}'")

        overrides = dict(sections[tag])
        parent = overrides.pop(c.INHERIT_KEY, None)
        unknown = sorted(set(overrides) - set(SchedulingParams.model_fields))
        if unknown:
            raise ValueError(f"tag settings '{tag}': unknown keys {', '.join(unknown)}")

        start = resolve(str(parent), [*chain, tag]) if parent is not None else base
        try:
            resolved[tag] = SchedulingParams(**_merge(start.model_dump(), overrides))
        except ValidationError as e:
            raise ValueError(f"tag settings '{tag}': {e}") from e
        return resolved[tag]

    for tag in sections:
        resolve(tag, [])
    return resolved


def resolve_config(
    deck_root: Path | None = None, cli_overrides: dict[str, Any] | None = None
) -> AppConfig:
    """
    Multi-layered configuration resolution.
    1. Defaults in AppConfig
    2. ~/.config/musched/config.toml (if exists)
    3. Environment variables (MUSCHED_*)
       (deck_root comes from the argument, else from 2-3, else CWD)
    4. <deck>/.mu/config.toml (if exists)
    5. cli_overrides (passed from Typer)
    """
    overrides = {k: v for k, v in (cli_overrides or {}).items() if v is not None}

    if deck_root:
        root = Path(deck_root)
    else:
        root = AppConfig(**overrides).deck_root or Path.cwd()
    state_dir_name = overrides.get("state_dir_name", c.STATE_DIR_NAME)
    deck_file = root / state_dir_name / c.CONFIG_FILE

    values: dict[str, Any] = {}
    if deck_file.is_file():
        values = TomlConfigSettingsSource(AppConfig, toml_file=deck_file)()

    values = _merge(values, overrides)
    values["deck_root"] = root
    return AppConfig(**values)
