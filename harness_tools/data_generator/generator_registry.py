"""
================================================================================
Test Data Generator Registry
================================================================================

Named random-value generators plus per-type blueprints for building request
payloads in tests.

Features:
- Built-in generators (strings, emails, phones, numbers, dates, UUIDs, URLs)
- Custom generators registered by name
- Blueprints mapping field names to generators, optionally built into a
  dataclass or any other factory callable
- Seedable for reproducible data

Usage:
    registry = GeneratorRegistry(seed=42)
    registry.define("user", {
        "email": "random_email",
        "age": ("random_int", {"min_value": 18, "max_value": 90}),
    })
    payload = registry.generate("user", age=30)

================================================================================
"""

import random
import string
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, Union

from loguru import logger


# Blueprint field: a generator name, a (name, kwargs) pair, or a constant
FieldSpec = Union[str, Tuple[str, Dict[str, Any]], Any]


class GeneratorError(Exception):
    """Raised for unknown generators, blueprints or bad arguments."""
    pass


@dataclass
class Blueprint:
    """Field recipe for one named target type."""
    type_name: str
    fields: Dict[str, FieldSpec]
    factory: Optional[Callable[..., Any]] = None


class GeneratorRegistry:
    """
    Registry of named generators and type blueprints.

    Every generator receives the registry's `random.Random` instance as its
    first argument so a seeded registry always yields the same sequence.
    """

    LETTERS = string.ascii_letters
    SPECIAL_CHARS = "!@#$%^&*()_+-=[]{}|;:,.<>?"

    def __init__(self, seed: Optional[int] = None):
        self._rng = random.Random(seed)
        self._generators: Dict[str, Callable[..., Any]] = {}
        self._blueprints: Dict[str, Blueprint] = {}
        self._register_builtins()

    # -------------------------------------------------------------------------
    # Registration
    # -------------------------------------------------------------------------

    def register_generator(self, name: str, generator: Callable[..., Any]) -> None:
        """
        Register a generator under `name`.

        Args:
            name: Generator name used in blueprints
            generator: Callable taking (rng, **kwargs)
        """
        if not name:
            raise GeneratorError("Generator name must not be empty")
        if name in self._generators:
            logger.debug(f"Replacing generator: {name}")
        self._generators[name] = generator

    def define(
        self,
        type_name: str,
        blueprint: Dict[str, FieldSpec],
        factory: Optional[Callable[..., Any]] = None,
    ) -> Blueprint:
        """
        Define how to build `type_name`.

        Args:
            type_name: Name passed to generate()
            blueprint: Field name to generator spec
            factory: Optional callable receiving the fields as keyword arguments
        """
        for field_name, spec in blueprint.items():
            name = self._spec_name(spec)
            if name is not None and name not in self._generators:
                raise GeneratorError(
                    f"Unknown generator {name!r} for field {type_name}.{field_name}"
                )
        definition = Blueprint(type_name=type_name, fields=dict(blueprint), factory=factory)
        self._blueprints[type_name] = definition
        return definition

    @property
    def generator_names(self) -> List[str]:
        return sorted(self._generators)

    @property
    def type_names(self) -> List[str]:
        return sorted(self._blueprints)

    # -------------------------------------------------------------------------
    # Generation
    # -------------------------------------------------------------------------

    def value(self, generator_name: str, **kwargs: Any) -> Any:
        """Produce one value from a named generator."""
        generator = self._generators.get(generator_name)
        if generator is None:
            raise GeneratorError(f"Unknown generator: {generator_name}")
        try:
            return generator(self._rng, **kwargs)
        except TypeError as e:
            raise GeneratorError(f"Bad arguments for {generator_name}: {e}") from e

    def generate(self, type_name: str, **overrides: Any) -> Any:
        """
        Build one instance of `type_name`.

        Overrides replace generated fields (or add new ones) before the
        factory is called.
        """
        definition = self._blueprints.get(type_name)
        if definition is None:
            raise GeneratorError(f"No blueprint defined for: {type_name}")

        data: Dict[str, Any] = {}
        for field_name, spec in definition.fields.items():
            if field_name in overrides:
                continue
            data[field_name] = self._resolve(spec)
        data.update(overrides)

        if definition.factory is not None:
            return definition.factory(**data)
        return data

    def generate_many(self, type_name: str, count: int, **overrides: Any) -> List[Any]:
        if count < 0:
            raise GeneratorError(f"count must be >= 0, got {count}")
        return [self.generate(type_name, **overrides) for _ in range(count)]

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    @staticmethod
    def _spec_name(spec: FieldSpec) -> Optional[str]:
        if isinstance(spec, str):
            return spec
        if isinstance(spec, tuple) and len(spec) == 2 and isinstance(spec[0], str) \
                and isinstance(spec[1], dict):
            return spec[0]
        return None

    def _resolve(self, spec: FieldSpec) -> Any:
        name = self._spec_name(spec)
        if name is None:
            # Constants are copied through untouched
            return spec
        kwargs = spec[1] if isinstance(spec, tuple) else {}
        return self.value(name, **kwargs)

    def _register_builtins(self) -> None:
        self.register_generator("random_string", random_string)
        self.register_generator("random_email", random_email)
        self.register_generator("random_phone", random_phone)
        self.register_generator("random_int", random_int)
        self.register_generator("random_decimal", random_decimal)
        self.register_generator("random_date", random_date)
        self.register_generator("random_bool", random_bool)
        self.register_generator("random_choice", random_choice)
        self.register_generator("uuid", random_uuid)
        self.register_generator("random_url", random_url)


# ================================================================================
# Built-in Generators
# ================================================================================

def random_string(
    rng: random.Random,
    length: int = 10,
    include_numbers: bool = True,
    include_special_chars: bool = False,
) -> str:
    """Random string of letters, optionally with digits and symbols."""
    chars = GeneratorRegistry.LETTERS
    if include_numbers:
        chars += string.digits
    if include_special_chars:
        chars += GeneratorRegistry.SPECIAL_CHARS
    return "".join(rng.choice(chars) for _ in range(length))


def random_email(rng: random.Random, domain: str = "example.com") -> str:
    username = random_string(rng, 8).lower()
    return f"{username}@{domain}"


def random_phone(rng: random.Random, format: str = "(###) ###-####") -> str:
    """Replace every '#' in `format` with a digit."""
    return "".join(str(rng.randint(0, 9)) if ch == "#" else ch for ch in format)


def random_int(rng: random.Random, min_value: int = 0, max_value: int = 100) -> int:
    """Integer in [min_value, max_value)."""
    if max_value <= min_value:
        raise GeneratorError(f"max_value must be > min_value ({min_value}, {max_value})")
    return rng.randrange(min_value, max_value)


def random_decimal(
    rng: random.Random,
    min_value: float = 0,
    max_value: float = 100,
    decimals: int = 2,
) -> Decimal:
    raw = Decimal(str(rng.uniform(float(min_value), float(max_value))))
    return raw.quantize(Decimal(1).scaleb(-decimals), rounding=ROUND_HALF_UP)


def random_date(
    rng: random.Random,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
) -> datetime:
    """Whole-day date between `start` (default one year ago) and `end` (today)."""
    end = end or datetime.now().replace(hour=0, minute=0, second=0, microsecond=0)
    start = start or end - timedelta(days=365)
    span = (end - start).days
    if span < 0:
        raise GeneratorError("start must not be after end")
    return start + timedelta(days=rng.randint(0, span))


def random_bool(rng: random.Random) -> bool:
    return rng.random() < 0.5


def random_choice(rng: random.Random, options: Sequence[Any] = ()) -> Any:
    if not options:
        raise GeneratorError("options must not be empty")
    return rng.choice(list(options))


def random_uuid(rng: random.Random) -> str:
    return str(uuid.UUID(int=rng.getrandbits(128), version=4))


def random_url(rng: random.Random, scheme: str = "https", domain: str = "example.com") -> str:
    path = random_string(rng, 10, include_numbers=False).lower()
    return f"{scheme}://{domain}/{path}"


__all__ = [
    "Blueprint",
    "FieldSpec",
    "GeneratorError",
    "GeneratorRegistry",
    "random_bool",
    "random_choice",
    "random_date",
    "random_decimal",
    "random_email",
    "random_int",
    "random_phone",
    "random_string",
    "random_url",
    "random_uuid",
]
