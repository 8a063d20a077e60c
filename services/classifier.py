"""Guess which water-quality parameter a sensor measures from its metadata."""

from __future__ import annotations

from typing import Callable, List, Tuple

from models.records import ParameterType, SensorMeta

Rule = Tuple[Callable[[str, str, str], bool], ParameterType]

_KEYWORDS: List[Tuple[ParameterType, Tuple[str, ...]]] = [
    (ParameterType.ph, ("ph", "potencial", "hidrogeno", "hidrógeno")),
    (ParameterType.temperature, ("temp", "temperatura")),
    (ParameterType.oxygen, ("ox", "oxígeno", "oxigeno", "oxygen", "o2")),
    (ParameterType.salinity, ("sal", "salinidad")),
    (ParameterType.turbidity, ("turb", "turbidez")),
    (ParameterType.nitrates, ("nitrat", "nitrato")),
    (ParameterType.ammonia, ("amon", "ammo", "amoniaco", "amoníaco")),
    (ParameterType.barometric, ("baro", "presión", "presion")),
]


def _contains_any(text: str, words: Tuple[str, ...]) -> bool:
    return any(word in text for word in words)


def _type_rule(words: Tuple[str, ...]) -> Callable[[str, str, str], bool]:
    return lambda kind, _unit, _name: _contains_any(kind, words)


def _name_rule(words: Tuple[str, ...]) -> Callable[[str, str, str], bool]:
    return lambda _kind, _unit, name: _contains_any(name, words)


def _is_celsius(unit: str) -> bool:
    return "°c" in unit or unit == "c" or unit.endswith(" c")


# Evaluated in order: the sensor's type field first, then its unit, then its name.
RULES: List[Rule] = (
    [(_type_rule(words), parameter) for parameter, words in _KEYWORDS]
    + [
        (lambda _k, unit, _n: "ph" in unit, ParameterType.ph),
        (lambda _k, unit, _n: _is_celsius(unit), ParameterType.temperature),
        (
            lambda kind, unit, name: "mg/l" in unit
            and ("ox" in name or "o2" in name or "ox" in kind),
            ParameterType.oxygen,
        ),
        (lambda _k, unit, _n: "ppt" in unit, ParameterType.salinity),
        (lambda _k, unit, _n: "ntu" in unit, ParameterType.turbidity),
        (lambda _k, unit, _n: "hpa" in unit, ParameterType.barometric),
    ]
    + [(_name_rule(words), parameter) for parameter, words in _KEYWORDS]
)


def classify(kind: str = "", unit: str = "", name: str = "") -> ParameterType:
    normalized = (kind.strip().lower(), unit.strip().lower(), name.strip().lower())
    for predicate, parameter in RULES:
        if predicate(*normalized):
            return parameter
    return ParameterType.other


def classify_sensor(sensor: SensorMeta) -> ParameterType:
    return classify(kind=sensor.type, unit=sensor.unit, name=sensor.name)
