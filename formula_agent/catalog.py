"""
Ingredient Catalog — the approved ingredient list and its dosage rules.

The catalog CSV is the single source of truth for what the agent may put in
a formula. It is read once with pandas at process start, validated into
IngredientRule values and frozen. Nothing in the engine mutates it, so a
single instance is shared by every concurrent validation.

Source: data/ingredient_catalog.csv
Columns: canonical_name, category, dose_kind, fixed_dose_mg, min_dose_mg,
         max_dose_mg, priority_weight, aliases (pipe-separated)

Name resolution is exact after normalization (casefold + whitespace
collapse): canonical names first, then aliases. There is no substring or
fuzzy matching. An alias registered by two different ingredients resolves
to nothing rather than to a guess.
"""

import logging
import os
from pathlib import Path
from types import MappingProxyType
from typing import Iterable, Iterator, Optional

import pandas as pd

from formula_agent.models import FixedDose, IngredientRule, RangedDose

logger = logging.getLogger(__name__)

_DATA_DIR = Path(__file__).resolve().parent.parent / "data"
DEFAULT_CATALOG_PATH = _DATA_DIR / "ingredient_catalog.csv"

REQUIRED_COLUMNS = [
    "canonical_name",
    "category",
    "dose_kind",
    "fixed_dose_mg",
    "min_dose_mg",
    "max_dose_mg",
    "priority_weight",
    "aliases",
]


def normalize_name(name: str) -> str:
    """Casefold and collapse whitespace: '  Ginger\\tRoot ' → 'ginger root'."""
    return " ".join(str(name).split()).casefold()


class IngredientCatalog:
    """Read-only lookup of IngredientRule by canonical name or alias."""

    def __init__(self, rules: Iterable[IngredientRule]):
        by_name: dict[str, IngredientRule] = {}
        for rule in rules:
            key = normalize_name(rule.canonical_name)
            if key in by_name:
                raise ValueError(f"Duplicate catalog ingredient: {rule.canonical_name}")
            by_name[key] = rule

        by_alias: dict[str, IngredientRule] = {}
        ambiguous: set[str] = set()
        for rule in by_name.values():
            for alias in rule.aliases:
                key = normalize_name(alias)
                if not key or key in by_name:
                    continue  # canonical names always win
                other = by_alias.get(key)
                if other is not None and other.canonical_name != rule.canonical_name:
                    ambiguous.add(key)
                by_alias[key] = rule

        for key in ambiguous:
            logger.warning("Catalog alias '%s' is claimed by more than one ingredient; it will not resolve", key)
            del by_alias[key]

        self._by_name = MappingProxyType(by_name)
        self._by_alias = MappingProxyType(by_alias)
        self._ambiguous = frozenset(ambiguous)

    @classmethod
    def from_rules(cls, rules: Iterable[IngredientRule]) -> "IngredientCatalog":
        return cls(rules)

    def resolve(self, raw_name: str) -> Optional[IngredientRule]:
        """Return the rule for raw_name, or None if it is unknown or ambiguous."""
        key = normalize_name(raw_name)
        if not key:
            return None
        rule = self._by_name.get(key)
        if rule is not None:
            return rule
        return self._by_alias.get(key)

    def get(self, canonical_name: str) -> Optional[IngredientRule]:
        return self._by_name.get(normalize_name(canonical_name))

    @property
    def names(self) -> list[str]:
        return sorted(rule.canonical_name for rule in self._by_name.values())

    def __iter__(self) -> Iterator[IngredientRule]:
        return iter(sorted(self._by_name.values(), key=lambda r: (r.category, r.canonical_name)))

    def __len__(self) -> int:
        return len(self._by_name)

    def __contains__(self, raw_name: object) -> bool:
        return isinstance(raw_name, str) and self.resolve(raw_name) is not None


# ── Loading ─────────────────────────────────────────────────────────────────


def _optional_float(value) -> Optional[float]:
    return float(value) if pd.notna(value) else None


def _row_to_rule(row: dict) -> IngredientRule:
    name = str(row["canonical_name"]).strip()
    kind = str(row["dose_kind"]).strip().lower()
    fixed = _optional_float(row["fixed_dose_mg"])
    low = _optional_float(row["min_dose_mg"])
    high = _optional_float(row["max_dose_mg"])

    if kind == "fixed":
        if fixed is None or low is not None or high is not None:
            raise ValueError(f"{name}: fixed dose needs fixed_dose_mg and no range")
        dose = FixedDose(dose_mg=fixed)
    elif kind == "ranged":
        if fixed is not None or low is None or high is None:
            raise ValueError(f"{name}: ranged dose needs min_dose_mg and max_dose_mg and no fixed dose")
        dose = RangedDose(min_mg=low, max_mg=high)
    else:
        raise ValueError(f"{name}: unknown dose_kind '{row['dose_kind']}'")

    raw_aliases = row.get("aliases")
    aliases = (
        frozenset(a.strip() for a in str(raw_aliases).split("|") if a.strip())
        if pd.notna(raw_aliases)
        else frozenset()
    )

    return IngredientRule(
        canonical_name=name,
        category=str(row["category"]).strip().lower(),
        dose=dose,
        priority_weight=int(row["priority_weight"]),
        aliases=aliases,
    )


def load_catalog(path: Optional[Path | str] = None) -> IngredientCatalog:
    """
    Load the catalog CSV into an immutable IngredientCatalog.

    Path resolution: explicit argument, then FORMULA_CATALOG_PATH, then
    data/ingredient_catalog.csv. Raises ValueError on malformed rows.
    """
    csv_path = Path(path or os.getenv("FORMULA_CATALOG_PATH") or DEFAULT_CATALOG_PATH)
    df = pd.read_csv(csv_path)

    missing = [c for c in REQUIRED_COLUMNS if c not in df.columns]
    if missing:
        raise ValueError(f"Catalog {csv_path} is missing columns: {missing}")

    rules = [_row_to_rule(row) for row in df.to_dict(orient="records")]
    catalog = IngredientCatalog(rules)

    logger.info(
        "Loaded ingredient catalog from %s: %d ingredients (%d base, %d individual)",
        csv_path,
        len(catalog),
        sum(1 for r in catalog if r.category == "base"),
        sum(1 for r in catalog if r.category == "individual"),
    )
    return catalog
