"""
Category classification module.

Maps a free-text category label to one of the budget buckets (needs, wants,
debt, savings) using an ordered keyword table. The table can be overridden
from the configuration file; lists that are not overridden keep their
built-in defaults.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from models import Classification

# Configure logging
logger = logging.getLogger(__name__)

DEFAULT_KEYWORDS: Dict[str, Tuple[str, ...]] = {
    'needs': (
        'Vivienda', 'Alquiler', 'Hipoteca', 'Alimentación', 'Supermercado',
        'Transporte', 'Combustible', 'Seguro', 'Salud', 'Medicamentos',
        'Servicios', 'Electricidad', 'Agua', 'Gas', 'Internet', 'Teléfono',
        'Educación', 'guarderia', 'subscripcion', 'Impuestos',
        'Rent', 'Mortgage', 'Groceries', 'Utilities', 'Insurance', 'Fuel',
    ),
    'debt': (
        'Deuda', 'Préstamo', 'Prestamo', 'Crédito', 'Credito',
        'Tarjeta de crédito', 'Financiación', 'Loan', 'Credit card', 'Debt',
    ),
    'wants': (
        'Ocio', 'Entretenimiento', 'Restaurantes', 'Comida fuera', 'Viajes',
        'Ropa', 'Tecnología', 'Hobbies', 'Gimnasio', 'Belleza', 'Mascotas',
        'Regalos', 'Streaming', 'Netflix', 'Spotify',
        'Entertainment', 'Dining', 'Travel', 'Shopping',
    ),
    'savings': (
        'Ahorro', 'Inversión', 'Fondo de emergencia', 'Pensión',
        'Criptomonedas', 'Savings', 'Investment',
    ),
}

# Order in which buckets are tested; debt comes before wants so
# "credit card" labels are never swallowed by a wants keyword
MATCH_ORDER: Tuple[Tuple[str, Classification], ...] = (
    ('needs', Classification.NEEDS),
    ('debt', Classification.DEBT),
    ('wants', Classification.WANTS),
    ('savings', Classification.SAVINGS),
)

# Legacy keys stored by older configurations
_LEGACY_KEYS = {
    'necesidades': 'needs',
    'deseos': 'wants',
    'deudas': 'debt',
    'ahorro': 'savings',
}


def _normalize_keywords(value: Any) -> Tuple[str, ...]:
    """Turn a list or comma-separated string into a tuple of keywords."""
    if value is None:
        return ()
    if isinstance(value, str):
        items: Iterable[Any] = value.split(',')
    else:
        items = value
    return tuple(str(item).strip() for item in items if str(item).strip())


@dataclass(frozen=True)
class KeywordTable:
    """Immutable keyword lists per bucket."""
    needs: Tuple[str, ...] = DEFAULT_KEYWORDS['needs']
    wants: Tuple[str, ...] = DEFAULT_KEYWORDS['wants']
    debt: Tuple[str, ...] = DEFAULT_KEYWORDS['debt']
    savings: Tuple[str, ...] = DEFAULT_KEYWORDS['savings']

    @classmethod
    def from_mapping(cls, overrides: Optional[Mapping[str, Any]] = None) -> 'KeywordTable':
        """
        Build a table from a user override.

        Args:
            overrides: Mapping with any of needs/wants/debt/savings (or the
                legacy necesidades/deseos/deudas/ahorro keys). Values may be
                lists or comma-separated strings.

        Returns:
            KeywordTable where missing or empty lists keep the defaults
        """
        if not overrides:
            return cls()

        lists: Dict[str, Tuple[str, ...]] = {}
        for key, value in overrides.items():
            bucket = _LEGACY_KEYS.get(str(key).lower(), str(key).lower())
            if bucket not in DEFAULT_KEYWORDS:
                logger.warning(f"Ignoring unknown keyword bucket '{key}'")
                continue
            keywords = _normalize_keywords(value)
            if keywords:
                lists[bucket] = keywords

        logger.debug(f"Keyword table overrides applied for: {sorted(lists)}")
        return cls(**lists)

    def keywords_for(self, bucket: str) -> Tuple[str, ...]:
        return getattr(self, bucket)

    def as_dict(self) -> Dict[str, List[str]]:
        return {bucket: list(self.keywords_for(bucket)) for bucket in DEFAULT_KEYWORDS}


class Classifier:
    """
    Classifies category labels into budget buckets.

    Matching is a case-insensitive substring test of each keyword against
    the label, checked bucket by bucket in MATCH_ORDER.
    """

    def __init__(self, keyword_table: Optional[KeywordTable] = None):
        """
        Initialize classifier.

        Args:
            keyword_table: Keyword table to use (defaults to the built-in table)
        """
        self.keyword_table = keyword_table or KeywordTable()
        self._folded = tuple(
            (classification, tuple(k.casefold() for k in self.keyword_table.keywords_for(bucket)))
            for bucket, classification in MATCH_ORDER
        )

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> 'Classifier':
        """Build a classifier from the classification.keywords config section."""
        overrides = (config.get('classification') or {}).get('keywords') or {}
        return cls(KeywordTable.from_mapping(overrides))

    def classify(self, label: Optional[str]) -> Classification:
        """
        Classify a category label.

        Args:
            label: Free-text category label

        Returns:
            Matching Classification, UNCLASSIFIED when nothing matches

        Examples:
            >>> Classifier().classify("Alquiler piso")
            <Classification.NEEDS: 'needs'>
            >>> Classifier().classify("Tarjeta de crédito")
            <Classification.DEBT: 'debt'>
        """
        if not label:
            return Classification.UNCLASSIFIED

        folded = str(label).casefold()
        for classification, keywords in self._folded:
            if any(keyword in folded for keyword in keywords):
                return classification
        return Classification.UNCLASSIFIED

    def is_debt_label(self, label: Optional[str]) -> bool:
        """True when the label classifies as debt."""
        return self.classify(label) is Classification.DEBT

    def classify_many(self, labels: Iterable[Optional[str]]) -> Dict[Classification, List[str]]:
        """
        Group labels by classification.

        Args:
            labels: Category labels

        Returns:
            Dictionary mapping each classification to the labels that fell in it
        """
        grouped: Dict[Classification, List[str]] = {c: [] for c in Classification}
        for label in labels:
            grouped[self.classify(label)].append(label or '')
        return grouped
