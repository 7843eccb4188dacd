import logging
import math
import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

import pandas as pd

logger = logging.getLogger(__name__)

# --- Column aliases (lower-case, first match wins) ---
REQUIRED_COLUMNS: Dict[str, List[str]] = {
    "brand": ["brand_name"],
    "coverage": ["c_li"],
    "category": ["ad_category", "ad_categories"],
}
OPTIONAL_COLUMNS: Dict[str, List[str]] = {
    "detail": ["ad_details", "ad_detail"],
    "description": ["general description", "general_description", "description"],
    "frame": ["frame_no", "frame_number", "frame"],
}

# Names used when reporting a column that could not be resolved
REQUIRED_COLUMN_LABELS = {
    "brand": "brand_name",
    "coverage": "c_li",
    "category": "ad_category/ad_categories",
}

TOP_BRANDS_LIMIT = 10
CANDIDATE_LIMIT = 15

# Organizations, countries, tournaments and players that show up as "brands"
# in the detector output but are not sponsors.
EXCLUDED_BRANDS = frozenset({
    "icc", "bcci", "5g", "india", "australia", "world cup", "asia cup", "virat", "babar",
})

# --- Frame scoring vocabulary ---
PRIME_PLACEMENT_WEIGHTS = {
    "jersey": 3,
    "on-screen": 3,
    "on screen": 3,
    "graphic": 2,
    "helmet": 2,
    "pitch": 2,
    "stump": 2,
    "boundary": 1,
    "signage": 1,
    "board": 1,
}
ACTION_TERMS = (
    "boundary", "six", "four", "wicket", "catch", "celebrat", "appeal", "run out", "bowled", "century",
)

# A comma splits fields only when an even number of quotes follows it.
_FIELD_SPLIT = re.compile(r',(?=(?:(?:[^"]*"){2})*[^"]*$)')
_LINE_SPLIT = re.compile(r"\r?\n")
_FLOAT_PREFIX = re.compile(r"^[+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?")


class CsvFormatError(ValueError):
    """Base class for uploads that cannot be turned into a dataset."""


class MissingColumns(CsvFormatError):
    def __init__(self, missing: List[str]):
        self.missing = list(missing)
        quoted = ", ".join(f"'{name}'" for name in self.missing)
        super().__init__(f"CSV is missing required columns: {quoted}.")


class EmptyOrHeaderOnly(CsvFormatError):
    def __init__(self):
        super().__init__("CSV has no data rows.")


@dataclass(frozen=True)
class Record:
    brand: str
    relative_coverage: float
    category: str
    detail: Optional[str] = None
    description: Optional[str] = None
    frame_number: Optional[int] = None


@dataclass(frozen=True)
class Dataset:
    records: Tuple[Record, ...]
    header: Tuple[str, ...]
    columns: Dict[str, int] = field(default_factory=dict)
    skipped_rows: int = 0

    def __len__(self) -> int:
        return len(self.records)

    def to_frame(self) -> pd.DataFrame:
        """One row per record, columns named after the Record fields."""
        return pd.DataFrame(
            [
                {
                    "brand": r.brand,
                    "relative_coverage": r.relative_coverage,
                    "category": r.category,
                    "detail": r.detail,
                    "description": r.description,
                    "frame_number": r.frame_number,
                }
                for r in self.records
            ],
            columns=["brand", "relative_coverage", "category", "detail", "description", "frame_number"],
        )


@dataclass(frozen=True)
class DashboardData:
    top_brands_by_frequency: pd.DataFrame
    top_brands_by_coverage: pd.DataFrame
    categories_by_frequency: pd.DataFrame
    categories_by_coverage: pd.DataFrame


# -----------------------
# Parsing
# -----------------------
def split_csv_line(line: str) -> List[str]:
    return _FIELD_SPLIT.split(line)


def _clean_cell(value: str) -> str:
    return value.replace('"', "").strip()


def parse_float_prefix(text: str) -> Optional[float]:
    """Parse the leading number of ``text`` the way a browser's parseFloat does.

    Returns None when no number starts the string, e.g. "n/a" or "".
    """
    match = _FLOAT_PREFIX.match(text.strip())
    if not match:
        return None
    return float(match.group(0))


def resolve_columns(header_cells: List[str]) -> Dict[str, int]:
    """Map logical column names to indexes in the header row.

    Header cells are compared trimmed, lower-cased and without quotes.
    Raises MissingColumns listing every required column that has no match.
    """
    normalized = [_clean_cell(h).lower() for h in header_cells]

    def find(aliases: List[str]) -> int:
        for alias in aliases:
            if alias in normalized:
                return normalized.index(alias)
        return -1

    columns: Dict[str, int] = {}
    missing = []
    for logical, aliases in REQUIRED_COLUMNS.items():
        idx = find(aliases)
        if idx == -1:
            missing.append(REQUIRED_COLUMN_LABELS[logical])
        else:
            columns[logical] = idx
    if missing:
        raise MissingColumns(missing)

    for logical, aliases in OPTIONAL_COLUMNS.items():
        idx = find(aliases)
        if idx != -1:
            columns[logical] = idx
    return columns


def _optional_cell(values: List[str], columns: Dict[str, int], logical: str) -> Optional[str]:
    idx = columns.get(logical)
    if idx is None or idx >= len(values):
        return None
    return _clean_cell(values[idx]) or None


def _parse_row(values: List[str], columns: Dict[str, int]) -> Optional[Record]:
    required_max = max(columns["brand"], columns["coverage"], columns["category"])
    if len(values) <= required_max:
        return None

    brand = _clean_cell(values[columns["brand"]])
    category = _clean_cell(values[columns["category"]])
    coverage = parse_float_prefix(_clean_cell(values[columns["coverage"]]))
    if not brand or not category or coverage is None or coverage != coverage:
        return None

    frame_text = _optional_cell(values, columns, "frame")
    frame_value = parse_float_prefix(frame_text) if frame_text else None
    if frame_value is not None and not math.isfinite(frame_value):
        frame_value = None
    return Record(
        brand=brand,
        relative_coverage=coverage,
        category=category,
        detail=_optional_cell(values, columns, "detail"),
        description=_optional_cell(values, columns, "description"),
        frame_number=int(frame_value) if frame_value is not None else None,
    )


def parse_brand_csv(text: str) -> Dataset:
    """Parse raw CSV text into a Dataset.

    Rows with an empty brand or category, or a coverage value that is not a
    number, are skipped and only counted.
    """
    lines = _LINE_SPLIT.split(text.strip())
    if len(lines) < 2:
        raise EmptyOrHeaderOnly()

    header = split_csv_line(lines[0])
    columns = resolve_columns(header)

    records = []
    skipped = 0
    for line in lines[1:]:
        record = _parse_row(split_csv_line(line), columns)
        if record is None:
            skipped += 1
        else:
            records.append(record)

    logger.info("Parsed %d records (%d rows skipped)", len(records), skipped)
    if skipped:
        logger.debug("Skipped rows lacked a brand, a category or a numeric c_li")
    return Dataset(
        records=tuple(records),
        header=tuple(_clean_cell(h) for h in header),
        columns=columns,
        skipped_rows=skipped,
    )


# -----------------------
# Aggregation
# -----------------------
def aggregate_by(dataset: Dataset, key: str) -> pd.DataFrame:
    """Frequency and coverage sum per ``key`` ("brand" or "category"), in first-seen order."""
    frame = dataset.to_frame()
    if frame.empty:
        return pd.DataFrame({key: pd.Series(dtype=object),
                             "frequency": pd.Series(dtype="int64"),
                             "coverage_sum": pd.Series(dtype="float64")})
    grouped = (
        frame.groupby(key, sort=False)
        .agg(frequency=("relative_coverage", "size"), coverage_sum=("relative_coverage", "sum"))
        .reset_index()
    )
    return grouped


def rank(aggregates: pd.DataFrame, by: str, limit: Optional[int] = None) -> pd.DataFrame:
    # stable sort keeps first-seen order among ties
    ranked = aggregates.sort_values(by, ascending=False, kind="stable").reset_index(drop=True)
    if limit is not None:
        ranked = ranked.head(limit)
    return ranked


def build_dashboard(dataset: Dataset) -> DashboardData:
    brands = aggregate_by(dataset, "brand")
    categories = aggregate_by(dataset, "category")
    return DashboardData(
        top_brands_by_frequency=rank(brands, "frequency", TOP_BRANDS_LIMIT),
        top_brands_by_coverage=rank(brands, "coverage_sum", TOP_BRANDS_LIMIT),
        categories_by_frequency=rank(categories, "frequency"),
        categories_by_coverage=rank(categories, "coverage_sum"),
    )


# -----------------------
# Suggestions
# -----------------------
def top_brand_candidates(csv_text: str, limit: int = CANDIDATE_LIMIT) -> List[str]:
    """Most frequent sponsor names for the suggestion buttons.

    Uses a plain comma split and the exact ``brand_name`` header, independent
    of parse_brand_csv, so it still works on files the full parser rejects.
    """
    lines = csv_text.strip().split("\n")
    if len(lines) < 2:
        return []

    header = [h.strip() for h in lines[0].split(",")]
    if "brand_name" not in header:
        return []
    brand_index = header.index("brand_name")

    counts: Dict[str, int] = {}
    for line in lines[1:]:
        values = line.split(",")
        if len(values) > brand_index:
            brand = values[brand_index].strip()
            if brand:
                counts[brand] = counts.get(brand, 0) + 1

    ranked = sorted(
        ((brand, n) for brand, n in counts.items() if brand.lower() not in EXCLUDED_BRANDS),
        key=lambda item: item[1],
        reverse=True,
    )
    return [brand for brand, _ in ranked[:limit]]


# -----------------------
# Deterministic frame shortlist
# -----------------------
def placement_score(category: Optional[str], detail: Optional[str]) -> int:
    for text in (category, detail):
        if not text:
            continue
        lowered = text.lower()
        weights = [w for term, w in PRIME_PLACEMENT_WEIGHTS.items() if term in lowered]
        if weights:
            return max(weights)
    return 0


def action_score(description: Optional[str]) -> int:
    if not description:
        return 0
    lowered = description.lower()
    return sum(1 for term in ACTION_TERMS if term in lowered)


def rank_frames(dataset: Dataset, brand: str, limit: int = 5) -> pd.DataFrame:
    """Rank a brand's frames by coverage, then placement, then on-field action.

    Coverage dominates; placement and action only break ties. Frames keep
    dataset order when all three are equal.
    """
    wanted = brand.strip().lower()
    rows = [
        {
            "frame_number": r.frame_number,
            "relative_coverage": r.relative_coverage,
            "category": r.category,
            "detail": r.detail,
            "description": r.description,
            "placement_score": placement_score(r.category, r.detail),
            "action_score": action_score(r.description),
        }
        for r in dataset.records
        if r.brand.lower() == wanted and r.frame_number is not None
    ]
    columns = ["frame_number", "relative_coverage", "category", "detail", "description",
               "placement_score", "action_score"]
    shortlist = pd.DataFrame(rows, columns=columns)
    if shortlist.empty:
        return shortlist
    shortlist = shortlist.sort_values(
        ["relative_coverage", "placement_score", "action_score"],
        ascending=False,
        kind="stable",
    ).reset_index(drop=True)
    return shortlist.head(limit)


def frames_for_brand(dataset: Dataset, brand: str) -> List[int]:
    wanted = brand.strip().lower()
    return [r.frame_number for r in dataset.records
            if r.brand.lower() == wanted and r.frame_number is not None]
