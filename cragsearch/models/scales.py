# V-scale grades and wall-angle styles.
# Grades are stored as numeric codes (VB=0 ... V18=19); higher is harder.

from enum import Enum
from typing import Optional, Union

GRADE_LABELS = ["VB"] + [f"V{n}" for n in range(19)]
GRADES = {label: code for code, label in enumerate(GRADE_LABELS)}

MIN_GRADE = 0
MAX_GRADE = len(GRADE_LABELS) - 1

EMPTY_LABEL = "—"


def grade_to_label(value: Optional[float]) -> str:
    """Label for a grade code; community averages that fall between codes show one decimal."""
    if value is None:
        return EMPTY_LABEL
    if float(value).is_integer() and MIN_GRADE <= int(value) <= MAX_GRADE:
        return GRADE_LABELS[int(value)]
    return f"{value:.1f}"


def label_to_grade(label: str) -> Optional[int]:
    return GRADES.get(label.strip().upper())


class Style(str, Enum):
    SLAB = "SLAB"
    VERT = "VERT"
    OVERHANG = "OVERHANG"
    ROOF = "ROOF"
    TRAVERSE = "TRAVERSE"
    ARETE = "ARETE"
    DIHEDRAL = "DIHEDRAL"

    @property
    def label(self) -> str:
        return self.value.capitalize()


def style_to_label(value: Union[Style, str, None]) -> str:
    if value is None:
        return EMPTY_LABEL
    try:
        return Style(value).label
    except ValueError:
        # Unknown codes are shown as stored
        return str(value)


def parse_style(value: object) -> Optional[Style]:
    """Coerce a raw style column into a Style; unknown or empty values become None."""
    if value is None or value == "":
        return None
    try:
        return Style(str(value).upper())
    except ValueError:
        return None
