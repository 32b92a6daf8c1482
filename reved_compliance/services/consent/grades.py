"""French school grade derived from a child's age."""

# Upper age bound (inclusive) of each grade, youngest first
GRADE_BY_MAX_AGE: tuple[tuple[int, str], ...] = (
    (6, "CP"),
    (7, "CE1"),
    (8, "CE2"),
    (9, "CM1"),
    (10, "CM2"),
    (11, "6ème"),
    (12, "5ème"),
    (13, "4ème"),
    (14, "3ème"),
    (15, "2nde"),
    (16, "1ère"),
)
LAST_GRADE = "Terminale"


def grade_for_age(age: int) -> str:
    """Grade a child of this age is expected to attend.

    Args:
        age: Child age in years.

    Returns:
        Grade label (CP ... Terminale).
    """
    for max_age, grade in GRADE_BY_MAX_AGE:
        if age <= max_age:
            return grade
    return LAST_GRADE
