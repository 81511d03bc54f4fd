"""Curriculum, grading, ranking and registration-number helpers."""

import math
import re

from store import CA_MAX, EXAM_MAX, ValidationError

JUNIOR_SUBJECTS = [
    'English Language',
    'Mathematics',
    'Basic Science',
    'Social Studies',
    'Civic Education',
    'Agric. Science',
    'Physical & Health Edu.',
    'Computer Studies',
    'Hausa Language',
    'I.R.K./C.R.K.',
    'Basic Technology',
    'Business Studies',
    'Cultural & Creative Art',
    'Home Economics',
]

SENIOR_SUBJECTS = [
    'English Language',
    'Mathematics',
    'Chemistry',
    'Physics',
    'Biology',
    'Agric. Science',
    'Civic Education',
    'Economics',
    'Computer Studies',
    'Marketing',
    'Geography',
    'Government',
    'Entrepreneurship',
    'I.R.K./C.R.K.',
    'Hausa Language',
    'History',
    'Accounting',
    'Literature-In-Eng.',
]

SUBJECTS = list(dict.fromkeys(JUNIOR_SUBJECTS + SENIOR_SUBJECTS))

CLASSES = [
    f"{level}{number} {arm}"
    for level in ('JSS', 'SSS')
    for number in (1, 2, 3)
    for arm in ('A', 'B', 'C')
]

SESSION_YEARS = [f"{year}/{year + 1}" for year in range(2025, 2100)]

PASS_MARK = 50

GRADE_BANDS = (
    (70, 'A', 'EXCELLENT'),
    (60, 'B', 'VERY GOOD'),
    (50, 'C', 'GOOD'),
    (40, 'D', 'PASS'),
)

REG_NUMBER_PREFIX = 'CDSS'
REG_NUMBER_BASE = 1000


def grade(total):
    """Return (letter, remark) for a subject total out of 100."""
    for minimum, letter, remark in GRADE_BANDS:
        if total >= minimum:
            return letter, remark
    return 'F', 'FAIL'


def score_total(record):
    return int(record.get('ca1') or 0) + int(record.get('ca2') or 0) + int(record.get('exam') or 0)


def clamp_score(value, field):
    """Parse a typed score, treating junk as 0 and capping at the field maximum."""
    try:
        number = int(str(value).strip())
    except (TypeError, ValueError):
        number = 0
    limit = EXAM_MAX if field == 'exam' else CA_MAX
    return max(0, min(number, limit))


def is_junior_class(classname):
    return (classname or '').strip().upper().startswith('JSS')


def curriculum_for_class(classname):
    return JUNIOR_SUBJECTS if is_junior_class(classname) else SENIOR_SUBJECTS


def term_label(term):
    return {1: '1st', 2: '2nd'}.get(term, '3rd')


def term_name(term):
    return {1: 'First Term', 2: 'Second Term'}.get(term, 'Third Term')


def ordinal(value):
    """Return ordinal string for an integer (e.g., 1 -> 1st)."""
    try:
        n = int(value)
    except (TypeError, ValueError):
        return str(value)
    abs_n = abs(n)
    if 10 <= (abs_n % 100) <= 20:
        suffix = 'th'
    else:
        suffix = {1: 'st', 2: 'nd', 3: 'rd'}.get(abs_n % 10, 'th')
    return f"{n}{suffix}"


def reg_number_sort_key(reg_number):
    """Natural ordering so CDSS/25/999 sorts before CDSS/25/1000."""
    parts = re.split(r'(\d+)', reg_number or '')
    return [(0, int(p), '') if p.isdigit() else (1, 0, p) for p in parts if p]


def class_totals(students, scores, subjects):
    """
    Sum each student's scores over the given subjects.

    Returns a list of (student, total) sorted by total descending; equal totals
    fall back to natural registration-number order so positions are stable.
    """
    wanted = set(subjects)
    totals = {s['id']: 0 for s in students}
    for record in scores:
        sid = record.get('student_id')
        if sid in totals and record.get('subject') in wanted:
            totals[sid] += score_total(record)
    ordered = sorted(
        students,
        key=lambda s: (-totals[s['id']], reg_number_sort_key(s.get('reg_number'))),
    )
    return [(s, totals[s['id']]) for s in ordered]


def rank(students, scores, subjects, student_id):
    """1-based class position of one student; 0 if the student is not in the list."""
    for position, (student, _total) in enumerate(class_totals(students, scores, subjects), 1):
        if student['id'] == student_id:
            return position
    return 0


# ==================== REGISTRATION NUMBERS ====================

def suggest_reg_number(session_year, student_count):
    """Suggested next registration number, e.g. CDSS/25/1031 with 30 students on roll."""
    year_suffix = (session_year or '')[2:4]
    return f"{REG_NUMBER_PREFIX}/{year_suffix}/{REG_NUMBER_BASE + student_count + 1}"


def parse_bulk_start(reg_number):
    """Split CDSS/YY/XXXX into ('CDSS/YY', XXXX)."""
    parts = (reg_number or '').strip().split('/')
    if len(parts) < 3 or not parts[-1].isdigit():
        raise ValidationError('Invalid Starting Reg No format. Use CDSS/YY/XXXX')
    return '/'.join(parts[:2]), int(parts[-1])


def next_reg_number(reg_number):
    """Increment the numeric tail; returns the input unchanged if it has none."""
    try:
        prefix, number = parse_bulk_start(reg_number)
    except ValidationError:
        return reg_number
    return f"{prefix}/{number + 1}"


def normalize_student_name(value):
    return ' '.join((value or '').split()).upper()


def add_student(store, actor_id, full_name, reg_number, classname, gender):
    if classname not in CLASSES:
        raise ValidationError(f"Unknown class: {classname}")
    student = store.add_student(actor_id, {
        'full_name': normalize_student_name(full_name),
        'reg_number': (reg_number or '').strip(),
        'current_class': classname,
        'gender': gender,
    })
    return student, next_reg_number(student['reg_number'])


def bulk_add_students(store, actor_id, names_text, start_reg, classname, gender='M'):
    """
    Add one student per non-blank line, numbering from start_reg.

    Every generated registration number is checked before anything is written,
    so a clash aborts the whole batch. Returns (added_students, next_suggestion).
    """
    names = [normalize_student_name(n) for n in (names_text or '').splitlines() if n.strip()]
    if not names:
        raise ValidationError('Enter at least one student name.')
    if classname not in CLASSES:
        raise ValidationError(f"Unknown class: {classname}")
    prefix, number = parse_bulk_start(start_reg)

    planned = [(name, f"{prefix}/{number + i}") for i, name in enumerate(names)]
    existing = {s.get('reg_number') for s in store.get_students()}
    clashes = [reg for _name, reg in planned if reg in existing]
    if clashes:
        raise ValidationError(f"Registration Number {clashes[0]} already exists.")

    added = [
        store.add_student(actor_id, {
            'full_name': name,
            'reg_number': reg,
            'current_class': classname,
            'gender': gender,
        })
        for name, reg in planned
    ]
    return added, f"{prefix}/{number + len(names)}"


# ==================== DASHBOARD ====================

def dashboard_stats(students, scores):
    total_scores = len(scores)
    pass_count = sum(1 for s in scores if score_total(s) >= PASS_MARK)
    pass_rate = (pass_count / total_scores) * 100 if total_scores else 0.0

    class_of = {s['id']: s.get('current_class') for s in students}
    class_map = {}
    for record in scores:
        classname = class_of.get(record.get('student_id'))
        if not classname:
            continue
        bucket = class_map.setdefault(classname, {'total': 0, 'count': 0})
        bucket['total'] += score_total(record)
        bucket['count'] += 1

    class_data = sorted(
        # Half-up, so 72.5 shows as 73
        ({'name': name, 'average': int(math.floor(b['total'] / b['count'] + 0.5))}
         for name, b in class_map.items()),
        key=lambda row: row['average'],
        reverse=True,
    )
    return {
        'total_students': len(students),
        'total_scores': total_scores,
        'pass_rate': pass_rate,
        'class_data': class_data,
    }
