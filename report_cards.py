"""
Report card generation.

For a batch of students from one class this resolves the subject list,
computes class-wide highest/lowest per subject and each student's position,
and lays out one A4 page per student with reportlab.
"""

import base64
import logging
import re
from collections import namedtuple
from io import BytesIO

from reportlab.lib.utils import ImageReader
from reportlab.pdfgen import canvas

from grading import (
    class_totals,
    curriculum_for_class,
    grade,
    is_junior_class,
    ordinal,
    score_total,
    term_label,
)

logger = logging.getLogger(__name__)

PAGE_SIZE = (595.28, 841.89)

COLS = {
    'sub': 40, 'ca1': 180, 'ca2': 225, 'exam': 270, 'tot': 315, 'high': 360,
    'low': 405, 'grd': 450, 'rem': 485, 'sign': 530, 'end': 555,
}

TABLE_HEADERS = [
    ('SUBJECTS', 'sub'),
    ('1ST CA\nSUMMARY\n(15%)', 'ca1'),
    ('2ND CA\nSUMMARY\n(15%)', 'ca2'),
    ('EXAM\nSCORE\n(70%)', 'exam'),
    ('TOTAL\nSCORE\n(100%)', 'tot'),
    ('HIGHEST\nSCORE', 'high'),
    ('LOWEST\nSCORE', 'low'),
    ('GRADE', 'grd'),
    ('REMARKS', 'rem'),
    ('SIGN', 'sign'),
]

SKILLS = [
    'Handwriting', 'Fluency', 'Games/Sports', 'Handling Tools', 'Labour', 'Drawing', 'Crafts',
    'Punctuality', 'Neatness', 'Politeness', 'Honesty', 'Self Control', 'Initiative',
]

ROW_HEIGHT = 15

ReportFile = namedtuple('ReportFile', ['filename', 'content'])


class ReportGenerationError(Exception):
    """The whole batch failed; no document was produced."""


def single_report_filename(student):
    reg = re.sub(r'[\\/]', '-', student.get('reg_number') or '')
    return f"CDSS_Report_{reg}.pdf"


def batch_report_filename(classname):
    name = re.sub(r'\s', '_', classname or '')
    return f"Report_Cards_{name}.pdf"


def resolve_report_subjects(classname, scores):
    """Tier curriculum followed by any custom subjects found in ``scores``."""
    base = curriculum_for_class(classname)
    extras = []
    for record in scores:
        subject = record.get('subject')
        if subject not in base and subject not in extras:
            extras.append(subject)
    return list(base) + extras


def subject_statistics(subjects, class_scores):
    """Class-wide (highest, lowest) total per subject; (0, 0) when nobody has a score."""
    stats = {}
    for subject in subjects:
        totals = [score_total(s) for s in class_scores if s.get('subject') == subject]
        stats[subject] = (max(totals), min(totals)) if totals else (0, 0)
    return stats


def build_report_context(store, students):
    """Compute everything a page shows, one dict per student, without drawing."""
    session = store.get_session()
    class_name = students[0].get('current_class')
    class_students = store.get_students(class_name)
    class_ids = {s['id'] for s in class_students}
    class_scores = [
        s for s in store.get_scores()
        if s.get('session') == session.get('year')
        and s.get('term') == session.get('current_term')
        and s.get('student_id') in class_ids
    ]

    pages = []
    for student in students:
        student_scores = [s for s in class_scores if s.get('student_id') == student['id']]
        subjects = resolve_report_subjects(student.get('current_class'), student_scores)
        stats = subject_statistics(subjects, class_scores)

        totals = class_totals(class_students, class_scores, subjects)
        position = next((i for i, (st, _t) in enumerate(totals, 1) if st['id'] == student['id']), 0)
        overall_total = next((t for st, t in totals if st['id'] == student['id']), 0)
        taken = len([s for s in student_scores if s.get('subject') in subjects])
        average = f"{overall_total / taken:.1f}" if taken else '0.0'

        rows = []
        for subject in subjects:
            record = next((s for s in student_scores if s.get('subject') == subject), None)
            row = {'subject': subject, 'score': record}
            if record:
                total = score_total(record)
                letter, remark = grade(total)
                high, low = stats[subject]
                row.update(total=total, grade=letter, remark=remark, high=high, low=low)
            rows.append(row)

        pages.append({
            'student': student,
            'rows': rows,
            'position': position,
            'class_size': len(class_students),
            'overall_total': overall_total,
            'average': average,
            'is_junior': is_junior_class(student.get('current_class')),
        })
    return pages


def load_logo(logo_url):
    """Decode a data-URL logo; failures are logged and the report goes on without it."""
    if not logo_url:
        return None
    try:
        payload = logo_url.split(',', 1)[1] if logo_url.startswith('data:') else logo_url
        reader = ImageReader(BytesIO(base64.b64decode(payload)))
        reader.getSize()
        return reader
    except Exception as exc:
        logger.warning("Logo error: %s", exc)
        return None


def _center_text(c, text, x1, x2, y):
    width = c.stringWidth(text, 'Helvetica', 8)
    c.setFont('Helvetica', 8)
    c.drawString(x1 + (x2 - x1 - width) / 2, y, text)


def _draw_page(c, page, settings, session, logo):
    width, height = PAGE_SIZE
    student = page['student']

    if logo is not None:
        img_w, img_h = logo.getSize()
        wm_width = 350
        wm_height = (img_h / img_w) * wm_width
        c.saveState()
        c.setFillAlpha(0.08)
        c.drawImage(logo, (width - wm_width) / 2, (height - wm_height) / 2,
                    width=wm_width, height=wm_height, mask='auto')
        c.restoreState()
        c.drawImage(logo, 40, height - 100, width=60, height=60, mask='auto')

    c.setFillColorRGB(0, 0.4, 0)
    c.setFont('Helvetica-Bold', 20)
    c.drawString(110, height - 50, (settings.get('school_name') or '').upper())
    c.setFillColorRGB(0, 0, 0)
    c.setFont('Helvetica', 10)
    c.drawString(110, height - 68, settings.get('address') or '')

    c.setFillColorRGB(0.8, 0, 0)
    c.setFont('Helvetica-Bold', 16)
    c.drawString(160, height - 100, 'JUNIOR SECONDARY SCHOOL' if page['is_junior'] else 'SENIOR SECONDARY SCHOOL')
    c.setFillColorRGB(0, 0, 0)

    # Bio data
    y = height - 130
    c.setLineWidth(1)

    def rule(y_pos):
        c.line(40, y_pos, 550, y_pos)

    c.setFont('Helvetica-Bold', 10)
    c.drawString(40, y, f"Name (Surname First): {(student.get('full_name') or '').upper()}")
    y -= 5
    rule(y)
    y -= 20

    c.setFont('Helvetica', 10)
    c.drawString(40, y, f"Admission No: {student.get('reg_number')}")
    c.drawString(250, y, f"Class: {student.get('current_class')}")
    c.drawString(400, y, f"Year: {session.get('year')}")
    y -= 5
    rule(y)
    y -= 20

    c.drawString(40, y, f"No. in Class: {page['class_size']}")
    c.drawString(180, y, f"Position: {ordinal(page['position'])}")
    c.drawString(320, y, f"Sex: {student.get('gender')}")
    c.drawString(450, y, 'Age: ____')
    y -= 5
    rule(y)
    y -= 20

    c.drawString(40, y, f"Class Average: {page['average']}")
    c.drawString(250, y, f"Term: {term_label(session.get('current_term'))}")
    c.drawString(400, y, f"Session: {session.get('year')}")
    y -= 5
    rule(y)
    y -= 15

    # Score table header
    table_width = COLS['end'] - COLS['sub']
    c.setFillColorRGB(0.95, 0.95, 0.95)
    c.rect(COLS['sub'], y - 25, table_width, 25, stroke=1, fill=1)
    c.setFillColorRGB(0, 0, 0)
    c.setFont('Helvetica-Bold', 6)
    for text, col in TABLE_HEADERS:
        for i, line in enumerate(text.split('\n')):
            c.drawString(COLS[col] + 2, y - 10 - (i * 8), line)
    y -= 25

    for row in page['rows']:
        c.rect(COLS['sub'], y - ROW_HEIGHT, table_width, ROW_HEIGHT, stroke=1, fill=0)
        c.setFont('Helvetica-Bold', 8)
        c.drawString(COLS['sub'] + 2, y - 10, row['subject'].upper())

        record = row['score']
        if record:
            _center_text(c, str(record.get('ca1')), COLS['ca1'], COLS['ca2'], y - 10)
            _center_text(c, str(record.get('ca2')), COLS['ca2'], COLS['exam'], y - 10)
            _center_text(c, str(record.get('exam')), COLS['exam'], COLS['tot'], y - 10)
            _center_text(c, str(row['total']), COLS['tot'], COLS['high'], y - 10)
            _center_text(c, str(row['high']), COLS['high'], COLS['low'], y - 10)
            _center_text(c, str(row['low']), COLS['low'], COLS['grd'], y - 10)
            if row['grade'] == 'F':
                c.setFillColorRGB(0.8, 0, 0)
            c.setFont('Helvetica-Bold', 8)
            c.drawString(COLS['grd'] + 10, y - 10, row['grade'])
            c.setFillColorRGB(0, 0, 0)
            c.setFont('Helvetica', 6)
            c.drawString(COLS['rem'] + 2, y - 10, row['remark'])

        for col in ('ca1', 'ca2', 'exam', 'tot', 'high', 'low', 'grd', 'rem', 'sign'):
            c.line(COLS[col], y, COLS[col], y - ROW_HEIGHT)
        y -= ROW_HEIGHT

    # Totals row
    c.setFillColorRGB(0.9, 0.9, 0.9)
    c.rect(COLS['sub'], y - 15, table_width, 15, stroke=1, fill=1)
    c.setFont('Helvetica-Bold', 9)
    c.setFillColorRGB(0.8, 0, 0)
    c.drawString(200, y - 10, f"OVERALL TOTAL: {page['overall_total']}")
    c.setFillColorRGB(0, 0.5, 0)
    c.drawString(400, y - 10, f"PERCENTAGE: {page['average']}%")
    c.setFillColorRGB(0, 0, 0)
    y -= 30

    left_x = 40
    right_x = 300

    for label, gap in (('NEXT TERM BEGINS  ______________', 15), ('NEXT TERM ENDS    ______________', 20)):
        c.rect(left_x, y - 15, 250, 15, stroke=1, fill=0)
        c.setFont('Helvetica-Bold', 7)
        c.drawString(left_x + 2, y - 10, label)
        y -= gap

    c.setFont('Helvetica', 8)
    c.drawString(left_x, y, 'Times School Opened: ____  Times Present: ____  Absent: ____')
    y -= 15

    # Skills and behaviour grid sits beside the term boxes
    skill_y = y + 50
    c.setFillColorRGB(0, 0.4, 0)
    c.setFont('Helvetica-Bold', 8)
    c.drawString(right_x, skill_y + 5, 'SKILLS AND BEHAVIOUR RATINGS (1-5)')
    c.setFillColorRGB(0, 0, 0)
    c.setLineWidth(0.5)
    c.setFont('Helvetica', 7)
    for skill in SKILLS:
        c.rect(right_x, skill_y - 12, 150, 12, stroke=1, fill=0)
        c.drawString(right_x + 2, skill_y - 9, skill)
        for i in range(5):
            c.rect(right_x + 150 + (i * 15), skill_y - 12, 15, 12, stroke=1, fill=0)
        skill_y -= 12
    c.setLineWidth(1)

    y -= 10
    for title in ("Class Teacher's Remarks & Signature", "Ag. Commandant's Remarks & Signature"):
        c.setFont('Helvetica-Bold', 9)
        c.drawString(left_x, y, f"{title} _________________________________________")
        y -= 25
        c.setFont('Helvetica', 9)
        c.drawString(left_x, y, '_________________________________________')
        c.drawString(350, y, 'Date: ____________')
        y -= 30

    footer_y = 30
    c.setStrokeColorRGB(0.8, 0.8, 0.8)
    c.line(40, footer_y + 10, width - 40, footer_y + 10)
    c.setStrokeColorRGB(0, 0, 0)
    c.setFillColorRGB(0.4, 0.4, 0.4)
    c.setFont('Helvetica-Bold', 9)
    footer = ' - '.join(p for p in (settings.get('school_name'), settings.get('address')) if p)
    c.drawString(40, footer_y, footer.title())
    c.setFont('Helvetica', 9)
    c.drawString(width - 90, footer_y, 'Page 1 of 1')
    c.setFillColorRGB(0, 0, 0)


def generate_report(store, students, filename):
    """
    Render one page per student into a single PDF.

    Raises ReportGenerationError if anything other than the logo fails; in that
    case nothing is returned for any student.
    """
    if not students:
        raise ValueError('No students to print.')
    try:
        settings = store.get_settings()
        session = store.get_session()
        pages = build_report_context(store, students)
        logo = load_logo(settings.get('logo_url'))

        buffer = BytesIO()
        c = canvas.Canvas(buffer, pagesize=PAGE_SIZE)
        c.setTitle(filename)
        for page in pages:
            _draw_page(c, page, settings, session, logo)
            c.showPage()
        c.save()
    except Exception as exc:
        raise ReportGenerationError(f"Error generating PDF: {exc}") from exc
    logger.info("Generated %s (%d page(s))", filename, len(pages))
    return ReportFile(filename, buffer.getvalue())
