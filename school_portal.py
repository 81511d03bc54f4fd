"""
CDSS Report Card Portal

Flask web application for a single secondary school: staff sign-up and
approval, student roster, term-scoped score entry and PDF report cards.

Data lives in the record store (six JSON collections), see store.py.
"""

from flask import Flask, render_template, request, redirect, url_for, session, flash, send_file
from flask_wtf import FlaskForm
from wtforms import StringField, PasswordField, SelectField, validators
from flask_wtf.csrf import CSRFProtect, CSRFError
from itsdangerous import URLSafeTimedSerializer, BadSignature, SignatureExpired
import base64
from io import BytesIO
from functools import wraps

import os

import logging
from dotenv import load_dotenv

from store import (
    RecordStore, MemoryBackend, PostgresBackend,
    ValidationError, AuthenticationError, TermClosedError,
)
from roles import (
    Role, REGISTRABLE_ROLES, AuthorizationError,
    allowed_classes, allowed_subjects, can_approve_target, can_approve_users, can_assign_subjects,
    can_choose_report_class, can_delete_users, can_edit_scores, can_manage_branding,
    can_manage_session, can_manage_students, can_open_admin, can_print_reports,
    can_view_class_analytics, can_view_logs, is_teaching_role, needs_assignment,
    report_class_for, require_score_edit,
)
from grading import (
    CLASSES, SUBJECTS, SESSION_YEARS, add_student, bulk_add_students, clamp_score,
    curriculum_for_class, dashboard_stats, grade, ordinal, reg_number_sort_key, score_total,
    suggest_reg_number, term_label, term_name,
)
from report_cards import (
    ReportGenerationError, batch_report_filename, generate_report, single_report_filename,
)

load_dotenv()

app = Flask(__name__, template_folder='frontend/templates', static_folder='static')
ALLOW_INSECURE_DEFAULTS = os.environ.get('ALLOW_INSECURE_DEFAULTS', '').strip().lower() in ('1', 'true', 'yes')
secret_key = os.environ.get('SECRET_KEY')
if not secret_key:
    if ALLOW_INSECURE_DEFAULTS:
        # Explicitly opt-in fallback for local/dev only.
        secret_key = 'dev-secret-key-change-me'
    else:
        raise RuntimeError("SECRET_KEY is required in production. Set SECRET_KEY or enable ALLOW_INSECURE_DEFAULTS for local development.")
if not ALLOW_INSECURE_DEFAULTS and len(secret_key) < 32:
    raise RuntimeError("SECRET_KEY is too short. Use at least 32 characters in production.")
app.secret_key = secret_key
app.config['WTF_CSRF_TIME_LIMIT'] = None
app.config['MAX_CONTENT_LENGTH'] = 4 * 1024 * 1024

csrf = CSRFProtect(app)

STORE_BACKEND = os.environ.get('STORE_BACKEND', 'postgres').strip().lower()
if STORE_BACKEND not in ('postgres', 'memory'):
    raise RuntimeError("STORE_BACKEND must be 'postgres' or 'memory'.")
DATABASE_URL = os.environ.get('DATABASE_URL', '').strip()
if STORE_BACKEND == 'postgres' and not DATABASE_URL.startswith(('postgres://', 'postgresql://')):
    raise RuntimeError("PostgreSQL is required. Set DATABASE_URL to a postgresql:// connection string.")
SEED_USER_PASSWORD = os.environ.get('SEED_USER_PASSWORD', '').strip()
if not SEED_USER_PASSWORD:
    if ALLOW_INSECURE_DEFAULTS:
        SEED_USER_PASSWORD = '123456'
    else:
        raise RuntimeError("SEED_USER_PASSWORD is required. Set it in environment variables.")
if not ALLOW_INSECURE_DEFAULTS and len(SEED_USER_PASSWORD) < 8:
    raise RuntimeError("SEED_USER_PASSWORD is too short. Use at least 8 characters in production.")
RUN_STARTUP_SEED = os.environ.get('RUN_STARTUP_SEED', '1').strip().lower() in ('1', 'true', 'yes')
RESET_TOKEN_MAX_AGE = int(os.environ.get('RESET_TOKEN_MAX_AGE', '3600'))
LOGO_MAX_BYTES = 2 * 1024 * 1024

# Set up logging
logging.basicConfig(filename=os.environ.get('LOG_FILE', 'app.log'), level=logging.INFO,
                    format='%(asctime)s - %(levelname)s - %(message)s')
if ALLOW_INSECURE_DEFAULTS:
    logging.warning("ALLOW_INSECURE_DEFAULTS is enabled. Development-only fallbacks may be active.")


def create_store():
    """Build the process-wide record store for the configured backend."""
    if STORE_BACKEND == 'memory':
        backend = MemoryBackend()
    else:
        backend = PostgresBackend(DATABASE_URL)
        if RUN_STARTUP_SEED:
            backend.ensure_schema()
    store = RecordStore(backend)
    if RUN_STARTUP_SEED:
        store.init(SEED_USER_PASSWORD)
    return store


app.extensions['record_store'] = create_store()


def get_store():
    return app.extensions['record_store']


app.jinja_env.filters['ordinal'] = ordinal

# ==================== FORMS ====================

class LoginForm(FlaskForm):
    email = StringField('Email', [validators.InputRequired(), validators.Length(max=120)])
    password = PasswordField('Password', [validators.InputRequired()])


class RegisterForm(FlaskForm):
    full_name = StringField('Full Name', [validators.InputRequired(), validators.Length(max=120)])
    email = StringField('Email', [validators.InputRequired(), validators.Length(max=120)])
    role = SelectField('Role', choices=[(r.value, r.label) for r in REGISTRABLE_ROLES],
                       default=Role.SUBJECT_TEACHER.value)
    password = PasswordField('Password', [validators.InputRequired(), validators.Length(min=6)])


class ForgotPasswordForm(FlaskForm):
    email = StringField('Email', [validators.InputRequired(), validators.Length(max=120)])


class ResetPasswordForm(FlaskForm):
    password = PasswordField('New Password', [validators.InputRequired(), validators.Length(min=6)])
    confirm = PasswordField('Confirm Password', [
        validators.InputRequired(),
        validators.EqualTo('password', message='Passwords must match.'),
    ])

# ==================== HELPERS ====================

def _reset_serializer():
    return URLSafeTimedSerializer(app.secret_key)


def request_password_reset(store, email):
    """
    Produce a signed reset token when the account exists.

    Delivery is simulated by logging the link. Callers show the same message
    either way so the response does not reveal which emails are registered.
    """
    user = store.find_user_by_email(email)
    if not user:
        return None
    token = _reset_serializer().dumps(user['id'], salt='reset-password')
    logging.info("[SIMULATION] Password reset link sent to %s: %s", user['email'],
                 url_for('reset_password', token=token, _external=True))
    return token


def current_user():
    user_id = session.get('user_id')
    if not user_id:
        return None
    user = get_store().get_user(user_id)
    if not user or not user.get('is_active'):
        return None
    return user


def login_required(view):
    @wraps(view)
    def wrapped(*args, **kwargs):
        user = current_user()
        if not user:
            session.clear()
            return redirect(url_for('login'))
        return view(user, *args, **kwargs)
    return wrapped


def parse_uploaded_logo(file_storage):
    """
    Validate and encode an uploaded logo image as a data URL.
    Returns (data_url, error_message).
    """
    if not file_storage:
        return '', 'Logo file is required.'
    filename = (file_storage.filename or '').strip()
    if not filename:
        return '', 'Logo file is required.'
    ext = filename.rsplit('.', 1)[-1].lower() if '.' in filename else ''
    allowed_ext = {'png', 'jpg', 'jpeg', 'webp'}
    if ext not in allowed_ext:
        return '', 'Only PNG, JPG, JPEG, or WEBP files are allowed.'
    raw = file_storage.read()
    if not raw:
        return '', 'Uploaded logo file is empty.'
    if len(raw) > LOGO_MAX_BYTES:
        return '', 'File is too large. Please upload an image under 2MB.'
    mime = (file_storage.mimetype or '').strip().lower()
    if not mime.startswith('image/'):
        mime_by_ext = {
            'png': 'image/png',
            'jpg': 'image/jpeg',
            'jpeg': 'image/jpeg',
            'webp': 'image/webp',
        }
        mime = mime_by_ext.get(ext, 'image/png')
    encoded = base64.b64encode(raw).decode('ascii')
    return f'data:{mime};base64,{encoded}', ''


@app.context_processor
def inject_portal_context():
    user = current_user()
    role = (user or {}).get('role')
    return {
        'current_user': user,
        'school_settings': get_store().get_settings(),
        'nav': {
            'admin': can_open_admin(role),
            'reports': can_print_reports(role),
        },
    }

# ==================== AUTH ROUTES ====================

@app.errorhandler(CSRFError)
def csrf_error(error):
    """Handle CSRF token errors."""
    if 'user_id' in session:
        flash('Form token expired/invalid. Please retry your last action.', 'error')
        return redirect(request.referrer or url_for('dashboard'))
    flash('Your session has expired. Please login again.', 'error')
    return redirect(url_for('login'))


@app.route('/login', methods=['GET', 'POST'])
def login():
    form = LoginForm()
    if form.validate_on_submit():
        email = form.email.data.strip().lower()
        try:
            user = get_store().login(email, form.password.data)
        except AuthenticationError as exc:
            logging.info("Failed login for %s: %s", email, exc)
            flash(str(exc), 'error')
            return render_template('login.html', form=form)
        session.clear()
        session['user_id'] = user['id']
        session['role'] = user['role']
        logging.info("User %s logged in", user['email'])
        return redirect(url_for('dashboard'))
    return render_template('login.html', form=form)


@app.route('/register', methods=['GET', 'POST'])
def register():
    form = RegisterForm()
    if form.validate_on_submit():
        try:
            get_store().register(form.email.data, form.full_name.data, form.role.data, form.password.data)
        except ValidationError as exc:
            flash(str(exc), 'error')
            return render_template('register.html', form=form)
        flash('Registration successful! Please wait for Admin approval.', 'success')
        return redirect(url_for('login'))
    return render_template('register.html', form=form)


@app.route('/forgot-password', methods=['GET', 'POST'])
def forgot_password():
    form = ForgotPasswordForm()
    if form.validate_on_submit():
        request_password_reset(get_store(), form.email.data)
        flash('If the email exists, a reset link has been sent.', 'success')
        return redirect(url_for('login'))
    return render_template('forgot_password.html', form=form)


@app.route('/reset-password/<token>', methods=['GET', 'POST'])
def reset_password(token):
    try:
        user_id = _reset_serializer().loads(token, salt='reset-password', max_age=RESET_TOKEN_MAX_AGE)
    except (BadSignature, SignatureExpired):
        flash('Reset link is invalid or has expired.', 'error')
        return redirect(url_for('forgot_password'))

    form = ResetPasswordForm()
    if form.validate_on_submit():
        try:
            get_store().reset_password(user_id, form.password.data)
        except ValidationError as exc:
            flash(str(exc), 'error')
            return render_template('reset_password.html', form=form, token=token)
        flash('Password updated. Please login.', 'success')
        return redirect(url_for('login'))
    return render_template('reset_password.html', form=form, token=token)


@app.route('/logout')
def logout():
    session.clear()
    return redirect(url_for('login'))

# ==================== DASHBOARD ====================

@app.route('/')
@login_required
def dashboard(user):
    store = get_store()
    stats = dashboard_stats(store.get_students(), store.get_scores())
    current = store.get_session()
    return render_template(
        'dashboard.html',
        stats=stats,
        term_label=term_label(current.get('current_term')),
        show_class_analytics=can_view_class_analytics(user.get('role')),
        show_teacher_notice=user.get('role') == Role.SUBJECT_TEACHER.value,
    )

# ==================== SCORE ENTRY ====================

def _score_context(store, user, requested_class, requested_subject):
    classes = allowed_classes(user, CLASSES)
    if not classes:
        return None
    selected_class = requested_class if requested_class in classes else classes[0]
    subjects = allowed_subjects(user, curriculum_for_class(selected_class))
    selected_subject = requested_subject if requested_subject in subjects else subjects[0]
    return classes, selected_class, subjects, selected_subject


@app.route('/scores', methods=['GET', 'POST'])
@login_required
def score_entry(user):
    store = get_store()
    current = store.get_session()
    if not current.get('is_term_open'):
        return render_template('score_entry.html', term_closed=True)

    requested_class = request.values.get('class', '').strip()
    requested_subject = request.values.get('subject', '').strip()
    ctx = _score_context(store, user, requested_class, requested_subject)
    if ctx is None:
        return render_template('score_entry.html', no_assignments=True)
    classes, selected_class, subjects, selected_subject = ctx

    students = store.get_students(selected_class)
    existing = {
        s['student_id']: s for s in store.get_scores()
        if s.get('subject') == selected_subject
        and s.get('session') == current.get('year')
        and s.get('term') == current.get('current_term')
    }

    if request.method == 'POST':
        try:
            # Saves go to the posted class and subject only, never a fallback.
            require_score_edit(user, requested_class, requested_subject)
            if (requested_class, requested_subject) != (selected_class, selected_subject):
                raise AuthorizationError(f"You are not assigned to {requested_subject} for {requested_class}.")
            saved = 0
            for student in students:
                sid = student['id']
                fields = {f: request.form.get(f"{f}_{sid}") for f in ('ca1', 'ca2', 'exam')}
                if all(v is None for v in fields.values()):
                    continue
                previous = existing.get(sid, {})
                record = {
                    'student_id': sid,
                    'subject': selected_subject,
                    'term': current.get('current_term'),
                    'session': current.get('year'),
                }
                for field, raw in fields.items():
                    record[field] = clamp_score(raw, field) if raw is not None else int(previous.get(field) or 0)
                store.save_score(user['id'], record)
                saved += 1
            flash(f'Saved {saved} score record(s).', 'success')
        except (TermClosedError, AuthorizationError, ValidationError) as exc:
            flash(str(exc), 'error')
        return redirect(url_for('score_entry', **{'class': selected_class, 'subject': selected_subject}))

    sort_key = request.args.get('sort', 'reg_number')
    if sort_key not in ('reg_number', 'full_name'):
        sort_key = 'reg_number'
    descending = request.args.get('direction') == 'desc'
    if sort_key == 'reg_number':
        students = sorted(students, key=lambda s: reg_number_sort_key(s.get('reg_number')), reverse=descending)
    else:
        students = sorted(students, key=lambda s: s.get('full_name') or '', reverse=descending)

    rows = []
    for student in students:
        record = existing.get(student['id'], {'ca1': 0, 'ca2': 0, 'exam': 0})
        total = score_total(record)
        rows.append({'student': student, 'score': record, 'total': total, 'grade': grade(total)[0]})

    return render_template(
        'score_entry.html',
        classes=classes,
        subjects=subjects,
        selected_class=selected_class,
        selected_subject=selected_subject,
        rows=rows,
        can_edit=can_edit_scores(user, selected_class, selected_subject),
        sort_key=sort_key,
        direction='desc' if descending else 'asc',
        academic_session=current,
    )

# ==================== REPORT CARDS ====================

def _send_report(report):
    return send_file(
        BytesIO(report.content),
        mimetype='application/pdf',
        as_attachment=True,
        download_name=report.filename,
    )


@app.route('/reports')
@login_required
def reports(user):
    if not can_print_reports(user.get('role')):
        return redirect(url_for('dashboard'))
    selected_class = report_class_for(user, request.args.get('class', '').strip(), CLASSES)
    students = get_store().get_students(selected_class)
    return render_template(
        'reports.html',
        classes=CLASSES,
        selected_class=selected_class,
        students=students,
        can_choose_class=can_choose_report_class(user.get('role')),
    )


@app.route('/reports/student/<student_id>')
@login_required
def report_single(user, student_id):
    if not can_print_reports(user.get('role')):
        return redirect(url_for('dashboard'))
    store = get_store()
    student = store.get_student(student_id)
    allowed_class = report_class_for(user, (student or {}).get('current_class'), CLASSES)
    if not student or student.get('current_class') != allowed_class:
        flash('Student not found in your class.', 'error')
        return redirect(url_for('reports'))
    try:
        report = generate_report(store, [student], single_report_filename(student))
    except ReportGenerationError as exc:
        logging.exception("Report generation failed for %s", student.get('reg_number'))
        flash(str(exc), 'error')
        return redirect(url_for('reports', **{'class': student.get('current_class')}))
    return _send_report(report)


@app.route('/reports/class')
@login_required
def report_batch(user):
    if not can_print_reports(user.get('role')):
        return redirect(url_for('dashboard'))
    store = get_store()
    selected_class = report_class_for(user, request.args.get('class', '').strip(), CLASSES)
    students = store.get_students(selected_class)
    if not students:
        flash('No students found in this class to print.', 'error')
        return redirect(url_for('reports', **{'class': selected_class}))
    try:
        report = generate_report(store, students, batch_report_filename(selected_class))
    except ReportGenerationError as exc:
        logging.exception("Batch report generation failed for %s", selected_class)
        flash(str(exc), 'error')
        return redirect(url_for('reports', **{'class': selected_class}))
    return _send_report(report)

# ==================== ADMIN PANEL ====================

ADMIN_TABS = ('users', 'students', 'session', 'branding', 'logs')


def _render_admin(user, tab):
    store = get_store()
    role = user.get('role')
    current = store.get_session()
    student_class = request.args.get('student_class', '').strip()
    if student_class not in CLASSES:
        student_class = CLASSES[0]
    all_students = store.get_students()
    suggestion = session.get('next_reg_number') or suggest_reg_number(current.get('year'), len(all_students))

    users = store.get_users()
    assignable_subjects = {
        u['id']: sorted(set(SUBJECTS) | set(u.get('assigned_subjects') or []))
        for u in users
    }
    return render_template(
        'admin.html',
        tab=tab,
        users=users,
        students=[s for s in all_students if s.get('current_class') == student_class],
        student_class=student_class,
        reg_suggestion=suggestion,
        academic_session=current,
        session_years=SESSION_YEARS,
        term_name=term_name,
        logs=store.get_logs() if can_view_logs(role) else [],
        classes=CLASSES,
        assignable_subjects=assignable_subjects,
        Role=Role,
        perms={
            'approve': can_approve_users(role),
            'delete': can_delete_users(role),
            'students': can_manage_students(role),
            'session': can_manage_session(role),
            'branding': can_manage_branding(role),
            'logs': can_view_logs(role),
            'assign': can_assign_subjects(role),
        },
        needs_assignment=needs_assignment,
        is_teaching_role=is_teaching_role,
    )


@app.route('/admin')
@login_required
def admin_panel(user):
    if not can_open_admin(user.get('role')):
        return redirect(url_for('dashboard'))
    tab = request.args.get('tab', 'users')
    if tab not in ADMIN_TABS:
        tab = 'users'
    return _render_admin(user, tab)


@app.route('/logs')
@login_required
def audit_logs(user):
    if not can_view_logs(user.get('role')):
        return redirect(url_for('dashboard'))
    return _render_admin(user, 'logs')


def _admin_target(user_id):
    target = get_store().get_user(user_id)
    if not target:
        flash('User not found.', 'error')
    return target


@app.route('/admin/users/<user_id>/approve', methods=['POST'])
@login_required
def admin_approve_user(user, user_id):
    target = _admin_target(user_id)
    if target:
        if not can_approve_target(user.get('role'), target.get('role')):
            flash('VP Academics can only manage Teachers, Form Masters, and Teaching Staff.'
                  if can_approve_users(user.get('role')) else 'You cannot approve users.', 'error')
        else:
            get_store().update_user_status(user['id'], user_id, True)
            flash(f"Approved {target.get('email')}.", 'success')
    return redirect(url_for('admin_panel', tab='users'))


@app.route('/admin/users/<user_id>/deactivate', methods=['POST'])
@login_required
def admin_deactivate_user(user, user_id):
    if not can_delete_users(user.get('role')):
        flash('You cannot deactivate users.', 'error')
    elif _admin_target(user_id):
        get_store().update_user_status(user['id'], user_id, False)
        flash('User deactivated.', 'success')
    return redirect(url_for('admin_panel', tab='users'))


@app.route('/admin/users/<user_id>/delete', methods=['POST'])
@login_required
def admin_delete_user(user, user_id):
    if not can_delete_users(user.get('role')):
        flash('You cannot delete users.', 'error')
    elif user_id == user['id']:
        flash('You cannot delete your own account.', 'error')
    elif _admin_target(user_id):
        get_store().delete_user(user['id'], user_id)
        flash('User deleted.', 'success')
    return redirect(url_for('admin_panel', tab='users'))


@app.route('/admin/users/<user_id>/assignments', methods=['POST'])
@login_required
def admin_user_assignments(user, user_id):
    if not can_assign_subjects(user.get('role')):
        flash('You cannot assign classes or subjects.', 'error')
        return redirect(url_for('admin_panel', tab='users'))
    target = _admin_target(user_id)
    if not target:
        return redirect(url_for('admin_panel', tab='users'))
    if not needs_assignment(target.get('role')):
        flash('This role does not take class or subject assignments.', 'error')
        return redirect(url_for('admin_panel', tab='users'))
    if not target.get('is_active') and not can_approve_target(user.get('role'), target.get('role')):
        flash('You cannot approve this user.', 'error')
        return redirect(url_for('admin_panel', tab='users'))

    updates = {}
    if target.get('role') == Role.FORM_MASTER.value:
        assigned_class = request.form.get('assigned_class', '').strip()
        updates['assigned_class'] = assigned_class if assigned_class in CLASSES else ''
    if is_teaching_role(target.get('role')):
        updates['assigned_classes'] = [c for c in request.form.getlist('assigned_classes') if c in CLASSES]
        subjects = [s.strip() for s in request.form.getlist('assigned_subjects') if s.strip()]
        custom = ' '.join(request.form.get('custom_subject', '').split())
        if custom and custom not in subjects:
            subjects.append(custom)
        updates['assigned_subjects'] = subjects

    store = get_store()
    store.update_user_assignments(user['id'], user_id, updates)
    if not target.get('is_active'):
        store.update_user_status(user['id'], user_id, True)
    flash(f"Assignments saved for {target.get('email')}.", 'success')
    return redirect(url_for('admin_panel', tab='users'))


@app.route('/admin/students', methods=['POST'])
@login_required
def admin_add_student(user):
    classname = request.form.get('classname', '').strip()
    if not can_manage_students(user.get('role')):
        flash('You cannot manage students.', 'error')
        return redirect(url_for('admin_panel', tab='students'))
    try:
        _student, suggestion = add_student(
            get_store(),
            user['id'],
            request.form.get('full_name', ''),
            request.form.get('reg_number', ''),
            classname,
            request.form.get('gender', 'M'),
        )
    except ValidationError as exc:
        flash(str(exc), 'error')
    else:
        session['next_reg_number'] = suggestion
        flash('Student added successfully!', 'success')
    return redirect(url_for('admin_panel', tab='students', student_class=classname))


@app.route('/admin/students/bulk', methods=['POST'])
@login_required
def admin_bulk_add_students(user):
    classname = request.form.get('classname', '').strip()
    if not can_manage_students(user.get('role')):
        flash('You cannot manage students.', 'error')
        return redirect(url_for('admin_panel', tab='students'))
    try:
        added, suggestion = bulk_add_students(
            get_store(),
            user['id'],
            request.form.get('names', ''),
            request.form.get('start_reg', ''),
            classname,
        )
    except ValidationError as exc:
        flash(str(exc), 'error')
    else:
        session['next_reg_number'] = suggestion
        flash(f'{len(added)} students added successfully!', 'success')
    return redirect(url_for('admin_panel', tab='students', student_class=classname))


@app.route('/admin/students/<student_id>/delete', methods=['POST'])
@login_required
def admin_delete_student(user, student_id):
    store = get_store()
    student = store.get_student(student_id)
    if not can_manage_students(user.get('role')):
        flash('You cannot manage students.', 'error')
    elif not student:
        flash('Student not found.', 'error')
    else:
        store.delete_student(user['id'], student_id)
        flash('Student deleted.', 'success')
    return redirect(url_for('admin_panel', tab='students',
                            student_class=(student or {}).get('current_class', CLASSES[0])))


@app.route('/admin/session', methods=['POST'])
@login_required
def admin_update_session(user):
    if not can_manage_session(user.get('role')):
        flash('Only the Commandant or Admin Officer can manage sessions.', 'error')
        return redirect(url_for('admin_panel', tab='session'))
    year = request.form.get('year', '').strip()
    try:
        term = int(request.form.get('term', '0'))
    except ValueError:
        term = 0
    is_open = request.form.get('action') == 'open'
    try:
        get_store().update_session(user['id'], year, term, is_open)
    except ValidationError as exc:
        flash(str(exc), 'error')
    else:
        flash(f"Successfully {'Opened' if is_open else 'Closed'} {term_name(term)} {year}", 'success')
    return redirect(url_for('admin_panel', tab='session'))


@app.route('/admin/branding', methods=['POST'])
@login_required
def admin_update_branding(user):
    if not can_manage_branding(user.get('role')):
        flash('You cannot manage branding.', 'error')
        return redirect(url_for('admin_panel', tab='branding'))
    updates = {}
    for field in ('school_name', 'address'):
        value = ' '.join(request.form.get(field, '').split())
        if value:
            updates[field] = value
    upload = request.files.get('logo')
    if upload and upload.filename:
        data_url, error = parse_uploaded_logo(upload)
        if error:
            flash(error, 'error')
            return redirect(url_for('admin_panel', tab='branding'))
        updates['logo_url'] = data_url
    if request.form.get('remove_logo') == 'on':
        updates['logo_url'] = ''
    get_store().update_settings(user['id'], updates)
    flash('Settings updated successfully! They will now appear on reports and the dashboard.', 'success')
    return redirect(url_for('admin_panel', tab='branding'))

# ==================== MAIN ====================

if __name__ == '__main__':
    port = int(os.environ.get('PORT', 5000))
    debug = os.environ.get('FLASK_DEBUG', '0').strip().lower() in ('1', 'true', 'yes')
    app.run(host='0.0.0.0', port=port, debug=debug)
