"""
Record store for the CDSS report card portal.

Six collections (users, students, scores, session, settings, audit logs) are
kept as whole JSON blobs under fixed keys. Every mutation reads the whole
collection, changes it and writes it back, then appends one audit entry.

There is no locking: two processes writing the same collection at the same
time lose the earlier write (last write wins at collection granularity).
"""

import json
import logging
import re
import secrets
from contextlib import contextmanager
from datetime import datetime

from werkzeug.security import generate_password_hash, check_password_hash

from roles import Role, AuthorizationError

logger = logging.getLogger(__name__)

KEYS = {
    'users': 'cdss_users',
    'students': 'cdss_students',
    'scores': 'cdss_scores',
    'session': 'cdss_session',
    'settings': 'cdss_settings',
    'logs': 'cdss_logs',
}

CA_MAX = 15
EXAM_MAX = 70


class StoreError(Exception):
    """Base class for record store failures."""


class ValidationError(StoreError):
    pass


class AuthenticationError(StoreError):
    pass


class TermClosedError(AuthorizationError):
    def __init__(self, message='Term is currently closed.'):
        super().__init__(message)


def new_id():
    return secrets.token_hex(5)


def now_iso():
    return datetime.now().isoformat()


def is_valid_email(value):
    """Simple email validation for login identities."""
    email = (value or '').strip()
    return bool(re.fullmatch(r'^[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}$', email))


def is_valid_session_year(value):
    match = re.fullmatch(r'(\d{4})/(\d{4})', (value or '').strip())
    return bool(match) and int(match.group(2)) == int(match.group(1)) + 1


# ==================== BACKENDS ====================

def _adapt_query(query):
    return query.replace('?', '%s')


def db_execute(cursor, query, params=None):
    if params is None:
        return cursor.execute(_adapt_query(query))
    return cursor.execute(_adapt_query(query), params)


class MemoryBackend:
    """Dict-backed storage, one text blob per key."""

    def __init__(self, initial=None):
        self._data = dict(initial or {})

    def read(self, key):
        return self._data.get(key)

    def write(self, key, text):
        self._data[key] = text


class PostgresBackend:
    """Key-value blobs in the ``record_store`` table."""

    def __init__(self, database_url):
        if not (database_url or '').startswith(('postgres://', 'postgresql://')):
            raise RuntimeError("PostgreSQL is required. Set DATABASE_URL to a postgresql:// connection string.")
        self.database_url = database_url

    def get_db(self):
        """Create a PostgreSQL DB connection."""
        try:
            import psycopg2
        except ImportError as exc:
            raise RuntimeError("PostgreSQL backend requires psycopg2-binary") from exc
        return psycopg2.connect(self.database_url, connect_timeout=10)

    @contextmanager
    def db_connection(self, commit=False):
        """Context manager for connections with optional commit."""
        conn = self.get_db()
        try:
            yield conn
            if commit:
                conn.commit()
        finally:
            conn.close()

    def ensure_schema(self):
        with self.db_connection(commit=True) as conn:
            c = conn.cursor()
            db_execute(c, '''CREATE TABLE IF NOT EXISTS record_store (
                                key TEXT PRIMARY KEY,
                                value TEXT NOT NULL,
                                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                             )''')

    def read(self, key):
        with self.db_connection() as conn:
            c = conn.cursor()
            db_execute(c, 'SELECT value FROM record_store WHERE key = ?', (key,))
            row = c.fetchone()
        return row[0] if row else None

    def write(self, key, text):
        with self.db_connection(commit=True) as conn:
            c = conn.cursor()
            db_execute(
                c,
                '''INSERT INTO record_store (key, value, updated_at)
                   VALUES (?, ?, ?)
                   ON CONFLICT(key) DO UPDATE SET value = EXCLUDED.value, updated_at = EXCLUDED.updated_at''',
                (key, text, datetime.now()),
            )


# ==================== SEED DATA ====================

def seed_users(password_hash):
    users = [
        ('u1', 'commandant@cdssdaura.edu.ng', 'Lt. Col. Commandant', Role.COMMANDANT, {}),
        ('u2', 'admin@cdssdaura.edu.ng', 'Capt. Admin Officer', Role.ADMIN_OFFICER, {}),
        ('u3', 'exam@cdssdaura.edu.ng', 'Mr. Exam Officer', Role.EXAM_OFFICER, {}),
        ('u4', 'teacher@cdssdaura.edu.ng', 'Mallam Teacher', Role.SUBJECT_TEACHER, {
            'assigned_subjects': ['Mathematics'],
            'assigned_classes': ['JSS1 A', 'SSS1 A'],
        }),
        ('u5', 'form@cdssdaura.edu.ng', 'Mrs. Form Master', Role.FORM_MASTER, {'assigned_class': 'JSS1 A'}),
        ('u6', 'vpacademics@cdssdaura.edu.ng', 'Mr. VP Academics', Role.VP_ACADEMICS, {}),
        ('u7', 'vpadmin@cdssdaura.edu.ng', 'Mrs. VP Admin', Role.VP_ADMIN, {}),
    ]
    seeded = []
    for user_id, email, full_name, role, assignments in users:
        user = {
            'id': user_id,
            'email': email,
            'full_name': full_name,
            'role': role.value,
            'is_active': True,
            'password_hash': password_hash,
        }
        user.update(assignments)
        seeded.append(user)
    return seeded


def seed_students():
    return [
        {
            'id': f's{i + 1}',
            'reg_number': f'CDSS/25/{1000 + i}',
            'full_name': f'Student Name {i + 1}',
            'current_class': 'JSS1 A',
            'gender': 'M' if i % 2 == 0 else 'F',
        }
        for i in range(30)
    ]


INITIAL_SESSION = {'year': '2025/2026', 'current_term': 1, 'is_term_open': True}

INITIAL_SETTINGS = {
    'school_name': 'COMMAND DAY SECONDARY SCHOOL DAURA',
    'address': 'KATSINA STATE, NIGERIA',
    'logo_url': '',
}

ASSIGNMENT_FIELDS = ('assigned_class', 'assigned_classes', 'assigned_subjects')


# ==================== STORE ====================

class RecordStore:
    """Explicit store object handed to every operation."""

    def __init__(self, backend):
        self.backend = backend

    def init(self, seed_password):
        """Write seed content for every collection key that is absent."""
        seeds = {
            'users': lambda: seed_users(generate_password_hash(seed_password)),
            'students': seed_students,
            'session': lambda: dict(INITIAL_SESSION),
            'scores': list,
            'logs': list,
            'settings': lambda: dict(INITIAL_SETTINGS),
        }
        for name, factory in seeds.items():
            if self.backend.read(KEYS[name]) is None:
                self._write(name, factory())
                logger.info("Seeded %s", KEYS[name])

    def _read(self, name, default):
        raw = self.backend.read(KEYS[name])
        if not raw:
            return default
        return json.loads(raw)

    def _write(self, name, value):
        self.backend.write(KEYS[name], json.dumps(value))

    # ---------- reads ----------

    def get_users(self):
        return self._read('users', [])

    def get_user(self, user_id):
        return next((u for u in self.get_users() if u.get('id') == user_id), None)

    def find_user_by_email(self, email):
        wanted = (email or '').strip().lower()
        return next((u for u in self.get_users() if (u.get('email') or '').lower() == wanted), None)

    def get_students(self, class_filter=None):
        students = self._read('students', [])
        if class_filter:
            return [s for s in students if s.get('current_class') == class_filter]
        return students

    def get_student(self, student_id):
        return next((s for s in self.get_students() if s.get('id') == student_id), None)

    def get_scores(self):
        return self._read('scores', [])

    def get_session(self):
        return self._read('session', {})

    def get_settings(self):
        return self._read('settings', {})

    def get_logs(self):
        return self._read('logs', [])

    # ---------- audit ----------

    def log(self, actor_id, action, details):
        logs = self.get_logs()
        actor = self.get_user(actor_id)
        logs.insert(0, {
            'id': new_id(),
            'timestamp': now_iso(),
            'actor_id': actor_id,
            'actor_name': (actor or {}).get('full_name') or 'Unknown',
            'action': action,
            'details': details,
        })
        self._write('logs', logs)

    # ---------- auth ----------

    def login(self, email, password):
        user = self.find_user_by_email(email)
        if not user or not check_password_hash(user.get('password_hash') or '', password or ''):
            raise AuthenticationError('Invalid credentials')
        if not user.get('is_active'):
            raise AuthenticationError('Account pending approval.')
        return user

    def register(self, email, full_name, role, password):
        email = (email or '').strip()
        full_name = (full_name or '').strip()
        if not email or not full_name or not password:
            raise ValidationError('Please fill in all required fields.')
        if not is_valid_email(email):
            raise ValidationError('Please enter a valid email address.')
        try:
            role = Role.parse(role)
        except ValueError as exc:
            raise ValidationError(str(exc)) from exc
        if role is Role.SUPER_ADMIN:
            raise ValidationError('This role cannot be requested.')

        users = self.get_users()
        if any((u.get('email') or '').lower() == email.lower() for u in users):
            raise ValidationError('Email already exists')

        user = {
            'id': new_id(),
            'email': email,
            'full_name': full_name,
            'role': role.value,
            'is_active': False,
            'password_hash': generate_password_hash(password),
        }
        users.append(user)
        self._write('users', users)
        self.log(user['id'], 'REGISTER', f"New {role.value} account requested by {email}")
        return user

    def reset_password(self, user_id, new_password):
        if not new_password or len(new_password) < 6:
            raise ValidationError('Password must be at least 6 characters.')
        users = self.get_users()
        target = next((u for u in users if u.get('id') == user_id), None)
        if not target:
            raise ValidationError('Account not found.')
        target['password_hash'] = generate_password_hash(new_password)
        self._write('users', users)
        self.log(user_id, 'RESET_PASSWORD', f"Password reset for {target.get('email')}")

    # ---------- users ----------

    def update_user_status(self, actor_id, user_id, is_active):
        users = self.get_users()
        target = next((u for u in users if u.get('id') == user_id), None)
        if not target:
            return
        target['is_active'] = bool(is_active)
        self._write('users', users)
        self.log(actor_id, 'UPDATE_USER', f"Changed status of {target.get('email')} to {str(bool(is_active)).lower()}")

    def update_user_assignments(self, actor_id, user_id, assignments):
        users = self.get_users()
        target = next((u for u in users if u.get('id') == user_id), None)
        if not target:
            return
        for field in ASSIGNMENT_FIELDS:
            if field in assignments:
                target[field] = assignments[field]
        self._write('users', users)
        self.log(actor_id, 'UPDATE_ASSIGNMENTS', f"Updated assignments for {target.get('email')}")

    def delete_user(self, actor_id, user_id):
        users = self.get_users()
        target = next((u for u in users if u.get('id') == user_id), None)
        self._write('users', [u for u in users if u.get('id') != user_id])
        if target:
            self.log(actor_id, 'DELETE_USER', f"Permanently deleted user {target.get('email')}")

    # ---------- students ----------

    def add_student(self, actor_id, student):
        students = self.get_students()
        reg_number = (student.get('reg_number') or '').strip()
        if not reg_number or not (student.get('full_name') or '').strip():
            raise ValidationError('Student name and registration number are required.')
        if any(s.get('reg_number') == reg_number for s in students):
            raise ValidationError(f"Registration Number {reg_number} already exists.")
        if student.get('gender') not in ('M', 'F'):
            raise ValidationError('Gender must be M or F.')

        record = dict(student)
        record['reg_number'] = reg_number
        record.setdefault('id', new_id())
        students.append(record)
        self._write('students', students)
        self.log(
            actor_id,
            'ADD_STUDENT',
            f"Added student {record['full_name']} ({reg_number}) to {record.get('current_class')}",
        )
        return record

    def delete_student(self, actor_id, student_id):
        students = self.get_students()
        target = next((s for s in students if s.get('id') == student_id), None)
        self._write('students', [s for s in students if s.get('id') != student_id])
        if target:
            self.log(actor_id, 'DELETE_STUDENT', f"Deleted student {target.get('full_name')} ({target.get('reg_number')})")

    # ---------- scores ----------

    def save_score(self, actor_id, record):
        """Upsert one score record keyed by (student, subject, term, session)."""
        session = self.get_session()
        if not session.get('is_term_open'):
            raise TermClosedError()

        for field, limit in (('ca1', CA_MAX), ('ca2', CA_MAX), ('exam', EXAM_MAX)):
            value = record.get(field)
            if not isinstance(value, int) or isinstance(value, bool) or value < 0 or value > limit:
                raise ValidationError(f"{field.upper()} must be a whole number between 0 and {limit}.")
        if record.get('term') not in (1, 2, 3):
            raise ValidationError('Term must be 1, 2 or 3.')

        scores = self.get_scores()
        key = (record.get('student_id'), record.get('subject'), record.get('term'), record.get('session'))
        existing_idx = next(
            (i for i, s in enumerate(scores)
             if (s.get('student_id'), s.get('subject'), s.get('term'), s.get('session')) == key),
            None,
        )
        saved = {
            'id': record.get('id') or '-'.join(str(part) for part in key),
            'student_id': record.get('student_id'),
            'subject': record.get('subject'),
            'term': record.get('term'),
            'session': record.get('session'),
            'ca1': record['ca1'],
            'ca2': record['ca2'],
            'exam': record['exam'],
            'teacher_id': actor_id,
            'updated_at': now_iso(),
        }

        old_val = 'None'
        if existing_idx is not None:
            old = scores[existing_idx]
            old_val = f"CA1:{old.get('ca1')}, CA2:{old.get('ca2')}, Ex:{old.get('exam')}"
            scores[existing_idx] = saved
        else:
            scores.append(saved)
        self._write('scores', scores)

        student = self.get_student(record.get('student_id')) or {}
        self.log(
            actor_id,
            'SCORE_UPDATE',
            f"Updated {saved['subject']} for {student.get('full_name')}. Old: [{old_val}] -> "
            f"New: [CA1:{saved['ca1']}, CA2:{saved['ca2']}, Ex:{saved['exam']}]",
        )
        return saved

    # ---------- session / settings ----------

    def update_session(self, actor_id, year, term, is_open):
        if not is_valid_session_year(year):
            raise ValidationError('Session year must look like 2025/2026.')
        if term not in (1, 2, 3):
            raise ValidationError('Term must be 1, 2 or 3.')
        session = {'year': year.strip(), 'current_term': term, 'is_term_open': bool(is_open)}
        self._write('session', session)
        self.log(
            actor_id,
            'UPDATE_SESSION',
            f"Session updated: {session['year']}, Term {term}, Open: {str(bool(is_open)).lower()}",
        )
        return session

    def update_settings(self, actor_id, settings):
        merged = dict(self.get_settings())
        merged.update({k: v for k, v in settings.items() if k in ('school_name', 'address', 'logo_url')})
        self._write('settings', merged)
        self.log(actor_id, 'UPDATE_SETTINGS', 'Updated school settings/logo')
        return merged
