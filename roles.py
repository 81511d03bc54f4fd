"""Roles and the permission rules every page consults."""

from enum import Enum


class AuthorizationError(Exception):
    """Raised when the acting user may not perform an operation."""


class Role(Enum):
    SUPER_ADMIN = 'SUPER_ADMIN'
    COMMANDANT = 'COMMANDANT'
    ADMIN_OFFICER = 'ADMIN_OFFICER'
    VP_ACADEMICS = 'VP_ACADEMICS'
    VP_ADMIN = 'VP_ADMIN'
    EXAM_OFFICER = 'EXAM_OFFICER'
    FORM_MASTER = 'FORM_MASTER'
    SUBJECT_TEACHER = 'SUBJECT_TEACHER'

    @classmethod
    def parse(cls, value):
        if isinstance(value, cls):
            return value
        try:
            return cls((value or '').strip().upper())
        except ValueError:
            raise ValueError(f"Unknown role: {value!r}") from None

    @property
    def label(self):
        return self.value.replace('_', ' ', 1)


REGISTRABLE_ROLES = [r for r in Role if r is not Role.SUPER_ADMIN]

_APPROVERS = frozenset({Role.COMMANDANT, Role.ADMIN_OFFICER, Role.EXAM_OFFICER, Role.VP_ACADEMICS})
_USER_DELETERS = frozenset({Role.COMMANDANT, Role.ADMIN_OFFICER, Role.EXAM_OFFICER})
_STUDENT_MANAGERS = frozenset({Role.COMMANDANT, Role.ADMIN_OFFICER, Role.EXAM_OFFICER, Role.VP_ADMIN})
_SESSION_MANAGERS = frozenset({Role.COMMANDANT, Role.ADMIN_OFFICER})
_ADMIN_PANEL = frozenset({
    Role.COMMANDANT, Role.ADMIN_OFFICER, Role.EXAM_OFFICER, Role.VP_ADMIN, Role.VP_ACADEMICS,
})
_SUBJECT_ASSIGNERS = frozenset({Role.COMMANDANT, Role.ADMIN_OFFICER, Role.VP_ACADEMICS})
_REPORT_PRINTERS = frozenset({Role.FORM_MASTER, Role.COMMANDANT, Role.ADMIN_OFFICER, Role.EXAM_OFFICER})
_REPORT_CLASS_CHOOSERS = frozenset({Role.COMMANDANT, Role.ADMIN_OFFICER, Role.EXAM_OFFICER})
_CLASS_ANALYTICS = _REPORT_CLASS_CHOOSERS

SUPERVISOR_ROLES = frozenset({
    Role.VP_ACADEMICS, Role.VP_ADMIN, Role.EXAM_OFFICER, Role.COMMANDANT, Role.ADMIN_OFFICER,
})

# Roles that may hold class/subject assignments.
TEACHING_ROLES = frozenset({
    Role.SUBJECT_TEACHER, Role.VP_ACADEMICS, Role.VP_ADMIN, Role.EXAM_OFFICER,
    Role.FORM_MASTER, Role.COMMANDANT, Role.ADMIN_OFFICER,
})


def _role(value):
    try:
        return Role.parse(value)
    except ValueError:
        return None


def can_approve_users(role):
    return _role(role) in _APPROVERS


def can_delete_users(role):
    return _role(role) in _USER_DELETERS


def can_manage_students(role):
    return _role(role) in _STUDENT_MANAGERS


def can_manage_session(role):
    return _role(role) in _SESSION_MANAGERS


def can_manage_branding(role):
    return _role(role) in _SESSION_MANAGERS


def can_view_logs(role):
    return _role(role) in _ADMIN_PANEL


def can_open_admin(role):
    return _role(role) in _ADMIN_PANEL


def can_assign_subjects(role):
    return _role(role) in _SUBJECT_ASSIGNERS


def can_print_reports(role):
    return _role(role) in _REPORT_PRINTERS


def can_choose_report_class(role):
    return _role(role) in _REPORT_CLASS_CHOOSERS


def can_view_class_analytics(role):
    return _role(role) in _CLASS_ANALYTICS


def is_supervisor(role):
    return _role(role) in SUPERVISOR_ROLES


def is_teaching_role(role):
    return _role(role) in TEACHING_ROLES


def needs_assignment(role):
    """Form masters and every teaching role carry class/subject assignments."""
    return _role(role) is Role.FORM_MASTER or is_teaching_role(role)


def can_approve_target(actor_role, target_role):
    """VP Academics may only approve teaching staff; other approvers are unrestricted."""
    if not can_approve_users(actor_role):
        return False
    if _role(actor_role) is Role.VP_ACADEMICS:
        target = _role(target_role)
        return target in (Role.SUBJECT_TEACHER, Role.FORM_MASTER) or target in TEACHING_ROLES
    return True


def allowed_classes(user, all_classes):
    """Classes a user may open on the score entry page."""
    if is_supervisor(user.get('role')):
        return list(all_classes)
    assigned = user.get('assigned_classes') or []
    if assigned:
        return [c for c in all_classes if c in assigned]
    if _role(user.get('role')) is Role.FORM_MASTER and user.get('assigned_class'):
        return [user['assigned_class']]
    return []


def allowed_subjects(user, curriculum):
    """Subjects a user may open for a class whose tier curriculum is given."""
    assigned = user.get('assigned_subjects') or []
    custom = [s for s in assigned if s not in curriculum]
    if is_supervisor(user.get('role')):
        return _dedupe(list(curriculum) + custom)
    if assigned:
        return _dedupe([s for s in assigned if s in curriculum] + custom)
    return list(curriculum)


def can_edit_scores(user, classname, subject):
    """Edit rights need both the class and the subject to be assigned."""
    class_match = classname in (user.get('assigned_classes') or []) or user.get('assigned_class') == classname
    subject_match = subject in (user.get('assigned_subjects') or [])
    return bool(class_match and subject_match)


def require_score_edit(user, classname, subject):
    if not can_edit_scores(user, classname, subject):
        raise AuthorizationError(f"You are not assigned to {subject} for {classname}.")


def report_class_for(user, requested, all_classes):
    """Form masters are pinned to their own class; choosers may pick any known class."""
    if can_choose_report_class(user.get('role')):
        return requested if requested in all_classes else all_classes[0]
    return user.get('assigned_class') or all_classes[0]


def _dedupe(items):
    seen = set()
    out = []
    for item in items:
        if item not in seen:
            seen.add(item)
            out.append(item)
    return out
